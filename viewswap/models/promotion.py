from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field

PromotionStatus = Literal["on_hold", "active", "repromoted", "completed", "paused"]

VIEWABLE_STATUSES = ("active", "repromoted")


class Promotion(Document):
    owner_id: str
    video_external_id: str  # YouTube video id
    title: str
    duration_seconds: int  # watch time required for the reward
    cost_paid: int  # total coins charged, creation plus repromotions
    reward_per_view: int  # frozen at creation/repromotion
    views_count: int = 0
    target_views: int
    status: PromotionStatus = "on_hold"
    hold_until: datetime | None = None
    repromoted_at: datetime | None = None
    cancelled_at: datetime | None = None  # set while a cancellation is in flight
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "promotions"
        indexes = [
            [("owner_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", 1)],
            [("status", 1), ("hold_until", 1)],
        ]

    def hold_expired(self, now: datetime | None = None) -> bool:
        return (
            self.status == "on_hold"
            and self.hold_until is not None
            and self.hold_until <= (now or datetime.utcnow())
        )

    def summary(self) -> dict:
        return {
            "promotion_id": str(self.id),
            "video_external_id": self.video_external_id,
            "title": self.title,
            "duration_seconds": self.duration_seconds,
            "reward_per_view": self.reward_per_view,
            "views_count": self.views_count,
            "target_views": self.target_views,
            "status": self.status,
        }
