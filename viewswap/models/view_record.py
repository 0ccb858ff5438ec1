from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class ViewRecord(Document):
    """Watch progress of one viewer on one promotion; ``completed`` gates the reward."""
    promotion_id: PydanticObjectId
    viewer_id: str
    watched_seconds: int = 0
    completed: bool = False
    coins_earned: int = 0
    reward_count: int = 0  # >1 only under the repeat-reward policy
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "view_records"
        indexes = [
            IndexModel(
                [("promotion_id", ASCENDING), ("viewer_id", ASCENDING)],
                name="promotion_viewer_unique",
                unique=True,
            ),
            [("viewer_id", 1), ("completed", 1)],
        ]
