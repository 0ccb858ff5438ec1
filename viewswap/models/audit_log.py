from datetime import datetime
from typing import Any, Literal

from beanie import Document
from pydantic import Field

AuditAction = Literal[
    "promotion_cancelled",
    "promotion_repromoted",
    "vip_purchased",
    "coins_credited",
]


class AuditLog(Document):
    """Who did what to which account or promotion; coin amounts live in the ledger."""
    actor_id: str | None = None  # None for system actions
    action: AuditAction
    subject_type: Literal["account", "promotion"]
    subject_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("subject_type", 1), ("subject_id", 1), ("created_at", -1)],
            [("actor_id", 1), ("created_at", -1)],
        ]
