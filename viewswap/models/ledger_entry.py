from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel

LedgerReason = Literal[
    "watch_reward",
    "promotion_debit",
    "promotion_refund",
    "purchase",
    "referral_bonus",
    "admin_adjustment",
    "vip_purchase",
]


def dedupe_key_for(
    account_id: str,
    idempotency_key: str | None,
    entry_id: PydanticObjectId | None = None,
) -> str:
    """Keyed entries share one slot per (account, key); unkeyed entries get their own id."""
    if idempotency_key:
        return f"{account_id}:{idempotency_key}"
    return f"entry:{entry_id}"


class LedgerEntry(Document):
    """Append-only coin movement; sum(amount) per account equals Account.balance."""
    account_id: str
    amount: int  # positive = credit, negative = debit
    balance_after: int
    reason: LedgerReason
    promotion_id: PydanticObjectId | None = None
    description: str = ""
    idempotency_key: str | None = None
    dedupe_key: str  # unique; second insert of the same idempotency key fails
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "ledger_entries"
        indexes = [
            [("account_id", 1), ("created_at", -1)],
            IndexModel([("dedupe_key", ASCENDING)], name="ledger_dedupe_unique", unique=True),
            [("promotion_id", 1)],
        ]
