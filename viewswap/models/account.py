from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class Account(Document):
    """Spendable coin balance per user; only the balance engine writes ``balance``."""
    user_id: Indexed(str, unique=True)  # id from the external identity provider
    display_name: str = ""
    balance: int = 0
    version: int = 0  # bumped on every balance change
    vip_active: bool = False
    vip_expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "accounts"

    def is_vip(self, now: datetime | None = None) -> bool:
        if not self.vip_active:
            return False
        if self.vip_expires_at is None:
            return True
        return self.vip_expires_at > (now or datetime.utcnow())
