from datetime import datetime

from beanie import Document
from pydantic import Field


class ShopBan(Document):
    account_id: int
    reason: str
    banned_by: int
    expires_at: datetime | None = None  # None = permanent
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shop_bans"
        indexes = [[("account_id", 1), ("is_active", 1)]]

    def is_in_effect(self, now: datetime) -> bool:
        return self.is_active and (self.expires_at is None or self.expires_at > now)
