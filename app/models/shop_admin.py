from datetime import datetime
from typing import Literal

from beanie import Document, Indexed
from pydantic import Field


class ShopAdmin(Document):
    """Game account granted shop operator rights."""
    account_id: Indexed(int, unique=True)
    role: Literal["admin", "moderator"] = "moderator"
    display_name: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shop_admins"
