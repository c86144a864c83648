from datetime import datetime

from beanie import Document, PydanticObjectId
from pymongo import IndexModel


class VoteCooldown(Document):
    """Latest rewarded vote per (account, site); the unique key serialises claims."""
    account_id: int
    site_id: PydanticObjectId
    last_voted_at: datetime

    class Settings:
        name = "vote_cooldowns"
        indexes = [IndexModel([("account_id", 1), ("site_id", 1)], unique=True)]
