from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field


class VoteLog(Document):
    account_id: int
    site_id: PydanticObjectId
    voter_ip: str | None = None
    success: bool
    reason: str | None = None
    rewarded: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "vote_logs"
        indexes = [[("account_id", 1), ("site_id", 1), ("success", 1), ("created_at", -1)]]
