from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class ShardBalance(Document):
    """Spendable shards per game account; only app.services.ledger mutates `amount`."""
    account_id: Indexed(int, unique=True)
    amount: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shard_balances"
