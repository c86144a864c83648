from datetime import datetime
from typing import Literal

from beanie import Document, Indexed
from pydantic import Field

TransactionStatus = Literal["pending", "completed", "expired", "failed"]


class ShardTransaction(Document):
    """Gateway checkout session -> shards to credit once the payment settles."""
    account_id: int
    external_session_id: Indexed(str, unique=True)
    external_payment_ref: str | None = None
    package_id: str | None = None
    package_units: int
    price_minor_units: int
    currency: str = "EUR"
    status: TransactionStatus = "pending"
    credited_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shard_transactions"
        indexes = [
            [("account_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", -1)],
        ]
