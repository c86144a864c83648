from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field

LedgerReason = Literal["shard_purchase", "vote_reward", "shop_purchase", "refund"]


class ShardLedgerEntry(Document):
    account_id: int
    amount: int  # positive = credit, negative = debit
    balance_after: int
    reason: LedgerReason
    reference_type: str | None = None  # shard_transaction, shop_purchase, vote_log
    reference_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shard_ledger"
        indexes = [
            [("account_id", 1), ("created_at", -1)],
            [("reference_type", 1), ("reference_id", 1)],
        ]
