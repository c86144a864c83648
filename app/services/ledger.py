"""Shard balances: atomic credit/debit plus the ledger journal.

This is the only module that writes ShardBalance.amount. Each mutation is a
single find_one_and_update, so concurrent writers to one account never lose
an update and the balance never drops below zero.
"""

from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorClientSession
from pymongo import ReturnDocument

from app.core.exceptions import InsufficientBalanceError
from app.core.logging import get_logger
from app.models.shard_balance import ShardBalance
from app.models.shard_ledger import LedgerReason, ShardLedgerEntry

log = get_logger(__name__)


async def get_balance(account_id: int) -> int:
    """Return current balance for account (0 if no record)."""
    bal = await ShardBalance.find_one(ShardBalance.account_id == account_id)
    return bal.amount if bal else 0


async def _journal(
    account_id: int,
    amount: int,
    balance_after: int,
    reason: LedgerReason,
    reference_type: str | None,
    reference_id: str | None,
    session: AsyncIOMotorClientSession | None,
) -> ShardLedgerEntry:
    entry = ShardLedgerEntry(
        account_id=account_id,
        amount=amount,
        balance_after=balance_after,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    await entry.insert(session=session)
    return entry


async def credit(
    account_id: int,
    delta: int,
    reason: LedgerReason,
    reference_type: str | None = None,
    reference_id: str | None = None,
    session: AsyncIOMotorClientSession | None = None,
) -> int:
    """Add `delta` shards (insert-or-add) and return the new balance."""
    if delta <= 0:
        raise ValueError(f"credit delta must be positive, got {delta}")
    now = datetime.utcnow()
    # Upsert backed by the unique account_id index: the first credit creates
    # the row, later ones increment it in place.
    doc = await ShardBalance.get_motor_collection().find_one_and_update(
        {"account_id": account_id},
        {
            "$inc": {"amount": delta},
            "$set": {"updated_at": now},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    balance_after = doc["amount"]
    await _journal(account_id, delta, balance_after, reason, reference_type, reference_id, session)
    log.info("shards_credited", account_id=account_id, delta=delta, balance=balance_after, reason=reason)
    return balance_after


async def debit(
    account_id: int,
    amount: int,
    reason: LedgerReason,
    reference_type: str | None = None,
    reference_id: str | None = None,
    session: AsyncIOMotorClientSession | None = None,
) -> int:
    """Subtract `amount` shards if the balance covers it; return the new balance.

    Raises InsufficientBalanceError (no side effect) when it does not, including
    when the account has never held shards.
    """
    if amount < 0:
        raise ValueError(f"debit amount must not be negative, got {amount}")
    doc = await ShardBalance.get_motor_collection().find_one_and_update(
        {"account_id": account_id, "amount": {"$gte": amount}},
        {"$inc": {"amount": -amount}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if doc is None:
        log.info("shards_debit_refused", account_id=account_id, amount=amount)
        raise InsufficientBalanceError(amount)
    balance_after = doc["amount"]
    if amount:
        await _journal(account_id, -amount, balance_after, reason, reference_type, reference_id, session)
    log.info("shards_debited", account_id=account_id, amount=amount, balance=balance_after, reason=reason)
    return balance_after


async def list_entries(account_id: int, limit: int = 50, offset: int = 0) -> list[ShardLedgerEntry]:
    return (
        await ShardLedgerEntry.find(ShardLedgerEntry.account_id == account_id)
        .sort(-ShardLedgerEntry.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
