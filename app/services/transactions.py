"""Shard checkout sessions: pending -> completed | expired | failed, credited once."""

from datetime import datetime
from enum import Enum

from pymongo import ReturnDocument

from app.core.audit import log_event
from app.core.logging import get_logger
from app.db.transaction import run_atomic
from app.models.shard_transaction import ShardTransaction, TransactionStatus
from app.services import ledger

log = get_logger(__name__)


class CompletionOutcome(str, Enum):
    COMPLETED = "completed"
    TRANSACTION_NOT_FOUND = "transactionNotFound"


async def record_pending_transaction(
    account_id: int,
    external_session_id: str,
    units: int,
    price_minor: int,
    package_id: str | None = None,
    currency: str = "EUR",
) -> ShardTransaction:
    tx = ShardTransaction(
        account_id=account_id,
        external_session_id=external_session_id,
        package_id=package_id,
        package_units=units,
        price_minor_units=price_minor,
        currency=currency,
    )
    await tx.insert()
    await log_event(
        None,
        "shard_checkout_created",
        "shard_transaction",
        str(tx.id),
        {"account_id": account_id, "session_id": external_session_id, "units": units, "price": price_minor},
    )
    log.info("shard_transaction_pending", account_id=account_id, session_id=external_session_id, units=units)
    return tx


async def complete_transaction(
    external_session_id: str,
    external_payment_ref: str | None,
) -> CompletionOutcome:
    """Settle a paid checkout session and credit its shards exactly once.

    The status flip, the balance credit and the audit row commit together.
    A session that is unknown or no longer pending (duplicate or late event)
    yields TRANSACTION_NOT_FOUND and changes nothing.
    """

    async def settle(session) -> ShardTransaction | None:
        now = datetime.utcnow()
        raw = await ShardTransaction.get_motor_collection().find_one_and_update(
            {"external_session_id": external_session_id, "status": "pending"},
            {
                "$set": {
                    "status": "completed",
                    "external_payment_ref": external_payment_ref,
                    "credited_at": now,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if raw is None:
            return None
        tx = ShardTransaction.model_validate(raw)
        balance = await ledger.credit(
            tx.account_id,
            tx.package_units,
            "shard_purchase",
            reference_type="shard_transaction",
            reference_id=str(tx.id),
            session=session,
        )
        await log_event(
            None,
            "shard_transaction_completed",
            "shard_transaction",
            str(tx.id),
            {
                "account_id": tx.account_id,
                "units": tx.package_units,
                "payment_ref": external_payment_ref,
                "balance_after": balance,
            },
            session=session,
        )
        return tx

    tx = await run_atomic(settle)
    if tx is None:
        log.info("shard_transaction_not_pending", session_id=external_session_id)
        return CompletionOutcome.TRANSACTION_NOT_FOUND
    log.info("shard_transaction_completed", session_id=external_session_id, account_id=tx.account_id)
    return CompletionOutcome.COMPLETED


async def _close_pending(external_session_id: str, status: TransactionStatus) -> bool:
    result = await ShardTransaction.get_motor_collection().update_one(
        {"external_session_id": external_session_id, "status": "pending"},
        {"$set": {"status": status, "updated_at": datetime.utcnow()}},
    )
    if result.modified_count:
        await log_event(None, f"shard_transaction_{status}", "shard_transaction", external_session_id)
        log.info("shard_transaction_closed", session_id=external_session_id, status=status)
        return True
    return False


async def expire_transaction(external_session_id: str) -> None:
    """pending -> expired; no-op for any other state."""
    await _close_pending(external_session_id, "expired")


async def fail_transaction(external_session_id: str) -> None:
    """pending -> failed (gateway cancelled the session); no-op otherwise."""
    await _close_pending(external_session_id, "failed")


async def get_transaction(external_session_id: str) -> ShardTransaction | None:
    return await ShardTransaction.find_one(ShardTransaction.external_session_id == external_session_id)


async def list_transactions(account_id: int) -> list[ShardTransaction]:
    return (
        await ShardTransaction.find(ShardTransaction.account_id == account_id)
        .sort(-ShardTransaction.created_at)
        .to_list()
    )


async def list_all_transactions(
    status: TransactionStatus | None = None,
    account_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ShardTransaction], int]:
    query = {}
    if status:
        query["status"] = status
    if account_id is not None:
        query["account_id"] = account_id
    finder = ShardTransaction.find(query)
    total = await finder.count()
    items = await finder.sort(-ShardTransaction.created_at).skip(offset).limit(limit).to_list()
    return items, total
