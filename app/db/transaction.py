"""All-or-nothing scope for multi-document ledger operations."""

from typing import Awaitable, Callable, TypeVar

from motor.motor_asyncio import AsyncIOMotorClientSession

from app.core.config import get_settings
from app.db.init import get_client

T = TypeVar("T")

AtomicBody = Callable[[AsyncIOMotorClientSession | None], Awaitable[T]]


async def run_atomic(body: AtomicBody[T]) -> T:
    """Run `body(session)` inside a MongoDB transaction and return its result.

    Every read and write in `body` must pass the session it receives. The
    driver's `with_transaction` re-runs the whole body on a transient error
    (e.g. a write conflict on a shared balance row) and retries an unknown
    commit result, so `body` must be safe to run more than once. Any other
    exception aborts the transaction and propagates. With
    MONGODB_TRANSACTIONS=false (standalone servers, tests) `body` runs once
    with session None and each write commits on its own.
    """
    if not get_settings().mongodb_transactions:
        return await body(None)
    async with await get_client().start_session() as session:
        return await session.with_transaction(body)
