"""ARQ job definitions."""

import uuid
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import configure_logging, get_logger
from app.db.init import close_db, init_db
from app.db.realm import dispose_realm_engines
from app.models.failed_job import FailedJob
from app.worker.cron import run_delivery_sweep

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, job_id: str | None, context: dict[str, Any], coro) -> Any:
    """Await the job; a raising job is stored as a FailedJob and re-raised for arq."""
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            error_type=type(e).__name__,
            reason=str(e)[:2000],
            context=context,
        ).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


async def retry_pending_deliveries(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: retry pending purchase deliveries once each."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    context = {"job_try": ctx.get("job_try"), "max_attempts": get_settings().max_delivery_attempts}
    return await _run_with_dlq("retry_pending_deliveries", job_id, context, run_delivery_sweep())


async def startup(ctx: dict) -> None:
    configure_logging(debug=get_settings().debug)
    await init_db()
    log.info("worker_startup")


async def shutdown(ctx: dict) -> None:
    await dispose_realm_engines()
    close_db()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
