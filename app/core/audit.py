"""Append-only audit trail for state-changing shop operations."""

from typing import Any

from motor.motor_asyncio import AsyncIOMotorClientSession

from app.models.audit_log import AuditLog


async def log_event(
    actor_id: int | None,
    action: str,
    target_type: str,
    target_id: str | int | None = None,
    details: dict[str, Any] | None = None,
    session: AsyncIOMotorClientSession | None = None,
) -> AuditLog:
    """Append to audit_logs. `actor_id` is None for webhooks, pingbacks and cron."""
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=details or {},
    )
    await entry.insert(session=session)
    return entry
