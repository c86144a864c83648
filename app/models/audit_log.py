from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    actor_id: int | None = None  # admin account id; None for system events
    action: str
    target_type: str
    target_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("created_at", -1)],
            [("target_type", 1), ("target_id", 1)],
            [("actor_id", 1), ("created_at", -1)],
        ]
