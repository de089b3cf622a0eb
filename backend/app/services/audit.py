"""Single constructor for audit trail entries."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.config import get_settings
from app.models.audit import Actor, AuditLog, UserRole

AUTO_PRICING_REASON = "Auto-transition: matching price found."
HARD_DELETE_REASON = "Hard Delete by Admin"
SYSTEM_DEFAULT_REASON = "Automated system update."


def system_actor() -> Actor:
    settings = get_settings()
    return Actor(
        user_id=settings.system_actor_id,
        user_name=settings.system_actor_name,
        role=UserRole.SYSTEM,
    )


def _stringify(value: Any) -> str:
    if value is None:
        return "None"
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def emit(
    job_id: str,
    actor: Actor,
    field: str,
    old_value: Any,
    new_value: Any,
    reason: Optional[str],
    timestamp: Optional[datetime] = None,
) -> AuditLog:
    """Build a fresh audit entry.

    Entries from human actors must carry a reason. The caller persists the
    returned record; nothing here touches existing entries.
    """
    text = (reason or "").strip()
    if not text:
        if not actor.is_system:
            raise ValueError(f"Audit entry for '{field}' on {job_id} requires a reason")
        text = SYSTEM_DEFAULT_REASON

    return AuditLog(
        id=f"LOG-{uuid.uuid4().hex}",
        job_id=job_id,
        user_id=actor.user_id,
        user_name=actor.user_name,
        user_role=actor.role,
        timestamp=timestamp or datetime.now(timezone.utc),
        field=field,
        old_value=_stringify(old_value),
        new_value=_stringify(new_value),
        reason=text,
    )
