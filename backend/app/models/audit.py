"""User directory and audit trail models."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    """Operator roles of the subcontractor-management back office."""

    BOOKING_OFFICER = "BOOKING_OFFICER"
    DISPATCHER = "DISPATCHER"
    ACCOUNTANT = "ACCOUNTANT"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class User(BaseModel):
    """User directory entry. Only used to stamp identity on audit rows."""

    id: str
    name: str
    role: UserRole
    username: str
    password: Optional[str] = Field(default=None, exclude=True)


class Actor(BaseModel):
    """Identity of whoever (or whatever) performs a mutation."""

    user_id: str
    user_name: str
    role: UserRole

    @property
    def is_system(self) -> bool:
        return self.role == UserRole.SYSTEM


class AuditLog(BaseModel):
    """Append-only change record for one field of one job."""

    model_config = {"frozen": True}

    id: str
    job_id: str
    user_id: str
    user_name: str
    user_role: UserRole
    timestamp: datetime = Field(default_factory=_utcnow)
    field: str
    old_value: str
    new_value: str
    reason: str
