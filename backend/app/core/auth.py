"""Actor resolution and role guards for API routes."""
from __future__ import annotations

from typing import Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.logging import logger
from app.models.audit import Actor, User, UserRole


security = HTTPBearer(auto_error=False)

UserLookup = Callable[[str], Optional[User]]


def _parse_user_tokens(raw: str) -> Dict[str, str]:
    """Parse `token:user_id` comma-separated values from env."""
    mapping: Dict[str, str] = {}
    if not raw.strip():
        return mapping

    for segment in raw.split(","):
        item = segment.strip()
        if not item:
            continue
        if ":" not in item:
            logger.warning("Ignoring malformed user token mapping entry", entry=item)
            continue
        token, user_id = item.split(":", 1)
        token = token.strip()
        user_id = user_id.strip()
        if token and user_id:
            mapping[token] = user_id
    return mapping


def get_user_lookup(request: Request) -> UserLookup:
    """User directory registered on the app as ``app.state.user_lookup``."""
    return request.app.state.user_lookup


def _actor_for(lookup: UserLookup, user_id: str) -> Actor:
    user = lookup(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown user '{user_id}'",
        )
    if user.role == UserRole.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System identities cannot call the API",
        )
    return Actor(user_id=user.id, user_name=user.name, role=user.role)


def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
    lookup: UserLookup = Depends(get_user_lookup),
) -> Actor:
    """Resolve the calling user from a bearer token or the X-User-ID header."""
    settings = get_settings()
    requested = (x_user_id or "").strip()

    if not settings.auth_enabled:
        return _actor_for(lookup, requested or settings.default_user_id)

    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
        )

    token_map = _parse_user_tokens(settings.user_tokens)
    user_id = token_map.get(credentials.credentials.strip())
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid bearer token",
        )

    if requested and requested != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token user mismatch",
        )

    return _actor_for(lookup, user_id)


def require_roles(*allowed_roles: UserRole):
    """Dependency factory that enforces role-based access control."""
    allowed = {UserRole(role) for role in allowed_roles}
    if not allowed:
        raise ValueError("At least one role is required")

    def _guard(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{actor.role.value}' not permitted for this operation",
            )
        return actor

    return _guard
