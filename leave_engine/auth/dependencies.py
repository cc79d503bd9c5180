"""Auth dependencies — JWT validation, role enforcement."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from leave_engine.common.constants import UserRole
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.config import settings


@dataclass(frozen=True)
class Actor:
    """The authenticated caller as described by the token claims."""

    user_id: uuid.UUID
    role: UserRole
    client_id: Optional[uuid.UUID] = None


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(request: Request) -> Actor:
    """Decode the bearer JWT into an :class:`Actor`.

    Claims: ``sub`` (user id), ``role`` and, for client-side managers,
    ``client_id``.
    """
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    try:
        user_id = uuid.UUID(payload["sub"])
        role = UserRole(payload.get("role"))
        client_id = uuid.UUID(payload["client_id"]) if payload.get("client_id") else None
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token claims.")

    request.state.user_role = role
    return Actor(user_id=user_id, role=role, client_id=client_id)


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise ForbiddenException(
                detail=f"Role '{actor.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return actor

    return _check
