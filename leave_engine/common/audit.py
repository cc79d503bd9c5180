"""Audit trail model, event type and the logger collaborator used by services.

Audit entries are written into the caller's unit of work, so an entry is
committed exactly when the state change it describes is committed. A
failing audit write fails the operation with it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.database import Base

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Immutable audit-trail table ─────────────────────────────────────

class AuditTrail(Base):
    """Append-only log of every leave state transition."""

    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Plain string: bulk operations are logged against the literal "bulk"
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    changes: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        Index("ix_audit_trail_actor", "actor_user_id"),
        Index("ix_audit_trail_action", "action"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditTrail {self.action} {self.entity_type}"
            f"/{self.entity_id} by {self.actor_user_id}>"
        )


# ── Event + collaborator contract ───────────────────────────────────

@dataclass(frozen=True)
class AuditEvent:
    action: str
    entity_type: str
    entity_id: str
    actor_user_id: Optional[uuid.UUID]
    actor_role: str
    changes: dict[str, Any] = field(default_factory=dict)


class AuditLogger(Protocol):
    """Anything that can record an :class:`AuditEvent`."""

    async def log(self, event: AuditEvent) -> None: ...


class DatabaseAuditLogger:
    """Writes audit events as ``audit_trail`` rows on the given session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def log(self, event: AuditEvent) -> None:
        await create_audit_entry(
            self.session,
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            actor_user_id=event.actor_user_id,
            actor_role=event.actor_role,
            changes=event.changes,
        )
        logger.debug(
            "audit %s %s/%s by %s",
            event.action, event.entity_type, event.entity_id, event.actor_user_id,
        )


# ── Helper to create an entry ───────────────────────────────────────

def _jsonable(value: Any) -> Any:
    """Coerce UUID / Decimal / date / enum values so JSONB accepts them."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value.value if hasattr(value, "value") else value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: str,
    actor_user_id: Optional[uuid.UUID] = None,
    actor_role: str,
    changes: Optional[dict[str, Any]] = None,
) -> AuditTrail:
    """
    Create and flush an audit-trail entry.

    Args:
        session: Async SQLAlchemy session.
        action: e.g. ``LEAVE_REQUEST_APPROVED``.
        entity_type: e.g. ``LeaveRequest``.
        entity_id: id of the affected entity (or ``"bulk"``).
        actor_user_id: UUID of the user performing the action.
        actor_role: role the actor acted in (employee | approver | system).
        changes: old/new values and any extra context.
    """
    entry = AuditTrail(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_user_id=actor_user_id,
        actor_role=actor_role,
        changes=_jsonable(changes) if changes is not None else None,
    )
    session.add(entry)
    await session.flush()
    return entry
