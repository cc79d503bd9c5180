"""Employment records — which client organisation a user works for."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmploymentRecord(Base):
    """Read-only here; owned by the employment system."""

    __tablename__ = "employment_records"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "client_id", name="uq_employment_user_client"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )
