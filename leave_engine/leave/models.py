"""Leave ORM models: LeaveRequest, LeaveApproval, LeaveBalance."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import LeaveRequestStatus, LeaveType
from leave_engine.database import Base

# Days and rates are stored with two decimal places throughout
DAYS = sa.Numeric(6, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_leave_type_enum = sa.Enum(LeaveType, name="leave_type")
_leave_status_enum = sa.Enum(LeaveRequestStatus, name="leave_request_status")


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_dates"),
        sa.CheckConstraint("total_days >= 0.5", name="ck_leave_request_total_days"),
        sa.Index("ix_leave_requests_user_dates", "user_id", "start_date", "end_date"),
        sa.Index("ix_leave_requests_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    country_code: Mapped[str] = mapped_column(sa.String(2), nullable=False)
    leave_type: Mapped[LeaveType] = mapped_column(_leave_type_enum, nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    status: Mapped[LeaveRequestStatus] = mapped_column(
        _leave_status_enum,
        nullable=False,
        default=LeaveRequestStatus.draft,
    )
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    payroll_period_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    is_paid: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    approvals: Mapped[list[LeaveApproval]] = relationship(
        back_populates="leave_request",
        order_by=lambda: LeaveApproval.approved_at.desc(),
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class LeaveApproval(Base):
    """One row per approve/reject decision. Never updated or deleted."""

    __tablename__ = "leave_approvals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    status: Mapped[LeaveRequestStatus] = mapped_column(_leave_status_enum, nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    approved_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    # Relationships
    leave_request: Mapped[LeaveRequest] = relationship(back_populates="approvals")


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "country_code", "leave_type", "year", name="uq_leave_balance"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    country_code: Mapped[str] = mapped_column(sa.String(2), nullable=False)
    leave_type: Mapped[LeaveType] = mapped_column(_leave_type_enum, nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    used_days: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    available_days: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    accrual_rate: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    # Optimistic concurrency counter, bumped by SQLAlchemy on every UPDATE
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version}

    def recompute_available(self) -> None:
        """Restore ``available_days == total_days - used_days``."""
        self.available_days = Decimal(self.total_days) - Decimal(self.used_days)

    def debit(self, days: Decimal) -> None:
        self.used_days = Decimal(self.used_days) + Decimal(days)
        self.recompute_available()

    def accrue(self) -> None:
        self.total_days = Decimal(self.total_days) + Decimal(self.accrual_rate)
        self.recompute_available()
