"""Tests for common utilities — filters, lifecycle table, exceptions, audit."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import AuditEvent, AuditTrail, DatabaseAuditLogger, _jsonable
from leave_engine.common.constants import LeaveRequestStatus, LeaveType, can_transition
from leave_engine.common.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
)
from leave_engine.common.filters import _get_column, apply_filters
from leave_engine.leave.models import LeaveRequest
from tests.conftest import seed_request


# ═════════════════════════════════════════════════════════════════════
# FILTER TESTS
# ═════════════════════════════════════════════════════════════════════


class TestApplyFilters:
    """Tests for apply_filters utility."""

    async def test_filter_by_equality(self, db: AsyncSession):
        alice, bob = uuid.uuid4(), uuid.uuid4()
        await seed_request(db, alice)
        await seed_request(db, bob)

        query = apply_filters(select(LeaveRequest), LeaveRequest, {"user_id": alice})
        rows = (await db.execute(query)).scalars().all()
        assert [r.user_id for r in rows] == [alice]

    async def test_filter_none_values_skipped(self, db: AsyncSession):
        await seed_request(db, uuid.uuid4())

        query = apply_filters(
            select(LeaveRequest), LeaveRequest, {"user_id": None, "country_code": "IN"},
        )
        assert len((await db.execute(query)).scalars().all()) == 1

    async def test_filter_by_from_to_range(self, db: AsyncSession):
        user = uuid.uuid4()
        await seed_request(db, user, start_date=date(2025, 1, 2), end_date=date(2025, 1, 3))
        mid = await seed_request(db, user, start_date=date(2025, 3, 2), end_date=date(2025, 3, 3))
        await seed_request(db, user, start_date=date(2025, 6, 2), end_date=date(2025, 6, 3))

        query = apply_filters(select(LeaveRequest), LeaveRequest, {
            "start_date__from": date(2025, 2, 1),
            "end_date__to": date(2025, 4, 30),
        })
        rows = (await db.execute(query)).scalars().all()
        assert [r.id for r in rows] == [mid.id]

    async def test_filter_by_in(self, db: AsyncSession):
        user = uuid.uuid4()
        await seed_request(db, user, status=LeaveRequestStatus.draft)
        await seed_request(db, user, status=LeaveRequestStatus.approved)
        await seed_request(db, user, status=LeaveRequestStatus.rejected)

        query = apply_filters(select(LeaveRequest), LeaveRequest, {
            "status__in": [LeaveRequestStatus.draft, LeaveRequestStatus.approved],
        })
        rows = (await db.execute(query)).scalars().all()
        assert {r.status for r in rows} == {LeaveRequestStatus.draft, LeaveRequestStatus.approved}

    async def test_unknown_column_ignored(self, db: AsyncSession):
        await seed_request(db, uuid.uuid4())

        query = apply_filters(select(LeaveRequest), LeaveRequest, {"nonexistent": "x"})
        assert len((await db.execute(query)).scalars().all()) == 1

    def test_get_column(self):
        assert _get_column(LeaveRequest, "status") is not None
        assert _get_column(LeaveRequest, "__tablename__") is None
        assert _get_column(LeaveRequest, "missing") is None


# ═════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═════════════════════════════════════════════════════════════════════


class TestCanTransition:

    @pytest.mark.parametrize("old,new", [
        (LeaveRequestStatus.draft, LeaveRequestStatus.submitted),
        (LeaveRequestStatus.draft, LeaveRequestStatus.cancelled),
        (LeaveRequestStatus.submitted, LeaveRequestStatus.approved),
        (LeaveRequestStatus.submitted, LeaveRequestStatus.rejected),
        (LeaveRequestStatus.submitted, LeaveRequestStatus.cancelled),
    ])
    def test_allowed(self, old, new):
        assert can_transition(old, new)

    @pytest.mark.parametrize("old,new", [
        (LeaveRequestStatus.draft, LeaveRequestStatus.approved),
        (LeaveRequestStatus.approved, LeaveRequestStatus.cancelled),
        (LeaveRequestStatus.rejected, LeaveRequestStatus.submitted),
        (LeaveRequestStatus.cancelled, LeaveRequestStatus.draft),
    ])
    def test_forbidden(self, old, new):
        assert not can_transition(old, new)

    @pytest.mark.parametrize("terminal", [
        LeaveRequestStatus.approved,
        LeaveRequestStatus.rejected,
        LeaveRequestStatus.cancelled,
    ])
    def test_terminal_states_have_no_exits(self, terminal):
        assert not any(can_transition(terminal, s) for s in LeaveRequestStatus)


# ═════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═════════════════════════════════════════════════════════════════════


class TestExceptions:

    def test_insufficient_balance_details(self):
        exc = InsufficientBalanceError(available=Decimal("5"), requested=Decimal("7"))
        assert isinstance(exc, ConflictError)
        assert exc.status_code == 409
        assert exc.shortfall == Decimal("2")
        assert "Shortfall: 2 days" in exc.detail

    def test_validation_detail_joins_messages(self):
        exc = ValidationException({"a": ["first"], "b": ["second"]})
        assert exc.status_code == 422
        assert exc.detail == "first; second"

    def test_not_found_names_entity(self):
        rid = uuid.uuid4()
        exc = NotFoundException("LeaveRequest", rid)
        assert exc.status_code == 404
        assert str(rid) in exc.detail


# ═════════════════════════════════════════════════════════════════════
# AUDIT
# ═════════════════════════════════════════════════════════════════════


class TestAudit:

    def test_jsonable_coerces_values(self):
        rid = uuid.uuid4()
        out = _jsonable({
            "id": rid,
            "days": Decimal("1.50"),
            "on": date(2025, 1, 10),
            "status": LeaveRequestStatus.approved,
            "types": (LeaveType.SICK_LEAVE_IN,),
            "none": None,
        })
        assert out == {
            "id": str(rid),
            "days": "1.50",
            "on": "2025-01-10",
            "status": "approved",
            "types": ["SICK_LEAVE_IN"],
            "none": None,
        }

    async def test_database_logger_writes_row(self, db: AsyncSession):
        actor = uuid.uuid4()
        await DatabaseAuditLogger(db).log(AuditEvent(
            action="LEAVE_REQUEST_CREATED",
            entity_type="LeaveRequest",
            entity_id="abc",
            actor_user_id=actor,
            actor_role="employee",
            changes={"total_days": Decimal("3")},
        ))

        row = (await db.execute(select(AuditTrail))).scalar_one()
        assert row.actor_user_id == actor
        assert row.changes == {"total_days": "3"}
