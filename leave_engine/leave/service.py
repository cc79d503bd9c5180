"""Leave request lifecycle — create, update, submit, cancel, remove, find.

Lifecycle:
  - DRAFT → SUBMITTED | CANCELLED (owner only)
  - SUBMITTED → CANCELLED (owner only)
  - SUBMITTED → APPROVED | REJECTED belongs to ``LeaveApprovalService``

Changes are flushed on the caller's session; the request-scoped ``get_db``
dependency commits them.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_engine.common.audit import AuditEvent, AuditLogger, DatabaseAuditLogger
from leave_engine.common.constants import (
    AUDIT_ENTITY_LEAVE_REQUEST,
    AUDIT_ROLE_EMPLOYEE,
    OVERLAP_BLOCKING_STATUSES,
    AuditAction,
    LeaveRequestStatus,
    LeaveType,
    can_transition,
)
from leave_engine.common.exceptions import (
    BadRequestException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
)
from leave_engine.common.filters import apply_filters
from leave_engine.leave.calculation import LeaveCalculationService, current_year
from leave_engine.leave.models import LeaveBalance, LeaveRequest
from leave_engine.leave.schemas import (
    LeaveRequestCreate,
    LeaveRequestFilters,
    LeaveRequestUpdate,
)

logger = logging.getLogger(__name__)

# Fields whose change needs the date/type/overlap rules re-run
_SCHEDULE_FIELDS = frozenset({"start_date", "end_date", "leave_type", "country_code"})
# Columns an update may set back to NULL
_CLEARABLE_FIELDS = frozenset({"notes"})


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave request operations bound to one unit of work."""

    def __init__(
        self,
        db: AsyncSession,
        calculator: LeaveCalculationService,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self.db = db
        self.calculator = calculator
        self.audit = audit or DatabaseAuditLogger(db)

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    async def _get_request(self, request_id: uuid.UUID) -> LeaveRequest:
        result = await self.db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(selectinload(LeaveRequest.approvals))
            .execution_options(populate_existing=True)
        )
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_req

    @staticmethod
    def _ensure_owner(leave_req: LeaveRequest, user_id: uuid.UUID, action: str) -> None:
        if leave_req.user_id != user_id:
            raise ForbiddenException(f"Only the owner of a leave request can {action} it.")

    @staticmethod
    def _ensure_draft(leave_req: LeaveRequest, action: str) -> None:
        if leave_req.status != LeaveRequestStatus.draft:
            raise BadRequestException(
                f"Cannot {action} a leave request in status '{leave_req.status.value}'; "
                "only draft requests allow it."
            )

    def _validate_schedule(
        self,
        leave_type: LeaveType,
        country_code: str,
        start_date: date,
        end_date: date,
    ) -> None:
        errors: dict[str, list[str]] = {}
        if end_date < start_date:
            errors["end_date"] = ["end_date must be on or after start_date."]
        if not self.calculator.is_valid_leave_type_for_country(leave_type, country_code):
            errors["leave_type"] = [
                f"Leave type {leave_type.value} is not valid for country {country_code}."
            ]
        if errors:
            raise ValidationException(errors)

    async def _check_overlap(
        self,
        user_id: uuid.UUID,
        start_date: date,
        end_date: date,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Reject ranges intersecting a SUBMITTED/APPROVED request of the same user."""
        query = select(LeaveRequest.id, LeaveRequest.start_date, LeaveRequest.end_date).where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status.in_(OVERLAP_BLOCKING_STATUSES),
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)

        clash = (await self.db.execute(query.limit(1))).first()
        if clash is not None:
            raise ConflictError(
                f"Leave dates overlap with existing request {clash.id} "
                f"({clash.start_date} to {clash.end_date}).",
                errors={"start_date": ["Overlaps an existing submitted or approved request."]},
            )

    async def _check_balance(
        self,
        user_id: uuid.UUID,
        country_code: str,
        leave_type: LeaveType,
        total_days: Decimal,
    ) -> None:
        """Advisory pre-check; approval re-checks against a locked row."""
        result = await self.db.execute(
            select(LeaveBalance).where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.country_code == country_code,
                LeaveBalance.leave_type == leave_type,
                LeaveBalance.year == current_year(),
            )
        )
        balance = result.scalars().first()
        if balance is not None and total_days > balance.available_days:
            raise InsufficientBalanceError(
                available=Decimal(balance.available_days),
                requested=Decimal(total_days),
            )

    async def _log(
        self,
        action: AuditAction,
        leave_req: LeaveRequest,
        user_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> None:
        await self.audit.log(
            AuditEvent(
                action=action.value,
                entity_type=AUDIT_ENTITY_LEAVE_REQUEST,
                entity_id=str(leave_req.id),
                actor_user_id=user_id,
                actor_role=AUDIT_ROLE_EMPLOYEE,
                changes=changes,
            )
        )

    async def _transition(
        self,
        leave_req: LeaveRequest,
        new_status: LeaveRequestStatus,
    ) -> LeaveRequestStatus:
        old_status = leave_req.status
        if not can_transition(old_status, new_status):
            raise BadRequestException(
                f"Cannot move leave request from '{old_status.value}' to '{new_status.value}'."
            )
        leave_req.status = new_status
        await self.db.flush()
        logger.info(
            "Leave request %s: %s -> %s", leave_req.id, old_status.value, new_status.value,
        )
        return old_status

    # ─────────────────────────────────────────────────────────────────
    # Create / Update
    # ─────────────────────────────────────────────────────────────────

    async def create(self, user_id: uuid.UUID, data: LeaveRequestCreate) -> LeaveRequest:
        """Persist a DRAFT request after date, type, overlap and balance checks."""
        country_code = data.country_code.upper()
        self._validate_schedule(data.leave_type, country_code, data.start_date, data.end_date)
        await self._check_overlap(user_id, data.start_date, data.end_date)
        await self._check_balance(user_id, country_code, data.leave_type, data.total_days)

        leave_req = LeaveRequest(
            user_id=user_id,
            country_code=country_code,
            leave_type=data.leave_type,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=data.total_days,
            is_paid=data.is_paid,
            notes=data.notes,
            status=LeaveRequestStatus.draft,
            approvals=[],
        )
        self.db.add(leave_req)
        await self.db.flush()

        await self._log(
            AuditAction.created,
            leave_req,
            user_id,
            {
                "new": {
                    "status": leave_req.status,
                    "leave_type": leave_req.leave_type,
                    "start_date": leave_req.start_date,
                    "end_date": leave_req.end_date,
                    "total_days": leave_req.total_days,
                    "is_paid": leave_req.is_paid,
                    "country_code": country_code,
                },
            },
        )
        logger.info("Leave request %s created for user %s", leave_req.id, user_id)
        return leave_req

    async def update(
        self,
        request_id: uuid.UUID,
        user_id: uuid.UUID,
        patch: LeaveRequestUpdate,
    ) -> LeaveRequest:
        leave_req = await self._get_request(request_id)
        self._ensure_owner(leave_req, user_id, "update")
        self._ensure_draft(leave_req, "update")

        changes = {
            field: value
            for field, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or field in _CLEARABLE_FIELDS
        }
        if "country_code" in changes:
            changes["country_code"] = changes["country_code"].upper()
        if not changes:
            return leave_req

        if _SCHEDULE_FIELDS & changes.keys():
            start_date = changes.get("start_date", leave_req.start_date)
            end_date = changes.get("end_date", leave_req.end_date)
            self._validate_schedule(
                changes.get("leave_type", leave_req.leave_type),
                changes.get("country_code", leave_req.country_code),
                start_date,
                end_date,
            )
            await self._check_overlap(user_id, start_date, end_date, exclude_id=leave_req.id)

        old = {field: getattr(leave_req, field) for field in changes}
        for field, value in changes.items():
            setattr(leave_req, field, value)
        await self.db.flush()

        await self._log(AuditAction.updated, leave_req, user_id, {"old": old, "new": changes})
        return leave_req

    # ─────────────────────────────────────────────────────────────────
    # Submit / Cancel / Remove
    # ─────────────────────────────────────────────────────────────────

    async def submit(self, request_id: uuid.UUID, user_id: uuid.UUID) -> LeaveRequest:
        leave_req = await self._get_request(request_id)
        self._ensure_owner(leave_req, user_id, "submit")
        self._ensure_draft(leave_req, "submit")

        old_status = await self._transition(leave_req, LeaveRequestStatus.submitted)
        await self._log(
            AuditAction.submitted,
            leave_req,
            user_id,
            {"old": {"status": old_status}, "new": {"status": leave_req.status}},
        )
        return leave_req

    async def cancel(self, request_id: uuid.UUID, user_id: uuid.UUID) -> LeaveRequest:
        leave_req = await self._get_request(request_id)
        self._ensure_owner(leave_req, user_id, "cancel")

        old_status = await self._transition(leave_req, LeaveRequestStatus.cancelled)
        await self._log(
            AuditAction.cancelled,
            leave_req,
            user_id,
            {"old": {"status": old_status}, "new": {"status": leave_req.status}},
        )
        return leave_req

    async def remove(self, request_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Hard-delete a DRAFT request."""
        leave_req = await self._get_request(request_id)
        self._ensure_owner(leave_req, user_id, "delete")
        self._ensure_draft(leave_req, "delete")

        await self._log(
            AuditAction.deleted,
            leave_req,
            user_id,
            {"old": {"status": leave_req.status, "start_date": leave_req.start_date}},
        )
        await self.db.delete(leave_req)
        await self.db.flush()
        logger.info("Leave request %s deleted by owner %s", request_id, user_id)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    async def find_all(
        self,
        filters: Optional[LeaveRequestFilters] = None,
        scope: Optional[Any] = None,
    ) -> Sequence[LeaveRequest]:
        """List requests, newest first.

        *scope* is a row-level SQL predicate supplied by the authorization
        layer (see ``leave_engine.auth.scoping.client_scope``).
        """
        query = select(LeaveRequest).options(selectinload(LeaveRequest.approvals))
        if filters is not None:
            query = apply_filters(query, LeaveRequest, filters.to_filter_dict())
        if scope is not None:
            query = query.where(scope)
        query = query.order_by(LeaveRequest.created_at.desc())

        result = await self.db.execute(query)
        return result.scalars().all()

    async def find_one(self, request_id: uuid.UUID) -> LeaveRequest:
        return await self._get_request(request_id)

    async def get_balances(
        self,
        user_id: uuid.UUID,
        country_code: Optional[str] = None,
    ) -> Sequence[LeaveBalance]:
        """Current-year balances read straight from the ledger."""
        query = select(LeaveBalance).where(
            LeaveBalance.user_id == user_id,
            LeaveBalance.year == current_year(),
        )
        if country_code:
            query = query.where(LeaveBalance.country_code == country_code.upper())
        result = await self.db.execute(
            query.order_by(LeaveBalance.country_code, LeaveBalance.leave_type)
        )
        return result.scalars().all()

    async def get_payroll_ready_leaves(
        self,
        payroll_period_id: uuid.UUID,
        country_code: Optional[str] = None,
    ) -> Sequence[LeaveRequest]:
        """Approved requests tagged with *payroll_period_id*."""
        query = (
            select(LeaveRequest)
            .where(
                LeaveRequest.status == LeaveRequestStatus.approved,
                LeaveRequest.payroll_period_id == payroll_period_id,
            )
            .options(selectinload(LeaveRequest.approvals))
        )
        if country_code:
            query = query.where(LeaveRequest.country_code == country_code.upper())
        result = await self.db.execute(query.order_by(LeaveRequest.start_date))
        return result.scalars().all()
