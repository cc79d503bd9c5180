"""Leave router — requests, approvals, balances, catalog, payroll.

All endpoints require a bearer token. Approval endpoints are limited to
approver roles; ledger administration and payroll to admin/hr. Self-service
roles only ever see their own data, client-side HR managers only their
client's employees.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import Actor, get_current_actor, require_role
from leave_engine.auth.scoping import client_scope, validate_client_access
from leave_engine.common.constants import (
    APPROVER_ROLES,
    PAYROLL_ROLES,
    SELF_SERVICE_ROLES,
    LeaveRequestStatus,
    LeaveType,
    UserRole,
)
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.common.rate_limit import BULK_APPROVE_LIMIT, limiter
from leave_engine.database import get_db
from leave_engine.leave.approval import LeaveApprovalService
from leave_engine.leave.calculation import LeaveCalculationService
from leave_engine.leave.schemas import (
    BalanceInitRequest,
    BulkApproveRequest,
    BulkApproveResult,
    LeaveApprovalOut,
    LeaveApproveRequest,
    LeaveBalanceOut,
    LeaveBalanceSummary,
    LeaveImpactOut,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestFilters,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveTypeOut,
)
from leave_engine.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── Service wiring ──────────────────────────────────────────────────

def get_calculator(request: Request) -> LeaveCalculationService:
    return request.app.state.leave_calculator


def get_leave_service(
    db: AsyncSession = Depends(get_db),
    calculator: LeaveCalculationService = Depends(get_calculator),
) -> LeaveService:
    return LeaveService(db, calculator)


def get_approval_service(
    db: AsyncSession = Depends(get_db),
    calculator: LeaveCalculationService = Depends(get_calculator),
) -> LeaveApprovalService:
    return LeaveApprovalService(db, calculator)


async def _check_visibility(db: AsyncSession, actor: Actor, request_id: uuid.UUID) -> None:
    """Client-side HR managers may only touch their own client's requests."""
    if actor.role != UserRole.hr_manager_client:
        return
    if actor.client_id is None:
        raise ForbiddenException("No client is associated with this account.")
    await validate_client_access(db, request_id, actor.client_id)


def _resolve_user(actor: Actor, user_id: Optional[uuid.UUID]) -> uuid.UUID:
    if user_id is None or user_id == actor.user_id:
        return actor.user_id
    if actor.role in SELF_SERVICE_ROLES:
        raise ForbiddenException("You can only view your own leave balances.")
    return user_id


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
async def create_leave_request(
    body: LeaveRequestCreate,
    actor: Actor = Depends(get_current_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """Create a DRAFT request. Validates dates, leave type, overlap and balance."""
    return await service.create(actor.user_id, body)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=list[LeaveRequestOut])
async def list_leave_requests(
    status: Optional[LeaveRequestStatus] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None),
    country_code: Optional[str] = Query(None, min_length=2, max_length=2),
    leave_type: Optional[LeaveType] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """List leave requests, newest first, scoped to what the caller may see."""
    filters = LeaveRequestFilters(
        status=status,
        user_id=user_id,
        country_code=country_code,
        leave_type=leave_type,
        start_date=start_date,
        end_date=end_date,
    )
    scope = None
    if actor.role in SELF_SERVICE_ROLES:
        filters.user_id = actor.user_id
    elif actor.role == UserRole.hr_manager_client:
        if actor.client_id is None:
            raise ForbiddenException("No client is associated with this account.")
        scope = client_scope(actor.client_id)
    return await service.find_all(filters, scope=scope)


# ── POST /requests/bulk-approve ─────────────────────────────────────

@router.post("/requests/bulk-approve", response_model=BulkApproveResult)
@limiter.limit(BULK_APPROVE_LIMIT)
async def bulk_approve_leave_requests(
    request: Request,
    body: BulkApproveRequest,
    actor: Actor = Depends(require_role(*APPROVER_ROLES)),
    service: LeaveApprovalService = Depends(get_approval_service),
):
    """Approve many requests in order; each failure is reported, never fatal.

    Client-side HR managers see requests outside their client reported as
    failed, alongside unknown ids.
    """
    scope = None
    if actor.role == UserRole.hr_manager_client:
        if actor.client_id is None:
            raise ForbiddenException("No client is associated with this account.")
        scope = client_scope(actor.client_id)
    return await service.bulk_approve(list(body.ids), actor.user_id, body.comments, scope=scope)


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    service: LeaveService = Depends(get_leave_service),
):
    leave_req = await service.find_one(request_id)
    if actor.role in SELF_SERVICE_ROLES and leave_req.user_id != actor.user_id:
        raise ForbiddenException("You can only view your own leave requests.")
    await _check_visibility(db, actor, request_id)
    return leave_req


# ── PUT /requests/{id} ──────────────────────────────────────────────

@router.put("/requests/{request_id}", response_model=LeaveRequestOut)
async def update_leave_request(
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    actor: Actor = Depends(get_current_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """Edit a DRAFT request (owner only)."""
    return await service.update(request_id, actor.user_id, body)


# ── DELETE /requests/{id} ───────────────────────────────────────────

@router.delete("/requests/{request_id}", status_code=204)
async def delete_leave_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """Hard-delete a DRAFT request (owner only)."""
    await service.remove(request_id, actor.user_id)
    return Response(status_code=204)


# ── POST /requests/{id}/submit ──────────────────────────────────────

@router.post("/requests/{request_id}/submit", response_model=LeaveRequestOut)
async def submit_leave_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.submit(request_id, actor.user_id)


# ── POST /requests/{id}/cancel ──────────────────────────────────────

@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.cancel(request_id, actor.user_id)


# ── POST /requests/{id}/approve ─────────────────────────────────────

@router.post("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave_request(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    actor: Actor = Depends(require_role(*APPROVER_ROLES)),
    db: AsyncSession = Depends(get_db),
    service: LeaveApprovalService = Depends(get_approval_service),
):
    """Approve a SUBMITTED request and debit the balance atomically."""
    await _check_visibility(db, actor, request_id)
    return await service.approve(request_id, actor.user_id, body.comments)


# ── POST /requests/{id}/reject ──────────────────────────────────────

@router.post("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave_request(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    actor: Actor = Depends(require_role(*APPROVER_ROLES)),
    db: AsyncSession = Depends(get_db),
    service: LeaveApprovalService = Depends(get_approval_service),
):
    """Reject a SUBMITTED request. A reason is mandatory."""
    await _check_visibility(db, actor, request_id)
    return await service.reject(request_id, actor.user_id, body.comments)


# ── GET /requests/{id}/approvals ────────────────────────────────────

@router.get("/requests/{request_id}/approvals", response_model=list[LeaveApprovalOut])
async def get_approval_history(
    request_id: uuid.UUID,
    actor: Actor = Depends(require_role(*APPROVER_ROLES)),
    db: AsyncSession = Depends(get_db),
    service: LeaveApprovalService = Depends(get_approval_service),
):
    await _check_visibility(db, actor, request_id)
    return await service.get_approval_history(request_id)


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def get_balances(
    country_code: Optional[str] = Query(None, min_length=2, max_length=2),
    user_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """Current-year balances, read from the ledger (uncached)."""
    return await service.get_balances(_resolve_user(actor, user_id), country_code)


# ── GET /balances/summary ───────────────────────────────────────────

@router.get("/balances/summary", response_model=LeaveBalanceSummary)
async def get_balance_summary(
    country_code: str = Query(..., min_length=2, max_length=2),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    calculator: LeaveCalculationService = Depends(get_calculator),
):
    """Totals across leave types plus a per-type breakdown (cached)."""
    return await calculator.get_leave_balance_summary(
        db, _resolve_user(actor, user_id), country_code, year,
    )


# ── POST /balances/initialize ───────────────────────────────────────

@router.post("/balances/initialize", response_model=list[LeaveBalanceOut])
async def initialize_balances(
    body: BalanceInitRequest,
    actor: Actor = Depends(require_role(*PAYROLL_ROLES)),
    db: AsyncSession = Depends(get_db),
    calculator: LeaveCalculationService = Depends(get_calculator),
):
    """Create missing balance rows with catalog defaults; returns only new rows."""
    return await calculator.initialize_balances(
        db, body.user_id, body.country_code, body.year, actor_id=actor.user_id,
    )


# ── POST /balances/accrue ───────────────────────────────────────────

@router.post("/balances/accrue", response_model=list[LeaveBalanceOut])
async def accrue_balances(
    body: BalanceInitRequest,
    actor: Actor = Depends(require_role(*PAYROLL_ROLES)),
    db: AsyncSession = Depends(get_db),
    calculator: LeaveCalculationService = Depends(get_calculator),
):
    """Run one monthly accrual cycle for the user's balances."""
    return await calculator.accrue_leave(
        db, body.user_id, body.country_code, body.year, actor_id=actor.user_id,
    )


# ── GET /leave-types ────────────────────────────────────────────────

@router.get("/leave-types", response_model=list[LeaveTypeOut])
async def get_leave_types(
    country_code: str = Query(..., min_length=2, max_length=2),
    actor: Actor = Depends(get_current_actor),
    calculator: LeaveCalculationService = Depends(get_calculator),
):
    return calculator.get_leave_type_catalog(country_code)


# ── GET /payroll-ready ──────────────────────────────────────────────

@router.get("/payroll-ready", response_model=list[LeaveRequestOut])
async def get_payroll_ready_leaves(
    payroll_period_id: uuid.UUID = Query(...),
    country_code: Optional[str] = Query(None, min_length=2, max_length=2),
    actor: Actor = Depends(require_role(*PAYROLL_ROLES)),
    service: LeaveService = Depends(get_leave_service),
):
    """Approved leaves attached to a payroll period."""
    return await service.get_payroll_ready_leaves(payroll_period_id, country_code)


# ── GET /payroll-impact ─────────────────────────────────────────────

@router.get("/payroll-impact", response_model=LeaveImpactOut)
async def get_payroll_impact(
    leave_type: LeaveType = Query(...),
    total_days: Decimal = Query(..., gt=0),
    is_paid: bool = Query(...),
    base_salary: Decimal = Query(..., ge=0),
    country_code: str = Query(..., min_length=2, max_length=2),
    user_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(require_role(*PAYROLL_ROLES)),
    calculator: LeaveCalculationService = Depends(get_calculator),
):
    """Paid amount or salary deduction for a leave, rounded to cents."""
    return calculator.calculate_leave_impact(
        leave_type, total_days, is_paid, base_salary, country_code, user_id,
    )
