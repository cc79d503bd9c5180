"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out / *Result / *Summary     → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_engine.common.constants import LeaveRequestStatus, LeaveType


# ═════════════════════════════════════════════════════════════════════
# Leave Approval
# ═════════════════════════════════════════════════════════════════════


class LeaveApprovalOut(BaseModel):
    """One approve/reject decision."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_request_id: uuid.UUID
    approver_id: uuid.UUID
    status: LeaveRequestStatus
    comments: Optional[str] = None
    approved_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create / Update
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for creating a DRAFT leave request.

    Date ordering and leave-type/country validity are business rules checked
    by ``LeaveService.create`` so they surface as ``ValidationException``.
    """

    leave_type: LeaveType
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    total_days: Decimal = Field(..., ge=Decimal("0.5"), max_digits=6, decimal_places=2)
    is_paid: bool = True
    country_code: str = Field(..., min_length=2, max_length=2)
    notes: Optional[str] = Field(None, max_length=1000)


class LeaveRequestUpdate(BaseModel):
    """Partial update of a DRAFT request; omitted fields are left unchanged."""

    leave_type: Optional[LeaveType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_days: Optional[Decimal] = Field(
        None, ge=Decimal("0.5"), max_digits=6, decimal_places=2
    )
    is_paid: Optional[bool] = None
    country_code: Optional[str] = Field(None, min_length=2, max_length=2)
    notes: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response / Filters
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response with approval history, newest first."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    country_code: str
    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: Decimal
    status: LeaveRequestStatus
    notes: Optional[str] = None
    payroll_period_id: Optional[uuid.UUID] = None
    is_paid: bool
    created_at: datetime
    updated_at: datetime

    approvals: list[LeaveApprovalOut] = []


class LeaveRequestFilters(BaseModel):
    """Query filters for listing leave requests.

    ``start_date`` keeps requests starting on or after the date,
    ``end_date`` those ending on or before it.
    """

    status: Optional[LeaveRequestStatus] = None
    user_id: Optional[uuid.UUID] = None
    country_code: Optional[str] = None
    leave_type: Optional[LeaveType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def to_filter_dict(self) -> dict:
        return {
            "status": self.status,
            "user_id": self.user_id,
            "country_code": self.country_code.upper() if self.country_code else None,
            "leave_type": self.leave_type,
            "start_date__from": self.start_date,
            "end_date__to": self.end_date,
        }


# ═════════════════════════════════════════════════════════════════════
# Approve / Reject / Bulk
# ═════════════════════════════════════════════════════════════════════


class LeaveApproveRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=1000)


class LeaveRejectRequest(BaseModel):
    # Blank comments are rejected by the workflow itself (422)
    comments: str = Field("", max_length=1000)


class BulkApproveRequest(BaseModel):
    ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100)
    comments: Optional[str] = Field(None, max_length=1000)


class BulkApproveFailure(BaseModel):
    id: uuid.UUID
    reason: str


class BulkApproveResult(BaseModel):
    """Partition of a bulk approval: ids approved, and ids failed with a reason."""

    approved: list[uuid.UUID] = []
    failed: list[BulkApproveFailure] = []


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    country_code: str
    leave_type: LeaveType
    year: int
    total_days: Decimal
    used_days: Decimal
    available_days: Decimal
    accrual_rate: Decimal


class LeaveTypeBalanceSummary(BaseModel):
    leave_type: LeaveType
    total_days: Decimal
    used_days: Decimal
    available_days: Decimal


class LeaveBalanceSummary(BaseModel):
    """Totals across every leave type of a user for one country and year."""

    user_id: uuid.UUID
    country_code: str
    year: int
    total_days: Decimal = Decimal("0")
    used_days: Decimal = Decimal("0")
    available_days: Decimal = Decimal("0")
    by_type: list[LeaveTypeBalanceSummary] = []


class BalanceInitRequest(BaseModel):
    user_id: uuid.UUID
    country_code: str = Field(..., min_length=2, max_length=2)
    year: Optional[int] = Field(None, ge=2000, le=2100)


# ═════════════════════════════════════════════════════════════════════
# Catalog / Payroll
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeOut(BaseModel):
    leave_type: LeaveType
    label: str
    default_days: Decimal
    accrual_rate: Decimal


class LeaveImpactOut(BaseModel):
    """Payroll effect of a leave: exactly one of the two amounts is non-zero."""

    user_id: Optional[uuid.UUID] = None
    leave_type: LeaveType
    country_code: str
    total_days: Decimal
    is_paid: bool
    daily_rate: Decimal
    paid_amount: Decimal
    deduction_amount: Decimal
