"""Enums and constants for the leave engine — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "admin"
    hr = "hr"
    account_manager = "account_manager"
    hr_manager_client = "hr_manager_client"
    eor = "eor"
    candidate = "candidate"


ALL_ROLES: tuple[UserRole, ...] = tuple(UserRole)

APPROVER_ROLES: tuple[UserRole, ...] = (
    UserRole.admin,
    UserRole.hr,
    UserRole.account_manager,
    UserRole.hr_manager_client,
)

PAYROLL_ROLES: tuple[UserRole, ...] = (UserRole.admin, UserRole.hr)

# Roles that only ever see their own requests and balances
SELF_SERVICE_ROLES: frozenset[UserRole] = frozenset({UserRole.eor, UserRole.candidate})


# ── Leave ───────────────────────────────────────────────────────────

class LeaveRequestStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class LeaveType(str, enum.Enum):
    # India
    ANNUAL_LEAVE_IN = "ANNUAL_LEAVE_IN"
    SICK_LEAVE_IN = "SICK_LEAVE_IN"
    CASUAL_LEAVE_IN = "CASUAL_LEAVE_IN"
    MATERNITY_LEAVE_IN = "MATERNITY_LEAVE_IN"
    PATERNITY_LEAVE_IN = "PATERNITY_LEAVE_IN"
    COMPENSATORY_OFF_IN = "COMPENSATORY_OFF_IN"

    # Philippines
    VACATION_LEAVE_PH = "VACATION_LEAVE_PH"
    SICK_LEAVE_PH = "SICK_LEAVE_PH"
    MATERNITY_LEAVE_PH = "MATERNITY_LEAVE_PH"
    PATERNITY_LEAVE_PH = "PATERNITY_LEAVE_PH"
    SOLO_PARENT_LEAVE_PH = "SOLO_PARENT_LEAVE_PH"
    SPECIAL_LEAVE_WOMEN_PH = "SPECIAL_LEAVE_WOMEN_PH"

    # Australia
    ANNUAL_LEAVE_AU = "ANNUAL_LEAVE_AU"
    SICK_CARERS_LEAVE_AU = "SICK_CARERS_LEAVE_AU"
    LONG_SERVICE_LEAVE_AU = "LONG_SERVICE_LEAVE_AU"
    PARENTAL_LEAVE_AU = "PARENTAL_LEAVE_AU"
    COMPASSIONATE_LEAVE_AU = "COMPASSIONATE_LEAVE_AU"


# Request lifecycle: old status → statuses it may move to
ALLOWED_TRANSITIONS: dict[LeaveRequestStatus, frozenset[LeaveRequestStatus]] = {
    LeaveRequestStatus.draft: frozenset({
        LeaveRequestStatus.submitted,
        LeaveRequestStatus.cancelled,
    }),
    LeaveRequestStatus.submitted: frozenset({
        LeaveRequestStatus.cancelled,
        LeaveRequestStatus.approved,
        LeaveRequestStatus.rejected,
    }),
    LeaveRequestStatus.approved: frozenset(),
    LeaveRequestStatus.rejected: frozenset(),
    LeaveRequestStatus.cancelled: frozenset(),
}

# Statuses that block an overlapping request for the same user
OVERLAP_BLOCKING_STATUSES: tuple[LeaveRequestStatus, ...] = (
    LeaveRequestStatus.submitted,
    LeaveRequestStatus.approved,
)


def can_transition(old: LeaveRequestStatus, new: LeaveRequestStatus) -> bool:
    """Return True if the lifecycle allows ``old`` → ``new``."""
    return new in ALLOWED_TRANSITIONS.get(old, frozenset())


# ── Audit ───────────────────────────────────────────────────────────

class AuditAction(str, enum.Enum):
    created = "LEAVE_REQUEST_CREATED"
    updated = "LEAVE_REQUEST_UPDATED"
    submitted = "LEAVE_REQUEST_SUBMITTED"
    cancelled = "LEAVE_REQUEST_CANCELLED"
    deleted = "LEAVE_REQUEST_DELETED"
    approved = "LEAVE_REQUEST_APPROVED"
    rejected = "LEAVE_REQUEST_REJECTED"
    bulk_approved = "LEAVE_REQUESTS_BULK_APPROVED"
    balances_initialized = "LEAVE_BALANCES_INITIALIZED"
    balances_accrued = "LEAVE_BALANCES_ACCRUED"


AUDIT_ENTITY_LEAVE_REQUEST = "LeaveRequest"
AUDIT_ENTITY_LEAVE_BALANCE = "LeaveBalance"
AUDIT_ROLE_EMPLOYEE = "employee"
AUDIT_ROLE_APPROVER = "approver"
AUDIT_ROLE_SYSTEM = "system"


# ── Balance / calculation ───────────────────────────────────────────

DEFAULT_WORKING_DAYS_PER_MONTH = 22
BALANCE_CACHE_TTL_SECONDS = 300
