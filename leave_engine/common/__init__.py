"""Common module — shared utilities for the leave engine."""

from leave_engine.common.audit import (
    AuditEvent,
    AuditLogger,
    AuditTrail,
    DatabaseAuditLogger,
    create_audit_entry,
)
from leave_engine.common.cache import (
    BalanceCache,
    InMemoryBalanceCache,
    RedisBalanceCache,
    build_balance_cache,
)
from leave_engine.common.constants import (
    ALLOWED_TRANSITIONS,
    APPROVER_ROLES,
    AuditAction,
    LeaveRequestStatus,
    LeaveType,
    UserRole,
    can_transition,
)
from leave_engine.common.exceptions import (
    AppException,
    BadRequestException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    TransactionError,
    ValidationException,
    register_exception_handlers,
)
from leave_engine.common.filters import apply_filters

__all__ = [
    # Audit
    "AuditEvent",
    "AuditLogger",
    "AuditTrail",
    "DatabaseAuditLogger",
    "create_audit_entry",
    # Cache
    "BalanceCache",
    "InMemoryBalanceCache",
    "RedisBalanceCache",
    "build_balance_cache",
    # Constants / Enums
    "ALLOWED_TRANSITIONS",
    "APPROVER_ROLES",
    "AuditAction",
    "LeaveRequestStatus",
    "LeaveType",
    "UserRole",
    "can_transition",
    # Exceptions
    "AppException",
    "BadRequestException",
    "ConflictError",
    "ForbiddenException",
    "InsufficientBalanceError",
    "NotFoundException",
    "TransactionError",
    "ValidationException",
    "register_exception_handlers",
    # Filters
    "apply_filters",
]
