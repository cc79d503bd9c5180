"""Leave approval workflow — approve, reject, bulk approve, approval history.

Approve and reject own their transaction: the status change, the approval
row, the balance debit and the audit entry are committed together or not at
all. The balance row is read ``FOR UPDATE`` and additionally guarded by the
``LeaveBalance.version`` counter; a version conflict rolls back and retries.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.orm.exc import StaleDataError

from leave_engine.common.audit import AuditEvent, AuditLogger, DatabaseAuditLogger
from leave_engine.common.constants import (
    AUDIT_ENTITY_LEAVE_REQUEST,
    AUDIT_ROLE_APPROVER,
    AuditAction,
    LeaveRequestStatus,
)
from leave_engine.common.exceptions import (
    AppException,
    BadRequestException,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    TransactionError,
    ValidationException,
)
from leave_engine.config import settings
from leave_engine.leave.calculation import LeaveCalculationService, current_year
from leave_engine.leave.models import LeaveApproval, LeaveBalance, LeaveRequest
from leave_engine.leave.schemas import BulkApproveFailure, BulkApproveResult

logger = logging.getLogger(__name__)


@dataclass
class ApprovalOutcome:
    """Result of one approval attempt: the request, or the error that stopped it."""

    request_id: uuid.UUID
    leave_request: Optional[LeaveRequest] = None
    error: Optional[AppException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ═════════════════════════════════════════════════════════════════════
# LeaveApprovalService
# ═════════════════════════════════════════════════════════════════════


class LeaveApprovalService:
    """The only writer of ``LeaveBalance.used_days``."""

    def __init__(
        self,
        db: AsyncSession,
        calculator: LeaveCalculationService,
        audit: Optional[AuditLogger] = None,
        *,
        max_retries: Optional[int] = None,
    ) -> None:
        self.db = db
        self.calculator = calculator
        self.audit = audit or DatabaseAuditLogger(db)
        self.max_retries = max_retries if max_retries is not None else settings.APPROVAL_MAX_RETRIES

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    async def _load_request(
        self,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveRequest]:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(selectinload(LeaveRequest.approvals))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalars().first()

    async def _load_balance(self, leave_req: LeaveRequest) -> Optional[LeaveBalance]:
        result = await self.db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.user_id == leave_req.user_id,
                LeaveBalance.country_code == leave_req.country_code,
                LeaveBalance.leave_type == leave_req.leave_type,
                LeaveBalance.year == current_year(),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _in_scope(self, request_id: uuid.UUID, scope: ColumnElement[bool]) -> bool:
        result = await self.db.execute(
            select(LeaveRequest.id).where(LeaveRequest.id == request_id, scope)
        )
        return result.scalar() is not None

    @staticmethod
    def _not_submitted(leave_req: LeaveRequest, action: str) -> BadRequestException:
        return BadRequestException(
            f"Cannot {action} a leave request in status '{leave_req.status.value}'; "
            "only submitted requests can be decided."
        )

    # ─────────────────────────────────────────────────────────────────
    # Approve
    # ─────────────────────────────────────────────────────────────────

    async def try_approve(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        comments: Optional[str] = None,
        *,
        scope: Optional[ColumnElement[bool]] = None,
    ) -> ApprovalOutcome:
        """Approve one request, returning expected failures as values.

        Not found, wrong status, insufficient balance and transaction
        failures all come back in ``ApprovalOutcome.error`` with the session
        rolled back.
        A *scope* predicate over ``LeaveRequest`` limits which requests the
        caller may approve; requests outside it fail as forbidden.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                leave_req = await self._load_request(request_id, for_update=True)
                if leave_req is None:
                    await self.db.rollback()
                    return ApprovalOutcome(
                        request_id, error=NotFoundException("LeaveRequest", str(request_id)),
                    )
                if scope is not None and not await self._in_scope(request_id, scope):
                    await self.db.rollback()
                    return ApprovalOutcome(
                        request_id,
                        error=ForbiddenException(
                            "Leave request does not belong to an employee of your client."
                        ),
                    )
                if leave_req.status != LeaveRequestStatus.submitted:
                    error = self._not_submitted(leave_req, "approve")
                    await self.db.rollback()
                    return ApprovalOutcome(request_id, error=error)

                # Authoritative check against the locked row
                balance = await self._load_balance(leave_req)
                if balance is not None and leave_req.total_days > balance.available_days:
                    error = InsufficientBalanceError(
                        available=balance.available_days,
                        requested=leave_req.total_days,
                    )
                    await self.db.rollback()
                    return ApprovalOutcome(request_id, error=error)

                old_status = leave_req.status
                leave_req.status = LeaveRequestStatus.approved
                self.db.add(
                    LeaveApproval(
                        leave_request_id=leave_req.id,
                        approver_id=approver_id,
                        status=LeaveRequestStatus.approved,
                        comments=comments,
                    )
                )
                if balance is not None:
                    balance.debit(leave_req.total_days)
                await self.db.flush()

                await self.audit.log(
                    AuditEvent(
                        action=AuditAction.approved.value,
                        entity_type=AUDIT_ENTITY_LEAVE_REQUEST,
                        entity_id=str(leave_req.id),
                        actor_user_id=approver_id,
                        actor_role=AUDIT_ROLE_APPROVER,
                        changes={
                            "old": {"status": old_status},
                            "new": {"status": LeaveRequestStatus.approved},
                            "comments": comments,
                            "days_debited": leave_req.total_days if balance is not None else None,
                        },
                    )
                )
                user_id, country_code = leave_req.user_id, leave_req.country_code
                await self.db.commit()

            except StaleDataError:
                await self.db.rollback()
                if attempt > self.max_retries:
                    logger.error(
                        "Approval of %s gave up after %d version conflicts", request_id, attempt,
                    )
                    return ApprovalOutcome(
                        request_id,
                        error=TransactionError(
                            "Leave balance was modified concurrently; please retry."
                        ),
                    )
                logger.warning(
                    "Version conflict approving %s (attempt %d); retrying", request_id, attempt,
                )
                continue
            except Exception:
                await self.db.rollback()
                logger.exception("Approval transaction failed for %s", request_id)
                return ApprovalOutcome(
                    request_id,
                    error=TransactionError("Leave approval failed and was rolled back."),
                )

            await self.calculator.invalidate_user_leave_balance_cache(
                user_id, country_code, current_year(),
            )
            logger.info("Leave request %s approved by %s", request_id, approver_id)
            return ApprovalOutcome(request_id, leave_request=await self._load_request(request_id))

    async def approve(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        comments: Optional[str] = None,
    ) -> LeaveRequest:
        """Approve a SUBMITTED request and debit its balance in one transaction."""
        outcome = await self.try_approve(request_id, approver_id, comments)
        if not outcome.ok:
            logger.warning("Approval of %s failed: %s", request_id, outcome.error.detail)
            raise outcome.error
        return outcome.leave_request

    # ─────────────────────────────────────────────────────────────────
    # Reject
    # ─────────────────────────────────────────────────────────────────

    async def reject(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        comments: Optional[str],
    ) -> LeaveRequest:
        """Reject a SUBMITTED request; a non-blank reason is mandatory."""
        if not comments or not comments.strip():
            raise ValidationException(
                {"comments": ["A reason is required to reject a leave request."]}
            )

        leave_req = await self._load_request(request_id, for_update=True)
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        if leave_req.status != LeaveRequestStatus.submitted:
            raise self._not_submitted(leave_req, "reject")

        try:
            old_status = leave_req.status
            leave_req.status = LeaveRequestStatus.rejected
            self.db.add(
                LeaveApproval(
                    leave_request_id=leave_req.id,
                    approver_id=approver_id,
                    status=LeaveRequestStatus.rejected,
                    comments=comments,
                )
            )
            await self.db.flush()
            await self.audit.log(
                AuditEvent(
                    action=AuditAction.rejected.value,
                    entity_type=AUDIT_ENTITY_LEAVE_REQUEST,
                    entity_id=str(leave_req.id),
                    actor_user_id=approver_id,
                    actor_role=AUDIT_ROLE_APPROVER,
                    changes={
                        "old": {"status": old_status},
                        "new": {"status": LeaveRequestStatus.rejected},
                        "comments": comments,
                    },
                )
            )
            await self.db.commit()
        except Exception as exc:
            await self.db.rollback()
            logger.exception("Rejection transaction failed for %s", request_id)
            raise TransactionError("Leave rejection failed and was rolled back.") from exc

        logger.info("Leave request %s rejected by %s", request_id, approver_id)
        return await self._load_request(request_id)

    # ─────────────────────────────────────────────────────────────────
    # Bulk approve
    # ─────────────────────────────────────────────────────────────────

    async def bulk_approve(
        self,
        request_ids: Sequence[uuid.UUID],
        approver_id: uuid.UUID,
        comments: Optional[str] = None,
        *,
        scope: Optional[ColumnElement[bool]] = None,
    ) -> BulkApproveResult:
        """Approve *request_ids* one after another, in the order given.

        Each item commits before the next is checked, so items drawing on
        the same balance see earlier debits. Failures never stop the batch.
        """
        result = BulkApproveResult()
        for request_id in request_ids:
            outcome = await self.try_approve(request_id, approver_id, comments, scope=scope)
            if outcome.ok:
                result.approved.append(request_id)
            else:
                result.failed.append(
                    BulkApproveFailure(id=request_id, reason=outcome.error.detail)
                )

        await self.audit.log(
            AuditEvent(
                action=AuditAction.bulk_approved.value,
                entity_type=AUDIT_ENTITY_LEAVE_REQUEST,
                entity_id="bulk",
                actor_user_id=approver_id,
                actor_role=AUDIT_ROLE_APPROVER,
                changes={
                    "requested": len(request_ids),
                    "approved": len(result.approved),
                    "failed": len(result.failed),
                    "approved_ids": result.approved,
                    "failed_ids": [f.id for f in result.failed],
                    "comments": comments,
                },
            )
        )
        await self.db.commit()

        logger.info(
            "Bulk approval by %s: %d approved, %d failed",
            approver_id, len(result.approved), len(result.failed),
        )
        return result

    # ─────────────────────────────────────────────────────────────────
    # History
    # ─────────────────────────────────────────────────────────────────

    async def get_approval_history(self, request_id: uuid.UUID) -> Sequence[LeaveApproval]:
        """All decisions on a request, most recent first."""
        exists = await self.db.execute(
            select(LeaveRequest.id).where(LeaveRequest.id == request_id)
        )
        if exists.scalar() is None:
            raise NotFoundException("LeaveRequest", str(request_id))

        result = await self.db.execute(
            select(LeaveApproval)
            .where(LeaveApproval.leave_request_id == request_id)
            .order_by(LeaveApproval.approved_at.desc())
        )
        return result.scalars().all()
