"""Row-level scoping of leave requests to a client organisation."""

from __future__ import annotations

import uuid

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from leave_engine.auth.models import EmploymentRecord
from leave_engine.common.exceptions import ForbiddenException, NotFoundException
from leave_engine.leave.models import LeaveRequest


def client_scope(client_id: uuid.UUID) -> ColumnElement[bool]:
    """Predicate keeping requests whose owner is employed by *client_id*."""
    return exists().where(
        EmploymentRecord.user_id == LeaveRequest.user_id,
        EmploymentRecord.client_id == client_id,
    )


async def validate_client_access(
    db: AsyncSession,
    leave_request_id: uuid.UUID,
    client_id: uuid.UUID,
) -> None:
    """Raise ``ForbiddenException`` unless the request belongs to the client."""
    result = await db.execute(
        select(LeaveRequest.id, client_scope(client_id).label("in_scope"))
        .where(LeaveRequest.id == leave_request_id)
    )
    row = result.first()
    if row is None:
        raise NotFoundException("LeaveRequest", str(leave_request_id))
    if not row.in_scope:
        raise ForbiddenException("Leave request does not belong to an employee of your client.")
