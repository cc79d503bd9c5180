"""HTTP API tests — routing, auth, role checks, scoping and RFC 7807 errors
for the leave endpoints under /api/v1/leave.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import LeaveRequestStatus, UserRole
from tests.conftest import auth_headers, seed_balance, seed_employment, seed_request

BASE = "/api/v1/leave"

REQUEST_BODY = {
    "leave_type": "ANNUAL_LEAVE_IN",
    "start_date": "2025-01-10",
    "end_date": "2025-01-12",
    "total_days": "3",
    "is_paid": True,
    "country_code": "IN",
}


class TestSystem:

    async def test_health_check(self, client: AsyncClient):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_token(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/requests")
        assert resp.status_code == 401

    async def test_garbage_token(self, client: AsyncClient):
        resp = await client.get(
            f"{BASE}/requests", headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401


class TestRequestEndpoints:

    async def test_create_submit_approve_flow(self, client: AsyncClient, db: AsyncSession):
        employee, approver = uuid.uuid4(), uuid.uuid4()
        await seed_balance(db, employee, total_days="21")

        resp = await client.post(
            f"{BASE}/requests", json=REQUEST_BODY, headers=auth_headers(employee),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "draft"
        assert body["approvals"] == []
        request_id = body["id"]

        resp = await client.post(
            f"{BASE}/requests/{request_id}/submit", headers=auth_headers(employee),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "submitted"

        resp = await client.post(
            f"{BASE}/requests/{request_id}/approve",
            json={"comments": "Approved"},
            headers=auth_headers(approver, UserRole.hr),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "approved"
        assert body["approvals"][0]["approver_id"] == str(approver)

        resp = await client.get(
            f"{BASE}/balances/summary",
            params={"country_code": "IN"},
            headers=auth_headers(employee),
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["used_days"]) == Decimal("3")
        assert Decimal(resp.json()["available_days"]) == Decimal("18")

    async def test_validation_error_is_problem_json(self, client: AsyncClient):
        resp = await client.post(
            f"{BASE}/requests",
            json={**REQUEST_BODY, "start_date": "2025-01-15"},
            headers=auth_headers(uuid.uuid4()),
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("/validation-error")
        assert "end_date" in resp.json()["errors"]

    async def test_overlap_is_conflict(self, client: AsyncClient, db: AsyncSession):
        employee = uuid.uuid4()
        await seed_request(db, employee, status=LeaveRequestStatus.approved)

        resp = await client.post(
            f"{BASE}/requests", json=REQUEST_BODY, headers=auth_headers(employee),
        )
        assert resp.status_code == 409
        assert resp.json()["type"].endswith("/conflict")

    async def test_employee_cannot_approve(self, client: AsyncClient, db: AsyncSession):
        leave_req = await seed_request(db, uuid.uuid4())
        resp = await client.post(
            f"{BASE}/requests/{leave_req.id}/approve", json={}, headers=auth_headers(uuid.uuid4()),
        )
        assert resp.status_code == 403

    async def test_insufficient_balance_on_approve(self, client: AsyncClient, db: AsyncSession):
        employee = uuid.uuid4()
        await seed_balance(db, employee, total_days="21")
        leave_req = await seed_request(db, employee, total_days="25")

        resp = await client.post(
            f"{BASE}/requests/{leave_req.id}/approve",
            json={},
            headers=auth_headers(uuid.uuid4(), UserRole.admin),
        )
        assert resp.status_code == 409
        assert resp.json()["type"].endswith("/insufficient-balance")
        assert "Shortfall" in resp.json()["detail"]

    async def test_reject_requires_comments(self, client: AsyncClient, db: AsyncSession):
        leave_req = await seed_request(db, uuid.uuid4())
        headers = auth_headers(uuid.uuid4(), UserRole.account_manager)

        resp = await client.post(
            f"{BASE}/requests/{leave_req.id}/reject", json={"comments": " "}, headers=headers,
        )
        assert resp.status_code == 422

        resp = await client.post(
            f"{BASE}/requests/{leave_req.id}/reject", json={"comments": "Busy week"}, headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"

        resp = await client.get(f"{BASE}/requests/{leave_req.id}/approvals", headers=headers)
        assert resp.status_code == 200
        assert [a["comments"] for a in resp.json()] == ["Busy week"]

    async def test_approve_twice_is_bad_request(self, client: AsyncClient, db: AsyncSession):
        leave_req = await seed_request(db, uuid.uuid4(), status=LeaveRequestStatus.approved)
        resp = await client.post(
            f"{BASE}/requests/{leave_req.id}/approve",
            json={},
            headers=auth_headers(uuid.uuid4(), UserRole.hr),
        )
        assert resp.status_code == 400

    async def test_unknown_request_is_not_found(self, client: AsyncClient):
        resp = await client.get(
            f"{BASE}/requests/{uuid.uuid4()}", headers=auth_headers(uuid.uuid4(), UserRole.hr),
        )
        assert resp.status_code == 404
        assert resp.json()["type"].endswith("/not-found")

    async def test_delete_draft(self, client: AsyncClient, db: AsyncSession):
        employee = uuid.uuid4()
        leave_req = await seed_request(db, employee, status=LeaveRequestStatus.draft)

        resp = await client.delete(
            f"{BASE}/requests/{leave_req.id}", headers=auth_headers(uuid.uuid4()),
        )
        assert resp.status_code == 403

        resp = await client.delete(f"{BASE}/requests/{leave_req.id}", headers=auth_headers(employee))
        assert resp.status_code == 204

    async def test_update_draft(self, client: AsyncClient, db: AsyncSession):
        employee = uuid.uuid4()
        leave_req = await seed_request(db, employee, status=LeaveRequestStatus.draft)

        resp = await client.put(
            f"{BASE}/requests/{leave_req.id}",
            json={"notes": "Family trip"},
            headers=auth_headers(employee),
        )
        assert resp.status_code == 200
        assert resp.json()["notes"] == "Family trip"

    async def test_cancel(self, client: AsyncClient, db: AsyncSession):
        employee = uuid.uuid4()
        leave_req = await seed_request(db, employee)

        resp = await client.post(
            f"{BASE}/requests/{leave_req.id}/cancel", headers=auth_headers(employee),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    async def test_bulk_approve(self, client: AsyncClient, db: AsyncSession):
        employee = uuid.uuid4()
        await seed_balance(db, employee, total_days="3")
        a = await seed_request(db, employee, total_days="3")
        b = await seed_request(db, employee, total_days="1")

        resp = await client.post(
            f"{BASE}/requests/bulk-approve",
            json={"ids": [str(a.id), str(b.id)]},
            headers=auth_headers(uuid.uuid4(), UserRole.hr),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["approved"] == [str(a.id)]
        assert [f["id"] for f in body["failed"]] == [str(b.id)]


class TestScoping:

    async def test_employee_sees_only_own_requests(self, client: AsyncClient, db: AsyncSession):
        me, other = uuid.uuid4(), uuid.uuid4()
        mine = await seed_request(db, me)
        await seed_request(db, other)

        resp = await client.get(
            f"{BASE}/requests", params={"user_id": str(other)}, headers=auth_headers(me),
        )
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [str(mine.id)]

        resp = await client.get(
            f"{BASE}/requests", headers=auth_headers(uuid.uuid4(), UserRole.hr),
        )
        assert len(resp.json()) == 2

    async def test_client_manager_scope(self, client: AsyncClient, db: AsyncSession):
        client_id = uuid.uuid4()
        employee, outsider = uuid.uuid4(), uuid.uuid4()
        await seed_employment(db, employee, client_id)
        await seed_balance(db, employee)
        inside = await seed_request(db, employee)
        outside = await seed_request(db, outsider)
        headers = auth_headers(uuid.uuid4(), UserRole.hr_manager_client, client_id=client_id)

        resp = await client.get(f"{BASE}/requests", headers=headers)
        assert [r["id"] for r in resp.json()] == [str(inside.id)]

        resp = await client.post(
            f"{BASE}/requests/{outside.id}/approve", json={}, headers=headers,
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"{BASE}/requests/{inside.id}/approve", json={}, headers=headers,
        )
        assert resp.status_code == 200

    async def test_client_manager_bulk_approve_reports_outsiders(
        self, client: AsyncClient, db: AsyncSession,
    ):
        client_id = uuid.uuid4()
        employee = uuid.uuid4()
        await seed_employment(db, employee, client_id)
        inside_id = (await seed_request(db, employee)).id
        outside_id = (await seed_request(db, uuid.uuid4())).id
        missing = uuid.uuid4()
        headers = auth_headers(uuid.uuid4(), UserRole.hr_manager_client, client_id=client_id)

        resp = await client.post(
            f"{BASE}/requests/bulk-approve",
            json={"ids": [str(inside_id), str(missing), str(outside_id)]},
            headers=headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["approved"] == [str(inside_id)]
        assert [f["id"] for f in body["failed"]] == [str(missing), str(outside_id)]

    async def test_employee_cannot_read_other_balances(self, client: AsyncClient):
        resp = await client.get(
            f"{BASE}/balances",
            params={"user_id": str(uuid.uuid4())},
            headers=auth_headers(uuid.uuid4()),
        )
        assert resp.status_code == 403


class TestBalanceAndCatalogEndpoints:

    async def test_initialize_and_accrue(self, client: AsyncClient):
        employee = uuid.uuid4()
        headers = auth_headers(uuid.uuid4(), UserRole.hr)
        body = {"user_id": str(employee), "country_code": "AU"}

        resp = await client.post(f"{BASE}/balances/initialize", json=body, headers=headers)
        assert resp.status_code == 200
        assert len(resp.json()) == 5

        resp = await client.post(f"{BASE}/balances/initialize", json=body, headers=headers)
        assert resp.json() == []

        resp = await client.post(f"{BASE}/balances/accrue", json=body, headers=headers)
        accrued = {b["leave_type"]: Decimal(b["total_days"]) for b in resp.json()}
        assert accrued == {
            "ANNUAL_LEAVE_AU": Decimal("21.67"),
            "SICK_CARERS_LEAVE_AU": Decimal("10.83"),
            "LONG_SERVICE_LEAVE_AU": Decimal("0.05"),
        }

        resp = await client.get(f"{BASE}/balances", headers=auth_headers(employee))
        assert len(resp.json()) == 5

    async def test_initialize_requires_admin(self, client: AsyncClient):
        resp = await client.post(
            f"{BASE}/balances/initialize",
            json={"user_id": str(uuid.uuid4()), "country_code": "IN"},
            headers=auth_headers(uuid.uuid4(), UserRole.account_manager),
        )
        assert resp.status_code == 403

    async def test_leave_types(self, client: AsyncClient):
        resp = await client.get(
            f"{BASE}/leave-types", params={"country_code": "PH"}, headers=auth_headers(uuid.uuid4()),
        )
        assert resp.status_code == 200
        types = {t["leave_type"]: t for t in resp.json()}
        assert len(types) == 6
        assert Decimal(types["VACATION_LEAVE_PH"]["accrual_rate"]) == Decimal("0.42")

    async def test_payroll_impact(self, client: AsyncClient):
        resp = await client.get(
            f"{BASE}/payroll-impact",
            params={
                "leave_type": "SICK_LEAVE_PH",
                "total_days": "2",
                "is_paid": "false",
                "base_salary": "2600",
                "country_code": "PH",
            },
            headers=auth_headers(uuid.uuid4(), UserRole.admin),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["paid_amount"]) == Decimal("0")
        assert Decimal(body["deduction_amount"]) == Decimal("200")

    async def test_payroll_ready(self, client: AsyncClient, db: AsyncSession):
        period = uuid.uuid4()
        ready = await seed_request(
            db, uuid.uuid4(), status=LeaveRequestStatus.approved, payroll_period_id=period,
        )

        resp = await client.get(
            f"{BASE}/payroll-ready",
            params={"payroll_period_id": str(period)},
            headers=auth_headers(uuid.uuid4(), UserRole.hr),
        )
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [str(ready.id)]
