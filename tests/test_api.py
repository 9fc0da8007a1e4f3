"""Tests for the HTTP API."""

from datetime import date
from uuid import uuid4

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from overtime_engine.api.app import create_app
from overtime_engine.api.dependencies import get_collaborators, get_db_session

from .conftest import APPROVER_USER_ID, EMPLOYEE_USER_ID, create_movement, create_summary

DAY = "2025-03-04"


@pytest_asyncio.fixture
async def client(session_factory, collaborators):
    app = create_app()

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_collaborators] = lambda: collaborators

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _headers(org, user_id=APPROVER_USER_ID) -> dict[str, str]:
    return {"X-Tenant-ID": str(org.org_id), "X-User-ID": str(user_id)}


async def _pending_authorization(client, session, org, employee) -> str:
    await create_summary(
        session, org.org_id, employee.employee_id, date(2025, 3, 4), worked=540, expected=480
    )
    await session.commit()
    response = await client.post(
        f"/api/v1/overtime/workdays/{employee.employee_id}/{DAY}/recalculate",
        headers=_headers(org),
    )
    assert response.status_code == 200
    return response.json()["authorization_id"]


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["queue"] == {}

    async def test_ready_and_live(self, client):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestHeaders:
    async def test_tenant_header_required(self, client):
        response = await client.get("/api/v1/overtime/authorizations")
        assert response.status_code == 400
        assert "X-Tenant-ID" in response.json()["detail"]

    async def test_tenant_header_must_be_uuid(self, client):
        response = await client.get(
            "/api/v1/overtime/authorizations", headers={"X-Tenant-ID": "acme"}
        )
        assert response.status_code == 400


class TestAuthorizations:
    async def test_recalculate_then_approve(self, client, session, org, employee, notifier):
        authorization_id = await _pending_authorization(client, session, org, employee)

        listed = await client.get(
            "/api/v1/overtime/authorizations", params={"status": "PENDING"}, headers=_headers(org)
        )
        assert listed.json()["total"] == 1

        response = await client.post(
            f"/api/v1/overtime/authorizations/{authorization_id}/approve",
            json={"compensation_type": "TIME"},
            headers=_headers(org),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "APPROVED"
        assert body["minutes_approved"] == 60
        assert body["approved_by_id"] == str(APPROVER_USER_ID)
        assert [m.user_id for m in notifier.of_type("OVERTIME_APPROVED")] == [EMPLOYEE_USER_ID]

        summary = await client.get(
            f"/api/v1/time-bank/employees/{employee.employee_id}/summary", headers=_headers(org)
        )
        assert summary.json()["total_minutes"] == 60

    async def test_second_decision_conflicts(self, client, session, org, employee):
        authorization_id = await _pending_authorization(client, session, org, employee)
        url = f"/api/v1/overtime/authorizations/{authorization_id}"
        await client.post(f"{url}/approve", json={}, headers=_headers(org))

        response = await client.post(f"{url}/reject", json={"reason": "late"}, headers=_headers(org))

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["context"] == {"from_status": "APPROVED", "to_status": "REJECTED"}

    async def test_non_approver_forbidden(self, client, session, org, employee):
        authorization_id = await _pending_authorization(client, session, org, employee)

        response = await client.post(
            f"/api/v1/overtime/authorizations/{authorization_id}/approve",
            json={},
            headers=_headers(org, user_id=uuid4()),
        )

        assert response.status_code == 403
        assert response.json()["code"] == "NOT_AN_APPROVER"

    async def test_unknown_authorization(self, client, org):
        response = await client.get(
            f"/api/v1/overtime/authorizations/{uuid4()}", headers=_headers(org)
        )
        assert response.status_code == 404
        assert response.json()["code"] == "AUTHORIZATION_NOT_FOUND"

    async def test_reject_requires_reason(self, client, session, org, employee):
        authorization_id = await _pending_authorization(client, session, org, employee)
        response = await client.post(
            f"/api/v1/overtime/authorizations/{authorization_id}/reject",
            json={"reason": ""},
            headers=_headers(org),
        )
        assert response.status_code == 422

    async def test_expire_runs_for_tenant(self, client, org):
        response = await client.post(
            "/api/v1/overtime/authorizations/expire", json={"expiry_days": 3}, headers=_headers(org)
        )
        assert response.status_code == 200
        assert response.json()["expired"] == 0


class TestWorkdaysAndWeeks:
    async def test_mark_dirty_enqueues(self, client, session, org, employee):
        await create_summary(
            session, org.org_id, employee.employee_id, date(2025, 3, 4), worked=540, expected=480
        )
        await session.commit()
        url = f"/api/v1/overtime/workdays/{employee.employee_id}/{DAY}/dirty"

        first = await client.post(url, headers=_headers(org))
        second = await client.post(url, headers=_headers(org))

        assert first.status_code == 202
        assert first.json()["is_new"] is True
        assert second.json()["is_new"] is False
        assert second.json()["job_id"] == first.json()["job_id"]

    async def test_reconcile_requires_monday(self, client, org):
        response = await client.post(
            "/api/v1/overtime/reconciliations",
            json={"week_start": "2025-03-04"},
            headers=_headers(org),
        )
        assert response.status_code == 400

    async def test_reconcile_daily_org_is_skipped(self, client, org):
        response = await client.post(
            "/api/v1/overtime/reconciliations",
            json={"week_start": "2025-03-03"},
            headers=_headers(org),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["skipped_reason"] == "DAILY_MODE"
        assert body["week_end"] == "2025-03-09"
        assert body["corrections_written"] == 0
        assert body["corrections_removed"] == 0


class TestTimeBankRequests:
    async def test_festive_request_flow(self, client, org, employee):
        created = await client.post(
            "/api/v1/time-bank/requests",
            json={
                "employee_id": str(employee.employee_id),
                "request_type": "FESTIVE_COMPENSATION",
                "request_date": "2025-03-14",
                "minutes": 90,
            },
            headers=_headers(org),
        )
        assert created.status_code == 201
        request_id = created.json()["request_id"]
        assert created.json()["status"] == "PENDING"

        reviewed = await client.post(
            f"/api/v1/time-bank/requests/{request_id}/review",
            json={"approve": True},
            headers=_headers(org),
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["status"] == "APPROVED"

        summary = await client.get(
            f"/api/v1/time-bank/employees/{employee.employee_id}/summary", headers=_headers(org)
        )
        body = summary.json()
        assert body["total_minutes"] == 90
        assert body["breakdown"] == {"FESTIVE": 90}

    async def test_recovery_without_balance(self, client, org, employee):
        response = await client.post(
            "/api/v1/time-bank/requests",
            json={
                "employee_id": str(employee.employee_id),
                "request_type": "RECOVERY",
                "request_date": "2025-03-14",
                "minutes": 60,
            },
            headers=_headers(org),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INSUFFICIENT_BALANCE"
        assert body["context"] == {"balance": 0, "requested": 60}

    async def test_duplicate_request_conflicts(self, client, org, employee):
        payload = {
            "employee_id": str(employee.employee_id),
            "request_type": "FESTIVE_COMPENSATION",
            "request_date": "2025-03-14",
            "minutes": 60,
        }
        await client.post("/api/v1/time-bank/requests", json=payload, headers=_headers(org))
        response = await client.post(
            "/api/v1/time-bank/requests", json=payload, headers=_headers(org)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_REQUEST"

    async def test_cancel_and_list(self, client, org, employee):
        created = await client.post(
            "/api/v1/time-bank/requests",
            json={
                "employee_id": str(employee.employee_id),
                "request_type": "FESTIVE_COMPENSATION",
                "request_date": "2025-03-14",
                "minutes": 60,
            },
            headers=_headers(org),
        )
        request_id = created.json()["request_id"]

        cancelled = await client.post(
            f"/api/v1/time-bank/requests/{request_id}/cancel",
            json={"employee_id": str(employee.employee_id)},
            headers=_headers(org),
        )
        assert cancelled.json()["status"] == "CANCELLED"

        listed = await client.get(
            "/api/v1/time-bank/requests",
            params={"status": "PENDING", "employee_id": str(employee.employee_id)},
            headers=_headers(org),
        )
        assert listed.json()["total"] == 0

    async def test_unknown_employee_summary(self, client, org):
        response = await client.get(
            f"/api/v1/time-bank/employees/{uuid4()}/summary", headers=_headers(org)
        )
        assert response.status_code == 404

    async def test_minutes_must_be_positive(self, client, org, employee):
        response = await client.post(
            "/api/v1/time-bank/requests",
            json={
                "employee_id": str(employee.employee_id),
                "request_type": "RECOVERY",
                "request_date": "2025-03-14",
                "minutes": 0,
            },
            headers=_headers(org),
        )
        assert response.status_code == 422


class TestOvertimeSettings:
    async def test_get_returns_defaults(self, client, org):
        response = await client.get("/api/v1/overtime/settings", headers=_headers(org))
        assert response.status_code == 200
        body = response.json()
        assert body["calculation_mode"] == "DAILY"
        assert body["approval_mode"] == "POST"
        assert body["tolerance_minutes"] == 15
        assert body["full_time_weekly_hours"] == 40.0

    async def test_put_replaces_settings(self, client, org):
        current = (await client.get("/api/v1/overtime/settings", headers=_headers(org))).json()
        current.update(calculation_mode="WEEKLY", daily_limit_minutes=120)

        response = await client.put(
            "/api/v1/overtime/settings", json=current, headers=_headers(org)
        )

        assert response.status_code == 200
        assert response.json()["calculation_mode"] == "WEEKLY"
        again = (await client.get("/api/v1/overtime/settings", headers=_headers(org))).json()
        assert again["daily_limit_minutes"] == 120

    async def test_out_of_range_is_400(self, client, org):
        current = (await client.get("/api/v1/overtime/settings", headers=_headers(org))).json()
        current["tolerance_minutes"] = 121

        response = await client.put(
            "/api/v1/overtime/settings", json=current, headers=_headers(org)
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_SETTINGS"
        assert body["context"] == {"field": "tolerance_minutes"}

    async def test_unknown_mode_is_422(self, client, org):
        current = (await client.get("/api/v1/overtime/settings", headers=_headers(org))).json()
        current["approval_mode"] = "LATER"

        response = await client.put(
            "/api/v1/overtime/settings", json=current, headers=_headers(org)
        )
        assert response.status_code == 422


class TestAdminStats:
    async def test_stats(self, client, session, org, employee):
        await create_movement(session, org.org_id, employee.employee_id, minutes=-20)
        await session.commit()

        response = await client.get("/api/v1/time-bank/admin/stats", headers=_headers(org))

        assert response.status_code == 200
        body = response.json()
        assert body["total_employees_with_balance"] == 1
        assert body["total_negative_minutes"] == 20
        assert body["pending_requests_count"] == 0
        (line,) = body["employees"]
        assert line["employee_id"] == str(employee.employee_id)
        assert line["total_minutes"] == -20
