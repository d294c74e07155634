"""HTTP API tests: project endpoints, lifecycle operations, error mapping, bottlenecks."""

from __future__ import annotations

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

import jobtrack.api as api_module
from jobtrack.api import create_app
from jobtrack.core import JobTrackDB
from jobtrack.outcomes import StoreConflictError
from tests._db_factory import DAY_MS, FakeClock
from tests.conftest import ADMIN, LEAD, STAFF


async def _create(client: AsyncClient, **body: Any) -> dict[str, Any]:
    body.setdefault("name", "Annual report")
    body.setdefault("lead_id", LEAD)
    resp = await client.post("/api/projects", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "prefix": "test"}

    async def test_uninitialized_db(self) -> None:
        api_module._db = None
        transport = ASGITransport(app=create_app())
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/api/projects")
        assert resp.status_code == 500


class TestProjects:
    async def test_create_and_get(self, client: AsyncClient) -> None:
        created = await _create(client, category="Emergency", status="Pending Mockup")
        assert created["priority"] == "Urgent"
        resp = await client.get(f"/api/projects/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "Pending Mockup"

    async def test_create_validation(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects", json={"name": ""})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_create_bad_body(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects", content=b"[1, 2]", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert "JSON object" in resp.json()["error"]["message"]

        resp = await client.post("/api/projects", content=b"{nope", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid JSON body"

    async def test_get_missing(self, client: AsyncClient) -> None:
        resp = await client.get("/api/projects/test-nope")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "PROJECT_NOT_FOUND"

    async def test_list_filters(self, client: AsyncClient) -> None:
        await _create(client, name="A")
        await _create(client, name="B", category="Quote")
        resp = await client.get("/api/projects", params={"category": "Quote"})
        assert [p["name"] for p in resp.json()] == ["B"]

        resp = await client.get("/api/projects", params={"category": "Retail"})
        assert resp.status_code == 400

    async def test_events(self, client: AsyncClient) -> None:
        created = await _create(client, actor=ADMIN)
        resp = await client.get(f"/api/projects/{created['id']}/events")
        assert resp.status_code == 200
        assert resp.json()[0]["event_type"] == "created"
        assert resp.json()[0]["actor"] == ADMIN

        assert (await client.get("/api/projects/test-nope/events")).status_code == 404


class TestTransition:
    async def test_billing_blocked(self, client: AsyncClient) -> None:
        created = await _create(client, status="Pending Proof Reading")
        resp = await client.post(
            f"/api/projects/{created['id']}/transition",
            json={"actor": STAFF, "role": "lead", "status": "Pending Production"},
        )
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "BILLING_PREREQUISITE_MISSING"
        assert error["details"]["missing"] == ["invoice", "payment_verification_any"]
        assert error["details"]["overridable"] is False

    async def test_admin_override(self, client: AsyncClient) -> None:
        created = await _create(client, status="Pending Proof Reading")
        resp = await client.post(
            f"/api/projects/{created['id']}/transition",
            json={"actor": ADMIN, "role": "admin", "status": "Pending Production", "override": True},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["overridden"] == ["BILLING_PREREQUISITE_MISSING"]
        assert data["project"]["status"] == "Pending Production"

    async def test_prerequisites_then_move(self, client: AsyncClient) -> None:
        pid = (await _create(client, status="Pending Proof Reading"))["id"]
        assert (await client.post(f"/api/projects/{pid}/invoice", json={})).json()["billing"]["invoice_sent"]
        resp = await client.post(f"/api/projects/{pid}/payments", json={"kind": "po"})
        assert resp.json()["billing"]["payment_verifications"] == ["po"]
        resp = await client.post(
            f"/api/projects/{pid}/transition",
            json={"actor": STAFF, "status": "Proof Reading Completed"},
        )
        assert resp.status_code == 200
        assert resp.json()["project"]["status"] == "Pending Production"

    async def test_rejected_mockup(self, client: AsyncClient) -> None:
        pid = (await _create(client, status="Pending Mockup"))["id"]
        await client.post(f"/api/projects/{pid}/mockup", json={"action": "upload"})
        resp = await client.post(f"/api/projects/{pid}/mockup", json={"action": "rejected", "reason": "Blurry"})
        assert resp.json()["mockup"]["approval"] == "rejected"
        resp = await client.post(
            f"/api/projects/{pid}/transition",
            json={"actor": ADMIN, "role": "admin", "status": "Mockup Completed", "override": True},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "MOCKUP_CLIENT_REJECTED"

    async def test_lead_conflict_is_403(self, client: AsyncClient) -> None:
        pid = (await _create(client))["id"]
        resp = await client.post(
            f"/api/projects/{pid}/transition",
            json={"actor": LEAD, "role": "admin", "status": "Pending Scope Approval"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "LEAD_CONFLICT"

    async def test_unknown_status(self, client: AsyncClient) -> None:
        pid = (await _create(client))["id"]
        resp = await client.post(
            f"/api/projects/{pid}/transition", json={"actor": STAFF, "status": "Pending Quote Request"}
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "UNKNOWN_STATUS"
        assert "Order Confirmed" in error["details"]["valid"]

    @pytest.mark.parametrize(
        "body",
        [
            {"status": "Pending Mockup"},
            {"actor": "", "status": "Pending Mockup"},
            {"actor": STAFF},
            {"actor": STAFF, "status": "Pending Mockup", "role": "owner"},
            {"actor": STAFF, "status": "Pending Mockup", "override": "yes"},
        ],
    )
    async def test_validation(self, client: AsyncClient, body: dict[str, Any]) -> None:
        pid = (await _create(client))["id"]
        resp = await client.post(f"/api/projects/{pid}/transition", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_missing_project(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/projects/test-nope/transition", json={"actor": STAFF, "status": "Pending Mockup"}
        )
        assert resp.status_code == 404

    async def test_store_conflict_is_503(self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
        pid = (await _create(client))["id"]

        def always_conflict(self: JobTrackDB, project: Any, **kw: Any) -> Any:
            raise StoreConflictError(project.id, kw["expected_version"], kw["expected_version"] + 1)

        monkeypatch.setattr(JobTrackDB, "conditional_write", always_conflict)
        resp = await client.post(
            f"/api/projects/{pid}/transition", json={"actor": STAFF, "status": "Pending Scope Approval"}
        )
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "STORE_CONFLICT"

    async def test_transitions_listing(self, client: AsyncClient) -> None:
        pid = (await _create(client, status="Pending Proof Reading"))["id"]
        resp = await client.get(f"/api/projects/{pid}/transitions", params={"role": "lead"})
        assert resp.status_code == 200
        by_stage = {o["to"]: o for o in resp.json()}
        assert by_stage["Pending Mockup"]["ready"] is True
        assert by_stage["Pending Production"]["blocked"]["code"] == "BILLING_PREREQUISITE_MISSING"

        assert (await client.get(f"/api/projects/{pid}/transitions", params={"role": "boss"})).status_code == 400
        assert (await client.get("/api/projects/test-nope/transitions")).status_code == 404


class TestOverlays:
    async def test_hold_release(self, client: AsyncClient) -> None:
        pid = (await _create(client, status="Pending Photography"))["id"]
        resp = await client.post(f"/api/projects/{pid}/hold", json={"actor": ADMIN, "reason": "Client away"})
        assert resp.status_code == 200
        assert resp.json()["project"]["status"] == "On Hold"

        blocked = await client.post(
            f"/api/projects/{pid}/transition", json={"actor": STAFF, "status": "Photography Completed"}
        )
        assert blocked.status_code == 423
        assert blocked.json()["error"]["code"] == "PROJECT_ON_HOLD"

        resp = await client.post(f"/api/projects/{pid}/hold", json={"actor": ADMIN, "on": False})
        assert resp.status_code == 200
        assert resp.json()["project"]["status"] == "Pending Photography"

    async def test_hold_needs_reason(self, client: AsyncClient) -> None:
        pid = (await _create(client))["id"]
        resp = await client.post(f"/api/projects/{pid}/hold", json={"actor": ADMIN})
        assert resp.status_code == 400
        assert "reason is required" in resp.json()["error"]["message"]

    async def test_release_not_held_is_409(self, client: AsyncClient) -> None:
        pid = (await _create(client))["id"]
        resp = await client.post(f"/api/projects/{pid}/hold", json={"actor": ADMIN, "on": False})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "PROJECT_NOT_ON_HOLD"

    async def test_cancel_reactivate(self, client: AsyncClient) -> None:
        pid = (await _create(client, status="Pending Packaging"))["id"]
        await client.post(f"/api/projects/{pid}/hold", json={"actor": ADMIN, "reason": "Paused"})
        resp = await client.post(f"/api/projects/{pid}/cancel", json={"actor": ADMIN, "reason": "Withdrawn"})
        assert resp.status_code == 200
        project = resp.json()["project"]
        assert project["cancellation"]["active"] is True
        assert project["hold"]["active"] is False

        blocked = await client.post(f"/api/projects/{pid}/hold", json={"actor": ADMIN, "reason": "x"})
        assert blocked.status_code == 423
        assert blocked.json()["error"]["code"] == "PROJECT_CANCELLED"

        resp = await client.post(f"/api/projects/{pid}/reactivate", json={"actor": ADMIN})
        assert resp.status_code == 200
        assert resp.json()["project"]["status"] == "Pending Packaging"

        again = await client.post(f"/api/projects/{pid}/reactivate", json={"actor": ADMIN})
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "PROJECT_NOT_CANCELLED"

    async def test_change_category(self, client: AsyncClient) -> None:
        pid = (await _create(client, category="Quote", status="Pending Send Response"))["id"]
        resp = await client.post(f"/api/projects/{pid}/category", json={"actor": ADMIN, "category": "Standard"})
        assert resp.status_code == 200
        assert resp.json()["project"]["status"] == "Pending Departmental Engagement"

        resp = await client.post(
            f"/api/projects/{pid}/category",
            json={"actor": ADMIN, "category": "Quote", "status": "Pending Mockup"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "UNKNOWN_STATUS"

        resp = await client.post(f"/api/projects/{pid}/category", json={"actor": ADMIN})
        assert resp.status_code == 400

    async def test_change_category_target_is_guarded(self, client: AsyncClient) -> None:
        pid = (await _create(client, status="Mockup Completed"))["id"]
        body = {"actor": ADMIN, "category": "Corporate Job", "status": "Pending Production"}
        resp = await client.post(f"/api/projects/{pid}/category", json=body)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "BILLING_PREREQUISITE_MISSING"

        resp = await client.post(f"/api/projects/{pid}/category", json={**body, "role": "admin", "override": True})
        assert resp.status_code == 200
        assert resp.json()["overridden"] == ["BILLING_PREREQUISITE_MISSING"]
        assert resp.json()["project"]["category"] == "Corporate Job"

        early = (await _create(client))["id"]
        resp = await client.post(
            f"/api/projects/{early}/category",
            json={"actor": ADMIN, "role": "admin", "override": True, "category": "Emergency", "status": "Delivered"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "MOCKUP_FILE_REQUIRED"


class TestPrerequisites:
    async def test_payment_validation(self, client: AsyncClient) -> None:
        pid = (await _create(client))["id"]
        resp = await client.post(f"/api/projects/{pid}/payments", json={"kind": "cash"})
        assert resp.status_code == 400
        resp = await client.post(f"/api/projects/{pid}/payments", json={"kind": "po"})
        resp = await client.post(f"/api/projects/{pid}/payments", json={"kind": "po", "remove": True})
        assert resp.json()["billing"]["payment_verifications"] == []

    async def test_invoice_validation(self, client: AsyncClient) -> None:
        pid = (await _create(client))["id"]
        assert (await client.post(f"/api/projects/{pid}/invoice", json={"sent": "yes"})).status_code == 400
        assert (await client.post("/api/projects/test-nope/invoice", json={})).status_code == 404

    async def test_mockup_validation(self, client: AsyncClient) -> None:
        pid = (await _create(client))["id"]
        resp = await client.post(f"/api/projects/{pid}/mockup", json={"action": "approved"})
        assert resp.status_code == 400
        assert "no mockup file" in resp.json()["error"]["message"]
        resp = await client.post(f"/api/projects/{pid}/mockup", json={"action": "burn"})
        assert resp.status_code == 400


class TestBottlenecks:
    async def test_scan_and_dismiss(self, client: AsyncClient, api_db: JobTrackDB, clock: FakeClock) -> None:
        await _create(client, status="Pending Production")
        clock.advance(15 * DAY_MS)

        resp = await client.get("/api/bottlenecks")
        assert resp.status_code == 200
        alert = resp.json()
        assert alert["surface"] is True
        assert alert["bottlenecks"][0]["days_in_stage"] == 15

        resp = await client.post(
            "/api/bottlenecks/dismiss", json={"signature": alert["signature"], "actor": ADMIN}
        )
        assert resp.json() == {"dismissed": alert["signature"], "dismissed_by": ADMIN}
        assert api_db.get_dismissed_at(alert["signature"]) == clock.now

        dismissals = (await client.get("/api/bottlenecks/dismissals")).json()
        assert dismissals == [{"signature": alert["signature"], "dismissed_at": clock.now, "dismissed_by": ADMIN}]

        assert (await client.get("/api/bottlenecks")).json()["surface"] is False
        clock.advance(DAY_MS)
        assert (await client.get("/api/bottlenecks")).json()["surface"] is True

    async def test_days_param(self, client: AsyncClient) -> None:
        await _create(client)
        resp = await client.get("/api/bottlenecks", params={"days": "0"})
        assert len(resp.json()["bottlenecks"]) == 1
        assert (await client.get("/api/bottlenecks", params={"days": "abc"})).status_code == 400
        assert (await client.get("/api/bottlenecks", params={"days": "-1"})).status_code == 400

    async def test_dismiss_validation(self, client: AsyncClient) -> None:
        assert (await client.post("/api/bottlenecks/dismiss", json={})).status_code == 400
        resp = await client.post("/api/bottlenecks/dismiss", json={"signature": ""})
        assert resp.status_code == 400
        assert "empty" in resp.json()["error"]["message"]

    async def test_dismiss_defaults_actor_to_api(self, client: AsyncClient, api_db: JobTrackDB) -> None:
        resp = await client.post("/api/bottlenecks/dismiss", json={"signature": "p1,Pending Mockup,0"})
        assert resp.json()["dismissed_by"] == "api"
        assert api_db.list_dismissals()[0]["dismissed_by"] == "api"

        bad = await client.post("/api/bottlenecks/dismiss", json={"signature": "x", "actor": "\x00"})
        assert bad.status_code == 400


class TestActivity:
    async def test_recent_and_since(self, client: AsyncClient, clock: FakeClock) -> None:
        await _create(client, name="A")
        mark = clock.now
        clock.advance(1000)
        b = await _create(client, name="B")

        recent = (await client.get("/api/events")).json()
        assert [e["project_id"] for e in recent][0] == b["id"]
        assert len(recent) == 2

        since = (await client.get("/api/events", params={"since": str(mark)})).json()
        assert [e["project_id"] for e in since] == [b["id"]]

        assert len((await client.get("/api/events", params={"limit": "1"})).json()) == 1
        assert (await client.get("/api/events", params={"since": "soon"})).status_code == 400
