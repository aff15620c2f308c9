"""
Integration tests for the HTTP API.

Requests go through the FastAPI app over an ASGI transport; engine objects
that the lifespan would create are wired from the test fixtures instead.
"""

import time

import httpx
import pytest

from sync_engine.engine.statistics import StatisticsAggregator
from sync_engine.engine.types import ExecutionStatus, TemplateStatus
from sync_engine.main import create_app

from conftest import price_template

WORKFLOW = {
    "name": "Hourly price sync",
    "description": "Push prices to every trading point",
    "type": "price_sync",
    "status": "active",
    "schedule": {"frequency": "hours", "interval": 1},
    "endpoints": [{"template_id": "set-prices", "template_version": "1.0"}],
    "targets": {"scope": "trading_point", "trading_point_ids": ["tp1", "tp2"]},
    "retry_policy": {"max_attempts": 2, "initial_delay_ms": 1, "max_delay_ms": 2},
    "notifications": {"email_recipients": ["ops@example.com"]},
    "tags": ["prices"],
}


@pytest.fixture
async def client(session_factory, scheduler, catalog):
    app = create_app()
    app.state.session_factory = session_factory
    app.state.scheduler = scheduler
    app.state.catalog = catalog
    app.state.aggregator = StatisticsAggregator()
    app.state.started_at = time.monotonic()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def create(client, **overrides):
    resp = await client.post("/api/workflows", json={**WORKFLOW, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestRootEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["scheduler_running"] is False
        assert body["uptime_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_root(self, client):
        resp = await client.get("/")

        assert resp.status_code == 200
        assert resp.json()["status"] == "running"


class TestWorkflowEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        created = await create(client)

        resp = await client.get(f"/api/workflows/{created['id']}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["version"] == 1
        assert body["status"] == "active"
        assert body["next_execution"] is not None
        assert body["targets"]["trading_point_ids"] == ["tp1", "tp2"]
        assert body["retry_policy"]["retry_on_status_codes"] == [408, 429, 500, 502, 503, 504]

    @pytest.mark.asyncio
    async def test_create_records_user(self, client):
        resp = await client.post("/api/workflows", json=WORKFLOW, headers={"X-User": "alice"})

        assert resp.json()["created_by"] == "alice"

    @pytest.mark.asyncio
    async def test_draft_has_no_next_execution(self, client):
        created = await create(client, status="draft")

        assert created["next_execution"] is None

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, client):
        headers = {"Idempotency-Key": "create-1"}
        first = await client.post("/api/workflows", json=WORKFLOW, headers=headers)
        second = await client.post("/api/workflows", json=WORKFLOW, headers=headers)

        assert first.json()["id"] == second.json()["id"]
        listed = await client.get("/api/workflows")
        assert listed.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_invalid_definitions_rejected(self, client):
        bad_zone = {**WORKFLOW, "schedule": {"frequency": "days", "timezone": "Mars/Olympus"}}
        no_endpoints = {**WORKFLOW, "endpoints": []}
        bad_priority = {
            **WORKFLOW,
            "endpoints": [{"template_id": "set-prices", "template_version": "1.0", "priority": 11}],
        }

        for payload in (bad_zone, no_endpoints, bad_priority):
            resp = await client.post("/api/workflows", json=payload)
            assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_get_missing_returns_404(self, client):
        resp = await client.get("/api/workflows/wf_missing")

        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_update_requires_current_version(self, client):
        created = await create(client)
        url = f"/api/workflows/{created['id']}"

        ok = await client.put(url, json={"version": 1, "name": "Renamed"})
        stale = await client.put(url, json={"version": 1, "name": "Lost update"})

        assert ok.status_code == 200
        assert ok.json()["version"] == 2
        assert ok.json()["schedule"] == created["schedule"]
        assert stale.status_code == 409
        assert (await client.get(url)).json()["name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_list_filters(self, client):
        await create(client, name="North prices", tags=["north"])
        await create(client, name="Pump monitor", type="equipment_monitor", status="inactive",
                     targets={"scope": "equipment", "include_all": True}, tags=[])

        by_type = await client.get("/api/workflows", params={"type": "equipment_monitor"})
        by_scope = await client.get("/api/workflows", params={"scope": "trading_point"})
        by_tag = await client.get("/api/workflows", params={"tags": "north"})
        paged = await client.get("/api/workflows", params={"page_size": 1})

        assert [w["name"] for w in by_type.json()["items"]] == ["Pump monitor"]
        assert [w["name"] for w in by_scope.json()["items"]] == ["North prices"]
        assert [w["name"] for w in by_tag.json()["items"]] == ["North prices"]
        assert paged.json()["total"] == 2
        assert paged.json()["has_next"] is True
        assert by_type.json()["items"][0]["endpoint_count"] == 1

    @pytest.mark.asyncio
    async def test_clone_creates_draft(self, client):
        created = await create(client)

        resp = await client.post(f"/api/workflows/{created['id']}/clone")

        assert resp.status_code == 201
        clone = resp.json()
        assert clone["id"] != created["id"]
        assert clone["name"] == "Hourly price sync (copy)"
        assert clone["status"] == "draft"
        assert clone["endpoints"] == created["endpoints"]
        for key in ("schedule", "targets", "retry_policy", "notifications", "tags"):
            assert clone[key] == created[key]
        assert clone["version"] == 1
        assert clone["next_execution"] is None
        assert clone["created_at"] != created["created_at"]
        assert clone["updated_at"] != created["updated_at"]

    @pytest.mark.asyncio
    async def test_toggle_active(self, client):
        created = await create(client)
        url = f"/api/workflows/{created['id']}/active"

        paused = await client.patch(url, json={"active": False})
        resumed = await client.patch(url, json={"active": True})

        assert paused.json()["status"] == "inactive"
        assert paused.json()["next_execution"] is None
        assert resumed.json()["status"] == "active"
        assert resumed.json()["next_execution"] is not None
        assert resumed.json()["version"] == 3

    @pytest.mark.asyncio
    async def test_activation_with_inactive_template_rejected(self, client, catalog):
        created = await create(client, status="inactive")
        catalog.add(price_template(status=TemplateStatus.INACTIVE))

        resp = await client.patch(f"/api/workflows/{created['id']}/active", json={"active": True})

        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_validate_reports_deprecated_template(self, client, catalog):
        created = await create(client, targets={"scope": "trading_point"})
        catalog.add(price_template(status=TemplateStatus.DEPRECATED))

        resp = await client.post(f"/api/workflows/{created['id']}/validate")

        body = resp.json()
        assert body["valid"] is False
        assert body["errors"][0]["field"] == "endpoints[0]"
        assert "deprecated" in body["errors"][0]["message"]
        assert [w["field"] for w in body["warnings"]] == ["targets"]

    @pytest.mark.asyncio
    async def test_validate_warns_on_frequent_schedule(self, client):
        frequent = await create(client, schedule={"frequency": "minutes", "interval": 2})
        relaxed = await create(client, schedule={"frequency": "minutes", "interval": 5})

        frequent_body = (await client.post(f"/api/workflows/{frequent['id']}/validate")).json()
        relaxed_body = (await client.post(f"/api/workflows/{relaxed['id']}/validate")).json()

        assert frequent_body["valid"] is True
        assert [w["field"] for w in frequent_body["warnings"]] == ["schedule"]
        assert relaxed_body["warnings"] == []

    @pytest.mark.asyncio
    async def test_delete_removes_history(self, client, scheduler):
        created = await create(client)
        url = f"/api/workflows/{created['id']}"
        await client.post(f"{url}/execute")
        await scheduler.drain()
        await client.patch(f"{url}/active", json={"active": False})

        resp = await client.delete(url)

        assert resp.status_code == 200
        assert (await client.get(url)).status_code == 404
        history = await client.get("/api/executions", params={"workflow_id": created["id"]})
        assert history.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_delete_active_workflow_conflicts(self, client):
        created = await create(client)
        url = f"/api/workflows/{created['id']}"

        resp = await client.delete(url)

        assert resp.status_code == 409
        assert resp.json()["detail"] == "Cannot delete active workflow. Deactivate it first."
        assert (await client.get(url)).status_code == 200


class TestExecuteEndpoint:
    @pytest.mark.asyncio
    async def test_execute_returns_pending_record(self, client, scheduler):
        created = await create(client)

        resp = await client.post(
            f"/api/workflows/{created['id']}/execute", headers={"X-User": "alice"}
        )
        await scheduler.drain()

        assert resp.status_code == 202
        pending = resp.json()
        assert pending["status"] == "pending"
        assert pending["triggered_by"] == "manual"
        assert pending["triggered_by_user"] == "alice"

        detail = await client.get(f"/api/executions/{pending['id']}")
        assert detail.json()["status"] == ExecutionStatus.COMPLETED.value
        assert detail.json()["targets_successful"] == 2
        assert len(detail.json()["endpoints_executed"]) == 1

    @pytest.mark.asyncio
    async def test_execute_inactive_needs_override(self, client, scheduler):
        created = await create(client, status="inactive")
        url = f"/api/workflows/{created['id']}/execute"

        rejected = await client.post(url)
        accepted = await client.post(url, json={"override_schedule": True})
        await scheduler.drain()

        assert rejected.status_code == 409
        assert accepted.status_code == 202

    @pytest.mark.asyncio
    async def test_execute_with_unavailable_template(self, client, catalog):
        created = await create(client)
        catalog.add(price_template(status=TemplateStatus.DEPRECATED))

        resp = await client.post(f"/api/workflows/{created['id']}/execute")

        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_execute_missing_workflow(self, client):
        resp = await client.post("/api/workflows/wf_missing/execute")

        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_execute_idempotency_key(self, client, scheduler):
        created = await create(client)
        url = f"/api/workflows/{created['id']}/execute"
        headers = {"Idempotency-Key": "run-1"}

        first = await client.post(url, headers=headers)
        await scheduler.drain()
        second = await client.post(url, headers=headers)

        assert first.json()["id"] == second.json()["id"]

    @pytest.mark.asyncio
    async def test_statistics_after_run(self, client, scheduler):
        created = await create(client)
        await client.post(f"/api/workflows/{created['id']}/execute")
        await scheduler.drain()

        resp = await client.get(f"/api/workflows/{created['id']}/statistics")

        body = resp.json()
        assert body["total_executions"] == 1
        assert body["success_rate"] == 100.0
        assert body["consecutive_failures"] == 0


class TestExecutionEndpoints:
    @pytest.mark.asyncio
    async def test_missing_execution_returns_404(self, client):
        assert (await client.get("/api/executions/exec_missing")).status_code == 404
        assert (await client.post("/api/executions/exec_missing/cancel")).status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_finished_execution(self, client, scheduler):
        created = await create(client)
        run = (await client.post(f"/api/workflows/{created['id']}/execute")).json()
        await scheduler.drain()

        resp = await client.post(f"/api/executions/{run['id']}/cancel")

        assert resp.status_code == 200
        assert resp.json() == {"execution_id": run["id"], "cancelled": False}

    @pytest.mark.asyncio
    async def test_list_and_recent(self, client, scheduler):
        created = await create(client)
        await client.post(f"/api/workflows/{created['id']}/execute")
        await scheduler.drain()

        listed = await client.get("/api/executions", params={"status": "completed"})
        recent = await client.get("/api/executions/recent", params={"limit": 5})

        assert listed.json()["total"] == 1
        assert recent.json()[0]["workflow_id"] == created["id"]


class TestStatisticsEndpoints:
    @pytest.mark.asyncio
    async def test_overview(self, client, scheduler):
        created = await create(client)
        await create(client, status="draft")
        await client.post(f"/api/workflows/{created['id']}/execute")
        await scheduler.drain()

        body = (await client.get("/api/statistics/overview")).json()

        assert body["total_workflows"] == 2
        assert body["workflows_by_status"] == {"active": 1, "draft": 1}
        assert body["executions_last_24h"] == 1
        assert body["success_rate_24h"] == 100.0

    @pytest.mark.asyncio
    async def test_errors_and_trends(self, client, scheduler, provider_handler):
        provider_handler.handler = lambda request: httpx.Response(400)
        created = await create(client)
        await client.post(f"/api/workflows/{created['id']}/execute")
        await scheduler.drain()

        errors = (await client.get("/api/statistics/errors", params={"days": 1})).json()
        trends = (await client.get("/api/statistics/trends", params={"days": 3})).json()

        assert errors["total_errors"] == 2
        assert errors["errors"][0]["error_type"] == "validation"
        assert len(trends["points"]) == 3
        assert trends["points"][-1]["failed"] == 1
