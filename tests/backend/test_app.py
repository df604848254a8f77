"""HTTP-level tests for the /api routers (in-memory collaborators)."""

from __future__ import annotations

from httpx import ASGITransport, AsyncClient
from raw_events import ecs_event, websocket_event

from execrelay.backend.errors import InternalError
from execrelay.backend.models.enums import ExecutionStatus


async def _run(client: AsyncClient, **body) -> str:
    resp = await client.post("/api/executions/run", json={"command": "echo hi", **body})
    assert resp.status_code == 202, resp.text
    return resp.json()["execution_id"]


async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_missing_bearer_token_is_rejected(client: AsyncClient) -> None:
    from execrelay.backend.app import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as anon:
        resp = await anon.post("/api/executions/run", json={"command": "echo hi"})
    assert resp.status_code == 401


async def test_wrong_bearer_token_is_rejected(client: AsyncClient) -> None:
    resp = await client.get("/api/executions/list", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


async def test_run_returns_202_and_records_caller(client: AsyncClient, repo, runner) -> None:
    resp = await client.post("/api/executions/run", json={"command": "echo hi"}, headers={"X-Request-ID": "req-42"})

    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "STARTING"
    stored = await repo.get_execution(body["execution_id"])
    assert stored.user_email == "alice@example.com"
    assert stored.request_id == "req-42"
    assert runner.started[0][0] == "alice@example.com"


async def test_run_with_empty_command_is_400(client: AsyncClient) -> None:
    resp = await client.post("/api/executions/run", json={"command": ""})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_REQUEST"


async def test_run_with_missing_body_field_is_422(client: AsyncClient) -> None:
    resp = await client.post("/api/executions/run", json={"image": "python"})
    assert resp.status_code == 422


async def test_run_internal_error_is_rendered_as_500(client: AsyncClient, runner) -> None:
    runner.start_error = InternalError("failed to start ECS task")

    resp = await client.post("/api/executions/run", json={"command": "echo hi"})

    assert resp.status_code == 500
    assert resp.json() == {"detail": "failed to start ECS task", "code": "INTERNAL_ERROR"}


async def test_status_roundtrip(client: AsyncClient) -> None:
    execution_id = await _run(client)

    resp = await client.get(f"/api/executions/{execution_id}/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["execution_id"] == execution_id
    assert body["status"] == "STARTING"
    assert body["completed_at"] is None
    assert body["exit_code"] is None


async def test_status_unknown_is_404(client: AsyncClient) -> None:
    resp = await client.get("/api/executions/nope/status")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


async def test_logs_include_websocket_url(client: AsyncClient) -> None:
    execution_id = await _run(client)

    resp = await client.get(f"/api/executions/{execution_id}/logs")

    assert resp.status_code == 200
    body = resp.json()
    assert body["logs"] == "hello\nworld"
    assert body["websocket_url"].startswith("wss://")


async def test_kill_then_kill_after_stop(client: AsyncClient, repo) -> None:
    execution_id = await _run(client)

    resp = await client.post(f"/api/executions/{execution_id}/kill")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Execution termination initiated"
    assert (await repo.get_execution(execution_id)).status == ExecutionStatus.TERMINATING

    execution = await repo.get_execution(execution_id)
    execution.mark_completed(130)
    await repo.update_execution(execution)

    resp = await client.post(f"/api/executions/{execution_id}/kill")
    assert resp.status_code == 400
    assert "already terminated" in resp.json()["detail"]


async def test_list_with_status_filter(client: AsyncClient) -> None:
    execution_id = await _run(client)

    all_resp = await client.get("/api/executions/list")
    assert [e["execution_id"] for e in all_resp.json()] == [execution_id]

    running = await client.get("/api/executions/list", params={"status": "RUNNING"})
    assert running.json() == []

    starting = await client.get("/api/executions/list", params=[("status", "STARTING"), ("status", "RUNNING")])
    assert [e["execution_id"] for e in starting.json()] == [execution_id]


async def test_orchestrator_not_configured_is_503(client: AsyncClient) -> None:
    from execrelay.backend.app import app

    app.state.orchestrator = None
    resp = await client.get("/api/executions/list")
    assert resp.status_code == 503


# ---------------------------------------------------------------------------
# /api/events
# ---------------------------------------------------------------------------


async def test_events_task_state_change_is_accepted(client: AsyncClient, repo) -> None:
    execution_id = await _run(client)

    resp = await client.post("/api/events", json=ecs_event(last_status="RUNNING"))

    assert resp.status_code == 202
    assert (await repo.get_execution(execution_id)).status == ExecutionStatus.RUNNING


async def test_events_websocket_returns_gateway_reply(client: AsyncClient) -> None:
    resp = await client.post("/api/events", json=websocket_event("$connect", execution_id="x", token="bad"))
    assert resp.status_code == 200
    assert resp.json() == {"statusCode": 401, "body": "Invalid or expired token"}


async def test_events_unknown_shape_is_422(client: AsyncClient) -> None:
    resp = await client.post("/api/events", json={"what": "ever"})
    assert resp.status_code == 422
