"""Tests for WebSocketManager: token checks, registration and fan-out."""

from __future__ import annotations

import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from fakes import T0, WS_ENDPOINT, FakePusher

from execrelay.backend.errors import BadRequestError, ForbiddenError, TokenExpiredError, UnauthorizedError
from execrelay.backend.models.enums import ExecutionStatus
from execrelay.backend.models.execution import Execution, WebSocketConnection, WebSocketToken, utcnow
from execrelay.backend.store.memory import InMemoryConnectionStore, InMemoryTokenStore
from execrelay.backend.websocket.manager import WebSocketManager


def _token_of(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


async def _add(connections: InMemoryConnectionStore, *connection_ids: str, execution_id: str = "exec-1") -> None:
    for connection_id in connection_ids:
        await connections.add_connection(WebSocketConnection(connection_id=connection_id, execution_id=execution_id))


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


async def test_generated_url_shape(ws_manager, tokens) -> None:
    url = await ws_manager.generate_websocket_url("exec-1", "alice@example.com", "198.51.100.1")

    parsed = urlparse(url)
    assert parsed.scheme == "wss"
    assert f"{parsed.netloc}{parsed.path}" == WS_ENDPOINT
    token = await tokens.get_token(_token_of(url))
    assert token.execution_id == "exec-1"
    assert token.user_email == "alice@example.com"
    assert token.expires_at - token.issued_at == timedelta(seconds=300)


def test_endpoint_scheme_is_normalised(tokens, connections, pusher) -> None:
    manager = WebSocketManager(
        endpoint=f"https://{WS_ENDPOINT}/", tokens=tokens, connections=connections, pusher=pusher
    )
    assert manager._endpoint == WS_ENDPOINT


async def test_valid_token_registers_connection(ws_manager, connections) -> None:
    url = await ws_manager.generate_websocket_url("exec-1", client_ip="198.51.100.1")

    connection = await ws_manager.validate_and_register("conn-1", "exec-1", _token_of(url), "203.0.113.7")

    assert connection.execution_id == "exec-1"
    assert connection.client_ip == "203.0.113.7"
    assert connection.token_client_ip == "198.51.100.1"
    assert await connections.get_connection("conn-1") == connection


async def test_token_is_reusable_by_default(ws_manager) -> None:
    token = _token_of(await ws_manager.generate_websocket_url("exec-1"))
    await ws_manager.validate_and_register("conn-1", "exec-1", token)
    await ws_manager.validate_and_register("conn-2", "exec-1", token)


async def test_single_use_token(tokens, connections, pusher) -> None:
    manager = WebSocketManager(
        endpoint=WS_ENDPOINT, tokens=tokens, connections=connections, pusher=pusher, single_use_tokens=True
    )
    token = _token_of(await manager.generate_websocket_url("exec-1"))

    await manager.validate_and_register("conn-1", "exec-1", token)
    with pytest.raises(UnauthorizedError):
        await manager.validate_and_register("conn-2", "exec-1", token)


async def test_expired_token_is_rejected(ws_manager, tokens, connections) -> None:
    expired = WebSocketToken(token="old", execution_id="exec-1", issued_at=T0, expires_at=T0 + timedelta(minutes=5))
    await tokens.put_token(expired, 300)

    with pytest.raises(TokenExpiredError):
        await ws_manager.validate_and_register("conn-1", "exec-1", "old")
    assert await connections.get_connection("conn-1") is None


async def test_token_for_other_execution_is_forbidden(ws_manager, connections) -> None:
    token = _token_of(await ws_manager.generate_websocket_url("exec-1"))
    with pytest.raises(ForbiddenError):
        await ws_manager.validate_and_register("conn-1", "exec-2", token)
    assert await connections.get_connection("conn-1") is None


@pytest.mark.parametrize(
    ("execution_id", "token", "error"),
    [(None, "t", BadRequestError), ("exec-1", None, UnauthorizedError), ("exec-1", "unknown", UnauthorizedError)],
)
async def test_missing_or_unknown_parameters(ws_manager, execution_id, token, error) -> None:
    with pytest.raises(error):
        await ws_manager.validate_and_register("conn-1", execution_id, token)


async def test_handle_connect_maps_errors_to_gateway_replies(ws_manager) -> None:
    assert (await ws_manager.handle_connect("c", None, "t"))["statusCode"] == 400
    assert (await ws_manager.handle_connect("c", "exec-1", "unknown"))["statusCode"] == 401

    token = _token_of(await ws_manager.generate_websocket_url("exec-1"))
    assert await ws_manager.handle_connect("c", "exec-1", token) == {"statusCode": 200, "body": "Connected"}


async def test_handle_connect_store_failure_is_500(tokens, pusher) -> None:
    class BrokenConnections(InMemoryConnectionStore):
        async def add_connection(self, connection):
            msg = "redis down"
            raise ConnectionError(msg)

    manager = WebSocketManager(endpoint=WS_ENDPOINT, tokens=tokens, connections=BrokenConnections(), pusher=pusher)
    token = _token_of(await manager.generate_websocket_url("exec-1"))

    reply = await manager.handle_connect("c", "exec-1", token)
    assert reply == {"statusCode": 500, "body": "Failed to store connection"}


async def test_handle_disconnect_unknown_connection(ws_manager) -> None:
    assert await ws_manager.handle_disconnect("never-seen") == {"statusCode": 200, "body": "Disconnected"}


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


async def test_broadcast_isolates_failures(ws_manager, connections, pusher: FakePusher) -> None:
    await _add(connections, "ok-1", "ok-2", "gone")
    pusher.gone.add("gone")

    result = await ws_manager.broadcast("exec-1", {"type": "log"})

    assert sorted(result.delivered) == ["ok-1", "ok-2"]
    assert result.pruned == ["gone"]
    assert result.attempted == 3
    assert {c.connection_id for c in await connections.list_connections("exec-1")} == {"ok-1", "ok-2"}


async def test_broadcast_prunes_on_unexpected_error(ws_manager, connections, pusher) -> None:
    await _add(connections, "ok", "broken")
    pusher.broken.add("broken")

    result = await ws_manager.broadcast("exec-1", b"raw")

    assert result.delivered == ["ok"]
    assert result.pruned == ["broken"]
    assert pusher.sent["ok"] == [b"raw"]


async def test_broadcast_drops_slow_push_without_pruning(ws_manager, connections, pusher) -> None:
    await _add(connections, "fast", "slow")
    pusher.slow.add("slow")

    result = await ws_manager.broadcast("exec-1", {"type": "log"})

    assert result.delivered == ["fast"]
    assert result.dropped == ["slow"]
    assert await connections.get_connection("slow") is not None


async def test_broadcast_only_reaches_subscribers_of_execution(ws_manager, connections, pusher) -> None:
    await _add(connections, "mine")
    await _add(connections, "theirs", execution_id="exec-2")

    await ws_manager.broadcast("exec-1", {"type": "log"})

    assert list(pusher.sent) == ["mine"]


async def test_broadcast_without_subscribers(ws_manager) -> None:
    result = await ws_manager.broadcast("exec-1", {"type": "log"})
    assert result.attempted == 0


async def test_notify_completion_clears_subscriptions(ws_manager, connections, pusher) -> None:
    await _add(connections, "a", "b")
    execution = Execution(
        execution_id="exec-1",
        user_email="alice@example.com",
        command="true",
        task_handle="abc",
        status=ExecutionStatus.RUNNING,
        started_at=utcnow(),
    )
    execution.mark_completed(0)

    result = await ws_manager.notify_completion(execution)

    assert sorted(result.delivered) == ["a", "b"]
    payload = json.loads(pusher.sent["a"][0])
    assert payload == {
        "type": "disconnect",
        "reason": "execution_completed",
        "execution_id": "exec-1",
        "status": "STOPPED",
        "exit_code": 0,
        "completed_at": execution.completed_at.isoformat(),
    }
    assert await connections.list_connections("exec-1") == []
