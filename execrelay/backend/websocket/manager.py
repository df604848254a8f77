"""WebSocket session manager.

Issues short-lived connection tokens, validates them when the gateway
reports a ``$connect``, tracks which connections follow which execution,
and fans pushes out to them.

Broadcast is best-effort and failure-isolated: every connection is pushed
concurrently under its own deadline.  A failed push prunes that connection;
a timed-out push is logged and dropped.  Neither reaches the caller.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

import anyio
from loguru import logger

from execrelay.backend.errors import (
    AppError,
    BadRequestError,
    ForbiddenError,
    InternalError,
    TokenExpiredError,
    UnauthorizedError,
)
from execrelay.backend.models.enums import DisconnectReason, WebSocketMessageType
from execrelay.backend.models.events import LogLine
from execrelay.backend.models.execution import Execution, WebSocketConnection, WebSocketToken, utcnow
from execrelay.backend.providers.base import ConnectionGoneError, ConnectionPusher
from execrelay.backend.store.base import ConnectionStore, TokenStore

TOKEN_BYTES = 32


def gateway_response(status_code: int, body: str) -> dict[str, Any]:
    """HTTP-shaped reply the WebSocket gateway expects from route handlers."""
    return {"statusCode": status_code, "body": body}


@dataclass
class BroadcastResult:
    """Per-connection outcome of one broadcast."""

    delivered: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.pruned) + len(self.dropped)


class WebSocketManager:
    def __init__(
        self,
        *,
        endpoint: str,
        tokens: TokenStore,
        connections: ConnectionStore,
        pusher: ConnectionPusher,
        token_ttl_seconds: int = 300,
        single_use_tokens: bool = False,
        push_timeout: float = 5.0,
        max_concurrency: int = 50,
    ) -> None:
        self._endpoint = endpoint.removeprefix("wss://").removeprefix("https://").rstrip("/")
        self._tokens = tokens
        self._connections = connections
        self._pusher = pusher
        self._token_ttl = token_ttl_seconds
        self._single_use = single_use_tokens
        self._push_timeout = push_timeout
        self._max_concurrency = max_concurrency

    # -- Token issuance --------------------------------------------------------

    async def generate_websocket_url(
        self,
        execution_id: str,
        user_email: str | None = None,
        client_ip: str | None = None,
    ) -> str:
        """Mint a fresh token for *execution_id* and return the ``wss://`` URL embedding it."""
        now = utcnow()
        token = WebSocketToken(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            execution_id=execution_id,
            user_email=user_email,
            client_ip_at_issue=client_ip,
            issued_at=now,
            expires_at=now + timedelta(seconds=self._token_ttl),
        )
        await self._tokens.put_token(token, self._token_ttl)
        logger.debug("Issued WebSocket token (execution={}, ttl={}s)", execution_id, self._token_ttl)

        query = urlencode({"execution_id": execution_id, "token": token.token})
        return f"wss://{self._endpoint}?{query}"

    # -- Connect / disconnect --------------------------------------------------

    async def validate_and_register(
        self,
        connection_id: str,
        execution_id: str | None,
        token_value: str | None,
        client_ip: str | None = None,
    ) -> WebSocketConnection:
        """Check the presented token and record the connection.

        Raises ``BadRequestError`` (missing params), ``UnauthorizedError``
        (unknown token), ``TokenExpiredError`` or ``ForbiddenError`` (token
        bound to another execution).
        """
        if not execution_id:
            msg = "Missing execution_id query parameter"
            raise BadRequestError(msg)
        if not token_value:
            msg = "Missing token query parameter"
            raise UnauthorizedError(msg)

        token = await self._tokens.get_token(token_value)
        if token is None:
            msg = "Invalid or expired token"
            raise UnauthorizedError(msg)
        if token.is_expired():
            msg = "Invalid or expired token"
            raise TokenExpiredError(msg)
        if token.execution_id != execution_id:
            msg = "Token is not valid for this execution"
            raise ForbiddenError(msg)

        connection = WebSocketConnection(
            connection_id=connection_id,
            execution_id=token.execution_id,
            user_email=token.user_email,
            client_ip=client_ip,
            token_client_ip=token.client_ip_at_issue,
        )
        await self._connections.add_connection(connection)
        if self._single_use:
            await self._tokens.delete_token(token.token)
        logger.info("WebSocket connected (connection={}, execution={})", connection_id, execution_id)
        return connection

    async def handle_connect(
        self,
        connection_id: str,
        execution_id: str | None,
        token_value: str | None,
        client_ip: str | None = None,
    ) -> dict[str, Any]:
        try:
            await self.validate_and_register(connection_id, execution_id, token_value, client_ip)
        except AppError as e:
            logger.warning("WebSocket connect rejected (connection={}): {}", connection_id, e)
            return gateway_response(e.status_code, e.message)
        except Exception:
            logger.exception("WebSocket connect failed (connection={})", connection_id)
            return gateway_response(InternalError.status_code, "Failed to store connection")
        return gateway_response(200, "Connected")

    async def handle_disconnect(self, connection_id: str) -> dict[str, Any]:
        try:
            removed = await self._connections.remove_connection(connection_id)
        except Exception:
            logger.exception("WebSocket disconnect failed (connection={})", connection_id)
            return gateway_response(InternalError.status_code, "Failed to delete connection")
        if removed is not None:
            logger.info("WebSocket disconnected (connection={}, execution={})", connection_id, removed.execution_id)
        return gateway_response(200, "Disconnected")

    # -- Fan-out ---------------------------------------------------------------

    async def broadcast(self, execution_id: str, payload: dict[str, Any] | bytes) -> BroadcastResult:
        """Push *payload* to every connection following *execution_id*."""
        result = BroadcastResult()
        connections = await self._connections.list_connections(execution_id)
        if not connections:
            return result

        data = payload if isinstance(payload, bytes) else json.dumps(payload, default=str).encode("utf-8")
        limiter = anyio.CapacityLimiter(self._max_concurrency)

        async def _push(connection_id: str) -> None:
            async with limiter:
                try:
                    with anyio.fail_after(self._push_timeout):
                        await self._pusher.post(connection_id, data)
                except TimeoutError:
                    logger.warning("Push timed out, dropped (connection={})", connection_id)
                    result.dropped.append(connection_id)
                    return
                except ConnectionGoneError:
                    logger.debug("Connection gone, pruning (connection={})", connection_id)
                    await self._prune(connection_id)
                    result.pruned.append(connection_id)
                    return
                except Exception as e:
                    logger.warning("Push failed, pruning (connection={}): {!r}", connection_id, e)
                    await self._prune(connection_id)
                    result.pruned.append(connection_id)
                    return
            result.delivered.append(connection_id)

        async with anyio.create_task_group() as tg:
            for connection in connections:
                tg.start_soon(_push, connection.connection_id)

        logger.debug(
            "Broadcast to execution {}: delivered={}, pruned={}, dropped={}",
            execution_id,
            len(result.delivered),
            len(result.pruned),
            len(result.dropped),
        )
        return result

    async def _prune(self, connection_id: str) -> None:
        try:
            await self._connections.remove_connection(connection_id)
        except Exception:
            logger.exception("Failed to prune connection {}", connection_id)

    # -- Payloads --------------------------------------------------------------

    async def send_logs(self, execution_id: str, lines: list[LogLine]) -> BroadcastResult:
        """Live-tail a batch of log lines to subscribers."""
        payload = {
            "type": WebSocketMessageType.LOG,
            "execution_id": execution_id,
            "events": [line.model_dump() for line in lines],
        }
        return await self.broadcast(execution_id, payload)

    async def notify_completion(self, execution: Execution) -> BroadcastResult:
        """Tell subscribers the execution finished, then drop their subscriptions."""
        payload = {
            "type": WebSocketMessageType.DISCONNECT,
            "reason": DisconnectReason.EXECUTION_COMPLETED,
            "execution_id": execution.execution_id,
            "status": execution.status,
            "exit_code": execution.exit_code,
            "completed_at": execution.completed_at.isoformat() if execution.completed_at else None,
        }
        result = await self.broadcast(execution.execution_id, payload)
        for connection_id in result.delivered + result.dropped:
            await self._prune(connection_id)
        return result
