"""Event processor -- asynchronous event ingestion and state reconciliation.

``handle`` classifies a raw event once, then matches the variant
exhaustively:

- ``TaskStateChange``: map the platform status onto the execution record
  (conditional, idempotent write); on the terminal transition, notify
  WebSocket subscribers.
- ``LogDelivery``: live-tail log lines to subscribers; never touches the
  repository beyond the handle lookup.
- ``WebSocketLifecycle``: validate / register / drop connections; returns
  the gateway-shaped ``{"statusCode", "body"}`` reply.
- ``IgnoredEvent``: acknowledged, nothing to do.

Only WebSocket events produce a response.  Failures while processing the
fire-and-forget variants are logged and swallowed since no caller is
waiting for them; unclassifiable events raise ``UnhandledEventError``.
"""

from __future__ import annotations

from typing import Any, assert_never

from loguru import logger

from execrelay.backend.context import RequestContext
from execrelay.backend.errors import ServiceUnavailableError
from execrelay.backend.events.classify import classify
from execrelay.backend.log import RequestLogger, event_request_logger
from execrelay.backend.managers.lifecycle import apply_platform_status, derive_exit_code, map_platform_status
from execrelay.backend.models.enums import RouteKey
from execrelay.backend.models.events import (
    IgnoredEvent,
    LogDelivery,
    ProviderEvent,
    TaskStateChange,
    WebSocketLifecycle,
)
from execrelay.backend.store.base import ExecutionRepository
from execrelay.backend.websocket.manager import WebSocketManager, gateway_response


class EventProcessor:
    def __init__(
        self,
        *,
        repo: ExecutionRepository,
        websocket: WebSocketManager | None = None,
        runner_container: str = "runner",
        request_logger: RequestLogger | None = None,
    ) -> None:
        self._repo = repo
        self._websocket = websocket
        self._runner_container = runner_container
        self._request_logger = request_logger or event_request_logger()

    async def handle(self, raw: Any, invocation: Any = None) -> dict[str, Any] | None:
        """Process one raw provider event.

        *invocation* is the hosting platform's call context (e.g. a Lambda
        context object); it only feeds log enrichment.
        """
        event = classify(raw)
        ctx = RequestContext.build(self._request_logger, invocation, raw)
        return await self.dispatch(event, ctx)

    async def dispatch(self, event: ProviderEvent, ctx: RequestContext) -> dict[str, Any] | None:
        log = ctx.logger
        match event:
            case TaskStateChange():
                try:
                    await self._on_task_state_change(event, ctx)
                except Exception:
                    log.exception("Failed to process task state change (task={})", event.task_handle)
                return None
            case LogDelivery():
                try:
                    await self._on_log_delivery(event)
                except Exception:
                    log.exception("Failed to forward logs (stream={})", event.log_stream)
                return None
            case WebSocketLifecycle():
                return await self._on_websocket(event)
            case IgnoredEvent():
                log.debug("Ignoring event (source={}, detail_type={})", event.source, event.detail_type)
                return None
            case _:
                assert_never(event)

    # -- Task state ------------------------------------------------------------

    async def _on_task_state_change(self, event: TaskStateChange, ctx: RequestContext) -> None:
        log = ctx.logger
        new_status = map_platform_status(event.last_status)
        if new_status is None:
            log.warning("Unknown platform status {!r} (task={}); ignoring", event.last_status, event.task_handle)
            return

        execution = await self._repo.get_execution_by_task_handle(event.task_handle)
        if execution is None:
            log.warning("No execution for task {} (orphaned task?); ignoring", event.task_handle)
            return

        exit_code = None
        if new_status.is_terminal:
            exit_code = derive_exit_code(
                exit_code=event.exit_code,
                containers=event.containers,
                runner_container=self._runner_container,
                stop_code=event.stop_code,
            )
            log.info(
                "Task {} stopped (execution={}, stop_code={}, reason={!r}, exit_code={})",
                event.task_handle,
                execution.execution_id,
                event.stop_code,
                event.stop_reason,
                exit_code,
            )

        updated = await apply_platform_status(
            self._repo,
            execution,
            new_status,
            exit_code=exit_code,
            request_id=ctx.request_id,
        )
        if updated is not None and updated.status.is_terminal and self._websocket is not None:
            await self._websocket.notify_completion(updated)

    # -- Logs ------------------------------------------------------------------

    async def _on_log_delivery(self, event: LogDelivery) -> None:
        if self._websocket is None or not event.lines:
            return
        execution = await self._repo.get_execution_by_task_handle(event.task_handle)
        if execution is None:
            logger.debug("Logs for unknown task {} (stream={}); dropping", event.task_handle, event.log_stream)
            return
        await self._websocket.send_logs(execution.execution_id, event.lines)

    # -- WebSocket -------------------------------------------------------------

    async def _on_websocket(self, event: WebSocketLifecycle) -> dict[str, Any]:
        if self._websocket is None:
            return gateway_response(ServiceUnavailableError.status_code, "WebSocket streaming is not configured")
        if event.route_key == RouteKey.CONNECT:
            return await self._websocket.handle_connect(
                event.connection_id, event.execution_id, event.token, event.client_ip
            )
        if event.route_key == RouteKey.DISCONNECT:
            return await self._websocket.handle_disconnect(event.connection_id)
        logger.debug("Acknowledging WebSocket route {} (connection={})", event.route_key, event.connection_id)
        return gateway_response(200, "OK")
