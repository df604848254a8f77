"""Classify raw inbound events into ``ProviderEvent`` variants.

Recognised envelopes:

- EventBridge: ``source`` + ``detail-type``.  ``ECS Task State Change``
  becomes ``TaskStateChange``; other detail types are ``IgnoredEvent``.
- CloudWatch Logs subscription: ``awslogs.data`` (base64 of gzipped JSON).
  Data messages become ``LogDelivery``; control messages are ignored.
- API Gateway WebSocket: ``requestContext.connectionId`` + ``routeKey``.

- An already-classified variant, tagged with ``kind`` (replays).

Anything else raises ``UnhandledEventError``.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter, ValidationError

from execrelay.backend.errors import UnhandledEventError
from execrelay.backend.models.events import (
    IgnoredEvent,
    LogDelivery,
    LogLine,
    ProviderEvent,
    TaskStateChange,
    WebSocketLifecycle,
)

ECS_TASK_STATE_CHANGE = "ECS Task State Change"

_provider_event = TypeAdapter(ProviderEvent)


def _task_state_change(detail: Mapping[str, Any]) -> TaskStateChange:
    task_arn = detail.get("taskArn")
    if not task_arn:
        msg = "ECS task state change without taskArn"
        raise UnhandledEventError(msg)
    return TaskStateChange.from_ecs_task(detail)


def decode_awslogs(data: str) -> dict[str, Any]:
    """Decode the ``awslogs.data`` payload of a subscription delivery."""
    try:
        return json.loads(gzip.decompress(base64.b64decode(data)))
    except (binascii.Error, OSError, EOFError, ValueError) as e:
        msg = f"Malformed awslogs payload: {e}"
        raise UnhandledEventError(msg) from e


def _log_delivery(data: str) -> LogDelivery | IgnoredEvent:
    payload = decode_awslogs(data)
    if payload.get("messageType") == "CONTROL_MESSAGE":
        return IgnoredEvent(source="aws.logs", detail_type="CONTROL_MESSAGE")

    lines = [
        LogLine(event_id=e.get("id"), timestamp=int(e.get("timestamp", 0)), message=e.get("message", ""))
        for e in payload.get("logEvents") or []
    ]
    return LogDelivery(
        log_group=payload.get("logGroup", ""),
        log_stream=payload.get("logStream", ""),
        lines=lines,
    )


def _websocket_lifecycle(raw: Mapping[str, Any], ctx: Mapping[str, Any]) -> WebSocketLifecycle:
    params = raw.get("queryStringParameters") or {}
    identity = ctx.get("identity") or {}
    return WebSocketLifecycle(
        connection_id=str(ctx["connectionId"]),
        route_key=str(ctx["routeKey"]),
        body=raw.get("body"),
        execution_id=params.get("execution_id"),
        token=params.get("token"),
        client_ip=identity.get("sourceIp"),
    )


def classify(raw: Any) -> ProviderEvent:
    """Decide which variant *raw* is.  Raises ``UnhandledEventError`` otherwise."""
    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            msg = "Event body is not JSON"
            raise UnhandledEventError(msg) from e

    if not isinstance(raw, Mapping):
        msg = f"Unsupported event type: {type(raw).__name__}"
        raise UnhandledEventError(msg)

    if "kind" in raw:
        return parse_normalized(raw)

    try:
        if raw.get("source") and raw.get("detail-type"):
            if raw["detail-type"] == ECS_TASK_STATE_CHANGE:
                return _task_state_change(raw.get("detail") or {})
            return IgnoredEvent(source=raw["source"], detail_type=raw["detail-type"])

        awslogs = raw.get("awslogs")
        if isinstance(awslogs, Mapping) and awslogs.get("data"):
            return _log_delivery(awslogs["data"])

        ctx = raw.get("requestContext")
        if isinstance(ctx, Mapping) and ctx.get("connectionId") and ctx.get("routeKey"):
            return _websocket_lifecycle(raw, ctx)
    except ValidationError as e:
        msg = f"Malformed provider event: {e}"
        raise UnhandledEventError(msg) from e

    keys = ", ".join(sorted(map(str, raw.keys()))[:10])
    msg = f"Unhandled event shape (keys: {keys})"
    raise UnhandledEventError(msg)


def parse_normalized(data: Mapping[str, Any]) -> ProviderEvent:
    """Build a variant from its own ``kind``-tagged JSON (replays, tests)."""
    try:
        return _provider_event.validate_python(data)
    except ValidationError as e:
        msg = f"Malformed provider event: {e}"
        raise UnhandledEventError(msg) from e
