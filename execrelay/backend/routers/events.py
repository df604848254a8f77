"""Webhook delivery of raw provider events.

For deployments where EventBridge / CloudWatch Logs / the WebSocket gateway
push to an HTTP endpoint instead of invoking a function directly.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, Response, status

from execrelay.backend.deps import EventProcessorDep
from execrelay.backend.errors import UnhandledEventError

router = APIRouter(prefix="/events", tags=["events"])


@router.post("")
async def ingest_event(
    request: Request,
    processor: EventProcessorDep,
    raw: dict[str, Any] = Body(...),  # noqa: B008
) -> Any:
    """Process one event.  WebSocket events return the gateway reply; others 202."""
    try:
        reply = await processor.handle(raw, request)
    except UnhandledEventError as e:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    if reply is None:
        return Response(status_code=status.HTTP_202_ACCEPTED)
    return reply
