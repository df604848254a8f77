"""FastAPI dependency injection for services, auth and request context.

Usage in route handlers::

    @router.post("/run")
    async def run(body: RunCommandRequest, orchestrator: OrchestratorDep, caller: CallerDep) -> ...:
        ...

Service dependencies raise HTTP 503 if the backing collaborator was not
configured (e.g. ``EXECRELAY_ECS_CLUSTER`` unset).
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from execrelay.backend.context import RequestContext
from execrelay.backend.events.processor import EventProcessor
from execrelay.backend.log import http_request_logger
from execrelay.backend.managers.orchestrator import Orchestrator

USER_EMAIL_HEADER = "x-user-email"
ANONYMOUS_USER = "anonymous"

_bearer = HTTPBearer(auto_error=False)
_request_logger = http_request_logger()


async def require_auth(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> None:
    """Check the bearer token against the one resolved at startup."""
    expected: str | None = getattr(request.app.state, "auth_token", None)
    if expected is None:
        return
    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_orchestrator(request: Request) -> Orchestrator:
    orchestrator: Orchestrator | None = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Task runner not configured (EXECRELAY_ECS_CLUSTER is unset).",
        )
    return orchestrator


def get_event_processor(request: Request) -> EventProcessor:
    processor: EventProcessor | None = request.app.state.event_processor
    if processor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event processor not configured.",
        )
    return processor


def get_request_context(request: Request) -> RequestContext:
    client_ip = request.client.host if request.client else None
    return RequestContext.build(_request_logger, request, client_ip=client_ip)


@dataclass
class Caller:
    user_email: str
    context: RequestContext


def get_caller(request: Request, ctx: Annotated[RequestContext, Depends(get_request_context)]) -> Caller:
    """Identity of the API caller.

    User identity is asserted by the fronting gateway in ``X-User-Email``;
    this service only checks the shared bearer token.
    """
    return Caller(user_email=request.headers.get(USER_EMAIL_HEADER) or ANONYMOUS_USER, context=ctx)


# -- Annotated type aliases for concise route signatures ---------------------

OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]
"""Annotated dependency: the process-wide orchestrator (503 when unconfigured)."""

EventProcessorDep = Annotated[EventProcessor, Depends(get_event_processor)]

CallerDep = Annotated[Caller, Depends(get_caller)]
"""Annotated dependency: caller identity plus request context."""
