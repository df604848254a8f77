"""Execution endpoints (RPC-style).

All write operations use POST; reads use GET.  Every orchestrator call runs
under the configured request deadline; overrunning it yields 504.
"""

from __future__ import annotations

from typing import Annotated

import anyio
from fastapi import APIRouter, Query, status

from execrelay.backend.deps import CallerDep, OrchestratorDep
from execrelay.backend.models.api import (
    ExecutionResponse,
    ExecutionStatusResponse,
    KillExecutionResponse,
    LogsResponse,
    RunCommandRequest,
    RunCommandResponse,
)
from execrelay.backend.models.enums import ExecutionStatus
from execrelay.backend.models.execution import Execution
from execrelay.backend.settings import get_settings

router = APIRouter(prefix="/executions", tags=["executions"])


def _deadline() -> float:
    return get_settings().request_timeout_seconds


@router.post("/run", response_model=RunCommandResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_command(body: RunCommandRequest, orchestrator: OrchestratorDep, caller: CallerDep) -> RunCommandResponse:
    """Start a command in a new task."""
    with anyio.fail_after(_deadline()):
        return await orchestrator.run_command(caller.user_email, body, caller.context)


@router.get("/list", response_model=list[ExecutionResponse])
async def list_executions(
    orchestrator: OrchestratorDep,
    statuses: Annotated[list[ExecutionStatus] | None, Query(alias="status")] = None,
) -> list[Execution]:
    """List executions, optionally filtered by ``?status=RUNNING&status=PENDING``."""
    with anyio.fail_after(_deadline()):
        return await orchestrator.list_executions(statuses or None)


@router.get("/{execution_id}/status", response_model=ExecutionStatusResponse)
async def get_execution_status(execution_id: str, orchestrator: OrchestratorDep) -> ExecutionStatusResponse:
    with anyio.fail_after(_deadline()):
        return await orchestrator.get_execution_status(execution_id)


@router.get("/{execution_id}/logs", response_model=LogsResponse)
async def get_logs(execution_id: str, orchestrator: OrchestratorDep, caller: CallerDep) -> LogsResponse:
    """Aggregated logs plus a live-tail WebSocket URL while the execution is active."""
    with anyio.fail_after(_deadline()):
        return await orchestrator.get_logs_by_execution_id(
            execution_id, caller.user_email, caller.context.client_ip
        )


@router.post("/{execution_id}/kill", response_model=KillExecutionResponse)
async def kill_execution(execution_id: str, orchestrator: OrchestratorDep, caller: CallerDep) -> KillExecutionResponse:
    with anyio.fail_after(_deadline()):
        return await orchestrator.kill_execution(execution_id, caller.context)
