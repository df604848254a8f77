"""API request / response schemas for execution endpoints.

These thin schemas sit between HTTP and the orchestrator.  Response schemas
are projections of ``Execution`` and never carry fields that would break
the record's invariants (e.g. an exit code without a completion time).
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from execrelay.backend.models.enums import ExecutionStatus

# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


class RunCommandRequest(BaseModel):
    """Input for starting a new execution."""

    command: str
    image: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    secrets: list[str] = Field(default_factory=list, description="Names of secrets to inject as env vars.")


class RunCommandResponse(BaseModel):
    execution_id: str
    status: ExecutionStatus


# ---------------------------------------------------------------------------
# Inspect
# ---------------------------------------------------------------------------


class ExecutionStatusResponse(BaseModel):
    execution_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None = None
    exit_code: int | None = None


class ExecutionResponse(BaseModel):
    """Full record projection used by ``/list``."""

    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    user_email: str
    command: str
    image: str | None = None
    compute_platform: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None = None
    exit_code: int | None = None
    duration_seconds: int | None = None
    request_id: str | None = None


class LogsResponse(BaseModel):
    execution_id: str
    status: ExecutionStatus
    logs: str
    websocket_url: str | None = None
    """Present only while the execution can still produce output."""


class KillExecutionResponse(BaseModel):
    execution_id: str
    message: str
