"""Domain records: executions, WebSocket tokens and connections.

These are the shapes the stores persist and the services pass around.  The
HTTP schemas in ``api.py`` are projections of them.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from execrelay.backend.models.enums import ComputePlatform, ExecutionStatus

EXIT_CODE_UNKNOWN = -1
"""Recorded when a task stopped without the runner container reporting an exit code."""

EXIT_CODE_USER_INITIATED = 130
"""Recorded when a task was stopped by a kill request (128 + SIGINT)."""


def utcnow() -> datetime:
    return datetime.now(UTC)


class Execution(BaseModel):
    """One request-to-completion record of a remotely run command."""

    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    user_email: str
    command: str
    image: str | None = None
    compute_platform: ComputePlatform = ComputePlatform.ECS
    task_handle: str
    request_id: str | None = None
    modified_by_request_id: str | None = None

    status: ExecutionStatus = ExecutionStatus.STARTING
    started_at: datetime
    completed_at: datetime | None = None
    exit_code: int | None = None
    duration_seconds: int | None = None

    def mark_completed(self, exit_code: int, *, at: datetime | None = None) -> None:
        """Move to STOPPED and stamp completion fields."""
        completed = at or utcnow()
        self.status = ExecutionStatus.STOPPED
        self.completed_at = completed
        self.exit_code = exit_code
        self.duration_seconds = max(int((completed - self.started_at).total_seconds()), 0)


class WebSocketToken(BaseModel):
    """Short-lived credential authorising one streaming session."""

    token: str
    execution_id: str
    user_email: str | None = None
    client_ip_at_issue: str | None = None
    issued_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at


class WebSocketConnection(BaseModel):
    """An active push channel subscribed to one execution."""

    connection_id: str
    execution_id: str
    established_at: datetime = Field(default_factory=utcnow)
    user_email: str | None = None
    client_ip: str | None = None
    token_client_ip: str | None = None
