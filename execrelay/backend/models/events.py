"""Provider event variants.

Every raw inbound event is classified once into exactly one of these
(see ``execrelay.backend.events.classify``) and then matched exhaustively by
the processor.  They are transient: built from the raw payload and discarded
after handling.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class ContainerState(BaseModel):
    name: str
    exit_code: int | None = None
    reason: str | None = None


class TaskStateChange(BaseModel):
    """Lifecycle notification for one task."""

    kind: Literal["task_state_change"] = "task_state_change"
    task_handle: str
    last_status: str
    exit_code: int | None = None
    stop_code: str | None = None
    stop_reason: str | None = None
    containers: list[ContainerState] = Field(default_factory=list)
    stopped_at: datetime | None = None

    @classmethod
    def from_ecs_task(cls, task: Mapping[str, Any]) -> TaskStateChange:
        """Build from an ECS task description.

        EventBridge ``detail`` payloads and ``DescribeTasks`` entries share the
        same field names.
        """
        containers = [
            ContainerState(name=c.get("name", ""), exit_code=c.get("exitCode"), reason=c.get("reason"))
            for c in task.get("containers") or []
        ]
        return cls(
            task_handle=str(task.get("taskArn", "")).rsplit("/", 1)[-1],
            last_status=str(task.get("lastStatus", "")),
            stop_code=task.get("stopCode"),
            stop_reason=task.get("stoppedReason"),
            containers=containers,
            stopped_at=task.get("stoppedAt"),
        )


class LogLine(BaseModel):
    event_id: str | None = None
    timestamp: int
    """Milliseconds since the epoch."""
    message: str


class LogDelivery(BaseModel):
    """A batch of log lines written by a task."""

    kind: Literal["log_delivery"] = "log_delivery"
    log_group: str
    log_stream: str
    lines: list[LogLine] = Field(default_factory=list)

    @property
    def task_handle(self) -> str:
        """Streams are named ``task/<container>/<task-id>``; the id is the handle."""
        return self.log_stream.rsplit("/", 1)[-1]


class WebSocketLifecycle(BaseModel):
    """Connect / disconnect / message notification from the WebSocket gateway."""

    kind: Literal["websocket_lifecycle"] = "websocket_lifecycle"
    connection_id: str
    route_key: str
    body: str | None = None
    execution_id: str | None = None
    token: str | None = None
    client_ip: str | None = None


class IgnoredEvent(BaseModel):
    """A recognised envelope that carries nothing for us (other detail types)."""

    kind: Literal["ignored"] = "ignored"
    source: str | None = None
    detail_type: str | None = None


ProviderEvent = Annotated[
    TaskStateChange | LogDelivery | WebSocketLifecycle | IgnoredEvent,
    Field(discriminator="kind"),
]
