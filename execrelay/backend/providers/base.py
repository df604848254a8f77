"""Capability interfaces for the external collaborators.

Each protocol has exactly one production adapter today (ECS, SSM, API
Gateway); the orchestrator, event processor and WebSocket manager only ever
see these interfaces.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from execrelay.backend.models.api import RunCommandRequest
from execrelay.backend.models.enums import ComputePlatform
from execrelay.backend.models.events import TaskStateChange


class ConnectionGoneError(Exception):
    """The push target no longer exists (client disconnected)."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection '{connection_id}' is gone")
        self.connection_id = connection_id


@runtime_checkable
class TaskRunner(Protocol):
    """Start, stop, inspect and read logs of tasks by opaque handle."""

    platform: ComputePlatform

    async def start_task(self, user_email: str, request: RunCommandRequest) -> tuple[str, datetime]:
        """Start a task.  Returns ``(task_handle, created_at)``."""
        ...

    async def get_task_status(self, task_handle: str) -> TaskStateChange | None:
        """Current platform view of the task, or ``None`` if the platform no longer knows it.

        Carries the stop code and container exit codes once the task stopped.
        """
        ...

    async def kill_task(self, task_handle: str) -> None: ...

    async def fetch_logs_by_execution_id(self, execution_id: str, *, task_handle: str) -> str:
        """Aggregated log text of the task's runner container."""
        ...


@runtime_checkable
class SecretsResolver(Protocol):
    async def resolve(self, references: Sequence[str]) -> dict[str, str]:
        """Map secret references to ``{ENV_KEY: plaintext}``.

        Raises ``BadRequestError`` for unknown references and
        ``InternalError`` for any other failure.  Never returns a partial map.
        """
        ...


@runtime_checkable
class ConnectionPusher(Protocol):
    async def post(self, connection_id: str, data: bytes) -> None:
        """Deliver *data* to one connection.  Raises ``ConnectionGoneError`` if it is gone."""
        ...
