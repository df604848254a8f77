"""In-memory fakes of the provider protocols.

They record their calls so tests can assert on collaborator interaction
without AWS.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

import anyio

from execrelay.backend.errors import BadRequestError
from execrelay.backend.models.api import RunCommandRequest
from execrelay.backend.models.enums import ComputePlatform
from execrelay.backend.models.events import TaskStateChange
from execrelay.backend.models.execution import Execution
from execrelay.backend.providers.base import ConnectionGoneError
from execrelay.backend.store.memory import InMemoryExecutionRepository

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
WS_ENDPOINT = "abc123.execute-api.us-east-1.amazonaws.com/prod"


class FakeTaskRunner:
    platform = ComputePlatform.ECS

    def __init__(self, handle: str = "abc", created_at: datetime = T0) -> None:
        self.handle = handle
        self.created_at = created_at
        self.started: list[tuple[str, RunCommandRequest]] = []
        self.killed: list[str] = []
        self.statuses: dict[str, str | TaskStateChange | None] = {}
        self.logs = "hello\nworld"
        self.kill_error: Exception | None = None
        self.start_error: Exception | None = None

    async def start_task(self, user_email: str, request: RunCommandRequest) -> tuple[str, datetime]:
        if self.start_error is not None:
            raise self.start_error
        self.started.append((user_email, request))
        return self.handle, self.created_at

    async def get_task_status(self, task_handle: str) -> TaskStateChange | None:
        status = self.statuses.get(task_handle)
        if isinstance(status, str):
            return TaskStateChange(task_handle=task_handle, last_status=status)
        return status

    async def kill_task(self, task_handle: str) -> None:
        if self.kill_error is not None:
            raise self.kill_error
        self.killed.append(task_handle)

    async def fetch_logs_by_execution_id(self, execution_id: str, *, task_handle: str) -> str:
        return self.logs


class FakeSecretsResolver:
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values = values or {}
        self.calls: list[list[str]] = []

    async def resolve(self, references: Sequence[str]) -> dict[str, str]:
        self.calls.append(list(references))
        missing = [r for r in references if r not in self.values]
        if missing:
            msg = f"secret not found: {', '.join(missing)}"
            raise BadRequestError(msg)
        return {r.upper().replace("-", "_"): self.values[r] for r in references}


class FakePusher:
    """Records pushes; ``gone`` ids raise ConnectionGoneError, ``broken`` raise RuntimeError."""

    def __init__(self) -> None:
        self.sent: dict[str, list[bytes]] = {}
        self.gone: set[str] = set()
        self.broken: set[str] = set()
        self.slow: set[str] = set()

    async def post(self, connection_id: str, data: bytes) -> None:
        if connection_id in self.gone:
            raise ConnectionGoneError(connection_id)
        if connection_id in self.broken:
            msg = "boom"
            raise RuntimeError(msg)
        if connection_id in self.slow:
            await anyio.sleep(10)
        self.sent.setdefault(connection_id, []).append(data)


class FailingRepository(InMemoryExecutionRepository):
    async def create_execution(self, execution: Execution) -> None:
        msg = "database is down"
        raise ConnectionError(msg)

