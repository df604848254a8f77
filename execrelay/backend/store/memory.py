"""In-memory store implementations.

Used when PostgreSQL / Redis are not configured and throughout the unit
tests.  Records are copied on the way in and out so callers can never
mutate stored state by accident.  State is per-process and lost on restart.
"""

from __future__ import annotations

import time
from collections.abc import Collection

import anyio

from execrelay.backend.models.enums import ExecutionStatus
from execrelay.backend.models.execution import Execution, WebSocketConnection, WebSocketToken


class InMemoryExecutionRepository:
    """ExecutionRepository backed by a dict; conditional writes hold a lock."""

    def __init__(self) -> None:
        self._records: dict[str, Execution] = {}
        self._lock = anyio.Lock()

    async def create_execution(self, execution: Execution) -> None:
        async with self._lock:
            if execution.execution_id in self._records:
                msg = f"Execution '{execution.execution_id}' already exists"
                raise ValueError(msg)
            self._records[execution.execution_id] = execution.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> Execution | None:
        record = self._records.get(execution_id)
        return record.model_copy(deep=True) if record else None

    async def get_execution_by_task_handle(self, task_handle: str) -> Execution | None:
        for record in self._records.values():
            if record.task_handle == task_handle:
                return record.model_copy(deep=True)
        return None

    async def update_execution(
        self,
        execution: Execution,
        *,
        expected_statuses: Collection[ExecutionStatus] | None = None,
    ) -> bool:
        async with self._lock:
            current = self._records.get(execution.execution_id)
            if current is None:
                raise LookupError(execution.execution_id)
            if expected_statuses is not None and current.status not in expected_statuses:
                return False
            self._records[execution.execution_id] = execution.model_copy(deep=True)
            return True

    async def list_executions(self, statuses: Collection[ExecutionStatus] | None = None) -> list[Execution]:
        return [
            r.model_copy(deep=True) for r in self._records.values() if statuses is None or r.status in statuses
        ]


class InMemoryTokenStore:
    """TokenStore with lazy TTL expiry on read."""

    def __init__(self) -> None:
        self._tokens: dict[str, tuple[WebSocketToken, float]] = {}

    async def put_token(self, token: WebSocketToken, ttl_seconds: int) -> None:
        self._tokens[token.token] = (token.model_copy(), time.monotonic() + ttl_seconds)

    async def get_token(self, token: str) -> WebSocketToken | None:
        entry = self._tokens.get(token)
        if entry is None:
            return None
        record, deadline = entry
        if time.monotonic() >= deadline:
            del self._tokens[token]
            return None
        return record.model_copy()

    async def delete_token(self, token: str) -> None:
        self._tokens.pop(token, None)


class InMemoryConnectionStore:
    def __init__(self) -> None:
        self._connections: dict[str, WebSocketConnection] = {}

    async def add_connection(self, connection: WebSocketConnection) -> None:
        self._connections[connection.connection_id] = connection.model_copy()

    async def get_connection(self, connection_id: str) -> WebSocketConnection | None:
        conn = self._connections.get(connection_id)
        return conn.model_copy() if conn else None

    async def remove_connection(self, connection_id: str) -> WebSocketConnection | None:
        return self._connections.pop(connection_id, None)

    async def list_connections(self, execution_id: str) -> list[WebSocketConnection]:
        return [c.model_copy() for c in self._connections.values() if c.execution_id == execution_id]
