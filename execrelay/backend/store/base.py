"""Store interfaces for executions and WebSocket bookkeeping.

Execution records are durable (PostgreSQL in production); WebSocket tokens
and connections are short-lived (Redis in production).  Each interface has
an in-memory implementation used when the backing service is not
configured and in unit tests.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Protocol, runtime_checkable

from execrelay.backend.models.enums import ExecutionStatus
from execrelay.backend.models.execution import Execution, WebSocketConnection, WebSocketToken


@runtime_checkable
class ExecutionRepository(Protocol):
    """Async protocol for execution record persistence."""

    async def create_execution(self, execution: Execution) -> None:
        """Insert a new record.  Raises ``ValueError`` if the id already exists."""
        ...

    async def get_execution(self, execution_id: str) -> Execution | None:
        """Point read by execution id."""
        ...

    async def get_execution_by_task_handle(self, task_handle: str) -> Execution | None:
        """Reverse lookup used to join lifecycle events to their record."""
        ...

    async def update_execution(
        self,
        execution: Execution,
        *,
        expected_statuses: Collection[ExecutionStatus] | None = None,
    ) -> bool:
        """Write the mutable fields of *execution*.

        When *expected_statuses* is given the write only applies if the stored
        status is still one of them (compare-and-set).  Returns ``False`` when
        the condition did not hold.  Raises ``LookupError`` if the record is
        missing.
        """
        ...

    async def list_executions(self, statuses: Collection[ExecutionStatus] | None = None) -> list[Execution]:
        """Unordered listing, optionally filtered by status."""
        ...


@runtime_checkable
class TokenStore(Protocol):
    """Short-lived WebSocket tokens, expired by TTL."""

    async def put_token(self, token: WebSocketToken, ttl_seconds: int) -> None: ...

    async def get_token(self, token: str) -> WebSocketToken | None: ...

    async def delete_token(self, token: str) -> None: ...


@runtime_checkable
class ConnectionStore(Protocol):
    """Active WebSocket connections indexed by execution."""

    async def add_connection(self, connection: WebSocketConnection) -> None: ...

    async def get_connection(self, connection_id: str) -> WebSocketConnection | None: ...

    async def remove_connection(self, connection_id: str) -> WebSocketConnection | None:
        """Remove a connection.  Returns the removed record, or ``None`` if absent."""
        ...

    async def list_connections(self, execution_id: str) -> list[WebSocketConnection]: ...
