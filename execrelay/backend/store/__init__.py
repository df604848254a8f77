"""Store implementations for executions and WebSocket bookkeeping."""

from execrelay.backend.store.base import ConnectionStore, ExecutionRepository, TokenStore
from execrelay.backend.store.memory import InMemoryConnectionStore, InMemoryExecutionRepository, InMemoryTokenStore

__all__ = [
    "ConnectionStore",
    "ExecutionRepository",
    "InMemoryConnectionStore",
    "InMemoryExecutionRepository",
    "InMemoryTokenStore",
    "TokenStore",
]
