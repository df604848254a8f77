"""Shared enumerations used across the backend."""

from __future__ import annotations

from enum import StrEnum

# -- Execution ---------------------------------------------------------------


class ExecutionStatus(StrEnum):
    """Durable execution status persisted with the record."""

    STARTING = "STARTING"
    PENDING = "PENDING"
    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    DEPROVISIONING = "DEPROVISIONING"
    TERMINATING = "TERMINATING"
    DEACTIVATING = "DEACTIVATING"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self is ExecutionStatus.STOPPED

    @property
    def rank(self) -> int:
        """Position along the lifecycle; status updates only move forward."""
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = (
    ExecutionStatus.STARTING,
    ExecutionStatus.PROVISIONING,
    ExecutionStatus.PENDING,
    ExecutionStatus.RUNNING,
    ExecutionStatus.TERMINATING,
    ExecutionStatus.DEACTIVATING,
    ExecutionStatus.DEPROVISIONING,
    ExecutionStatus.STOPPED,
)

NON_TERMINAL_STATUSES = frozenset(s for s in ExecutionStatus if not s.is_terminal)


class ComputePlatform(StrEnum):
    ECS = "ECS"


# -- WebSocket ---------------------------------------------------------------


class RouteKey(StrEnum):
    CONNECT = "$connect"
    DISCONNECT = "$disconnect"
    DEFAULT = "$default"


class WebSocketMessageType(StrEnum):
    """``type`` field of payloads pushed to subscribers."""

    LOG = "log"
    DISCONNECT = "disconnect"


class DisconnectReason(StrEnum):
    EXECUTION_COMPLETED = "execution_completed"
