"""Data models for the execrelay backend."""

from execrelay.backend.models.api import (
    ExecutionResponse,
    ExecutionStatusResponse,
    KillExecutionResponse,
    LogsResponse,
    RunCommandRequest,
    RunCommandResponse,
)
from execrelay.backend.models.enums import (
    ComputePlatform,
    DisconnectReason,
    ExecutionStatus,
    RouteKey,
    WebSocketMessageType,
)
from execrelay.backend.models.events import (
    ContainerState,
    IgnoredEvent,
    LogDelivery,
    LogLine,
    ProviderEvent,
    TaskStateChange,
    WebSocketLifecycle,
)
from execrelay.backend.models.execution import (
    EXIT_CODE_UNKNOWN,
    EXIT_CODE_USER_INITIATED,
    Execution,
    WebSocketConnection,
    WebSocketToken,
)

__all__ = [
    "EXIT_CODE_UNKNOWN",
    "EXIT_CODE_USER_INITIATED",
    # Enums
    "ComputePlatform",
    # Events
    "ContainerState",
    "DisconnectReason",
    # Records
    "Execution",
    # API schemas
    "ExecutionResponse",
    "ExecutionStatus",
    "ExecutionStatusResponse",
    "IgnoredEvent",
    "KillExecutionResponse",
    "LogDelivery",
    "LogLine",
    "LogsResponse",
    "ProviderEvent",
    "RouteKey",
    "RunCommandRequest",
    "RunCommandResponse",
    "TaskStateChange",
    "WebSocketConnection",
    "WebSocketLifecycle",
    "WebSocketMessageType",
    "WebSocketToken",
]
