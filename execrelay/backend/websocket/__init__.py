"""Real-time log streaming over API Gateway WebSockets."""

from execrelay.backend.websocket.manager import BroadcastResult, WebSocketManager, gateway_response

__all__ = ["BroadcastResult", "WebSocketManager", "gateway_response"]
