"""WebSocket service for live request updates."""

from hrflow.services.websocket.manager import (
    ConnectionManager,
    WebSocketClient,
    get_connection_manager,
    reset_connection_manager,
)
from hrflow.services.websocket.schemas import (
    MessageType,
    SubscriptionType,
    WebSocketMessage,
)

__all__ = [
    # Schemas
    "MessageType",
    "SubscriptionType",
    "WebSocketMessage",
    # Manager
    "ConnectionManager",
    "WebSocketClient",
    "get_connection_manager",
    "reset_connection_manager",
]
