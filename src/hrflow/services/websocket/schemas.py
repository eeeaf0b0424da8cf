"""Schemas for WebSocket service."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """WebSocket message types."""

    # Connection lifecycle
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"
    PING = "PING"
    PONG = "PONG"

    # Subscription management
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    SUBSCRIBED = "SUBSCRIBED"
    UNSUBSCRIBED = "UNSUBSCRIBED"

    # Data updates
    REQUEST_UPDATE = "REQUEST_UPDATE"
    ESCALATION_ALERT = "ESCALATION_ALERT"


class SubscriptionType(str, Enum):
    """Types of subscriptions available."""

    REQUESTS = "REQUESTS"  # Replicated request changes
    ESCALATIONS = "ESCALATIONS"  # Requests entering escalated status
    ALL = "ALL"


class WebSocketMessage(BaseModel):
    """WebSocket message structure."""

    type: MessageType = Field(..., description="Message type")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Message timestamp",
    )
    data: dict[str, Any] | None = Field(None, description="Message payload")
    error: str | None = Field(None, description="Error message if applicable")
