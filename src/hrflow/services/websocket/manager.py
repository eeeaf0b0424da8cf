"""Live request updates for connected viewers.

Each replication event becomes one message per topic: every change goes to
REQUESTS viewers, and a transition into escalated status additionally goes
to ESCALATIONS viewers as an alert.
"""

import asyncio
import logging
from collections import Counter
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from hrflow.services.replication import ReplicationEvent
from hrflow.services.websocket.schemas import (
    MessageType,
    SubscriptionType,
    WebSocketMessage,
)
from hrflow.services.workflow.schemas import WorkflowStatus

logger = logging.getLogger(__name__)

TOPICS = frozenset(SubscriptionType) - {SubscriptionType.ALL}


def messages_for(event: ReplicationEvent) -> list[tuple[SubscriptionType, WebSocketMessage]]:
    """Topic/message pairs to deliver for one replication event."""
    payload: dict[str, Any] = event.model_dump(mode="json")
    messages = [
        (
            SubscriptionType.REQUESTS,
            WebSocketMessage(type=MessageType.REQUEST_UPDATE, data=payload),
        )
    ]
    if event.status == WorkflowStatus.ESCALATED:
        alert = {
            "request_id": event.request_id,
            "version": event.version,
            "occurred_at": payload["occurred_at"],
        }
        messages.append(
            (
                SubscriptionType.ESCALATIONS,
                WebSocketMessage(type=MessageType.ESCALATION_ALERT, data=alert),
            )
        )
    return messages


class WebSocketClient:
    """One viewer socket and the topics it follows."""

    def __init__(self, websocket: WebSocket, client_id: str | None = None):
        self.websocket = websocket
        self.client_id = client_id or str(uuid4())
        self.subscriptions: set[SubscriptionType] = set()
        # Serializes writes from the receive loop and the bus fan-out
        self._send_lock = asyncio.Lock()

    async def send_message(self, message: WebSocketMessage) -> bool:
        """Write one message; False when the socket is gone.

        Args:
            message: Message to send

        Returns:
            Whether the write succeeded
        """
        try:
            async with self._send_lock:
                await self.websocket.send_text(message.model_dump_json())
        except Exception as e:
            # Closed sockets surface as assorted transport errors
            logger.warning(f"Dropping message for viewer {self.client_id}: {e}")
            return False
        return True

    def subscribe(self, topic: SubscriptionType) -> None:
        self.subscriptions |= TOPICS if topic == SubscriptionType.ALL else {topic}

    def unsubscribe(self, topic: SubscriptionType) -> None:
        self.subscriptions -= TOPICS if topic == SubscriptionType.ALL else {topic}

    def follows(self, topic: SubscriptionType) -> bool:
        return topic in self.subscriptions


class ConnectionManager:
    """Registry of connected viewers; subscribed to the replication bus at startup."""

    def __init__(self):
        self._viewers: dict[str, WebSocketClient] = {}
        self._lock = asyncio.Lock()

    @property
    def active_connections(self) -> int:
        return len(self._viewers)

    async def connect(
        self, websocket: WebSocket, client_id: str | None = None
    ) -> WebSocketClient:
        """Accept a viewer and greet it with its client ID.

        Args:
            websocket: The WebSocket connection
            client_id: Optional client identifier

        Returns:
            The registered viewer
        """
        await websocket.accept()
        viewer = WebSocketClient(websocket, client_id)
        async with self._lock:
            self._viewers[viewer.client_id] = viewer
        logger.info(f"Viewer {viewer.client_id} connected ({self.active_connections} live)")

        await viewer.send_message(
            WebSocketMessage(
                type=MessageType.CONNECTED,
                data={"client_id": viewer.client_id, "subscriptions": []},
            )
        )
        return viewer

    async def disconnect(self, client_id: str) -> None:
        async with self._lock:
            removed = self._viewers.pop(client_id, None)
        if removed is not None:
            logger.info(f"Viewer {client_id} left ({self.active_connections} live)")

    def get_client(self, client_id: str) -> WebSocketClient | None:
        return self._viewers.get(client_id)

    async def deliver(self, messages: list[tuple[SubscriptionType, WebSocketMessage]]) -> int:
        """Send each message to the viewers following its topic.

        Viewers whose socket fails are disconnected and get nothing further.

        Args:
            messages: Topic/message pairs, delivered in order

        Returns:
            Number of successful writes
        """
        async with self._lock:
            viewers = list(self._viewers.values())

        delivered = 0
        dead: set[str] = set()
        for topic, message in messages:
            for viewer in viewers:
                if viewer.client_id in dead or not viewer.follows(topic):
                    continue
                if await viewer.send_message(message):
                    delivered += 1
                else:
                    dead.add(viewer.client_id)

        for client_id in dead:
            await self.disconnect(client_id)
        return delivered

    async def broadcast_replication_event(self, event: ReplicationEvent) -> None:
        """Event bus handler."""
        delivered = await self.deliver(messages_for(event))
        logger.debug(
            f"{event.event_type.value} {event.request_id} v{event.version} "
            f"sent {delivered} time(s)"
        )

    def get_stats(self) -> dict[str, Any]:
        counts = Counter(
            topic.value for viewer in self._viewers.values() for topic in viewer.subscriptions
        )
        return {
            "active_connections": self.active_connections,
            "subscription_counts": {
                topic.value: counts[topic.value]
                for topic in SubscriptionType
                if topic in TOPICS
            },
        }


_connection_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get singleton connection manager instance."""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager


def reset_connection_manager() -> None:
    """Reset the singleton (for testing)."""
    global _connection_manager
    _connection_manager = None
