"""Live request updates over WebSocket.

Protocol:
1. Server greets with CONNECTED and the client_id
2. Client sends SUBSCRIBE / UNSUBSCRIBE with topics REQUESTS, ESCALATIONS or ALL;
   the server answers with the resulting topic list
3. Server pushes REQUEST_UPDATE and ESCALATION_ALERT messages
4. PING is answered with PONG
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from hrflow.services.websocket import (
    ConnectionManager,
    MessageType,
    SubscriptionType,
    WebSocketClient,
    WebSocketMessage,
    get_connection_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


@router.websocket("")
async def websocket_endpoint(websocket: WebSocket):
    manager = get_connection_manager()
    viewer = await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(viewer, "Invalid JSON format")
                continue
            await handle_client_message(viewer.client_id, message, manager)
    except WebSocketDisconnect:
        await manager.disconnect(viewer.client_id)


def _topics(message: dict[str, Any]) -> list[SubscriptionType]:
    topics = []
    for value in message.get("subscriptions", []):
        try:
            topics.append(SubscriptionType(str(value).upper()))
        except ValueError:
            logger.debug(f"Ignoring unknown topic {value!r}")
    return topics


async def _send_error(viewer: WebSocketClient, error: str) -> None:
    await viewer.send_message(WebSocketMessage(type=MessageType.ERROR, error=error))


async def _send_topics(viewer: WebSocketClient, reply: MessageType) -> None:
    topics = sorted(topic.value for topic in viewer.subscriptions)
    await viewer.send_message(WebSocketMessage(type=reply, data={"subscriptions": topics}))


async def _on_ping(viewer: WebSocketClient, message: dict[str, Any]) -> None:
    await viewer.send_message(WebSocketMessage(type=MessageType.PONG))


async def _on_subscribe(viewer: WebSocketClient, message: dict[str, Any]) -> None:
    for topic in _topics(message):
        viewer.subscribe(topic)
    await _send_topics(viewer, MessageType.SUBSCRIBED)


async def _on_unsubscribe(viewer: WebSocketClient, message: dict[str, Any]) -> None:
    for topic in _topics(message):
        viewer.unsubscribe(topic)
    await _send_topics(viewer, MessageType.UNSUBSCRIBED)


HANDLERS = {
    MessageType.PING.value: _on_ping,
    MessageType.SUBSCRIBE.value: _on_subscribe,
    MessageType.UNSUBSCRIBE.value: _on_unsubscribe,
}


async def handle_client_message(
    client_id: str,
    message: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    """Dispatch one parsed client message; unknown types get an ERROR reply.

    Args:
        client_id: Sending viewer
        message: Parsed JSON object with a "type" key
        manager: Connection manager holding the viewer
    """
    viewer = manager.get_client(client_id)
    if viewer is None:
        return

    msg_type = str(message.get("type", "")).upper()
    handler = HANDLERS.get(msg_type)
    if handler is None:
        await _send_error(viewer, f"Unknown message type: {msg_type}")
        return
    await handler(viewer, message)


@router.get("/stats")
async def get_websocket_stats() -> dict[str, Any]:
    """Live viewer and topic counts."""
    return get_connection_manager().get_stats()
