"""Event bus port and an in-process implementation."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from hrflow.services.replication.schemas import ReplicationEvent, ReplicationEventType

logger = logging.getLogger(__name__)


# Handler type
Handler = Callable[[ReplicationEvent], Coroutine[Any, Any, None]]


@dataclass
class BusStats:
    """Statistics for the event bus."""

    events_published: int = 0
    events_unhandled: int = 0
    errors: int = 0
    handlers_by_type: dict[str, int] = field(default_factory=dict)


class EventBus(ABC):
    """Transport-agnostic publish/subscribe port."""

    @abstractmethod
    async def publish(self, event: ReplicationEvent) -> bool:
        """Publish an event.

        @param event - Event to publish
        @returns True if at least one handler processed it
        """

    @abstractmethod
    def subscribe(
        self, event_type: ReplicationEventType, handler: Handler, priority: int = 0
    ) -> None:
        """Register a handler for one event type."""

    @abstractmethod
    def unsubscribe(self, event_type: ReplicationEventType, handler: Handler) -> bool:
        """Remove a handler for one event type."""

    def subscribe_all(self, handler: Handler, priority: int = 0) -> None:
        """Register a handler for every event type."""
        for event_type in ReplicationEventType:
            self.subscribe(event_type, handler, priority)

    def unsubscribe_all(self, handler: Handler) -> None:
        for event_type in ReplicationEventType:
            self.unsubscribe(event_type, handler)


class InMemoryEventBus(EventBus):
    """Routes events to in-process handlers.

    Supports:
    - Multiple handlers per event type
    - Handler priority ordering
    - Error isolation between handlers
    """

    def __init__(self):
        self._handlers: dict[ReplicationEventType, list[tuple[int, Handler]]] = {}
        self._stats = BusStats()

    @property
    def stats(self) -> BusStats:
        return self._stats

    def subscribe(
        self, event_type: ReplicationEventType, handler: Handler, priority: int = 0
    ) -> None:
        """Register a handler.

        @param event_type - Type of events to handle
        @param handler - Async callable taking the event
        @param priority - Higher runs first
        """
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append((priority, handler))
        handlers.sort(key=lambda x: -x[0])
        self._stats.handlers_by_type[event_type.value] = len(handlers)

        logger.debug(
            f"Subscribed handler to {event_type.value} "
            f"(priority={priority}, total={len(handlers)})"
        )

    def unsubscribe(self, event_type: ReplicationEventType, handler: Handler) -> bool:
        """Remove a handler.

        @returns True if the handler was registered
        """
        handlers = self._handlers.get(event_type, [])
        remaining = [(p, h) for p, h in handlers if h != handler]
        if len(remaining) == len(handlers):
            return False
        self._handlers[event_type] = remaining
        self._stats.handlers_by_type[event_type.value] = len(remaining)
        return True

    async def publish(self, event: ReplicationEvent) -> bool:
        self._stats.events_published += 1

        handlers = self._handlers.get(event.event_type, [])
        if not handlers:
            self._stats.events_unhandled += 1
            logger.debug(f"No handlers for event type: {event.event_type.value}")
            return False

        handled = False
        for _, handler in handlers:
            try:
                await handler(event)
                handled = True
            except Exception as e:
                # One failing subscriber must not starve the others
                logger.error(
                    f"Handler error for {event.event_type.value} "
                    f"on {event.request_id}: {e}"
                )
                self._stats.errors += 1

        return handled

    def get_handler_count(self, event_type: ReplicationEventType) -> int:
        return len(self._handlers.get(event_type, []))

    def clear_handlers(self) -> None:
        self._handlers.clear()
        self._stats.handlers_by_type.clear()


# Singleton instance
_event_bus: InMemoryEventBus | None = None


def get_event_bus() -> InMemoryEventBus:
    """Get or create event bus singleton."""
    global _event_bus
    if _event_bus is None:
        _event_bus = InMemoryEventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the singleton (for testing)."""
    global _event_bus
    _event_bus = None
