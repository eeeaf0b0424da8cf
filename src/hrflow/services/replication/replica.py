"""Viewer-side replica of workflow requests."""

import logging

from hrflow.services.replication.bus import EventBus
from hrflow.services.replication.schemas import (
    STATUS_EVENT_TYPES,
    ReplicationEvent,
)
from hrflow.services.workflow.schemas import WorkflowRequest

logger = logging.getLogger(__name__)


class WorkflowReplica:
    """Local copy of requests kept current from replication events.

    Applying an event is idempotent: redelivered, stale, self-originated and
    same-status events are discarded. Snapshots replace the local copy, so
    timeline entries are never appended twice.
    """

    def __init__(self, origin: str, max_seen_events: int = 10_000):
        """Initialize replica.

        @param origin - This viewer's origin ID; its own events are ignored
        @param max_seen_events - Size of the redelivery memory
        """
        self.origin = origin
        self._requests: dict[str, WorkflowRequest] = {}
        self._seen: dict[str, None] = {}
        self._max_seen = max_seen_events

    def attach(self, bus: EventBus) -> None:
        """Subscribe this replica to every event type on a bus."""
        bus.subscribe_all(self.handle)

    async def handle(self, event: ReplicationEvent) -> None:
        """Bus handler."""
        self.apply(event)

    def apply(self, event: ReplicationEvent) -> bool:
        """Merge one event.

        @param event - Received event
        @returns True if local state changed
        """
        if event.origin == self.origin:
            return False
        if event.event_id in self._seen:
            logger.debug(f"Duplicate event {event.event_id} ignored")
            return False
        self._remember(event.event_id)

        local = self._requests.get(event.request_id)
        if local is not None:
            target = STATUS_EVENT_TYPES.get(event.event_type)
            if target is not None and local.status == target:
                logger.debug(
                    f"{event.request_id} already {target.value}; "
                    f"{event.event_type.value} event discarded"
                )
                return False
            if local.version >= event.version:
                logger.debug(
                    f"Stale event for {event.request_id} "
                    f"(local v{local.version}, event v{event.version})"
                )
                return False

        self._requests[event.request_id] = WorkflowRequest.model_validate(event.snapshot)
        return True

    def seed(self, request: WorkflowRequest) -> None:
        """Load a request read directly from the store."""
        self._requests[request.id] = request.model_copy(deep=True)

    def get(self, request_id: str) -> WorkflowRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    def all(self) -> list[WorkflowRequest]:
        return [r.model_copy(deep=True) for r in self._requests.values()]

    def _remember(self, event_id: str) -> None:
        self._seen[event_id] = None
        if len(self._seen) > self._max_seen:
            # dicts keep insertion order: drop the oldest
            self._seen.pop(next(iter(self._seen)))
