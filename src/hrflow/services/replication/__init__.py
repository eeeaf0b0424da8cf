"""Replication of request changes to concurrent viewers."""

from hrflow.services.replication.bus import (
    BusStats,
    EventBus,
    InMemoryEventBus,
    get_event_bus,
    reset_event_bus,
)
from hrflow.services.replication.replica import WorkflowReplica
from hrflow.services.replication.schemas import (
    STATUS_EVENT_TYPES,
    ReplicationEvent,
    ReplicationEventType,
)

__all__ = [
    # Schemas
    "ReplicationEvent",
    "ReplicationEventType",
    "STATUS_EVENT_TYPES",
    # Bus
    "EventBus",
    "InMemoryEventBus",
    "BusStats",
    "get_event_bus",
    "reset_event_bus",
    # Replica
    "WorkflowReplica",
]
