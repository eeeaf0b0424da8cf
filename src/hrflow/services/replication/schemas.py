"""Schemas for request replication between concurrent viewers."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from hrflow.services.workflow.schemas import WorkflowStatus


class ReplicationEventType(str, Enum):
    """Kinds of replicated request changes."""

    NEW = "new"
    UPDATED = "updated"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"


# Event types that announce a specific target status
STATUS_EVENT_TYPES: dict[ReplicationEventType, WorkflowStatus] = {
    ReplicationEventType.APPROVED: WorkflowStatus.APPROVED,
    ReplicationEventType.REJECTED: WorkflowStatus.REJECTED,
    ReplicationEventType.RETURNED: WorkflowStatus.RETURNED,
}


class ReplicationEvent(BaseModel):
    """A committed request change, published after persistence.

    Delivery is at-least-once; receivers must apply it idempotently.
    """

    event_id: str = Field(..., description="Unique event ID")
    event_type: ReplicationEventType = Field(..., description="Change kind")
    request_id: str = Field(..., description="Workflow request ID")
    status: WorkflowStatus = Field(..., description="Request status after the change")
    version: int = Field(..., ge=1, description="Request version after the change")
    origin: str = Field(..., description="Publishing instance")
    snapshot: dict[str, Any] = Field(..., description="Full request (JSON mode)")
    occurred_at: datetime = Field(..., description="Change timestamp")
