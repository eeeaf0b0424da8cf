"""Schemas for workflow audit logging."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """State transitions recorded in the audit trail."""

    CREATE = "create"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    DELEGATE = "delegate"
    ESCALATE = "escalate"
    RETURN = "return"


class AuditEvent(BaseModel):
    """Structured audit record emitted alongside a state transition."""

    entry_id: str = Field(..., description="Unique entry ID")
    timestamp: datetime = Field(..., description="Transition timestamp")
    action: AuditAction = Field(..., description="Transition kind")
    request_id: str = Field(..., description="Affected workflow request")
    actor_id: str | None = Field(None, description="Acting user ID, if known")
    actor_name: str = Field(..., description="Acting user display name")
    detail: str = Field(..., description="Human-readable description")
    details: dict[str, Any] = Field(default_factory=dict, description="Extra data")


class AuditQuery(BaseModel):
    """Query parameters for audit log search."""

    request_id: str | None = Field(None, description="Filter by request")
    actions: list[AuditAction] | None = Field(None, description="Filter actions")
    actor_id: str | None = Field(None, description="Filter by actor")
    start_time: datetime | None = Field(None, description="Start of time range")
    end_time: datetime | None = Field(None, description="End of time range")
    limit: int = Field(default=100, ge=1, le=1000, description="Max results")
    offset: int = Field(default=0, ge=0, description="Pagination offset")


class AuditStats(BaseModel):
    """Audit statistics."""

    total_entries: int = Field(..., description="Total entries")
    entries_by_action: dict[str, int] = Field(..., description="Count by action")
    unique_actors: int = Field(..., description="Unique actor count")
    unique_requests: int = Field(..., description="Requests with at least one entry")
