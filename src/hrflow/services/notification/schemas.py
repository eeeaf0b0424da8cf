"""Schemas for workflow notifications."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    """Why a user is being notified."""

    SUBMITTED = "submitted"  # First approver: a request awaits you
    APPROVAL_REQUIRED = "approval_required"  # Next approver after a step approval
    STEP_APPROVED = "step_approved"  # Requester: partial approval
    APPROVED = "approved"  # Requester: fully approved
    REJECTED = "rejected"  # Requester: rejected, with reason
    RETURNED = "returned"  # Requester: sent back for changes
    ESCALATED = "escalated"  # Escalation-path role
    DELEGATED = "delegated"  # New delegate approver


class NotificationChannel(str, Enum):
    """Delivery channels."""

    LOG = "log"
    WEBHOOK = "webhook"


class NotificationStatus(str, Enum):
    """Delivery status."""

    SENT = "sent"
    FAILED = "failed"


class Notification(BaseModel):
    """Notification contract emitted by the workflow engine.

    Escalations address a role rather than a user: recipient_user_id is
    then "role:<role>" and role-to-user routing is left to the receiver.
    """

    recipient_user_id: str = Field(..., description="User ID or role:<role>")
    kind: NotificationKind = Field(..., description="Notification kind")
    subject: str = Field(..., description="Short subject line")
    related_request_id: str = Field(..., description="Workflow request ID")
    message: str | None = Field(None, description="Optional body (e.g. reject reason)")


class DeliveryRecord(BaseModel):
    """Result of delivering one notification over one channel."""

    record_id: str = Field(..., description="Record ID")
    notification: Notification = Field(..., description="Delivered notification")
    channel: NotificationChannel = Field(..., description="Channel used")
    status: NotificationStatus = Field(..., description="Delivery status")
    sent_at: datetime = Field(..., description="Attempt time")
    error: str | None = Field(None, description="Error if failed")
