"""Workflow request and delegate setting models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from hrflow.models.base import Base, TimestampMixin


class WorkflowRequestRecord(Base, TimestampMixin):
    """Workflow request table.

    Steps, timeline and escalation settings are stored as JSONB documents
    owned by the request row.
    """

    __tablename__ = "workflow_requests"

    # Primary key
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Request info
    category: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    requester_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    requester_name: Mapped[str] = mapped_column(String(120), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    attachments: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    due_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Routing
    flow_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    flow_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    approval_steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalation: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="draft", index=True
    )
    action_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    action_required_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timeline: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # Lifecycle timestamps
    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    returned_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    returned_by: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    return_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'partially_approved', 'escalated', "
            "'returned', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_requests_status",
        ),
        CheckConstraint("version >= 1", name="ck_workflow_requests_version"),
        Index("ix_workflow_requests_status_category", "status", "category"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowRequestRecord(id={self.id}, status={self.status}, v={self.version})>"


class DelegateSettingRecord(Base, TimestampMixin):
    """Standing approval delegation, one row per delegating user."""

    __tablename__ = "delegate_settings"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    delegate_to_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    delegate_name: Mapped[str] = mapped_column(String(120), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_delegate_settings_window"),
    )
