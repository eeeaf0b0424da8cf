"""Database models for HRFlow Backend."""

from hrflow.models.base import Base, TimestampMixin
from hrflow.models.workflow import DelegateSettingRecord, WorkflowRequestRecord

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Workflow models
    "WorkflowRequestRecord",
    "DelegateSettingRecord",
]
