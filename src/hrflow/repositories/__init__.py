"""Data access layer."""

from hrflow.repositories.base import BaseRepository
from hrflow.repositories.workflow import (
    DelegateSettingRepository,
    WorkflowRequestRepository,
)

__all__ = [
    "BaseRepository",
    "WorkflowRequestRepository",
    "DelegateSettingRepository",
]
