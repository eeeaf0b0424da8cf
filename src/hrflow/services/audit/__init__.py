"""Audit logging service module."""

from hrflow.services.audit.logger import (
    AuditLogger,
    AuditSink,
    get_audit_logger,
    reset_audit_logger,
)
from hrflow.services.audit.schemas import (
    AuditAction,
    AuditEvent,
    AuditQuery,
    AuditStats,
)

__all__ = [
    # Schemas
    "AuditAction",
    "AuditEvent",
    "AuditQuery",
    "AuditStats",
    # Service
    "AuditSink",
    "AuditLogger",
    "get_audit_logger",
    "reset_audit_logger",
]
