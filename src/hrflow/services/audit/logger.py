"""Audit logger for workflow state transitions."""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from hrflow.services.audit.schemas import (
    AuditAction,
    AuditEvent,
    AuditQuery,
    AuditStats,
)

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Receives audit events synchronously with each transition."""

    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        """Store one audit event."""


class AuditLogger(AuditSink):
    """In-memory audit trail that mirrors every entry to the standard logger."""

    def __init__(
        self,
        max_entries: int = 100_000,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize audit logger.

        Args:
            max_entries: Oldest entries are dropped beyond this count
            clock: Timestamp source for log()
        """
        self._entries: list[AuditEvent] = []
        self._max_entries = max_entries
        self._clock = clock

    def record(self, event: AuditEvent) -> None:
        self._entries.append(event)
        if len(self._entries) > self._max_entries:
            self._entries = self._entries[-self._max_entries:]

        logger.info(
            f"[AUDIT] {event.action.value} {event.request_id} by {event.actor_name}: "
            f"{event.detail}",
            extra={
                "audit_entry_id": event.entry_id,
                "actor_id": event.actor_id,
                "request_id": event.request_id,
            },
        )

    def log(
        self,
        action: AuditAction,
        request_id: str,
        actor_name: str,
        detail: str,
        *,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Build and record an audit event.

        Args:
            action: Transition kind
            request_id: Affected request
            actor_name: Acting user display name
            detail: Description
            actor_id: Acting user ID
            details: Extra structured data

        Returns:
            The recorded event
        """
        event = AuditEvent(
            entry_id=str(uuid4()),
            timestamp=self._clock(),
            action=action,
            request_id=request_id,
            actor_id=actor_id,
            actor_name=actor_name,
            detail=detail,
            details=details or {},
        )
        self.record(event)
        return event

    def query(self, query: AuditQuery) -> list[AuditEvent]:
        """Search entries, newest first.

        Args:
            query: Filters (all optional, combined with AND) and paging

        Returns:
            One page of matching entries
        """

        def matches(event: AuditEvent) -> bool:
            return (
                query.request_id in (None, event.request_id)
                and (not query.actions or event.action in query.actions)
                and query.actor_id in (None, event.actor_id)
                and (query.start_time is None or event.timestamp >= query.start_time)
                and (query.end_time is None or event.timestamp <= query.end_time)
            )

        newest_first = [e for e in reversed(self._entries) if matches(e)]
        return newest_first[query.offset : query.offset + query.limit]

    def get_for_request(self, request_id: str) -> list[AuditEvent]:
        """All entries for one request, oldest first."""
        return [e for e in self._entries if e.request_id == request_id]

    def get_stats(self) -> AuditStats:
        return AuditStats(
            total_entries=len(self._entries),
            entries_by_action=dict(Counter(e.action.value for e in self._entries)),
            # Actors without an ID are counted by display name
            unique_actors=len({e.actor_id or e.actor_name for e in self._entries}),
            unique_requests=len({e.request_id for e in self._entries}),
        )

    def clear(self) -> int:
        """Drop the trail; returns how many entries were removed."""
        removed, self._entries = len(self._entries), []
        return removed


_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    """Get singleton audit logger instance."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset the singleton (for testing)."""
    global _audit_logger
    _audit_logger = None
