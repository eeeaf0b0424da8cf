"""Audit trail search across requests."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from hrflow.services.audit import (
    AuditAction,
    AuditEvent,
    AuditLogger,
    AuditQuery,
    AuditStats,
    get_audit_logger,
)

router = APIRouter(prefix="/audit", tags=["Audit"])

Audit = Annotated[AuditLogger, Depends(get_audit_logger)]


@router.get("/entries", response_model=list[AuditEvent])
async def list_audit_entries(
    audit: Audit,
    request_id: str | None = None,
    action: Annotated[list[AuditAction] | None, Query()] = None,
    actor_id: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> list[AuditEvent]:
    """Search audit entries, newest first.

    Args:
        request_id: Filter by request
        action: Filter by one or more actions (repeat the parameter)
        actor_id: Filter by acting user
        start_time: Start of time range
        end_time: End of time range
        limit: Max results
        offset: Pagination offset
    """
    return audit.query(
        AuditQuery(
            request_id=request_id,
            actions=action,
            actor_id=actor_id,
            start_time=start_time,
            end_time=end_time,
            limit=limit,
            offset=offset,
        )
    )


@router.get("/stats", response_model=AuditStats)
async def get_audit_stats(audit: Audit) -> AuditStats:
    return audit.get_stats()
