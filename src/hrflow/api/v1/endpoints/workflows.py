"""Workflow request API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from hrflow.api.v1.dependencies import CurrentUserId, Engine, to_http_exception
from hrflow.services.audit import AuditEvent, AuditLogger, get_audit_logger
from hrflow.services.workflow.engine import WorkflowEngine
from hrflow.services.workflow.errors import WorkflowError
from hrflow.services.workflow.schemas import (
    ApproveAction,
    BulkActionResult,
    BulkApproveAction,
    BulkRejectAction,
    CancelAction,
    DelegateAction,
    DelegateSetting,
    DelegateSettingInput,
    EscalationDeadlineAction,
    RejectAction,
    RequestCategory,
    RequestFilters,
    ReturnAction,
    WorkflowRequest,
    WorkflowRequestCreate,
    WorkflowRequestDetail,
    WorkflowStatistics,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workflows", tags=["Workflows"])


def _detail(request: WorkflowRequest) -> WorkflowRequestDetail:
    active = WorkflowEngine.get_active_step(request)
    return WorkflowRequestDetail(
        **request.model_dump(),
        progress=WorkflowEngine.calculate_progress(request),
        active_step_id=active.id if active else None,
    )


@router.post("", response_model=WorkflowRequestDetail, status_code=status.HTTP_201_CREATED)
async def create_request(
    data: WorkflowRequestCreate,
    user_id: CurrentUserId,
    engine: Engine,
) -> WorkflowRequestDetail:
    """Create a draft request.

    The approval route is resolved from the matching approval flow; manual
    steps in the payload are used only when no flow applies.
    """
    try:
        return _detail(await engine.create_request(data, actor_id=user_id))
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.get("", response_model=list[WorkflowRequest])
async def list_requests(
    engine: Engine,
    status_filter: WorkflowStatus | None = Query(None, alias="status", description="Filter by status"),
    category: RequestCategory | None = Query(None, description="Filter by category"),
    requester_id: str | None = Query(None, description="Filter by requester"),
    approver_id: str | None = Query(None, description="Filter by assigned approver"),
) -> list[WorkflowRequest]:
    """List requests, oldest first."""
    try:
        return await engine.list_requests(
            RequestFilters(
                status=status_filter,
                category=category,
                requester_id=requester_id,
                approver_id=approver_id,
            )
        )
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.get("/mine", response_model=list[WorkflowRequest])
async def list_my_requests(user_id: CurrentUserId, engine: Engine) -> list[WorkflowRequest]:
    """Requests created by the acting user."""
    try:
        return await engine.get_my_requests(user_id)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.get("/pending", response_model=list[WorkflowRequest])
async def list_pending_approvals(
    user_id: CurrentUserId, engine: Engine
) -> list[WorkflowRequest]:
    """Requests whose active step awaits the acting user, including standing delegations."""
    try:
        return await engine.get_pending_approvals(user_id)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.get("/delegated", response_model=list[WorkflowRequest])
async def list_delegated_approvals(
    user_id: CurrentUserId, engine: Engine
) -> list[WorkflowRequest]:
    try:
        return await engine.get_delegated_approvals(user_id)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.get("/stats", response_model=WorkflowStatistics)
async def get_statistics(
    engine: Engine,
    requester_id: str | None = Query(None, description="Restrict to one requester"),
) -> WorkflowStatistics:
    try:
        return await engine.get_statistics(requester_id)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.post("/bulk-approve", response_model=BulkActionResult)
async def bulk_approve(
    action: BulkApproveAction,
    user_id: CurrentUserId,
    engine: Engine,
) -> BulkActionResult:
    """Approve every listed request currently awaiting the acting user."""
    try:
        return await engine.bulk_approve(action.request_ids, user_id, action.comment)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.post("/bulk-reject", response_model=BulkActionResult)
async def bulk_reject(
    action: BulkRejectAction,
    user_id: CurrentUserId,
    engine: Engine,
) -> BulkActionResult:
    """Reject every listed request currently awaiting the acting user."""
    try:
        return await engine.bulk_reject(action.request_ids, user_id, action.reason)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.post("/check-escalation")
async def trigger_escalation_check(engine: Engine) -> dict:
    """Run the escalation sweep now.

    Normally runs on the Celery beat schedule.
    """
    escalated = await engine.check_and_escalate()
    return {
        "success": True,
        "escalated_count": len(escalated),
        "escalated_requests": escalated,
    }


# =============================================================================
# Standing delegations
# =============================================================================


@router.get("/delegates", response_model=list[DelegateSetting])
async def list_delegate_settings(engine: Engine) -> list[DelegateSetting]:
    return await engine.list_delegate_settings()


@router.put("/delegates/me", response_model=DelegateSetting)
async def set_my_delegate(
    data: DelegateSettingInput,
    user_id: CurrentUserId,
    engine: Engine,
) -> DelegateSetting:
    """Delegate the acting user's approvals for a time window."""
    try:
        return await engine.set_delegate_approver(
            DelegateSetting(user_id=user_id, **data.model_dump())
        )
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.delete("/delegates/me", status_code=status.HTTP_204_NO_CONTENT)
async def remove_my_delegate(user_id: CurrentUserId, engine: Engine) -> None:
    if not await engine.remove_delegate_approver(user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No delegate setting for {user_id}",
        )


# =============================================================================
# Single request
# =============================================================================


@router.get("/{request_id}", response_model=WorkflowRequestDetail)
async def get_request(request_id: str, engine: Engine) -> WorkflowRequestDetail:
    request = await engine.get_request(request_id)
    if request is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Request {request_id} not found",
        )
    return _detail(request)


@router.get("/{request_id}/audit", response_model=list[AuditEvent])
async def get_request_audit(
    request_id: str,
    audit: Annotated[AuditLogger, Depends(get_audit_logger)],
) -> list[AuditEvent]:
    """Audit trail of one request, oldest first."""
    return audit.get_for_request(request_id)


@router.post("/{request_id}/submit", response_model=WorkflowRequestDetail)
async def submit_request(
    request_id: str, user_id: CurrentUserId, engine: Engine
) -> WorkflowRequestDetail:
    """Submit a draft or resubmit a returned request."""
    try:
        return _detail(await engine.submit(request_id, actor_id=user_id))
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.post("/{request_id}/approve", response_model=WorkflowRequestDetail)
async def approve_step(
    request_id: str,
    action: ApproveAction,
    user_id: CurrentUserId,
    engine: Engine,
) -> WorkflowRequestDetail:
    try:
        request = await engine.approve(
            request_id,
            action.step_id,
            comment=action.comment,
            require_comment=action.require_comment,
            actor_id=user_id,
        )
    except WorkflowError as e:
        raise to_http_exception(e) from e
    return _detail(request)


@router.post("/{request_id}/reject", response_model=WorkflowRequestDetail)
async def reject_step(
    request_id: str,
    action: RejectAction,
    user_id: CurrentUserId,
    engine: Engine,
) -> WorkflowRequestDetail:
    try:
        request = await engine.reject(
            request_id, action.step_id, action.reason, actor_id=user_id
        )
    except WorkflowError as e:
        raise to_http_exception(e) from e
    return _detail(request)


@router.post("/{request_id}/return", response_model=WorkflowRequestDetail)
async def return_to_sender(
    request_id: str,
    action: ReturnAction,
    user_id: CurrentUserId,
    engine: Engine,
) -> WorkflowRequestDetail:
    """Send the request back to its requester for changes."""
    try:
        request = await engine.return_to_sender(
            request_id, action.step_id, action.reason, actor_id=user_id
        )
    except WorkflowError as e:
        raise to_http_exception(e) from e
    return _detail(request)


@router.post("/{request_id}/delegate", response_model=WorkflowRequestDetail)
async def delegate_step(
    request_id: str,
    action: DelegateAction,
    user_id: CurrentUserId,
    engine: Engine,
) -> WorkflowRequestDetail:
    try:
        request = await engine.delegate(
            request_id,
            action.step_id,
            action.delegate_to_id,
            action.delegate_name,
            reason=action.reason,
            actor_id=user_id,
        )
    except WorkflowError as e:
        raise to_http_exception(e) from e
    return _detail(request)


@router.post("/{request_id}/cancel", response_model=WorkflowRequestDetail)
async def cancel_request(
    request_id: str,
    action: CancelAction,
    user_id: CurrentUserId,
    engine: Engine,
) -> WorkflowRequestDetail:
    """Cancel a request that has not been decided yet."""
    try:
        request = await engine.cancel(request_id, action.reason, actor_id=user_id)
    except WorkflowError as e:
        raise to_http_exception(e) from e
    return _detail(request)


@router.put("/{request_id}/escalation-deadline", response_model=WorkflowRequestDetail)
async def set_escalation_deadline(
    request_id: str,
    action: EscalationDeadlineAction,
    engine: Engine,
) -> WorkflowRequestDetail:
    try:
        request = await engine.set_escalation_deadline(
            request_id, action.step_id, action.deadline
        )
    except WorkflowError as e:
        raise to_http_exception(e) from e
    return _detail(request)
