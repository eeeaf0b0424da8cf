"""Shared API dependencies and error mapping."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from hrflow.services.workflow.engine import WorkflowEngine, get_workflow_engine
from hrflow.services.workflow.errors import (
    ConcurrencyConflict,
    FlowNotFoundError,
    PersistenceFailure,
    RequestNotFoundError,
    ResolutionDegraded,
    StepNotFoundError,
    WorkflowError,
)


def get_current_user_id(
    x_user_id: Annotated[str | None, Header(description="Acting user ID")] = None,
) -> str:
    """Acting user from the X-User-Id header.

    Authentication happens upstream; the gateway forwards the user ID.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id header is required",
        )
    return x_user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
Engine = Annotated[WorkflowEngine, Depends(get_workflow_engine)]


def to_http_exception(error: WorkflowError) -> HTTPException:
    """Map an engine error to an HTTP error response."""
    if isinstance(error, (RequestNotFoundError, StepNotFoundError, FlowNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ConcurrencyConflict):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, PersistenceFailure):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(error, ResolutionDegraded):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))
