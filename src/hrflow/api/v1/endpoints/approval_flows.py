"""Approval flow catalog API endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from hrflow.api.v1.dependencies import Engine, to_http_exception
from hrflow.core.config import get_settings
from hrflow.services.workflow.errors import WorkflowError
from hrflow.services.workflow.resolver import RouteResolver
from hrflow.services.workflow.schemas import (
    ApprovalFlowCreate,
    ApprovalFlowDefinition,
    ApprovalFlowUpdate,
    FlowSelectionQuery,
    FlowStats,
    RequestCategory,
    ResolvedApprovalRoute,
)
from hrflow.services.workflow.selector import FlowSelector

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/approval-flows", tags=["Approval Flows"])


@router.get("", response_model=list[ApprovalFlowDefinition])
async def list_flows(
    engine: Engine,
    category: RequestCategory | None = Query(None, description="Filter by category"),
    active_only: bool = Query(False, description="Only active flows"),
) -> list[ApprovalFlowDefinition]:
    """List flows, optionally restricted to one category."""
    catalog = engine.catalog
    flows = (
        catalog.get_flows_by_category(category)
        if category is not None
        else catalog.list_flows()
    )
    return [f for f in flows if f.is_active or not active_only]


@router.get("/stats", response_model=FlowStats)
async def get_flow_stats(engine: Engine) -> FlowStats:
    return engine.catalog.get_stats()


@router.post("", response_model=ApprovalFlowDefinition, status_code=status.HTTP_201_CREATED)
async def create_flow(data: ApprovalFlowCreate, engine: Engine) -> ApprovalFlowDefinition:
    """Create a flow. Marking it default clears the previous default of its category."""
    try:
        return engine.catalog.create_flow(data)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.post("/select", response_model=ApprovalFlowDefinition | None)
async def preview_selection(
    query: FlowSelectionQuery, engine: Engine
) -> ApprovalFlowDefinition | None:
    """Flow that a request with these fields would use, or null."""
    return FlowSelector(engine.catalog).select_flow(query.category, query.request_fields)


@router.get("/{flow_id}", response_model=ApprovalFlowDefinition)
async def get_flow(flow_id: str, engine: Engine) -> ApprovalFlowDefinition:
    flow = engine.catalog.get_flow(flow_id)
    if flow is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Approval flow {flow_id} not found",
        )
    return flow


@router.patch("/{flow_id}", response_model=ApprovalFlowDefinition)
async def update_flow(
    flow_id: str, data: ApprovalFlowUpdate, engine: Engine
) -> ApprovalFlowDefinition:
    try:
        return engine.catalog.update_flow(flow_id, data)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.delete("/{flow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flow(flow_id: str, engine: Engine) -> None:
    if not engine.catalog.delete_flow(flow_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Approval flow {flow_id} not found",
        )


@router.post(
    "/{flow_id}/duplicate",
    response_model=ApprovalFlowDefinition,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_flow(flow_id: str, engine: Engine) -> ApprovalFlowDefinition:
    """Copy a flow; the copy is never the category default."""
    try:
        return engine.catalog.duplicate_flow(flow_id)
    except WorkflowError as e:
        raise to_http_exception(e) from e


@router.get("/{flow_id}/resolve", response_model=ResolvedApprovalRoute)
async def preview_route(
    flow_id: str,
    engine: Engine,
    requester_id: str = Query(..., description="Requester to resolve the route for"),
) -> ResolvedApprovalRoute:
    """Resolve the route a requester would get from this flow.

    Degraded routes are returned with `degraded` set rather than as errors.
    """
    flow = engine.catalog.get_flow(flow_id)
    if flow is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Approval flow {flow_id} not found",
        )
    resolver = RouteResolver(engine.directory, get_settings().workflow_step_timeout_hours)
    return resolver.resolve_route(flow, requester_id)
