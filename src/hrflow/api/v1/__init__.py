"""API v1 module."""

from fastapi import APIRouter

from hrflow.api.v1.endpoints import approval_flows, audit, websocket, workflows

api_router = APIRouter()

api_router.include_router(workflows.router)
api_router.include_router(approval_flows.router)
api_router.include_router(audit.router)
api_router.include_router(websocket.router)
