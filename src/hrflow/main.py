"""FastAPI application factory and main entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hrflow import __version__
from hrflow.api.v1 import api_router
from hrflow.core.config import get_settings
from hrflow.core.logging import configure_logging
from hrflow.services.notification import get_notification_service
from hrflow.services.websocket import get_connection_manager
from hrflow.services.workflow.engine import get_workflow_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the seeded engine and wire live updates for the app's lifetime."""
    settings = get_settings()
    configure_logging(settings)
    app.state.settings = settings

    # Loads the configured members and flows; a malformed seed file fails startup
    bus = get_workflow_engine().event_bus
    broadcast = get_connection_manager().broadcast_replication_event
    bus.subscribe_all(broadcast)
    logger.info(
        f"{settings.app_name} started (instance={settings.instance_id}, "
        f"store={settings.workflow_store_backend})"
    )

    yield

    bus.unsubscribe_all(broadcast)
    await get_notification_service().close()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="HR approval workflow engine API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    """Register all application routes."""
    settings = get_settings()
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


app = create_app()
