"""Async engine and session factory backing SqlRequestStore.

Imported only when `workflow_store_backend` is "database". The engine
connects on first use.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from hrflow.core.config import get_settings


def create_async_db_engine() -> AsyncEngine:
    """Engine for the request store; each store call holds one connection briefly."""
    settings = get_settings()
    return create_async_engine(
        settings.database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        echo=settings.debug,
    )


async_engine = create_async_db_engine()

# Rows are converted to pydantic models before the session closes
AsyncSessionLocal = sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)
