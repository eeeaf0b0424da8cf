"""Database infrastructure module."""

from hrflow.infrastructure.database.session import AsyncSessionLocal, async_engine

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
]
