"""Shared async repository.

Repositories flush but never commit; the store that opened the session
owns the transaction.
"""

from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from hrflow.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Keyed access to one table.

    Example:
        repo = WorkflowRequestRepository(session)
        record = await repo.get_by_id("WF-1A2B3C")
    """

    model: type[ModelType]

    def __init__(self, session: AsyncSession) -> None:
        """@param session - Session owned by the caller"""
        self.session = session

    async def get_by_id(self, id: Any) -> ModelType | None:
        """Load a row, bypassing the identity map.

        @param id - Primary key value
        @returns Row or None
        """
        return await self.session.get(self.model, id, populate_existing=True)

    async def get_all(self, *, limit: int = 100) -> Sequence[ModelType]:
        """@returns Up to limit rows, unordered"""
        result = await self.session.execute(self._build_query().limit(limit))
        return result.scalars().all()

    async def create(self, values: dict[str, Any]) -> ModelType:
        """Insert a row.

        @param values - Column values
        @returns The pending row, flushed
        """
        row = self.model(**values)
        self.session.add(row)
        await self.session.flush()
        return row

    async def delete(self, id: Any) -> bool:
        """@returns False when no row has this key"""
        row = await self.get_by_id(id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True

    def _apply_filters(self, stmt: Select, filters: dict[str, Any]) -> Select:
        # None means "any value"
        for column, value in filters.items():
            if value is not None and hasattr(self.model, column):
                stmt = stmt.where(getattr(self.model, column) == value)
        return stmt

    def _build_query(self) -> Select:
        return select(self.model)
