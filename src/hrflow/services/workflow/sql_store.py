"""PostgreSQL-backed request store."""

import logging
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hrflow.repositories.workflow import (
    DelegateSettingRepository,
    WorkflowRequestRepository,
)
from hrflow.services.workflow.errors import ConcurrencyConflict, PersistenceFailure
from hrflow.services.workflow.schemas import (
    DelegateSetting,
    RequestFilters,
    WorkflowRequest,
)
from hrflow.services.workflow.store import RequestStore, matches_filters

logger = logging.getLogger(__name__)


class SqlRequestStore(RequestStore):
    """PostgreSQL-backed store. One session and transaction per call."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        """Initialize store.

        @param session_factory - Factory for async sessions (e.g. AsyncSessionLocal)
        """
        self._session_factory = session_factory

    async def create_request(self, request: WorkflowRequest) -> WorkflowRequest:
        async with self._session_factory() as session:
            try:
                repo = WorkflowRequestRepository(session)
                await repo.create(repo.to_row(request))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Insert of request {request.id} failed: {e}")
                raise PersistenceFailure(f"Failed to create request {request.id}: {e}") from e
        return request

    async def get_request(self, request_id: str) -> WorkflowRequest | None:
        async with self._session_factory() as session:
            try:
                record = await WorkflowRequestRepository(session).get_by_id(request_id)
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"Failed to load request {request_id}: {e}") from e
            return WorkflowRequestRepository.to_domain(record) if record else None

    async def fetch_requests(
        self, filters: RequestFilters | None = None
    ) -> list[WorkflowRequest]:
        filters = filters or RequestFilters()
        async with self._session_factory() as session:
            try:
                records = await WorkflowRequestRepository(session).search(
                    status=filters.status.value if filters.status else None,
                    statuses=[s.value for s in filters.statuses or []],
                    category=filters.category.value if filters.category else None,
                    requester_id=filters.requester_id,
                )
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"Failed to fetch requests: {e}") from e
            requests = [WorkflowRequestRepository.to_domain(r) for r in records]
        # Step approvers live in a JSON column; filter them here
        return [r for r in requests if matches_filters(r, filters)]

    async def update_request(
        self,
        request_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> WorkflowRequest:
        async with self._session_factory() as session:
            try:
                repo = WorkflowRequestRepository(session)
                record = await repo.get_by_id(request_id)
                if record is None:
                    raise PersistenceFailure(f"Request {request_id} is not in the store")
                current = repo.to_domain(record)
                if expected_version is not None and current.version != expected_version:
                    raise ConcurrencyConflict(request_id, expected_version, current.version)

                updated = WorkflowRequest.model_validate(
                    {**current.model_dump(), **patch, "version": current.version + 1}
                )
                row = repo.to_row(updated)
                values = {key: row[key] for key in [*patch.keys(), "version"] if key in row}
                written = await repo.update_versioned(request_id, values, current.version)
                if not written:
                    # Another writer committed between our read and write
                    latest = await repo.get_by_id(request_id)
                    actual = latest.version if latest else current.version
                    raise ConcurrencyConflict(request_id, current.version, actual)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Update of request {request_id} failed: {e}")
                raise PersistenceFailure(f"Failed to update request {request_id}: {e}") from e
        return updated

    async def list_delegate_settings(self) -> list[DelegateSetting]:
        async with self._session_factory() as session:
            try:
                records = await DelegateSettingRepository(session).get_all(limit=10_000)
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"Failed to load delegate settings: {e}") from e
            return [DelegateSetting.model_validate(r, from_attributes=True) for r in records]

    async def save_delegate_setting(self, setting: DelegateSetting) -> DelegateSetting:
        async with self._session_factory() as session:
            try:
                await DelegateSettingRepository(session).upsert(setting.model_dump())
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceFailure(
                    f"Failed to save delegate setting for {setting.user_id}: {e}"
                ) from e
        return setting

    async def delete_delegate_setting(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                removed = await DelegateSettingRepository(session).delete(user_id)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceFailure(
                    f"Failed to delete delegate setting for {user_id}: {e}"
                ) from e
        return removed
