"""Request store port and an in-memory implementation.

The store is the system of record. Every write carries the version the
caller read; a mismatch raises ConcurrencyConflict and nothing is written.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from hrflow.services.workflow.errors import ConcurrencyConflict, PersistenceFailure
from hrflow.services.workflow.schemas import (
    DelegateSetting,
    RequestFilters,
    WorkflowRequest,
)

logger = logging.getLogger(__name__)


def matches_filters(request: WorkflowRequest, filters: RequestFilters) -> bool:
    """Apply RequestFilters to one request."""
    if filters.status and request.status != filters.status:
        return False
    if filters.statuses and request.status not in filters.statuses:
        return False
    if filters.category and request.category != filters.category:
        return False
    if filters.requester_id and request.requester_id != filters.requester_id:
        return False
    if filters.approver_id and not any(
        step.approver_id == filters.approver_id for step in request.approval_steps
    ):
        return False
    return True


class RequestStore(ABC):
    """Durable storage for workflow requests and delegate settings."""

    @abstractmethod
    async def create_request(self, request: WorkflowRequest) -> WorkflowRequest:
        """Persist a new request.

        @param request - Request to store
        @returns Stored request
        @throws PersistenceFailure - Write failed or ID already exists
        """

    @abstractmethod
    async def get_request(self, request_id: str) -> WorkflowRequest | None:
        """Load one request, or None when unknown."""

    @abstractmethod
    async def fetch_requests(
        self, filters: RequestFilters | None = None
    ) -> list[WorkflowRequest]:
        """Load requests matching all filters, oldest first."""

    @abstractmethod
    async def update_request(
        self,
        request_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> WorkflowRequest:
        """Apply a field patch and bump the version.

        @param request_id - Request to update
        @param patch - Field name to new value
        @param expected_version - Version the caller read; None skips the check
        @returns The stored request after the write
        @throws ConcurrencyConflict - Stored version differs from expected_version
        @throws PersistenceFailure - Write failed or request unknown
        """

    @abstractmethod
    async def list_delegate_settings(self) -> list[DelegateSetting]:
        """All stored delegate settings."""

    @abstractmethod
    async def save_delegate_setting(self, setting: DelegateSetting) -> DelegateSetting:
        """Insert or replace the setting for setting.user_id."""

    @abstractmethod
    async def delete_delegate_setting(self, user_id: str) -> bool:
        """Remove a user's setting; True if one existed."""


class InMemoryRequestStore(RequestStore):
    """Process-local store. Values are copied in and out."""

    def __init__(self):
        self._requests: dict[str, WorkflowRequest] = {}
        self._delegates: dict[str, DelegateSetting] = {}

    async def create_request(self, request: WorkflowRequest) -> WorkflowRequest:
        if request.id in self._requests:
            raise PersistenceFailure(f"Request {request.id} already exists")
        self._requests[request.id] = request.model_copy(deep=True)
        return request.model_copy(deep=True)

    async def get_request(self, request_id: str) -> WorkflowRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def fetch_requests(
        self, filters: RequestFilters | None = None
    ) -> list[WorkflowRequest]:
        filters = filters or RequestFilters()
        results = [r for r in self._requests.values() if matches_filters(r, filters)]
        results.sort(key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in results]

    async def update_request(
        self,
        request_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> WorkflowRequest:
        current = self._requests.get(request_id)
        if current is None:
            raise PersistenceFailure(f"Request {request_id} is not in the store")
        if expected_version is not None and current.version != expected_version:
            logger.warning(
                f"Rejected stale write to {request_id}: "
                f"v{expected_version} != v{current.version}"
            )
            raise ConcurrencyConflict(request_id, expected_version, current.version)

        updated = WorkflowRequest.model_validate(
            {**current.model_dump(), **patch, "version": current.version + 1}
        )
        self._requests[request_id] = updated.model_copy(deep=True)
        return updated

    async def list_delegate_settings(self) -> list[DelegateSetting]:
        return [s.model_copy() for s in self._delegates.values()]

    async def save_delegate_setting(self, setting: DelegateSetting) -> DelegateSetting:
        self._delegates[setting.user_id] = setting.model_copy()
        return setting.model_copy()

    async def delete_delegate_setting(self, user_id: str) -> bool:
        return self._delegates.pop(user_id, None) is not None

