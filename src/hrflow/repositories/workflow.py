"""Workflow request and delegate setting repositories."""

from typing import Any, Sequence

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert

from hrflow.models.workflow import DelegateSettingRecord, WorkflowRequestRecord
from hrflow.repositories.base import BaseRepository
from hrflow.services.workflow.schemas import WorkflowRequest

# Columns holding pydantic sub-documents, written in JSON mode
JSON_COLUMNS = frozenset(
    {"details", "attachments", "approval_steps", "timeline", "escalation"}
)


class WorkflowRequestRepository(BaseRepository[WorkflowRequestRecord]):
    """Repository for workflow requests.

    Adds:
    - Domain <-> row conversion
    - Multi-status search
    - Version-guarded updates
    """

    model = WorkflowRequestRecord

    @staticmethod
    def to_row(request: WorkflowRequest) -> dict[str, Any]:
        """Convert a domain request to column values.

        @param request - Domain request
        @returns Column name to value
        """
        python_values = request.model_dump()
        json_values = request.model_dump(mode="json", include=set(JSON_COLUMNS))
        row = {}
        for column in WorkflowRequestRecord.__table__.columns.keys():
            if column in JSON_COLUMNS:
                row[column] = json_values.get(column)
            elif column in python_values:
                value = python_values[column]
                row[column] = value.value if hasattr(value, "value") else value
        return row

    @staticmethod
    def to_domain(record: WorkflowRequestRecord) -> WorkflowRequest:
        """Convert a row to a domain request."""
        return WorkflowRequest.model_validate(record, from_attributes=True)

    async def search(
        self,
        *,
        status: str | None = None,
        statuses: list[str] | None = None,
        category: str | None = None,
        requester_id: str | None = None,
    ) -> Sequence[WorkflowRequestRecord]:
        """Find requests, oldest first.

        @param status - Exact status
        @param statuses - Any of these statuses
        @param category - Request category
        @param requester_id - Requester member ID
        @returns Matching records
        """
        stmt = self._apply_filters(
            self._build_query(),
            {"status": status, "category": category, "requester_id": requester_id},
        )
        if statuses:
            stmt = stmt.where(WorkflowRequestRecord.status.in_(statuses))
        stmt = stmt.order_by(WorkflowRequestRecord.created_at.asc())
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def update_versioned(
        self, request_id: str, values: dict[str, Any], expected_version: int
    ) -> bool:
        """Update a row only if its version still matches.

        @param request_id - Request ID
        @param values - Column values (must include the new version)
        @param expected_version - Version read by the caller
        @returns False when no row matched (concurrent writer or missing row)
        """
        stmt = (
            update(WorkflowRequestRecord)
            .where(WorkflowRequestRecord.id == request_id)
            .where(WorkflowRequestRecord.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount == 1


class DelegateSettingRepository(BaseRepository[DelegateSettingRecord]):
    """Repository for delegate settings (one per user)."""

    model = DelegateSettingRecord

    async def upsert(self, values: dict[str, Any]) -> None:
        """Insert or replace the setting keyed by user_id.

        @param values - Column values including user_id
        """
        stmt = insert(DelegateSettingRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DelegateSettingRecord.user_id],
            set_={k: v for k, v in values.items() if k != "user_id"},
        )
        await self.session.execute(stmt)
        await self.session.flush()
