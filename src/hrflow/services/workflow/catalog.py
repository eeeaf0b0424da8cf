"""Flow catalog: registry of approval flow definitions.

Features:
- CRUD and duplication of flow definitions
- At most one default flow per category
- Mode-specific validation (organization levels vs. custom step templates)
- Catalog statistics
"""

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable
from uuid import uuid4

from hrflow.core.config import get_settings
from hrflow.services.workflow.errors import FlowNotFoundError, ValidationError
from hrflow.services.workflow.schemas import (
    ApprovalFlowCreate,
    ApprovalFlowDefinition,
    ApprovalFlowUpdate,
    FlowMode,
    FlowStats,
    RequestCategory,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_flow_id() -> str:
    return f"FLOW-{uuid4().hex[:10].upper()}"


class FlowCatalog:
    """In-memory registry of approval flows.

    Readers (selector, resolver) get deep copies, so edits never leak into
    routes that were already resolved.
    """

    def __init__(
        self,
        flows: Iterable[ApprovalFlowDefinition] | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_flow_id,
    ):
        """Initialize the catalog.

        @param flows - Flows to preload (validated, default uniqueness enforced)
        @param clock - Source of timestamps
        @param id_factory - Generator for new flow IDs
        """
        self._flows: dict[str, ApprovalFlowDefinition] = {}
        self._clock = clock
        self._id_factory = id_factory
        for flow in flows or []:
            self.register(flow)

    def register(self, flow: ApprovalFlowDefinition) -> ApprovalFlowDefinition:
        """Add a fully formed flow, keeping its ID and timestamps.

        @param flow - Flow definition
        @returns Stored copy
        """
        flow = self._normalize(flow.model_copy(deep=True))
        if flow.is_default:
            self._clear_default(flow.category, keep_id=flow.id)
        self._flows[flow.id] = flow
        return flow.model_copy(deep=True)

    def create_flow(self, data: ApprovalFlowCreate) -> ApprovalFlowDefinition:
        """Create a new flow definition.

        @param data - Flow fields
        @returns Created flow
        @throws ValidationError - Mode-specific fields missing or inconsistent
        """
        now = self._clock()
        flow = ApprovalFlowDefinition(
            id=self._id_factory(),
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        stored = self.register(flow)
        logger.info(
            f"Created flow {stored.id} '{stored.name}' "
            f"({stored.category.value}, {stored.mode.value}, priority={stored.priority})"
        )
        return stored

    def update_flow(
        self, flow_id: str, changes: ApprovalFlowUpdate
    ) -> ApprovalFlowDefinition:
        """Apply a partial update.

        @param flow_id - Flow to update
        @param changes - Fields to change (unset fields are left alone)
        @returns Updated flow
        @throws FlowNotFoundError - Unknown flow
        """
        current = self._flows.get(flow_id)
        if current is None:
            raise FlowNotFoundError(flow_id)

        merged = current.model_dump()
        merged.update(changes.model_dump(exclude_unset=True))
        merged["updated_at"] = self._clock()
        updated = self._normalize(ApprovalFlowDefinition.model_validate(merged))

        if updated.is_default:
            self._clear_default(updated.category, keep_id=updated.id)
        self._flows[flow_id] = updated

        logger.info(f"Updated flow {flow_id}")
        return updated.model_copy(deep=True)

    def delete_flow(self, flow_id: str) -> bool:
        """Remove a flow. Requests created from it keep their snapshotted steps.

        @param flow_id - Flow to delete
        @returns True if the flow existed
        """
        removed = self._flows.pop(flow_id, None) is not None
        if removed:
            logger.info(f"Deleted flow {flow_id}")
        return removed

    def duplicate_flow(self, flow_id: str) -> ApprovalFlowDefinition:
        """Copy a flow under a new ID. The copy is never the default.

        @param flow_id - Flow to copy
        @returns The new flow
        @throws FlowNotFoundError - Unknown flow
        """
        source = self._flows.get(flow_id)
        if source is None:
            raise FlowNotFoundError(flow_id)

        now = self._clock()
        copy = source.model_copy(
            update={
                "id": self._id_factory(),
                "name": f"{source.name} (copy)",
                "is_default": False,
                "created_at": now,
                "updated_at": now,
            },
            deep=True,
        )
        self._flows[copy.id] = copy
        logger.info(f"Duplicated flow {flow_id} as {copy.id}")
        return copy.model_copy(deep=True)

    def get_flow(self, flow_id: str) -> ApprovalFlowDefinition | None:
        flow = self._flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    def list_flows(self) -> list[ApprovalFlowDefinition]:
        return [f.model_copy(deep=True) for f in self._flows.values()]

    def get_flows_by_category(
        self, category: RequestCategory
    ) -> list[ApprovalFlowDefinition]:
        return [
            f.model_copy(deep=True)
            for f in self._flows.values()
            if f.category == category
        ]

    def get_active_flows(self) -> list[ApprovalFlowDefinition]:
        return [f.model_copy(deep=True) for f in self._flows.values() if f.is_active]

    def get_default_flow(
        self, category: RequestCategory
    ) -> ApprovalFlowDefinition | None:
        """Get the active default flow of a category, if any."""
        for flow in self._flows.values():
            if flow.category == category and flow.is_default and flow.is_active:
                return flow.model_copy(deep=True)
        return None

    def get_stats(self) -> FlowStats:
        flows = list(self._flows.values())
        by_category: dict[str, int] = defaultdict(int)
        for flow in flows:
            by_category[flow.category.value] += 1

        active = sum(1 for f in flows if f.is_active)
        organization = sum(1 for f in flows if f.mode == FlowMode.ORGANIZATION)
        return FlowStats(
            total=len(flows),
            organization=organization,
            custom=len(flows) - organization,
            active=active,
            inactive=len(flows) - active,
            by_category=dict(by_category),
        )

    def _clear_default(self, category: RequestCategory, keep_id: str) -> None:
        for flow_id, flow in self._flows.items():
            if flow_id != keep_id and flow.category == category and flow.is_default:
                self._flows[flow_id] = flow.model_copy(update={"is_default": False})
                logger.info(
                    f"Flow {flow_id} is no longer the default for {category.value}"
                )

    def _normalize(self, flow: ApprovalFlowDefinition) -> ApprovalFlowDefinition:
        """Validate mode-specific fields and order custom templates."""
        if flow.mode == FlowMode.ORGANIZATION:
            if flow.organization_levels is None:
                flow.organization_levels = 1
            flow.step_templates = []
            return flow

        if not flow.step_templates:
            raise ValidationError(
                f"Custom flow '{flow.name}' needs at least one step template"
            )
        numbers = [t.step_number for t in flow.step_templates]
        if len(set(numbers)) != len(numbers):
            raise ValidationError(
                f"Custom flow '{flow.name}' has duplicate step numbers: {numbers}"
            )
        flow.step_templates = sorted(flow.step_templates, key=lambda t: t.step_number)
        flow.organization_levels = None
        return flow


def load_flows(path: str | Path) -> list[ApprovalFlowCreate]:
    """Read flow definitions from a JSON file holding a list of flows.

    @param path - Flows file
    @returns Parsed flow inputs; empty when the file does not exist
    @throws ValueError - File is not a list of valid flows
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Approval flows file not found: {path}")
        return []

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Approval flows file {path} must hold a JSON list")
    return [ApprovalFlowCreate.model_validate(item) for item in data]


# Singleton instance
_catalog: FlowCatalog | None = None


def get_flow_catalog() -> FlowCatalog:
    """Get singleton flow catalog, seeded from `approval_flows_file`."""
    global _catalog
    if _catalog is None:
        catalog = FlowCatalog()
        path = get_settings().approval_flows_file
        for data in load_flows(path) if path else []:
            catalog.create_flow(data)
        _catalog = catalog
    return _catalog


def reset_flow_catalog() -> None:
    """Reset the singleton (for testing)."""
    global _catalog
    _catalog = None
