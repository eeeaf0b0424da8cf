"""Pytest configuration and fixtures."""

from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from hrflow.core.config import Settings
from hrflow.services.audit import AuditLogger, reset_audit_logger
from hrflow.services.notification import NotificationService, reset_notification_service
from hrflow.services.replication import InMemoryEventBus, reset_event_bus
from hrflow.services.websocket import reset_connection_manager
from hrflow.services.workflow import (
    FlowCatalog,
    InMemoryOrganizationDirectory,
    InMemoryRequestStore,
    reset_flow_catalog,
    reset_organization_directory,
)
from hrflow.services.workflow.engine import WorkflowEngine, reset_workflow_engine
from hrflow.services.workflow.schemas import (
    ApprovalFlowCreate,
    FlowMode,
    Member,
    RequestCategory,
    WorkflowRequestCreate,
)

# Monday morning
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class SequentialIds:
    """Predictable IDs: WF-0001, TL-0001, ..."""

    def __init__(self):
        self._counts: dict[str, int] = defaultdict(int)

    def __call__(self, prefix: str) -> str:
        self._counts[prefix] += 1
        return f"{prefix}-{self._counts[prefix]:04d}"


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop module singletons between tests."""
    yield
    reset_workflow_engine()
    reset_flow_catalog()
    reset_organization_directory()
    reset_audit_logger()
    reset_notification_service()
    reset_event_bus()
    reset_connection_manager()


@pytest.fixture
def settings():
    """Create settings instance for testing."""
    return Settings(environment="testing")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def org_directory():
    """ceo <- gm <- head <- mgr <- emp, and fin reporting to gm."""
    return InMemoryOrganizationDirectory(
        [
            Member(id="ceo", name="Chen Wei", roles={"ceo"}),
            Member(id="gm", name="Grace Obi", manager_id="ceo", roles={"general_manager"}),
            Member(
                id="head",
                name="Hana Sato",
                manager_id="gm",
                department="Engineering",
                roles={"department_head"},
            ),
            Member(id="mgr", name="Mark Reyes", manager_id="head", department="Engineering"),
            Member(id="emp", name="Erin Walsh", manager_id="mgr", department="Engineering"),
            Member(
                id="fin",
                name="Farah Nasser",
                manager_id="gm",
                department="Finance",
                roles={"finance_manager"},
            ),
        ]
    )


@pytest.fixture
def catalog(clock):
    """Catalog with a two-level default flow for leave requests."""
    catalog = FlowCatalog(clock=clock)
    catalog.create_flow(
        ApprovalFlowCreate(
            name="Leave approval",
            category=RequestCategory.LEAVE_REQUEST,
            mode=FlowMode.ORGANIZATION,
            organization_levels=2,
            is_default=True,
        )
    )
    return catalog


@pytest.fixture
def store():
    return InMemoryRequestStore()


@pytest.fixture
def notifier():
    return NotificationService()


@pytest.fixture
def audit(clock):
    return AuditLogger(clock=clock)


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def engine(store, catalog, org_directory, notifier, audit, event_bus, settings, clock):
    """Engine wired to in-memory collaborators and a fake clock."""
    return WorkflowEngine(
        store=store,
        catalog=catalog,
        directory=org_directory,
        notifier=notifier,
        audit=audit,
        event_bus=event_bus,
        settings=settings,
        clock=clock,
        id_factory=SequentialIds(),
        origin="node-a",
    )


@pytest.fixture
def leave_data():
    """Factory for leave request payloads from emp."""

    def _make(**overrides) -> WorkflowRequestCreate:
        fields = {
            "category": RequestCategory.LEAVE_REQUEST,
            "title": "Annual leave",
            "requester_id": "emp",
            "requester_name": "Erin Walsh",
            "department": "Engineering",
            "details": {"days": 3},
        }
        fields.update(overrides)
        return WorkflowRequestCreate(**fields)

    return _make


@pytest.fixture
def app():
    """Create FastAPI application for testing."""
    from hrflow.main import create_app

    return create_app()


@pytest.fixture
def client(app):
    """Test client without lifespan (no logging reconfiguration)."""
    return TestClient(app)
