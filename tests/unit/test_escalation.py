"""Tests for deadline escalation."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hrflow.core.config import Settings
from hrflow.services.notification import NotificationKind
from hrflow.services.workflow import InMemoryRequestStore, PersistenceFailure, ValidationError
from hrflow.services.workflow.engine import WorkflowEngine, next_escalation_role
from hrflow.services.workflow.schemas import (
    ApprovalFlowCreate,
    ApprovalStepInput,
    ApproverRef,
    ApproverRole,
    EscalationSettings,
    FlowMode,
    RequestCategory,
    StepStatus,
    StepTemplate,
    WorkflowStatus,
)
from hrflow.tasks.workflow_tasks import check_escalations


class SelectiveFailingStore(InMemoryRequestStore):
    """Store that refuses writes for selected requests."""

    def __init__(self):
        super().__init__()
        self.failing_ids: set[str] = set()

    async def update_request(self, request_id, patch, expected_version=None):
        if request_id in self.failing_ids:
            raise PersistenceFailure(f"write to {request_id} refused")
        return await super().update_request(request_id, patch, expected_version)


async def submitted(engine, data):
    request = await engine.create_request(data)
    return await engine.submit(request.id)


class TestNextEscalationRole:
    """Tests for walking the escalation path."""

    PATH = [
        ApproverRole.DIRECT_MANAGER,
        ApproverRole.DEPARTMENT_HEAD,
        ApproverRole.GENERAL_MANAGER,
    ]

    def test_next_role(self):
        assert next_escalation_role(ApproverRole.DIRECT_MANAGER, self.PATH) == (
            ApproverRole.DEPARTMENT_HEAD
        )

    def test_last_role_has_no_successor(self):
        assert next_escalation_role(ApproverRole.GENERAL_MANAGER, self.PATH) is None

    def test_role_off_path_goes_to_start(self):
        assert next_escalation_role(ApproverRole.HR_MANAGER, self.PATH) == (
            ApproverRole.DIRECT_MANAGER
        )
        assert next_escalation_role(None, self.PATH) == ApproverRole.DIRECT_MANAGER

    def test_empty_path(self):
        assert next_escalation_role(ApproverRole.DIRECT_MANAGER, []) is None


class TestCheckAndEscalate:
    """Tests for the escalation sweep."""

    @pytest.mark.asyncio
    async def test_deadline_boundary(self, engine, leave_data, clock, notifier):
        """Test a step escalates exactly when its deadline is reached."""
        start = clock.now
        request = await submitted(engine, leave_data())

        assert await engine.check_and_escalate(start + timedelta(hours=47)) == []
        assert await engine.check_and_escalate(start + timedelta(hours=48)) == [request.id]

        escalated = await engine.get_request(request.id)
        assert escalated.status == WorkflowStatus.ESCALATED
        assert escalated.escalation.last_escalated_at == start + timedelta(hours=48)
        assert escalated.timeline[-1].action == "escalated"
        assert escalated.timeline[-1].user_id == "system"
        assert "department_head" in escalated.timeline[-1].comments
        # Approvers are not reassigned
        assert escalated.approval_steps[0].approver_id == "mgr"

        alert = notifier.get_outbox(recipient_user_id="role:department_head")
        assert len(alert) == 1
        assert alert[0].kind == NotificationKind.ESCALATED

    @pytest.mark.asyncio
    async def test_sweep_does_not_repeat(self, engine, leave_data, clock):
        request = await submitted(engine, leave_data())
        later = clock.now + timedelta(days=5)

        await engine.check_and_escalate(later)
        assert await engine.check_and_escalate(later + timedelta(hours=1)) == []

        stored = await engine.get_request(request.id)
        assert [e.action for e in stored.timeline].count("escalated") == 1

    @pytest.mark.asyncio
    async def test_optional_approval_keeps_escalation(
        self, engine, leave_data, clock, notifier
    ):
        """Test approving an optional step leaves the overdue required step escalated."""
        engine.catalog.create_flow(
            ApprovalFlowCreate(
                name="Business trip",
                category=RequestCategory.BUSINESS_TRIP,
                mode=FlowMode.CUSTOM,
                is_default=True,
                step_templates=[
                    StepTemplate(
                        step_number=1,
                        name="Manager review",
                        approvers=[ApproverRef(id="mgr", name="Mark Reyes")],
                        approver_role=ApproverRole.DIRECT_MANAGER,
                    ),
                    StepTemplate(
                        step_number=2,
                        name="HR review",
                        approvers=[ApproverRef(id="hr1", name="Ivy Park")],
                        approver_role=ApproverRole.HR_MANAGER,
                        is_optional=True,
                    ),
                ],
            )
        )
        request = await submitted(
            engine, leave_data(category=RequestCategory.BUSINESS_TRIP, title="Client visit")
        )
        later = clock.now + timedelta(days=5)
        assert await engine.check_and_escalate(later) == [request.id]

        request = await engine.approve(request.id, "WF-0001-S2", actor_id="hr1")

        assert request.approval_steps[1].status == StepStatus.APPROVED
        assert request.status == WorkflowStatus.ESCALATED
        assert engine.get_active_step(request).id == "WF-0001-S1"

        assert await engine.check_and_escalate(later + timedelta(hours=1)) == []
        stored = await engine.get_request(request.id)
        assert [e.action for e in stored.timeline].count("escalated") == 1
        assert len(notifier.get_outbox(recipient_user_id="role:department_head")) == 1

        request = await engine.approve(request.id, "WF-0001-S1", actor_id="mgr")
        assert request.status == WorkflowStatus.APPROVED

    @pytest.mark.asyncio
    async def test_escalated_request_can_still_be_approved(self, engine, leave_data, clock):
        request = await submitted(engine, leave_data())
        await engine.check_and_escalate(clock.now + timedelta(hours=48))
        clock.advance(hours=50)

        request = await engine.approve(request.id, "WF-0001-S1", actor_id="mgr")

        assert request.status == WorkflowStatus.PARTIALLY_APPROVED
        deadline = request.approval_steps[1].escalation_deadline
        assert deadline == clock.now + timedelta(hours=48)
        assert await engine.check_and_escalate(deadline) == [request.id]
        escalated = await engine.get_request(request.id)
        assert "general_manager" in escalated.timeline[-1].comments

    @pytest.mark.asyncio
    async def test_last_role_on_path_never_escalates(self, engine, leave_data, clock):
        await submitted(
            engine,
            leave_data(
                escalation=EscalationSettings(escalation_path=[ApproverRole.DIRECT_MANAGER])
            ),
        )

        assert await engine.check_and_escalate(clock.now + timedelta(days=30)) == []

    @pytest.mark.asyncio
    async def test_role_off_path_escalates_to_first_role(
        self, engine, leave_data, clock, notifier
    ):
        await submitted(
            engine,
            leave_data(
                escalation=EscalationSettings(
                    escalation_path=[ApproverRole.HR_MANAGER, ApproverRole.CEO]
                )
            ),
        )

        await engine.check_and_escalate(clock.now + timedelta(days=3))

        assert len(notifier.get_outbox(recipient_user_id="role:hr_manager")) == 1

    @pytest.mark.asyncio
    async def test_disabled_escalation(self, engine, leave_data, clock):
        request = await submitted(
            engine, leave_data(escalation=EscalationSettings(enabled=False))
        )

        assert request.approval_steps[0].escalation_deadline is None
        assert await engine.check_and_escalate(clock.now + timedelta(days=30)) == []

    @pytest.mark.asyncio
    async def test_manual_step_uses_category_days(self, engine, leave_data, clock):
        """Test expense claims escalate after five days when steps set no timeout."""
        request = await submitted(
            engine,
            leave_data(
                category=RequestCategory.EXPENSE_CLAIM,
                approval_steps=[
                    ApprovalStepInput(
                        name="Finance review",
                        approver_id="fin",
                        approver_name="Farah Nasser",
                        approver_role=ApproverRole.FINANCE_MANAGER,
                    )
                ],
            ),
        )

        assert request.approval_steps[0].escalation_deadline == clock.now + timedelta(days=5)

    @pytest.mark.asyncio
    async def test_set_escalation_deadline(self, engine, leave_data, clock):
        request = await submitted(engine, leave_data())
        soon = clock.now + timedelta(hours=1)

        request = await engine.set_escalation_deadline(request.id, "WF-0001-S1", soon)

        assert request.approval_steps[0].escalation_deadline == soon
        assert await engine.check_and_escalate(soon) == [request.id]

    @pytest.mark.asyncio
    async def test_set_deadline_on_decided_step(self, engine, leave_data, clock):
        request = await submitted(engine, leave_data())
        await engine.approve(request.id, "WF-0001-S1", actor_id="mgr")

        with pytest.raises(ValidationError, match="approved"):
            await engine.set_escalation_deadline(request.id, "WF-0001-S1", clock.now)

    @pytest.mark.asyncio
    async def test_failure_on_one_request_does_not_stop_sweep(
        self, catalog, org_directory, notifier, audit, settings, clock, leave_data
    ):
        store = SelectiveFailingStore()
        engine = WorkflowEngine(
            store=store,
            catalog=catalog,
            directory=org_directory,
            notifier=notifier,
            audit=audit,
            settings=settings,
            clock=clock,
        )
        first = await submitted(engine, leave_data(title="First"))
        second = await submitted(engine, leave_data(title="Second"))
        store.failing_ids.add(first.id)

        escalated = await engine.check_and_escalate(clock.now + timedelta(days=3))

        assert escalated == [second.id]
        assert (await store.get_request(first.id)).status == WorkflowStatus.PENDING


class TestCheckEscalationsTask:
    """Tests for the periodic Celery task."""

    @pytest.fixture
    def database_backend(self):
        settings = Settings(environment="testing", workflow_store_backend="database")
        with patch("hrflow.tasks.workflow_tasks.get_settings", return_value=settings):
            yield settings

    def test_task_runs_sweep(self, database_backend):
        engine = MagicMock()
        engine.check_and_escalate = AsyncMock(return_value=["WF-0001", "WF-0002"])

        with patch(
            "hrflow.tasks.workflow_tasks.get_workflow_engine", return_value=engine
        ):
            result = check_escalations(now="2026-03-04T09:00:00+00:00")

        assert result == {"escalated": ["WF-0001", "WF-0002"], "count": 2}
        sweep_time = engine.check_and_escalate.await_args.args[0]
        assert sweep_time.isoformat() == "2026-03-04T09:00:00+00:00"

    def test_task_defaults_to_current_time(self, database_backend):
        engine = MagicMock()
        engine.check_and_escalate = AsyncMock(return_value=[])

        with patch(
            "hrflow.tasks.workflow_tasks.get_workflow_engine", return_value=engine
        ):
            result = check_escalations()

        assert result == {"escalated": [], "count": 0}
        engine.check_and_escalate.assert_awaited_once_with(None)

    def test_runs_share_one_event_loop(self, database_backend):
        loops = []

        async def sweep(now):
            loops.append(asyncio.get_running_loop())
            return []

        engine = MagicMock()
        engine.check_and_escalate = AsyncMock(side_effect=sweep)

        with patch(
            "hrflow.tasks.workflow_tasks.get_workflow_engine", return_value=engine
        ):
            check_escalations()
            check_escalations()

        assert len(loops) == 2
        assert loops[0] is loops[1]
        assert not loops[0].is_closed()

    def test_memory_backend_skips_sweep(self):
        engine = MagicMock()
        engine.check_and_escalate = AsyncMock(return_value=["WF-0001"])
        settings = Settings(environment="testing", workflow_store_backend="memory")

        with patch(
            "hrflow.tasks.workflow_tasks.get_settings", return_value=settings
        ), patch(
            "hrflow.tasks.workflow_tasks.get_workflow_engine", return_value=engine
        ):
            result = check_escalations()

        assert result == {"escalated": [], "count": 0, "skipped": True}
        engine.check_and_escalate.assert_not_awaited()
