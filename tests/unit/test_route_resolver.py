"""Tests for route resolution."""

from datetime import datetime, timezone

import pytest

from hrflow.services.workflow import (
    InMemoryOrganizationDirectory,
    ResolutionDegraded,
    RouteResolver,
)
from hrflow.services.workflow.schemas import (
    ApprovalFlowDefinition,
    ApproverRef,
    ApproverRole,
    FlowMode,
    Member,
    RequestCategory,
    StepTemplate,
)

NOW = datetime(2026, 3, 2, tzinfo=timezone.utc)


def make_flow(**kwargs) -> ApprovalFlowDefinition:
    fields = {
        "id": "FLOW-1",
        "name": "Test flow",
        "category": RequestCategory.LEAVE_REQUEST,
        "mode": FlowMode.ORGANIZATION,
        "organization_levels": 2,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(kwargs)
    return ApprovalFlowDefinition(**fields)


class TestOrganizationMode:
    """Tests for walking the reporting chain."""

    def test_walks_requested_levels(self, org_directory):
        route = RouteResolver(org_directory).resolve_route(make_flow(), "emp")

        assert route.flow_id == "FLOW-1"
        assert route.degraded is False
        assert [s.step_number for s in route.steps] == [1, 2]
        assert [s.approvers[0].id for s in route.steps] == ["mgr", "head"]
        assert route.steps[0].name == "Direct manager approval"
        assert route.steps[0].approver_role == ApproverRole.DIRECT_MANAGER
        assert route.steps[1].approver_role == ApproverRole.DEPARTMENT_HEAD
        assert all(s.allow_delegate for s in route.steps)
        assert all(s.timeout_hours == 48 for s in route.steps)

    def test_hops_beyond_two_use_general_manager_role(self, org_directory):
        route = RouteResolver(org_directory).resolve_route(
            make_flow(organization_levels=4), "emp"
        )

        assert [s.approvers[0].id for s in route.steps] == ["mgr", "head", "gm", "ceo"]
        assert route.steps[3].approver_role == ApproverRole.GENERAL_MANAGER
        assert route.steps[3].name == "4-levels-up approval"

    def test_stops_at_top_of_hierarchy(self, org_directory):
        route = RouteResolver(org_directory).resolve_route(
            make_flow(organization_levels=3), "gm"
        )

        assert [s.approvers[0].id for s in route.steps] == ["ceo"]
        assert route.degraded is True
        assert route.degradation_reason == "Hierarchy exhausted after 1 of 3 levels"

    def test_unknown_requester_yields_placeholders(self, org_directory):
        route = RouteResolver(org_directory).resolve_route(make_flow(), "ghost")

        assert route.degraded is True
        assert [s.name for s in route.steps] == ["Level 1 approval", "Level 2 approval"]
        assert all(s.approvers == [] for s in route.steps)

    def test_empty_directory(self):
        route = RouteResolver(InMemoryOrganizationDirectory()).resolve_route(
            make_flow(), "emp"
        )

        assert route.degraded is True
        assert route.degradation_reason == "Organization directory is empty"
        assert len(route.steps) == 2

    def test_reporting_cycle_stops_walk(self):
        directory = InMemoryOrganizationDirectory(
            [
                Member(id="a", name="A", manager_id="b"),
                Member(id="b", name="B", manager_id="a"),
            ]
        )

        route = RouteResolver(directory).resolve_route(
            make_flow(organization_levels=3), "a"
        )

        assert [s.approvers[0].id for s in route.steps] == ["b"]
        assert route.degraded is True
        assert "cycle" in route.degradation_reason

    def test_strict_raises_with_route(self, org_directory):
        with pytest.raises(ResolutionDegraded) as exc_info:
            RouteResolver(org_directory).resolve_route(
                make_flow(), "ghost", strict=True
            )

        assert exc_info.value.route.flow_id == "FLOW-1"

    def test_directory_override(self, org_directory):
        other = InMemoryOrganizationDirectory(
            [Member(id="x", name="X", manager_id="y"), Member(id="y", name="Y")]
        )

        route = RouteResolver(org_directory).resolve_route(
            make_flow(organization_levels=1), "x", other
        )

        assert route.steps[0].approvers[0].id == "y"

    def test_resolution_is_deterministic(self, org_directory):
        resolver = RouteResolver(org_directory)
        assert resolver.resolve_route(make_flow(), "emp") == resolver.resolve_route(
            make_flow(), "emp"
        )


class TestCustomMode:
    """Tests for custom step templates."""

    def test_applies_defaults(self):
        flow = make_flow(
            mode=FlowMode.CUSTOM,
            organization_levels=None,
            step_templates=[
                StepTemplate(
                    step_number=1,
                    name="Finance",
                    approvers=[
                        ApproverRef(id="fin", name="Farah", role=ApproverRole.FINANCE_MANAGER)
                    ],
                ),
                StepTemplate(
                    step_number=2,
                    name="Director",
                    approvers=[ApproverRef(id="gm", name="Grace")],
                    approver_role=ApproverRole.GENERAL_MANAGER,
                    timeout_hours=24,
                    allow_delegate=True,
                ),
            ],
        )

        route = RouteResolver(default_timeout_hours=72).resolve_route(flow, "emp")

        first, second = route.steps
        assert route.degraded is False
        assert first.approver_role == ApproverRole.FINANCE_MANAGER
        assert first.timeout_hours == 72
        assert first.required_approvals == 1
        assert first.allow_delegate is False
        assert second.timeout_hours == 24
        assert second.allow_delegate is True

    def test_step_without_approvers_is_degraded(self):
        flow = make_flow(
            mode=FlowMode.CUSTOM,
            organization_levels=None,
            step_templates=[StepTemplate(step_number=1, name="HR")],
        )

        route = RouteResolver().resolve_route(flow, "emp")

        assert route.degraded is True
        assert route.degradation_reason == "Steps without approvers: HR"
