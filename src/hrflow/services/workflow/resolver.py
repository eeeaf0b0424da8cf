"""Route resolution: expand a flow into concrete approval steps.

Organization mode walks the requester's reporting chain one hop per level
and stops at the top of the hierarchy. Custom mode copies the flow's step
templates with defaults applied.
"""

import logging

from hrflow.services.workflow.directory import OrganizationDirectory
from hrflow.services.workflow.errors import ResolutionDegraded
from hrflow.services.workflow.schemas import (
    ApprovalFlowDefinition,
    ApproverRef,
    ApproverRole,
    FlowMode,
    ResolvedApprovalRoute,
    ResolvedStep,
    StepMode,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_HOURS = 48

# Role recorded on organization-mode steps, by hop distance
HOP_ROLES = {
    1: ApproverRole.DIRECT_MANAGER,
    2: ApproverRole.DEPARTMENT_HEAD,
}
TOP_HOP_ROLE = ApproverRole.GENERAL_MANAGER


def role_for_hop(hop: int) -> ApproverRole:
    """Approver role for the manager N hops above the requester."""
    return HOP_ROLES.get(hop, TOP_HOP_ROLE)


def step_name_for_hop(hop: int) -> str:
    if hop == 1:
        return "Direct manager approval"
    return f"{hop}-levels-up approval"


class RouteResolver:
    """Turns a selected flow into a ResolvedApprovalRoute."""

    def __init__(
        self,
        directory: OrganizationDirectory | None = None,
        default_timeout_hours: int = DEFAULT_TIMEOUT_HOURS,
    ):
        """Initialize resolver.

        @param directory - Organization directory used for hierarchy walks
        @param default_timeout_hours - Timeout applied where a step sets none
        """
        self._directory = directory
        self._default_timeout_hours = default_timeout_hours

    def resolve_route(
        self,
        flow: ApprovalFlowDefinition,
        requester_id: str,
        directory: OrganizationDirectory | None = None,
        *,
        strict: bool = False,
    ) -> ResolvedApprovalRoute:
        """Resolve a flow for one requester.

        Output is deterministic for identical inputs. Steps are numbered
        from 1 in route order.

        @param flow - Selected flow
        @param requester_id - Requester member ID
        @param directory - Overrides the injected directory for this call
        @param strict - Raise instead of returning a degraded route
        @returns Resolved route (possibly degraded)
        @throws ResolutionDegraded - strict is set and the route is degraded
        """
        if flow.mode == FlowMode.CUSTOM:
            route = self._resolve_custom(flow)
        else:
            route = self._resolve_organization(
                flow, requester_id, directory or self._directory
            )

        if route.degraded:
            logger.warning(
                f"Degraded route for flow {flow.id}, requester {requester_id}: "
                f"{route.degradation_reason}"
            )
            if strict:
                raise ResolutionDegraded(route.degradation_reason or "degraded", route)
        return route

    def _resolve_custom(self, flow: ApprovalFlowDefinition) -> ResolvedApprovalRoute:
        steps = []
        for template in flow.step_templates:
            role = template.approver_role
            if role is None and template.approvers:
                role = template.approvers[0].role
            steps.append(
                ResolvedStep(
                    step_number=template.step_number,
                    name=template.name,
                    mode=template.mode,
                    approvers=[a.model_copy() for a in template.approvers],
                    approver_role=role,
                    required_approvals=template.required_approvals or 1,
                    timeout_hours=template.timeout_hours or self._default_timeout_hours,
                    allow_delegate=bool(template.allow_delegate),
                    allow_skip=bool(template.allow_skip),
                    is_optional=template.is_optional,
                )
            )

        unassigned = [s.name for s in steps if not s.approvers and not s.is_optional]
        return ResolvedApprovalRoute(
            flow_id=flow.id,
            flow_name=flow.name,
            steps=steps,
            degraded=bool(unassigned),
            degradation_reason=(
                f"Steps without approvers: {', '.join(unassigned)}" if unassigned else None
            ),
        )

    def _resolve_organization(
        self,
        flow: ApprovalFlowDefinition,
        requester_id: str,
        directory: OrganizationDirectory | None,
    ) -> ResolvedApprovalRoute:
        levels = flow.organization_levels or 1

        if directory is None or directory.is_empty():
            return self._placeholder_route(flow, levels, "Organization directory is empty")
        requester = directory.find_member_by_id(requester_id)
        if requester is None:
            return self._placeholder_route(
                flow, levels, f"Requester {requester_id} not found in directory"
            )

        steps: list[ResolvedStep] = []
        visited = {requester.id}
        reason = None
        current = requester
        for hop in range(1, levels + 1):
            manager = directory.get_manager_of(current.id)
            if manager is None:
                # Top of the hierarchy: stop early, no padding
                reason = f"Hierarchy exhausted after {hop - 1} of {levels} levels"
                break
            if manager.id in visited:
                reason = f"Reporting cycle detected at member {manager.id}"
                break
            visited.add(manager.id)

            role = role_for_hop(hop)
            steps.append(
                ResolvedStep(
                    step_number=hop,
                    name=step_name_for_hop(hop),
                    mode=StepMode.SERIAL,
                    approvers=[
                        ApproverRef(
                            id=manager.id,
                            name=manager.name,
                            role=role,
                            email=manager.email,
                        )
                    ],
                    approver_role=role,
                    timeout_hours=self._default_timeout_hours,
                    allow_delegate=True,
                )
            )
            current = manager

        return ResolvedApprovalRoute(
            flow_id=flow.id,
            flow_name=flow.name,
            steps=steps,
            degraded=reason is not None,
            degradation_reason=reason,
        )

    def _placeholder_route(
        self, flow: ApprovalFlowDefinition, levels: int, reason: str
    ) -> ResolvedApprovalRoute:
        """Level-labelled steps without approvers; they must be assigned before use."""
        steps = [
            ResolvedStep(
                step_number=level,
                name=f"Level {level} approval",
                approvers=[],
                approver_role=role_for_hop(level),
                timeout_hours=self._default_timeout_hours,
                allow_delegate=True,
            )
            for level in range(1, levels + 1)
        ]
        return ResolvedApprovalRoute(
            flow_id=flow.id,
            flow_name=flow.name,
            steps=steps,
            degraded=True,
            degradation_reason=reason,
        )
