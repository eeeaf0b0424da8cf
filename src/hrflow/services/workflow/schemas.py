"""Schemas for the approval workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RequestCategory(str, Enum):
    """Categories of HR requests that can be routed for approval."""

    LEAVE_REQUEST = "leave_request"
    OVERTIME_REQUEST = "overtime_request"
    EXPENSE_CLAIM = "expense_claim"
    BUSINESS_TRIP = "business_trip"
    PURCHASE_REQUEST = "purchase_request"
    DOCUMENT_APPROVAL = "document_approval"
    SHIFT_CHANGE = "shift_change"
    REMOTE_WORK = "remote_work"


class WorkflowStatus(str, Enum):
    """Aggregate status of a workflow request."""

    DRAFT = "draft"
    PENDING = "pending"
    PARTIALLY_APPROVED = "partially_approved"
    ESCALATED = "escalated"
    RETURNED = "returned"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# No further mutation once reached
TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.APPROVED, WorkflowStatus.REJECTED, WorkflowStatus.CANCELLED}
)

# Statuses in which approvers may act on a step
ACTIONABLE_STATUSES = frozenset(
    {
        WorkflowStatus.PENDING,
        WorkflowStatus.PARTIALLY_APPROVED,
        WorkflowStatus.ESCALATED,
    }
)


class StepStatus(str, Enum):
    """Status of a single approval step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class ApproverRole(str, Enum):
    """Organizational roles that can approve or receive escalations."""

    DIRECT_MANAGER = "direct_manager"
    DEPARTMENT_HEAD = "department_head"
    HR_MANAGER = "hr_manager"
    FINANCE_MANAGER = "finance_manager"
    GENERAL_MANAGER = "general_manager"
    CEO = "ceo"


class StepMode(str, Enum):
    """How approvers within one step are combined."""

    SERIAL = "serial"
    PARALLEL = "parallel"


class FlowMode(str, Enum):
    """How a flow produces its approval route."""

    ORGANIZATION = "organization"  # Walk N levels up the reporting chain
    CUSTOM = "custom"  # Fixed ordered list of step templates


class ConditionOperator(str, Enum):
    """Comparison operators for flow conditions."""

    GTE = "gte"
    LTE = "lte"
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    NE = "ne"


class RequestPriority(str, Enum):
    """Business priority of a request."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MemberStatus(str, Enum):
    """Employment status of a directory member."""

    ACTIVE = "active"
    INACTIVE = "inactive"


# =============================================================================
# Organization directory
# =============================================================================


class Member(BaseModel):
    """Organization member as seen by the routing engine."""

    id: str = Field(..., description="Member ID")
    name: str = Field(..., description="Display name")
    email: str | None = Field(None, description="Email address")
    manager_id: str | None = Field(None, description="Direct manager's member ID")
    roles: set[str] = Field(default_factory=set, description="Assigned roles")
    status: MemberStatus = Field(default=MemberStatus.ACTIVE, description="Status")
    department: str | None = Field(None, description="Department name")
    position: str | None = Field(None, description="Job title")


# =============================================================================
# Flow definitions
# =============================================================================


class FlowCondition(BaseModel):
    """Predicate evaluated against a request's detail payload."""

    field: str = Field(..., description="Key in the request details")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(..., description="Right-hand operand")
    description: str = Field(default="", description="Human-readable summary")


class ApproverRef(BaseModel):
    """Named approver attached to a step template."""

    id: str = Field(..., description="Approver member ID")
    name: str = Field(..., description="Approver display name")
    role: ApproverRole | None = Field(None, description="Role the approver acts in")
    email: str | None = Field(None, description="Approver email")


class StepTemplate(BaseModel):
    """One step of a custom-mode flow. Unset fields receive defaults on resolution."""

    step_number: int = Field(..., ge=1, description="1-based position in the flow")
    name: str = Field(..., description="Step name")
    mode: StepMode = Field(default=StepMode.SERIAL, description="Approver mode")
    approvers: list[ApproverRef] = Field(default_factory=list, description="Approvers")
    approver_role: ApproverRole | None = Field(None, description="Role for escalation")
    required_approvals: int | None = Field(None, ge=1, description="Approvals needed")
    timeout_hours: int | None = Field(None, ge=1, description="Hours before escalation")
    allow_delegate: bool | None = Field(None, description="Approver may delegate")
    allow_skip: bool | None = Field(None, description="Step may be skipped")
    is_optional: bool = Field(default=False, description="Optional steps never block")


class ApprovalFlowDefinition(BaseModel):
    """Named, conditionally applicable approval policy for one category."""

    id: str = Field(..., description="Flow ID")
    name: str = Field(..., description="Flow name")
    description: str | None = Field(None, description="Flow description")
    category: RequestCategory = Field(..., description="Request category")
    mode: FlowMode = Field(..., description="Route resolution mode")
    organization_levels: int | None = Field(
        None, ge=1, description="Hierarchy levels to walk (organization mode)"
    )
    step_templates: list[StepTemplate] = Field(
        default_factory=list, description="Ordered steps (custom mode)"
    )
    conditions: list[FlowCondition] = Field(
        default_factory=list, description="All must hold for the flow to apply"
    )
    is_active: bool = Field(default=True, description="Inactive flows are never selected")
    is_default: bool = Field(default=False, description="Category fallback flow")
    priority: int = Field(default=0, description="Higher priority is tried first")
    created_by: str | None = Field(None, description="Creator member ID")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class ApprovalFlowCreate(BaseModel):
    """Input for registering a new flow."""

    name: str = Field(..., min_length=1, description="Flow name")
    description: str | None = Field(None, description="Flow description")
    category: RequestCategory = Field(..., description="Request category")
    mode: FlowMode = Field(..., description="Route resolution mode")
    organization_levels: int | None = Field(None, ge=1, description="Levels to walk")
    step_templates: list[StepTemplate] = Field(default_factory=list)
    conditions: list[FlowCondition] = Field(default_factory=list)
    is_active: bool = Field(default=True)
    is_default: bool = Field(default=False)
    priority: int = Field(default=0)
    created_by: str | None = Field(None)


class ApprovalFlowUpdate(BaseModel):
    """Partial update of a flow. Only fields that are set are applied."""

    name: str | None = Field(None, min_length=1)
    description: str | None = None
    category: RequestCategory | None = None
    mode: FlowMode | None = None
    organization_levels: int | None = Field(None, ge=1)
    step_templates: list[StepTemplate] | None = None
    conditions: list[FlowCondition] | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    priority: int | None = None


class FlowStats(BaseModel):
    """Catalog statistics."""

    total: int = Field(..., description="Total flows")
    organization: int = Field(..., description="Organization-mode flows")
    custom: int = Field(..., description="Custom-mode flows")
    active: int = Field(..., description="Active flows")
    inactive: int = Field(..., description="Inactive flows")
    by_category: dict[str, int] = Field(..., description="Flow count per category")


# =============================================================================
# Resolved routes
# =============================================================================


class ResolvedStep(BaseModel):
    """Concrete step produced by route resolution."""

    step_number: int = Field(..., ge=1)
    name: str
    mode: StepMode = StepMode.SERIAL
    approvers: list[ApproverRef] = Field(default_factory=list)
    approver_role: ApproverRole | None = None
    required_approvals: int = Field(default=1, ge=1)
    timeout_hours: int = Field(default=48, ge=1)
    allow_delegate: bool = False
    allow_skip: bool = False
    is_optional: bool = False


class ResolvedApprovalRoute(BaseModel):
    """Ephemeral result of resolving a flow for one requester."""

    flow_id: str
    flow_name: str
    steps: list[ResolvedStep] = Field(default_factory=list)
    degraded: bool = Field(
        default=False, description="Hierarchy ran out or requester unknown"
    )
    degradation_reason: str | None = None


# =============================================================================
# Live requests
# =============================================================================


class DelegateInfo(BaseModel):
    """Who a step was delegated to, and why."""

    id: str
    name: str
    reason: str = ""


class ApprovalStep(BaseModel):
    """Approval checkpoint attached to a request."""

    id: str = Field(..., description="Step ID")
    order: int = Field(..., ge=1, description="1-based, unique within a request")
    name: str = Field(..., description="Step name")
    approver_role: ApproverRole | None = Field(None, description="Approver role")
    approver_id: str | None = Field(None, description="Assigned approver ID")
    approver_name: str | None = Field(None, description="Assigned approver name")
    mode: StepMode = Field(default=StepMode.SERIAL)
    required_approvals: int = Field(default=1, ge=1)
    status: StepStatus = Field(default=StepStatus.PENDING)
    is_optional: bool = Field(default=False)
    timeout_hours: int | None = Field(None, ge=1)
    allow_delegate: bool = Field(default=True)
    comments: str | None = None
    action_date: datetime | None = None
    escalation_deadline: datetime | None = None
    delegated_to: DelegateInfo | None = None


class ApprovalStepInput(BaseModel):
    """Manually supplied step, used when no flow applies."""

    name: str = Field(..., min_length=1)
    approver_role: ApproverRole | None = None
    approver_id: str | None = None
    approver_name: str | None = None
    is_optional: bool = False
    timeout_hours: int | None = Field(None, ge=1)
    mode: StepMode = StepMode.SERIAL


class TimelineEntry(BaseModel):
    """Append-only history item."""

    id: str
    action: str
    user_id: str
    user_name: str
    timestamp: datetime
    comments: str | None = None


class EscalationSettings(BaseModel):
    """Deadline escalation configuration for one request."""

    enabled: bool = True
    days_until_escalation: int = Field(default=3, ge=1)
    escalation_path: list[ApproverRole] = Field(default_factory=list)
    last_escalated_at: datetime | None = None


class WorkflowRequest(BaseModel):
    """Aggregate root: a request travelling through its approval route."""

    id: str = Field(..., description="Request ID")
    category: RequestCategory = Field(..., description="Request category")
    title: str = Field(..., description="Short title")
    description: str = Field(default="", description="Free-form description")
    requester_id: str = Field(..., description="Requester member ID")
    requester_name: str = Field(..., description="Requester name")
    department: str | None = Field(None, description="Requester department")
    status: WorkflowStatus = Field(default=WorkflowStatus.DRAFT)
    priority: RequestPriority = Field(default=RequestPriority.NORMAL)
    details: dict[str, Any] = Field(default_factory=dict, description="Opaque payload")
    approval_steps: list[ApprovalStep] = Field(default_factory=list)
    current_step: int = Field(default=0, ge=0, description="Index of the active step")
    attachments: list[str] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    flow_id: str | None = Field(None, description="Flow that produced the route")
    flow_name: str | None = None
    action_required: bool = Field(
        default=False, description="Needs administrator action before it can proceed"
    )
    action_required_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    due_date: datetime | None = None
    returned_at: datetime | None = None
    returned_by: str | None = None
    return_reason: str | None = None
    escalation: EscalationSettings | None = None
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")


class WorkflowRequestCreate(BaseModel):
    """Input for creating a workflow request."""

    category: RequestCategory
    title: str = Field(..., min_length=1)
    description: str = ""
    requester_id: str = Field(..., min_length=1)
    requester_name: str = Field(..., min_length=1)
    department: str | None = None
    priority: RequestPriority = RequestPriority.NORMAL
    details: dict[str, Any] = Field(default_factory=dict)
    attachments: list[str] = Field(default_factory=list)
    due_date: datetime | None = None
    approval_steps: list[ApprovalStepInput] = Field(
        default_factory=list, description="Fallback steps when no flow applies"
    )
    escalation: EscalationSettings | None = None


class RequestFilters(BaseModel):
    """Filters accepted by the request store."""

    status: WorkflowStatus | None = None
    statuses: list[WorkflowStatus] | None = None
    category: RequestCategory | None = None
    requester_id: str | None = None
    approver_id: str | None = None


class DelegateSetting(BaseModel):
    """Standing delegation of one user's approvals to another."""

    user_id: str
    delegate_to_id: str
    delegate_name: str
    start_date: datetime
    end_date: datetime
    reason: str = ""
    is_active: bool = True


class BulkActionResult(BaseModel):
    """Outcome of a bulk approve/reject."""

    processed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class WorkflowStatistics(BaseModel):
    """Request counts and turnaround."""

    total: int
    draft: int
    pending: int
    escalated: int
    returned: int
    approved: int
    rejected: int
    cancelled: int
    average_approval_days: float = Field(
        ..., description="Mean days from submission to final approval"
    )


class WorkflowRequestDetail(WorkflowRequest):
    """Request with derived progress fields for display."""

    progress: int = Field(..., ge=0, le=100, description="Percent of steps decided")
    active_step_id: str | None = Field(None, description="Step awaiting action")


# =============================================================================
# API action payloads
# =============================================================================


class ApproveAction(BaseModel):
    """Approve a step."""

    step_id: str
    comment: str | None = None
    require_comment: bool = False


class RejectAction(BaseModel):
    """Reject a step."""

    step_id: str
    reason: str = Field(..., min_length=1)


class ReturnAction(BaseModel):
    """Send a request back to its requester."""

    step_id: str
    reason: str = Field(..., min_length=1)


class DelegateAction(BaseModel):
    """Reassign a step to another approver."""

    step_id: str
    delegate_to_id: str
    delegate_name: str
    reason: str = ""


class CancelAction(BaseModel):
    """Administrative cancellation."""

    reason: str = Field(..., min_length=1)


class BulkApproveAction(BaseModel):
    """Approve many requests at once."""

    request_ids: list[str] = Field(..., min_length=1)
    comment: str | None = None


class BulkRejectAction(BaseModel):
    """Reject many requests at once."""

    request_ids: list[str] = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class EscalationDeadlineAction(BaseModel):
    """Override a step's escalation deadline."""

    step_id: str
    deadline: datetime


class DelegateSettingInput(BaseModel):
    """Standing delegation set by the acting user."""

    delegate_to_id: str
    delegate_name: str
    start_date: datetime
    end_date: datetime
    reason: str = ""


class FlowSelectionQuery(BaseModel):
    """Preview which flow would apply to a request."""

    category: RequestCategory
    request_fields: dict[str, Any] = Field(default_factory=dict)
