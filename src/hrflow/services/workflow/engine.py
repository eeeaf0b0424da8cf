"""Approval workflow engine.

Owns the request lifecycle:
- Request creation via flow selection and route resolution
- Submit / approve / reject / return / delegate / cancel transitions
- Bulk approve and reject for one acting user
- Deadline escalation sweep
- Standing delegate settings
- Queries and statistics

Every mutation is a read-modify-write under a per-request lock, written to
the store with an optimistic version check. Audit records, notifications and
replication events are produced only after the write succeeds; their
failures are logged and never undo the transition.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable
from uuid import uuid4

from hrflow.core.config import Settings, get_settings
from hrflow.services.audit import AuditAction, AuditEvent, AuditLogger, AuditSink
from hrflow.services.notification import (
    Notification,
    NotificationKind,
    NotificationService,
    Notifier,
)
from hrflow.services.replication import (
    EventBus,
    InMemoryEventBus,
    ReplicationEvent,
    ReplicationEventType,
)
from hrflow.services.workflow.catalog import FlowCatalog
from hrflow.services.workflow.directory import (
    InMemoryOrganizationDirectory,
    OrganizationDirectory,
)
from hrflow.services.workflow.errors import (
    PersistenceFailure,
    RequestNotFoundError,
    StepNotFoundError,
    ValidationError,
    WorkflowError,
)
from hrflow.services.workflow.resolver import RouteResolver
from hrflow.services.workflow.schemas import (
    ACTIONABLE_STATUSES,
    TERMINAL_STATUSES,
    ApprovalStep,
    ApprovalStepInput,
    ApproverRole,
    BulkActionResult,
    DelegateInfo,
    DelegateSetting,
    EscalationSettings,
    RequestCategory,
    RequestFilters,
    ResolvedApprovalRoute,
    StepStatus,
    TimelineEntry,
    WorkflowRequest,
    WorkflowRequestCreate,
    WorkflowStatistics,
    WorkflowStatus,
)
from hrflow.services.workflow.selector import FlowSelector
from hrflow.services.workflow.store import InMemoryRequestStore, RequestStore

logger = logging.getLogger(__name__)

SYSTEM_USER_ID = "system"
SYSTEM_USER_NAME = "System"

# Escalation defaults that differ from the configured baseline
CATEGORY_ESCALATION_DEFAULTS: dict[RequestCategory, tuple[int, list[ApproverRole]]] = {
    RequestCategory.EXPENSE_CLAIM: (
        5,
        [
            ApproverRole.DIRECT_MANAGER,
            ApproverRole.FINANCE_MANAGER,
            ApproverRole.GENERAL_MANAGER,
        ],
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12].upper()}"


def next_escalation_role(
    role: ApproverRole | None, path: list[ApproverRole]
) -> ApproverRole | None:
    """Role to escalate to from `role`, or None when already at the end of the path.

    A role that is not on the path escalates to the first role of the path.
    """
    if not path:
        return None
    if role not in path:
        return path[0]
    index = path.index(role)
    if index >= len(path) - 1:
        return None
    return path[index + 1]


class WorkflowEngine:
    """Approval workflow engine with injected collaborators."""

    def __init__(
        self,
        store: RequestStore | None = None,
        catalog: FlowCatalog | None = None,
        directory: OrganizationDirectory | None = None,
        notifier: Notifier | None = None,
        audit: AuditSink | None = None,
        event_bus: EventBus | None = None,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[str], str] = _new_id,
        origin: str | None = None,
    ):
        """Initialize the engine.

        @param store - System of record (in-memory when omitted)
        @param catalog - Flow catalog used for selection
        @param directory - Organization directory used for route resolution
        @param notifier - Notification sink
        @param audit - Audit sink
        @param event_bus - Replication event bus
        @param settings - Escalation defaults and step timeout
        @param clock - Source of timestamps
        @param id_factory - Builds IDs from a prefix ("WF", "TL", "EVT")
        @param origin - Origin stamped on replication events
        """
        self._settings = settings or get_settings()
        self._store = store or InMemoryRequestStore()
        self._catalog = catalog or FlowCatalog(clock=clock)
        self._directory = directory or InMemoryOrganizationDirectory()
        self._notifier = notifier or NotificationService()
        self._audit = audit or AuditLogger(clock=clock)
        self._event_bus = event_bus or InMemoryEventBus()
        self._clock = clock
        self._id_factory = id_factory
        self.origin = origin or self._settings.instance_id

        self._selector = FlowSelector(self._catalog)
        self._resolver = RouteResolver(
            self._directory, self._settings.workflow_step_timeout_hours
        )
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._cache: dict[str, WorkflowRequest] = {}

    @property
    def catalog(self) -> FlowCatalog:
        return self._catalog

    @property
    def directory(self) -> OrganizationDirectory:
        return self._directory

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    # =========================================================================
    # Creation and submission
    # =========================================================================

    async def create_request(
        self, data: WorkflowRequestCreate, actor_id: str | None = None
    ) -> WorkflowRequest:
        """Create a draft request with a resolved approval route.

        The route comes from the selected flow; when no flow applies the
        manually supplied steps are used. A request whose route leaves a
        required step without an approver is flagged action_required.

        @param data - Request fields
        @param actor_id - Creating user (defaults to the requester)
        @returns The stored draft
        @throws PersistenceFailure - Store write failed
        """
        now = self._clock()
        request_id = self._id_factory("WF")

        flow = self._selector.select_flow(data.category, data.details)
        route: ResolvedApprovalRoute | None = None
        if flow is not None:
            route = self._resolver.resolve_route(flow, data.requester_id)
            steps = self._steps_from_route(request_id, route)
        else:
            steps = self._steps_from_input(request_id, data.approval_steps)

        missing = self._missing_approver_reason(steps)
        if missing and route is not None and route.degraded:
            missing = f"{missing} ({route.degradation_reason})"

        actor_id = actor_id or data.requester_id
        actor_name = self._display_name(actor_id, data.requester_name)
        request = WorkflowRequest(
            id=request_id,
            category=data.category,
            title=data.title,
            description=data.description,
            requester_id=data.requester_id,
            requester_name=data.requester_name,
            department=data.department,
            priority=data.priority,
            details=dict(data.details),
            approval_steps=steps,
            attachments=list(data.attachments),
            flow_id=route.flow_id if route else None,
            flow_name=route.flow_name if route else None,
            action_required=missing is not None,
            action_required_reason=missing,
            created_at=now,
            updated_at=now,
            due_date=data.due_date,
            escalation=data.escalation or self._default_escalation(data.category),
        )
        self._append_timeline(request, "created", actor_id, actor_name, now)

        saved = await self._store.create_request(request)
        self._remember(saved)

        logger.info(
            f"Created request {saved.id} ({saved.category.value}) with "
            f"{len(saved.approval_steps)} steps"
            + (f" via flow {saved.flow_id}" if saved.flow_id else "")
            + (f"; action required: {missing}" if missing else "")
        )
        await self._after_commit(
            saved,
            AuditAction.CREATE,
            actor_id,
            actor_name,
            f"Created '{saved.title}'",
            [],
            ReplicationEventType.NEW,
        )
        return saved

    async def submit(
        self, request_id: str, actor_id: str | None = None
    ) -> WorkflowRequest:
        """Submit a draft (or resubmit a returned request) for approval.

        Submitting a request that is already past draft is a no-op and
        returns it unchanged.

        @param request_id - Request to submit
        @param actor_id - Submitting user (defaults to the requester)
        @returns The request after submission
        @throws ValidationError - Request needs administrator action first
        """
        async with self._lock_for(request_id):
            current = await self._load(request_id)
            if current.status not in (WorkflowStatus.DRAFT, WorkflowStatus.RETURNED):
                logger.info(
                    f"Submit of {request_id} ignored: already {current.status.value}"
                )
                return current
            if current.action_required:
                raise ValidationError(
                    f"Request {request_id} requires administrator action before "
                    f"submission: {current.action_required_reason}"
                )

            now = self._clock()
            resubmission = current.status == WorkflowStatus.RETURNED
            updated = current.model_copy(deep=True)
            updated.status = WorkflowStatus.PENDING
            updated.submitted_at = now
            updated.completed_at = None
            index = self.active_step_index(updated)
            if index is not None:
                self._activate(updated, index, now)

            actor_id = actor_id or current.requester_id
            actor_name = self._display_name(actor_id, current.requester_name)
            self._append_timeline(
                updated,
                "resubmitted" if resubmission else "submitted",
                actor_id,
                actor_name,
                now,
            )
            saved = await self._persist(current, updated, now)

        notifications = []
        active = self.get_active_step(saved)
        if active is not None and active.approver_id:
            notifications.append(
                Notification(
                    recipient_user_id=active.approver_id,
                    kind=NotificationKind.SUBMITTED,
                    subject=f"Approval requested: {saved.title}",
                    related_request_id=saved.id,
                )
            )
        await self._after_commit(
            saved,
            AuditAction.SUBMIT,
            actor_id,
            actor_name,
            "Resubmitted for approval" if resubmission else "Submitted for approval",
            notifications,
            ReplicationEventType.UPDATED,
        )
        return saved

    # =========================================================================
    # Approval actions
    # =========================================================================

    async def approve(
        self,
        request_id: str,
        step_id: str,
        comment: str | None = None,
        require_comment: bool = False,
        actor_id: str | None = None,
    ) -> WorkflowRequest:
        """Approve a step and advance the request.

        When every required step is approved the request becomes approved;
        otherwise the lowest-order pending required step becomes active and
        the request is partially approved.

        @param request_id - Request ID
        @param step_id - Step to approve (the active step or a pending optional step)
        @param comment - Approval comment
        @param require_comment - Fail when no comment is given
        @param actor_id - Approving user; must be the step approver or their active delegate
        @returns Updated request
        @throws ValidationError - Invalid state, step or actor
        """
        if require_comment and not (comment and comment.strip()):
            raise ValidationError("A comment is required to approve this step")

        async with self._lock_for(request_id):
            current = await self._load(request_id)
            index, step = self._find_step(current, step_id)
            self._ensure_step_actionable(current, step, "approve")
            user_id, user_name, on_behalf_of = await self._resolve_actor(step, actor_id)

            now = self._clock()
            previous_active = self.active_step_index(current)
            updated = current.model_copy(deep=True)
            target = updated.approval_steps[index]
            target.status = StepStatus.APPROVED
            target.action_date = now
            target.comments = comment
            fully_approved = self._advance(updated, now)

            self._append_timeline(
                updated,
                "approved",
                user_id,
                user_name,
                now,
                self._with_behalf(comment, on_behalf_of),
            )
            saved = await self._persist(current, updated, now)

        if fully_approved:
            notifications = [
                Notification(
                    recipient_user_id=saved.requester_id,
                    kind=NotificationKind.APPROVED,
                    subject=f"Request approved: {saved.title}",
                    related_request_id=saved.id,
                )
            ]
        else:
            notifications = [
                Notification(
                    recipient_user_id=saved.requester_id,
                    kind=NotificationKind.STEP_APPROVED,
                    subject=f"Step '{step.name}' approved: {saved.title}",
                    related_request_id=saved.id,
                    message=comment,
                )
            ]
            next_index = self.active_step_index(saved)
            next_step = saved.approval_steps[next_index] if next_index is not None else None
            if next_index != previous_active and next_step and next_step.approver_id:
                notifications.append(
                    Notification(
                        recipient_user_id=next_step.approver_id,
                        kind=NotificationKind.APPROVAL_REQUIRED,
                        subject=f"Approval requested: {saved.title}",
                        related_request_id=saved.id,
                    )
                )

        await self._after_commit(
            saved,
            AuditAction.APPROVE,
            user_id,
            user_name,
            f"Approved step '{step.name}'" + (" (final)" if fully_approved else ""),
            notifications,
            ReplicationEventType.APPROVED if fully_approved else ReplicationEventType.UPDATED,
        )
        return saved

    async def reject(
        self,
        request_id: str,
        step_id: str,
        reason: str,
        actor_id: str | None = None,
    ) -> WorkflowRequest:
        """Reject a step. Any single rejection rejects the whole request.

        @param request_id - Request ID
        @param step_id - Step to reject
        @param reason - Rejection reason (required)
        @param actor_id - Rejecting user; must be the step approver or their active delegate
        @returns Updated request
        @throws ValidationError - Missing reason, invalid state, step or actor
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject a request")

        async with self._lock_for(request_id):
            current = await self._load(request_id)
            index, step = self._find_step(current, step_id)
            self._ensure_step_actionable(current, step, "reject")
            user_id, user_name, on_behalf_of = await self._resolve_actor(step, actor_id)

            now = self._clock()
            updated = current.model_copy(deep=True)
            target = updated.approval_steps[index]
            target.status = StepStatus.REJECTED
            target.action_date = now
            target.comments = reason
            updated.status = WorkflowStatus.REJECTED
            updated.completed_at = now

            self._append_timeline(
                updated,
                "rejected",
                user_id,
                user_name,
                now,
                self._with_behalf(reason, on_behalf_of),
            )
            saved = await self._persist(current, updated, now)

        await self._after_commit(
            saved,
            AuditAction.REJECT,
            user_id,
            user_name,
            f"Rejected at step '{step.name}': {reason}",
            [
                Notification(
                    recipient_user_id=saved.requester_id,
                    kind=NotificationKind.REJECTED,
                    subject=f"Request rejected: {saved.title}",
                    related_request_id=saved.id,
                    message=reason,
                )
            ],
            ReplicationEventType.REJECTED,
        )
        return saved

    async def return_to_sender(
        self,
        request_id: str,
        step_id: str,
        reason: str,
        actor_id: str | None = None,
    ) -> WorkflowRequest:
        """Send a request back to its requester for changes.

        All steps are reset to pending and the request waits in `returned`
        until it is resubmitted.

        @param request_id - Request ID
        @param step_id - The active step
        @param reason - Why the request is returned (required)
        @param actor_id - Returning user; must be the step approver or their active delegate
        @returns Updated request
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to return a request")

        async with self._lock_for(request_id):
            current = await self._load(request_id)
            _, step = self._find_step(current, step_id)
            self._ensure_step_actionable(current, step, "return", allow_optional=False)
            user_id, user_name, on_behalf_of = await self._resolve_actor(step, actor_id)

            now = self._clock()
            updated = current.model_copy(deep=True)
            for s in updated.approval_steps:
                s.status = StepStatus.PENDING
                s.action_date = None
                s.comments = None
                s.escalation_deadline = None
            updated.status = WorkflowStatus.RETURNED
            updated.current_step = 0
            updated.completed_at = None
            updated.returned_at = now
            updated.returned_by = user_name
            updated.return_reason = reason

            self._append_timeline(
                updated,
                "returned",
                user_id,
                user_name,
                now,
                self._with_behalf(reason, on_behalf_of),
            )
            saved = await self._persist(current, updated, now)

        await self._after_commit(
            saved,
            AuditAction.RETURN,
            user_id,
            user_name,
            f"Returned at step '{step.name}': {reason}",
            [
                Notification(
                    recipient_user_id=saved.requester_id,
                    kind=NotificationKind.RETURNED,
                    subject=f"Request returned for changes: {saved.title}",
                    related_request_id=saved.id,
                    message=reason,
                )
            ],
            ReplicationEventType.RETURNED,
        )
        return saved

    async def delegate(
        self,
        request_id: str,
        step_id: str,
        delegate_to_id: str,
        delegate_name: str,
        reason: str = "",
        actor_id: str | None = None,
    ) -> WorkflowRequest:
        """Reassign a pending step to another approver.

        Step status and order are unchanged; a later delegation overwrites an
        earlier one. Assigning the last unassigned required step clears the
        request's action_required flag.

        @param request_id - Request ID
        @param step_id - Pending step to reassign
        @param delegate_to_id - New approver ID
        @param delegate_name - New approver name
        @param reason - Delegation reason
        @param actor_id - Delegating user (defaults to the current approver)
        @returns Updated request
        """
        if not delegate_to_id:
            raise ValidationError("A delegate is required")

        async with self._lock_for(request_id):
            current = await self._load(request_id)
            self._ensure_not_terminal(current)
            index, step = self._find_step(current, step_id)
            if step.status != StepStatus.PENDING:
                raise ValidationError(
                    f"Step {step_id} is {step.status.value} and cannot be delegated"
                )
            # Unassigned steps may always be assigned
            if step.approver_id and not step.allow_delegate:
                raise ValidationError(f"Step {step_id} does not allow delegation")
            if step.approver_id == delegate_to_id:
                raise ValidationError(f"Step {step_id} is already assigned to {delegate_to_id}")

            now = self._clock()
            previous_name = step.approver_name or "Unassigned"
            updated = current.model_copy(deep=True)
            target = updated.approval_steps[index]
            target.approver_id = delegate_to_id
            target.approver_name = delegate_name
            target.delegated_to = DelegateInfo(id=delegate_to_id, name=delegate_name, reason=reason)
            if updated.action_required and not self._missing_approver_reason(
                updated.approval_steps
            ):
                updated.action_required = False
                updated.action_required_reason = None

            user_id = actor_id or step.approver_id or SYSTEM_USER_ID
            user_name = self._display_name(user_id, step.approver_name or SYSTEM_USER_NAME)
            comments = f"{previous_name} delegated to {delegate_name}"
            if reason:
                comments = f"{comments}: {reason}"
            self._append_timeline(updated, "delegated", user_id, user_name, now, comments)
            saved = await self._persist(current, updated, now)

        await self._after_commit(
            saved,
            AuditAction.DELEGATE,
            user_id,
            user_name,
            f"Step '{step.name}': {comments}",
            [
                Notification(
                    recipient_user_id=delegate_to_id,
                    kind=NotificationKind.DELEGATED,
                    subject=f"Approval delegated to you: {saved.title}",
                    related_request_id=saved.id,
                    message=reason or None,
                )
            ],
            ReplicationEventType.UPDATED,
        )
        return saved

    async def cancel(
        self, request_id: str, reason: str, actor_id: str | None = None
    ) -> WorkflowRequest:
        """Cancel a request that has not reached a terminal status.

        @param request_id - Request ID
        @param reason - Cancellation reason (required)
        @param actor_id - Cancelling user (defaults to the requester)
        @returns Updated request
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to cancel a request")

        async with self._lock_for(request_id):
            current = await self._load(request_id)
            self._ensure_not_terminal(current)

            now = self._clock()
            updated = current.model_copy(deep=True)
            updated.status = WorkflowStatus.CANCELLED
            updated.completed_at = now

            user_id = actor_id or current.requester_id
            user_name = self._display_name(user_id, current.requester_name)
            self._append_timeline(updated, "cancelled", user_id, user_name, now, reason)
            saved = await self._persist(current, updated, now)

        await self._after_commit(
            saved,
            AuditAction.CANCEL,
            user_id,
            user_name,
            f"Cancelled: {reason}",
            [],
            ReplicationEventType.UPDATED,
        )
        return saved

    # =========================================================================
    # Bulk actions
    # =========================================================================

    async def bulk_approve(
        self,
        request_ids: Iterable[str],
        acting_user_id: str,
        comment: str | None = None,
    ) -> BulkActionResult:
        """Approve every listed request whose active step is assigned to the user.

        Requests where the user is not directly the active approver are
        skipped without error.

        @param request_ids - Requests to consider
        @param acting_user_id - Approving user
        @param comment - Comment applied to each approval
        @returns Processed, skipped and failed request IDs
        """
        comment = comment or "Bulk approval"
        return await self._bulk(
            request_ids,
            acting_user_id,
            lambda request_id, step_id: self.approve(
                request_id, step_id, comment, actor_id=acting_user_id
            ),
        )

    async def bulk_reject(
        self,
        request_ids: Iterable[str],
        acting_user_id: str,
        reason: str,
    ) -> BulkActionResult:
        """Reject every listed request whose active step is assigned to the user."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject requests")
        return await self._bulk(
            request_ids,
            acting_user_id,
            lambda request_id, step_id: self.reject(
                request_id, step_id, reason, actor_id=acting_user_id
            ),
        )

    async def _bulk(
        self,
        request_ids: Iterable[str],
        acting_user_id: str,
        action: Callable[[str, str], Awaitable[WorkflowRequest]],
    ) -> BulkActionResult:
        result = BulkActionResult()
        for request_id in dict.fromkeys(request_ids):
            try:
                request = await self._store.get_request(request_id)
                step = self.get_active_step(request) if request else None
                if (
                    request is None
                    or request.status not in ACTIONABLE_STATUSES
                    or step is None
                    or step.approver_id != acting_user_id
                ):
                    result.skipped.append(request_id)
                    continue
                await action(request_id, step.id)
                result.processed.append(request_id)
            except WorkflowError as e:
                # A concurrent change made this request invalid; report, don't abort
                logger.warning(f"Bulk action on {request_id} failed: {e}")
                result.failed[request_id] = str(e)

        logger.info(
            f"Bulk action by {acting_user_id}: {len(result.processed)} processed, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed"
        )
        return result

    # =========================================================================
    # Escalation
    # =========================================================================

    async def check_and_escalate(self, now: datetime | None = None) -> list[str]:
        """Escalate pending requests whose active step deadline has passed.

        Escalation marks the request `escalated` and notifies the next role
        on the escalation path; approvers are not reassigned. Escalated
        requests are not candidates on later passes, so repeated sweeps do
        not duplicate timeline entries.

        @param now - Sweep time (defaults to the engine clock)
        @returns IDs of requests escalated on this pass
        """
        now = now or self._clock()
        candidates = await self._store.fetch_requests(
            RequestFilters(
                statuses=[WorkflowStatus.PENDING, WorkflowStatus.PARTIALLY_APPROVED]
            )
        )

        escalated = []
        for candidate in candidates:
            if self._escalation_target(candidate, now) is None:
                continue
            try:
                if await self._escalate(candidate.id, now):
                    escalated.append(candidate.id)
            except WorkflowError as e:
                logger.error(f"Escalation of {candidate.id} failed: {e}")

        if escalated:
            logger.info(f"Escalated {len(escalated)} request(s): {', '.join(escalated)}")
        return escalated

    async def _escalate(self, request_id: str, now: datetime) -> bool:
        async with self._lock_for(request_id):
            current = await self._load(request_id)
            # Re-check: an approval may have advanced the request since the scan
            target = self._escalation_target(current, now)
            if target is None:
                return False
            step, next_role = target

            updated = current.model_copy(deep=True)
            updated.status = WorkflowStatus.ESCALATED
            updated.escalation.last_escalated_at = now
            detail = (
                f"Deadline for step '{step.name}' passed; "
                f"escalated to {next_role.value}"
            )
            self._append_timeline(
                updated, "escalated", SYSTEM_USER_ID, SYSTEM_USER_NAME, now, detail
            )
            saved = await self._persist(current, updated, now)

        await self._after_commit(
            saved,
            AuditAction.ESCALATE,
            SYSTEM_USER_ID,
            SYSTEM_USER_NAME,
            detail,
            [
                Notification(
                    recipient_user_id=f"role:{next_role.value}",
                    kind=NotificationKind.ESCALATED,
                    subject=f"Escalated approval: {saved.title}",
                    related_request_id=saved.id,
                    message=detail,
                )
            ],
            ReplicationEventType.UPDATED,
        )
        return True

    def _escalation_target(
        self, request: WorkflowRequest, now: datetime
    ) -> tuple[ApprovalStep, ApproverRole] | None:
        """Active step and next role if the request is due for escalation."""
        if request.status not in (WorkflowStatus.PENDING, WorkflowStatus.PARTIALLY_APPROVED):
            return None
        escalation = request.escalation
        if escalation is None or not escalation.enabled:
            return None
        step = self.get_active_step(request)
        if step is None or step.escalation_deadline is None or now < step.escalation_deadline:
            return None
        next_role = next_escalation_role(step.approver_role, escalation.escalation_path)
        if next_role is None:
            logger.debug(
                f"{request.id}: {step.approver_role} is last on the escalation path"
            )
            return None
        return step, next_role

    async def set_escalation_deadline(
        self, request_id: str, step_id: str, deadline: datetime
    ) -> WorkflowRequest:
        """Override the escalation deadline of a pending step.

        @param request_id - Request ID
        @param step_id - Pending step
        @param deadline - New deadline
        @returns Updated request
        """
        async with self._lock_for(request_id):
            current = await self._load(request_id)
            self._ensure_not_terminal(current)
            index, step = self._find_step(current, step_id)
            if step.status != StepStatus.PENDING:
                raise ValidationError(f"Step {step_id} is {step.status.value}")

            now = self._clock()
            updated = current.model_copy(deep=True)
            updated.approval_steps[index].escalation_deadline = deadline
            saved = await self._persist(current, updated, now)

        logger.info(f"Escalation deadline of {request_id}/{step_id} set to {deadline}")
        await self._after_commit(
            saved, None, None, SYSTEM_USER_NAME, "", [], ReplicationEventType.UPDATED
        )
        return saved

    # =========================================================================
    # Delegate settings
    # =========================================================================

    async def set_delegate_approver(self, setting: DelegateSetting) -> DelegateSetting:
        """Store a standing delegation, replacing the user's previous one.

        @param setting - Delegation window and delegate
        @returns Stored setting (always active)
        """
        if setting.end_date < setting.start_date:
            raise ValidationError("Delegation end date is before its start date")
        if setting.delegate_to_id == setting.user_id:
            raise ValidationError("Users cannot delegate to themselves")

        saved = await self._store.save_delegate_setting(
            setting.model_copy(update={"is_active": True})
        )
        logger.info(
            f"{saved.user_id} delegates approvals to {saved.delegate_to_id} "
            f"from {saved.start_date.isoformat()} to {saved.end_date.isoformat()}"
        )
        return saved

    async def remove_delegate_approver(self, user_id: str) -> bool:
        removed = await self._store.delete_delegate_setting(user_id)
        if removed:
            logger.info(f"Removed delegate setting of {user_id}")
        return removed

    async def get_active_delegate_for(
        self, user_id: str, at: datetime | None = None
    ) -> DelegateSetting | None:
        """Delegate setting of a user that is active at the given time."""
        at = at or self._clock()
        for setting in await self._store.list_delegate_settings():
            if (
                setting.user_id == user_id
                and setting.is_active
                and setting.start_date <= at <= setting.end_date
            ):
                return setting
        return None

    async def list_delegate_settings(self) -> list[DelegateSetting]:
        return await self._store.list_delegate_settings()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_request(self, request_id: str) -> WorkflowRequest | None:
        """Read a request from the store, refreshing the local cache."""
        request = await self._store.get_request(request_id)
        if request is None:
            self._cache.pop(request_id, None)
        else:
            self._remember(request)
        return request

    def get_cached(self, request_id: str) -> WorkflowRequest | None:
        """Last state of an unfinished request this engine read or wrote."""
        request = self._cache.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def list_requests(
        self, filters: RequestFilters | None = None
    ) -> list[WorkflowRequest]:
        requests = await self._store.fetch_requests(filters)
        for request in requests:
            self._remember(request)
        return requests

    async def get_my_requests(self, user_id: str) -> list[WorkflowRequest]:
        return await self.list_requests(RequestFilters(requester_id=user_id))

    async def get_pending_approvals(self, user_id: str) -> list[WorkflowRequest]:
        """Requests whose active step awaits the user, directly or as a delegate."""
        now = self._clock()
        delegators = {
            s.user_id
            for s in await self._store.list_delegate_settings()
            if s.delegate_to_id == user_id
            and s.is_active
            and s.start_date <= now <= s.end_date
        }
        requests = await self.list_requests(
            RequestFilters(statuses=list(ACTIONABLE_STATUSES))
        )
        pending = []
        for request in requests:
            step = self.get_active_step(request)
            if step and step.approver_id and (
                step.approver_id == user_id or step.approver_id in delegators
            ):
                pending.append(request)
        return pending

    async def get_delegated_approvals(self, user_id: str) -> list[WorkflowRequest]:
        """Open requests with a pending step delegated to the user."""
        requests = await self.list_requests(RequestFilters(approver_id=user_id))
        return [
            r
            for r in requests
            if r.status not in TERMINAL_STATUSES
            and any(
                s.delegated_to is not None
                and s.delegated_to.id == user_id
                and s.status == StepStatus.PENDING
                for s in r.approval_steps
            )
        ]

    async def get_statistics(self, user_id: str | None = None) -> WorkflowStatistics:
        """Counts by status and mean approval turnaround.

        @param user_id - Restrict to this requester
        @returns Statistics
        """
        requests = await self.list_requests(RequestFilters(requester_id=user_id))

        def count(status: WorkflowStatus) -> int:
            return sum(1 for r in requests if r.status == status)

        durations = [
            (r.completed_at - r.submitted_at).total_seconds() / 86400
            for r in requests
            if r.status == WorkflowStatus.APPROVED and r.submitted_at and r.completed_at
        ]
        average = round(sum(durations) / len(durations), 1) if durations else 0.0

        return WorkflowStatistics(
            total=len(requests),
            draft=count(WorkflowStatus.DRAFT),
            pending=count(WorkflowStatus.PENDING) + count(WorkflowStatus.PARTIALLY_APPROVED),
            escalated=count(WorkflowStatus.ESCALATED),
            returned=count(WorkflowStatus.RETURNED),
            approved=count(WorkflowStatus.APPROVED),
            rejected=count(WorkflowStatus.REJECTED),
            cancelled=count(WorkflowStatus.CANCELLED),
            average_approval_days=average,
        )

    @staticmethod
    def calculate_progress(request: WorkflowRequest) -> int:
        """Percentage of steps that have been decided (approved or rejected)."""
        if not request.approval_steps:
            return 0
        decided = sum(
            1
            for s in request.approval_steps
            if s.status in (StepStatus.APPROVED, StepStatus.REJECTED)
        )
        return round(decided / len(request.approval_steps) * 100)

    @staticmethod
    def active_step_index(request: WorkflowRequest) -> int | None:
        """Index of the lowest-order required step that is still pending."""
        candidates = [
            (step.order, index)
            for index, step in enumerate(request.approval_steps)
            if not step.is_optional and step.status == StepStatus.PENDING
        ]
        return min(candidates)[1] if candidates else None

    @classmethod
    def get_active_step(cls, request: WorkflowRequest) -> ApprovalStep | None:
        index = cls.active_step_index(request)
        return request.approval_steps[index] if index is not None else None

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_for(self, request_id: str) -> asyncio.Lock:
        # Entries vanish once no caller holds or awaits the lock
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        return lock

    def _remember(self, request: WorkflowRequest) -> None:
        """Cache live requests; finished ones are dropped."""
        if request.status in TERMINAL_STATUSES:
            self._cache.pop(request.id, None)
        else:
            self._cache[request.id] = request

    async def _load(self, request_id: str) -> WorkflowRequest:
        request = await self.get_request(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    async def _persist(
        self, current: WorkflowRequest, updated: WorkflowRequest, now: datetime
    ) -> WorkflowRequest:
        """Write the changed fields with a version check; cache only on success."""
        updated.updated_at = now
        patch = {
            name: getattr(updated, name)
            for name in WorkflowRequest.model_fields
            if name not in ("id", "version")
            and getattr(updated, name) != getattr(current, name)
        }
        try:
            saved = await self._store.update_request(
                current.id, patch, expected_version=current.version
            )
        except PersistenceFailure as e:
            logger.error(f"Persisting {current.id} failed; transition discarded: {e}")
            raise
        self._remember(saved)
        return saved

    async def _after_commit(
        self,
        saved: WorkflowRequest,
        action: AuditAction | None,
        actor_id: str | None,
        actor_name: str,
        detail: str,
        notifications: list[Notification],
        event_type: ReplicationEventType,
    ) -> None:
        """Best-effort side effects of a committed transition."""
        if action is not None:
            try:
                self._audit.record(
                    AuditEvent(
                        entry_id=str(uuid4()),
                        timestamp=saved.updated_at,
                        action=action,
                        request_id=saved.id,
                        actor_id=actor_id,
                        actor_name=actor_name,
                        detail=detail,
                        details={"status": saved.status.value, "version": saved.version},
                    )
                )
            except Exception as e:
                logger.error(f"Audit record for {saved.id} failed: {e}")

        for notification in notifications:
            try:
                await self._notifier.notify(notification)
            except Exception as e:
                logger.error(
                    f"Notification {notification.kind.value} to "
                    f"{notification.recipient_user_id} failed: {e}"
                )

        try:
            await self._event_bus.publish(
                ReplicationEvent(
                    event_id=self._id_factory("EVT"),
                    event_type=event_type,
                    request_id=saved.id,
                    status=saved.status,
                    version=saved.version,
                    origin=self.origin,
                    snapshot=saved.model_dump(mode="json"),
                    occurred_at=saved.updated_at,
                )
            )
        except Exception as e:
            logger.error(f"Publishing {event_type.value} for {saved.id} failed: {e}")

    def _find_step(
        self, request: WorkflowRequest, step_id: str
    ) -> tuple[int, ApprovalStep]:
        for index, step in enumerate(request.approval_steps):
            if step.id == step_id:
                return index, step
        raise StepNotFoundError(request.id, step_id)

    @staticmethod
    def _ensure_not_terminal(request: WorkflowRequest) -> None:
        if request.status in TERMINAL_STATUSES:
            raise ValidationError(f"Request {request.id} is already {request.status.value}")

    def _ensure_step_actionable(
        self,
        request: WorkflowRequest,
        step: ApprovalStep,
        verb: str,
        allow_optional: bool = True,
    ) -> None:
        self._ensure_not_terminal(request)
        if request.status not in ACTIONABLE_STATUSES:
            raise ValidationError(
                f"Cannot {verb} request {request.id} while it is {request.status.value}"
            )
        if step.status != StepStatus.PENDING:
            raise ValidationError(f"Step {step.id} is already {step.status.value}")

        active = self.get_active_step(request)
        is_active = active is not None and active.id == step.id
        if not is_active and not (allow_optional and step.is_optional):
            raise ValidationError(f"Step {step.id} is not the active step")
        if not step.approver_id:
            raise ValidationError(f"Step {step.id} has no assigned approver")

    async def _resolve_actor(
        self, step: ApprovalStep, actor_id: str | None
    ) -> tuple[str, str, str | None]:
        """Acting user ID, name, and the approver acted for (if via delegate setting)."""
        approver_name = step.approver_name or self._display_name(step.approver_id, step.approver_id)
        if actor_id is None or actor_id == step.approver_id:
            return step.approver_id, approver_name, None

        setting = await self.get_active_delegate_for(step.approver_id)
        if setting is not None and setting.delegate_to_id == actor_id:
            return actor_id, setting.delegate_name, approver_name
        raise ValidationError(f"User {actor_id} is not the approver of step {step.id}")

    def _advance(self, request: WorkflowRequest, now: datetime) -> bool:
        """Recompute aggregate status after an approval. True when fully approved."""
        required = [s for s in request.approval_steps if not s.is_optional]
        if all(s.status == StepStatus.APPROVED for s in required):
            request.status = WorkflowStatus.APPROVED
            request.completed_at = now
            for s in request.approval_steps:
                if s.is_optional and s.status == StepStatus.PENDING:
                    s.status = StepStatus.SKIPPED
            return True

        index = self.active_step_index(request)
        # An escalation stands until the overdue required step is decided
        still_overdue = (
            request.status == WorkflowStatus.ESCALATED and index == request.current_step
        )
        if index is not None:
            self._activate(request, index, now)
        request.status = (
            WorkflowStatus.ESCALATED if still_overdue else WorkflowStatus.PARTIALLY_APPROVED
        )
        return False

    @staticmethod
    def _activate(request: WorkflowRequest, index: int, now: datetime) -> None:
        """Make a step current and stamp its escalation deadline once."""
        request.current_step = index
        step = request.approval_steps[index]
        step.status = StepStatus.PENDING
        escalation = request.escalation
        if escalation and escalation.enabled and step.escalation_deadline is None:
            hours = step.timeout_hours or escalation.days_until_escalation * 24
            step.escalation_deadline = now + timedelta(hours=hours)

    def _append_timeline(
        self,
        request: WorkflowRequest,
        action: str,
        user_id: str,
        user_name: str,
        now: datetime,
        comments: str | None = None,
    ) -> None:
        request.timeline.append(
            TimelineEntry(
                id=self._id_factory("TL"),
                action=action,
                user_id=user_id,
                user_name=user_name,
                timestamp=now,
                comments=comments,
            )
        )

    @staticmethod
    def _with_behalf(comment: str | None, on_behalf_of: str | None) -> str | None:
        if on_behalf_of is None:
            return comment
        note = f"On behalf of {on_behalf_of}"
        return f"{note}: {comment}" if comment else note

    def _display_name(self, user_id: str | None, fallback: str | None) -> str:
        member = self._directory.find_member_by_id(user_id) if user_id else None
        if member is not None:
            return member.name
        return fallback or user_id or SYSTEM_USER_NAME

    def _default_escalation(self, category: RequestCategory) -> EscalationSettings:
        days, path = CATEGORY_ESCALATION_DEFAULTS.get(
            category,
            (
                self._settings.workflow_escalation_days,
                [ApproverRole(r) for r in self._settings.workflow_escalation_path],
            ),
        )
        return EscalationSettings(
            enabled=self._settings.workflow_escalation_enabled,
            days_until_escalation=days,
            escalation_path=list(path),
        )

    @staticmethod
    def _missing_approver_reason(steps: list[ApprovalStep]) -> str | None:
        if not steps:
            return "No approval steps could be resolved"
        unassigned = [s.name for s in steps if not s.is_optional and not s.approver_id]
        if unassigned:
            return f"No approver assigned for: {', '.join(unassigned)}"
        return None

    @staticmethod
    def _steps_from_route(
        request_id: str, route: ResolvedApprovalRoute
    ) -> list[ApprovalStep]:
        steps = []
        for order, resolved in enumerate(route.steps, start=1):
            approver = resolved.approvers[0] if resolved.approvers else None
            steps.append(
                ApprovalStep(
                    id=f"{request_id}-S{order}",
                    order=order,
                    name=resolved.name,
                    approver_role=resolved.approver_role,
                    approver_id=approver.id if approver else None,
                    approver_name=approver.name if approver else None,
                    mode=resolved.mode,
                    required_approvals=resolved.required_approvals,
                    is_optional=resolved.is_optional,
                    timeout_hours=resolved.timeout_hours,
                    allow_delegate=resolved.allow_delegate,
                )
            )
        return steps

    @staticmethod
    def _steps_from_input(
        request_id: str, inputs: list[ApprovalStepInput]
    ) -> list[ApprovalStep]:
        return [
            ApprovalStep(
                id=f"{request_id}-S{order}",
                order=order,
                name=item.name,
                approver_role=item.approver_role,
                approver_id=item.approver_id,
                approver_name=item.approver_name,
                mode=item.mode,
                is_optional=item.is_optional,
                timeout_hours=item.timeout_hours,
            )
            for order, item in enumerate(inputs, start=1)
        ]


# Singleton instance
_workflow_engine: WorkflowEngine | None = None


def get_workflow_engine() -> WorkflowEngine:
    """Get or create the workflow engine singleton.

    Collaborators are the module singletons; the store follows
    `workflow_store_backend`.
    """
    global _workflow_engine
    if _workflow_engine is None:
        from hrflow.services.audit import get_audit_logger
        from hrflow.services.notification import get_notification_service
        from hrflow.services.replication import get_event_bus
        from hrflow.services.workflow.catalog import get_flow_catalog
        from hrflow.services.workflow.directory import get_organization_directory

        settings = get_settings()
        if settings.workflow_store_backend == "database":
            from hrflow.infrastructure.database.session import AsyncSessionLocal
            from hrflow.services.workflow.sql_store import SqlRequestStore

            store: RequestStore = SqlRequestStore(AsyncSessionLocal)
        else:
            store = InMemoryRequestStore()

        _workflow_engine = WorkflowEngine(
            store=store,
            catalog=get_flow_catalog(),
            directory=get_organization_directory(),
            notifier=get_notification_service(),
            audit=get_audit_logger(),
            event_bus=get_event_bus(),
            settings=settings,
        )
    return _workflow_engine


def reset_workflow_engine() -> None:
    """Reset the singleton (for testing)."""
    global _workflow_engine
    _workflow_engine = None
