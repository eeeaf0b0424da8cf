"""Workflow engine errors."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hrflow.services.workflow.schemas import ResolvedApprovalRoute


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class ValidationError(WorkflowError, ValueError):
    """Operation rejected; the request is left unchanged."""


class RequestNotFoundError(ValidationError):
    """Unknown request ID."""

    def __init__(self, request_id: str):
        super().__init__(f"Request {request_id} not found")
        self.request_id = request_id


class StepNotFoundError(ValidationError):
    """Unknown step ID within a request."""

    def __init__(self, request_id: str, step_id: str):
        super().__init__(f"Step {step_id} not found in request {request_id}")
        self.request_id = request_id
        self.step_id = step_id


class FlowNotFoundError(ValidationError):
    """Unknown flow ID."""

    def __init__(self, flow_id: str):
        super().__init__(f"Flow {flow_id} not found")
        self.flow_id = flow_id


class ResolutionDegraded(WorkflowError):
    """Route resolution produced fewer or placeholder steps.

    Only raised when resolution is strict; the degraded route is attached.
    """

    def __init__(self, reason: str, route: "ResolvedApprovalRoute"):
        super().__init__(reason)
        self.reason = reason
        self.route = route


class PersistenceFailure(WorkflowError):
    """Durable store write failed; no state change was applied."""


class ConcurrencyConflict(PersistenceFailure):
    """Stored version moved on since the request was read."""

    def __init__(self, request_id: str, expected: int, actual: int):
        super().__init__(
            f"Request {request_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.request_id = request_id
        self.expected = expected
        self.actual = actual
