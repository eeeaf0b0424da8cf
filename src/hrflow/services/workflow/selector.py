"""Flow selection: pick the one flow that applies to a request."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Protocol

from hrflow.services.workflow.schemas import (
    ApprovalFlowDefinition,
    ConditionOperator,
    FlowCondition,
    RequestCategory,
)

logger = logging.getLogger(__name__)


class FlowSource(Protocol):
    """Read-only view of the flow catalog used for selection."""

    def get_flows_by_category(
        self, category: RequestCategory
    ) -> list[ApprovalFlowDefinition]: ...

    def get_default_flow(
        self, category: RequestCategory
    ) -> ApprovalFlowDefinition | None: ...


def _as_number(value: Any) -> Decimal | None:
    """Coerce ints, floats, Decimals and numeric strings. Booleans are not numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    # NaN and infinities never compare
    return number if number.is_finite() else None


def evaluate_condition(condition: FlowCondition, fields: Mapping[str, Any]) -> bool:
    """Evaluate one condition against request fields.

    A missing field, or an ordering comparison on non-numeric values,
    evaluates to False. Never raises.

    @param condition - Condition to check
    @param fields - Request detail payload
    @returns Whether the condition holds
    """
    if condition.field not in fields or fields[condition.field] is None:
        return False

    actual = fields[condition.field]
    left = _as_number(actual)
    right = _as_number(condition.value)
    op = condition.operator

    if left is not None and right is not None:
        if op == ConditionOperator.GTE:
            return left >= right
        if op == ConditionOperator.LTE:
            return left <= right
        if op == ConditionOperator.GT:
            return left > right
        if op == ConditionOperator.LT:
            return left < right
        if op == ConditionOperator.EQ:
            return left == right
        return left != right

    # Non-numeric: only equality is meaningful
    if op == ConditionOperator.EQ:
        return str(actual) == str(condition.value)
    if op == ConditionOperator.NE:
        return str(actual) != str(condition.value)
    return False


class FlowSelector:
    """Chooses the applicable flow for a category and request payload."""

    def __init__(self, flows: FlowSource):
        """Initialize selector.

        @param flows - Catalog (or any read-only flow source)
        """
        self._flows = flows

    def select_flow(
        self,
        category: RequestCategory,
        request_fields: Mapping[str, Any] | None = None,
    ) -> ApprovalFlowDefinition | None:
        """Select the flow for a request.

        Active flows of the category are tried by descending priority. A flow
        without conditions only matches when it is the default; a flow with
        conditions matches when all of them hold. Falls back to the
        category's default flow.

        @param category - Request category
        @param request_fields - Request detail payload
        @returns The selected flow, or None when nothing applies
        """
        fields = request_fields or {}
        candidates = [
            f for f in self._flows.get_flows_by_category(category) if f.is_active
        ]
        # sorted() is stable, so equal priorities keep catalog order
        candidates = sorted(candidates, key=lambda f: f.priority, reverse=True)

        for flow in candidates:
            if not flow.conditions:
                if flow.is_default:
                    logger.debug(f"Selected default flow {flow.id} for {category.value}")
                    return flow
                continue
            if all(evaluate_condition(c, fields) for c in flow.conditions):
                logger.debug(f"Selected conditional flow {flow.id} for {category.value}")
                return flow

        default = self._flows.get_default_flow(category)
        if default is None:
            logger.info(f"No applicable flow for {category.value}")
        return default
