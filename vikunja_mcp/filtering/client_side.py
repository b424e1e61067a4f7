"""Client-side filter evaluation.

Used when the remote API cannot evaluate (part of) a filter. The candidate
tasks are first checked against the memory risk gate; only then is the
expression evaluated item by item with short-circuit AND/OR semantics.
"""

import logging
import operator as op
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..core.models import Task
from ..utils.errors import MemoryLimitExceeded
from .expression import Condition, FilterExpression, Group, Logic, Operator, Scalar, Value
from .memory import MemoryEstimate, MemoryRiskEstimator
from .schema import FieldSchema, FieldSpec, FieldType, parse_datetime, resolve_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientEvaluation:
    items: list[Task]
    estimate: MemoryEstimate


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _field_value(item: Any, spec: FieldSpec) -> Any:
    if isinstance(item, dict):
        return item.get(spec.attribute)
    return getattr(item, spec.attribute, None)


class ClientSideStrategy:
    """Evaluates filter expressions against in-memory task records."""

    def __init__(
        self,
        schema: FieldSchema,
        estimator: MemoryRiskEstimator,
        contains_case_sensitive: bool = False,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.schema = schema
        self.estimator = estimator
        self.contains_case_sensitive = contains_case_sensitive
        self.clock = clock

    def check_memory(self, items: Sequence[Any], allow_high_memory: bool = False) -> MemoryEstimate:
        """Estimate the candidate set and raise if the gate denies it.

        Raises:
            MemoryLimitExceeded: If the estimate is High and not overridden
        """
        estimate = self.estimator.estimate(items, len(items))
        decision = self.estimator.gate(estimate, allow_high=allow_high_memory)
        if not decision.allowed:
            logger.warning(f"Client-side filtering denied: {decision.reason}")
            raise MemoryLimitExceeded(estimate, decision.reason)
        return estimate

    def evaluate(
        self,
        expression: FilterExpression | Group,
        items: Sequence[Task],
        allow_high_memory: bool = False,
    ) -> ClientEvaluation:
        """Return the items matching the expression.

        Raises:
            MemoryLimitExceeded: If the candidate set is too large to filter
        """
        root = expression.root if isinstance(expression, FilterExpression) else expression
        estimate = self.check_memory(items, allow_high_memory)

        now = self.clock()
        matched = [item for item in items if self.matches(root, item, now)]
        logger.debug(f"Client-side filter matched {len(matched)} of {len(items)} tasks")
        return ClientEvaluation(items=matched, estimate=estimate)

    def matches(self, node: Condition | Group, item: Any, now: datetime | None = None) -> bool:
        """Evaluate one node for one item, left to right with short-circuiting."""
        now = now or self.clock()
        if isinstance(node, Condition):
            return self._evaluate_condition(node, item, now)
        if node.logic is Logic.AND:
            return all(self.matches(child, item, now) for child in node.children)
        return any(self.matches(child, item, now) for child in node.children)

    def _evaluate_condition(self, condition: Condition, item: Any, now: datetime) -> bool:
        spec = self.schema[condition.field]
        actual = _field_value(item, spec)
        operator = condition.operator

        if spec.type is FieldType.LIST:
            # Negative operators hold when no element matches the positive form
            negated = {Operator.NE: Operator.EQ, Operator.NOT_IN: Operator.IN}.get(operator)
            positive = negated or operator
            hit = any(
                self._compare(FieldType.STRING, element, positive, condition.value, now)
                for element in actual or []
            )
            return not hit if negated else hit

        return self._compare(spec.type, actual, operator, condition.value, now)

    def _normalize(self, field_type: FieldType, value: Any, now: datetime) -> Any:
        if field_type is FieldType.NUMBER:
            return float(value)
        if field_type is FieldType.BOOLEAN:
            return bool(value)
        if field_type is FieldType.DATE:
            if isinstance(value, datetime):
                return value if value.tzinfo else value.replace(tzinfo=UTC)
            return resolve_date(str(value), now)
        return str(value)

    def _normalize_expected(self, field_type: FieldType, value: Value, now: datetime) -> Any:
        if isinstance(value, tuple):
            return tuple(self._normalize(field_type, v, now) for v in value)
        return self._normalize(field_type, value, now)

    def _contains(self, actual: str, expected: Scalar) -> bool:
        needle = str(expected)
        if self.contains_case_sensitive:
            return needle in actual
        return needle.casefold() in actual.casefold()

    def _compare(
        self, field_type: FieldType, actual: Any, operator: Operator, expected: Value, now: datetime
    ) -> bool:
        if actual is None:
            return operator in (Operator.NE, Operator.NOT_IN)

        if field_type is FieldType.DATE and isinstance(actual, str):
            actual = parse_datetime(actual)
        left = self._normalize(field_type, actual, now)

        if operator is Operator.CONTAINS:
            return self._contains(left, expected)  # type: ignore[arg-type]

        right = self._normalize_expected(field_type, expected, now)
        compare = _COMPARATORS.get(operator)
        if compare is None:
            raise ValueError(f"Unsupported operator: {operator}")
        return compare(left, right)


_COMPARATORS: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQ: op.eq,
    Operator.NE: op.ne,
    Operator.GT: op.gt,
    Operator.GTE: op.ge,
    Operator.LT: op.lt,
    Operator.LTE: op.le,
    Operator.IN: lambda left, right: left in right,
    Operator.NOT_IN: lambda left, right: left not in right,
    Operator.BETWEEN: lambda left, right: right[0] <= left <= right[1],
}
