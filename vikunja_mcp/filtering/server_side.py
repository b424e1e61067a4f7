"""Server-side filter evaluation.

Translates an expression into Vikunja's filter query language when every
condition has a one-to-one remote equivalent. When it does not, the outcome is
``Incompatible``: an expected routing signal for the hybrid strategy, not an
error. Transport, timeout and authentication failures propagate as
``RemoteError``.
"""

import logging
from dataclasses import dataclass
from typing import Any

from ..core.circuit_breaker import CircuitBreaker
from ..core.models import Task
from ..core.vikunja_client import RemoteTaskClient
from ..utils.errors import RemoteError
from .expression import Condition, FilterExpression, Group, Logic, Node, Operator, Scalar
from .schema import FieldSchema

logger = logging.getLogger(__name__)

_REMOTE_OPERATORS = {
    Operator.EQ: "=",
    Operator.NE: "!=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.IN: "in",
    Operator.NOT_IN: "not in",
    Operator.CONTAINS: "like",
}
_REMOTE_LOGIC = {Logic.AND: " && ", Logic.OR: " || "}


@dataclass(frozen=True)
class Incompatible:
    """Why (part of) an expression cannot be evaluated by the remote API."""

    reason: str
    condition: Condition | None = None


@dataclass(frozen=True)
class ServerOutcome:
    """Result of a server attempt: either items or an incompatibility."""

    items: list[Task] | None = None
    incompatible: Incompatible | None = None
    query: str | None = None

    @property
    def ok(self) -> bool:
        return self.items is not None


class ServerSideStrategy:
    """Pushes filters to the remote API through a circuit breaker."""

    def __init__(self, schema: FieldSchema, breaker: CircuitBreaker):
        self.schema = schema
        self.breaker = breaker

    def _condition_incompatibility(self, condition: Condition) -> Incompatible | None:
        spec = self.schema[condition.field]
        operator = condition.operator
        if operator is Operator.BETWEEN:
            supported = spec.server_supports(Operator.GTE) and spec.server_supports(Operator.LTE)
        else:
            supported = spec.server_supports(operator)
        if not supported:
            return Incompatible(
                f"operator '{operator.value}' on field '{spec.name}' is not supported by the remote API",
                condition,
            )

        values = condition.value if isinstance(condition.value, tuple) else (condition.value,)
        for value in values:
            if isinstance(value, str) and any(ch.isspace() or ch == "," for ch in value):
                return Incompatible(
                    f"value '{value}' for field '{spec.name}' cannot be expressed in a remote query",
                    condition,
                )
        return None

    def _find_incompatibility(self, node: Node, level: int) -> Incompatible | None:
        if isinstance(node, Condition):
            return self._condition_incompatibility(node)
        if level + 1 > self.schema.max_server_depth:
            return Incompatible(
                f"nesting depth {level + 1} exceeds what the remote API supports "
                f"({self.schema.max_server_depth})"
            )
        for child in node.children:
            found = self._find_incompatibility(child, level + 1)
            if found is not None:
                return found
        return None

    def check_compatibility(self, expression: FilterExpression | Group) -> Incompatible | None:
        """Return the first reason the expression cannot run remotely, if any."""
        root = expression.root if isinstance(expression, FilterExpression) else expression
        return self._find_incompatibility(root, 0)

    def split_compatible(self, expression: FilterExpression) -> tuple[Group | None, Group | None]:
        """Partition a root AND group into a remote part and a local remainder.

        Only conjunctions can be split: for OR (or a single incompatible
        condition) nothing is pushed to the server.

        Returns:
            (server_part, local_part); either may be None
        """
        root = expression.root
        if root.logic is Logic.OR and len(root.children) > 1:
            return None, root

        remote: list[Node] = []
        local: list[Node] = []
        for child in root.children:
            if self._find_incompatibility(child, 1) is None:
                remote.append(child)
            else:
                local.append(child)
        server_part = Group(Logic.AND, tuple(remote)) if remote else None
        local_part = Group(Logic.AND, tuple(local)) if local else None
        return server_part, local_part

    def _format_value(self, value: Scalar) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return repr(value)
        return value

    def _condition_to_query(self, condition: Condition) -> str:
        name = self.schema[condition.field].remote_name
        if condition.operator is Operator.BETWEEN:
            low, high = condition.value  # type: ignore[misc]
            return f"({name} >= {self._format_value(low)} && {name} <= {self._format_value(high)})"
        if isinstance(condition.value, tuple):
            rendered = ", ".join(self._format_value(v) for v in condition.value)
        else:
            rendered = self._format_value(condition.value)
        return f"{name} {_REMOTE_OPERATORS[condition.operator]} {rendered}"

    def to_query(self, node: Node) -> str:
        """Render a node in the remote filter query language."""
        if isinstance(node, Condition):
            return self._condition_to_query(node)
        parts = []
        for child in node.children:
            rendered = self.to_query(child)
            parts.append(f"({rendered})" if isinstance(child, Group) else rendered)
        return _REMOTE_LOGIC[node.logic].join(parts)

    async def run_query(
        self, group: Group, client: RemoteTaskClient, scope: dict[str, Any]
    ) -> tuple[list[Task], str]:
        """Send a compatible group to the remote API through the breaker."""
        query = self.to_query(group)
        logger.debug(f"Remote filter query: {query}")
        items = await self.breaker.call(client.query, {**scope, "filter": query})
        return items, query

    async def try_server(
        self,
        expression: FilterExpression,
        client: RemoteTaskClient,
        scope: dict[str, Any] | None = None,
    ) -> ServerOutcome:
        """Attempt to evaluate the whole expression remotely.

        Raises:
            RemoteError: On timeout, authentication or transport failure, or
                when the circuit is open
        """
        incompatible = self.check_compatibility(expression)
        if incompatible is not None:
            logger.info(f"Filter not server-evaluable: {incompatible.reason}")
            return ServerOutcome(incompatible=incompatible)

        try:
            items, query = await self.run_query(expression.root, client, scope or {})
        except RemoteError as e:
            if e.kind != "rejected":
                raise
            logger.info(f"Remote API rejected filter query: {e}")
            return ServerOutcome(
                incompatible=Incompatible(f"the remote API rejected the query ({e})"),
                query=self.to_query(expression.root),
            )
        return ServerOutcome(items=items, query=query)
