"""Filter expression AST.

A parsed filter is a tree of ``Group`` nodes (AND/OR) whose leaves are
``Condition`` nodes. All nodes are frozen dataclasses so an expression can be
shared between sessions and strategies without copying.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum


class Operator(str, Enum):
    """Comparison operators understood by the filter language."""

    EQ = "="
    NE = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not in"
    BETWEEN = "between"

    @property
    def takes_set(self) -> bool:
        return self in (Operator.IN, Operator.NOT_IN)

    @property
    def takes_range(self) -> bool:
        return self is Operator.BETWEEN


class Logic(str, Enum):
    AND = "AND"
    OR = "OR"


Scalar = int | float | bool | str
Value = Scalar | tuple[Scalar, ...]


@dataclass(frozen=True)
class Condition:
    """A single ``field operator value`` comparison."""

    field: str
    operator: Operator
    value: Value
    position: int = dataclass_field(default=0, compare=False)


@dataclass(frozen=True)
class Group:
    """A logical combination of conditions and nested groups."""

    logic: Logic
    children: tuple["Condition | Group", ...]

    def __post_init__(self) -> None:
        if not self.children:
            raise ValueError("A filter group needs at least one condition")


Node = Condition | Group


@dataclass(frozen=True)
class FilterExpression:
    """A validated filter: the root group plus the text it was parsed from."""

    root: Group
    raw_source: str = dataclass_field(default="", compare=False)

    def conditions(self) -> Iterator[Condition]:
        return iter_conditions(self.root)

    @property
    def condition_count(self) -> int:
        return count_conditions(self.root)

    @property
    def depth(self) -> int:
        return depth(self.root)

    def __str__(self) -> str:
        return expression_to_string(self)


def iter_conditions(node: Node) -> Iterator[Condition]:
    """Yield every condition leaf, left to right."""
    if isinstance(node, Condition):
        yield node
        return
    for child in node.children:
        yield from iter_conditions(child)


def count_conditions(node: Node) -> int:
    return sum(1 for _ in iter_conditions(node))


def depth(node: Node) -> int:
    """Group nesting depth; a group of plain conditions has depth 1."""
    if isinstance(node, Condition):
        return 0
    return 1 + max(depth(child) for child in node.children)


def _format_scalar(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return f"'{value}'"


def condition_to_string(condition: Condition) -> str:
    if isinstance(condition.value, tuple):
        rendered = "(" + ", ".join(_format_scalar(v) for v in condition.value) + ")"
    else:
        rendered = _format_scalar(condition.value)
    return f"{condition.field} {condition.operator.value} {rendered}"


def group_to_string(group: Group) -> str:
    parts = []
    for child in group.children:
        if isinstance(child, Group):
            parts.append(f"({group_to_string(child)})")
        else:
            parts.append(condition_to_string(child))
    return f" {group.logic.value} ".join(parts)


def expression_to_string(expression: FilterExpression) -> str:
    """Render an expression in canonical form.

    The output parses back to a structurally equal expression.
    """
    return group_to_string(expression.root)
