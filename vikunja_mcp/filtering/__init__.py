"""Filter expressions and the strategies that evaluate them."""

from .expression import Condition, FilterExpression, Group, Logic, Operator
from .hybrid import FilterResult, HybridFilteringStrategy, Provenance
from .parser import FilterLimits, FilterParser, parse_filter
from .schema import FieldSchema, FieldSpec, FieldType, default_task_schema

__all__ = [
    "Condition",
    "FieldSchema",
    "FieldSpec",
    "FieldType",
    "FilterExpression",
    "FilterLimits",
    "FilterParser",
    "FilterResult",
    "Group",
    "HybridFilteringStrategy",
    "Logic",
    "Operator",
    "Provenance",
    "default_task_schema",
    "parse_filter",
]
