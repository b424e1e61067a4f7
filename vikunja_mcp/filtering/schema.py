"""Field schema for task filters.

The schema is the closed set of fields a filter may reference. For each field
it records the semantic type (which decides the valid operators and how values
are coerced) and the operators the remote Vikunja API can evaluate natively.
Value coercion lives here so the parser and the client-side evaluator apply
exactly the same rules.
"""

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta
from enum import Enum

from .expression import Operator, Scalar


class FieldType(str, Enum):
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    STRING = "string"
    LIST = "list"


_ORDERING = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})
_EQUALITY = frozenset({Operator.EQ, Operator.NE})
_SETS = frozenset({Operator.IN, Operator.NOT_IN})

TYPE_OPERATORS: dict[FieldType, frozenset[Operator]] = {
    FieldType.NUMBER: _EQUALITY | _ORDERING | _SETS | {Operator.BETWEEN},
    FieldType.DATE: _EQUALITY | _ORDERING | {Operator.BETWEEN},
    FieldType.BOOLEAN: _EQUALITY,
    FieldType.STRING: _EQUALITY | _SETS | {Operator.CONTAINS},
    FieldType.LIST: _EQUALITY | _SETS | {Operator.CONTAINS},
}

# Types whose values are sent to the remote query language as free text
TEXT_TYPES = frozenset({FieldType.STRING, FieldType.LIST, FieldType.DATE})

SAFE_VALUE_CHAR = re.compile(r"[\w \-.:@#/+,!?]")
RELATIVE_DATE = re.compile(r"^now(?:([+-])(\d{1,6})([smhdw]))?$", re.IGNORECASE)

_TRUE_WORDS = frozenset({"true", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "0", "no"})
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
MAX_RELATIVE_YEARS = 100
MAX_RELATIVE_SECONDS = MAX_RELATIVE_YEARS * 366 * 86400


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of one filterable task field."""

    name: str
    type: FieldType
    attribute: str
    remote_name: str
    server_operators: frozenset[Operator] = frozenset()
    aliases: tuple[str, ...] = ()

    def supports(self, operator: Operator) -> bool:
        return operator in TYPE_OPERATORS[self.type]

    def server_supports(self, operator: Operator) -> bool:
        return operator in self.server_operators


class FieldSchema:
    """Closed, case-insensitive mapping of field names and aliases to specs."""

    def __init__(self, fields: Iterable[FieldSpec], max_server_depth: int = 2):
        self._fields: dict[str, FieldSpec] = {}
        self._lookup: dict[str, FieldSpec] = {}
        self.max_server_depth = max_server_depth
        for spec in fields:
            self._fields[spec.name] = spec
            for name in (spec.name, *spec.aliases):
                self._lookup[name.lower()] = spec

    def lookup(self, name: str) -> FieldSpec | None:
        return self._lookup.get(name.lower())

    def __getitem__(self, name: str) -> FieldSpec:
        spec = self.lookup(name)
        if spec is None:
            raise KeyError(name)
        return spec

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)

    @property
    def field_names(self) -> list[str]:
        return sorted(self._fields)

    def with_server_operators(self, overrides: Mapping[str, Iterable[str]]) -> "FieldSchema":
        """Return a copy with the remote operator support replaced per field.

        Raises:
            ValueError: If an override names an unknown field or operator.
        """
        fields = dict(self._fields)
        for name, operators in overrides.items():
            spec = self.lookup(name)
            if spec is None:
                raise ValueError(f"Unknown field in server operator overrides: {name}")
            try:
                ops = frozenset(Operator(op.lower()) for op in operators)
            except ValueError as e:
                raise ValueError(f"Invalid operator in overrides for '{name}': {e}") from e
            fields[spec.name] = replace(spec, server_operators=ops)
        return FieldSchema(fields.values(), max_server_depth=self.max_server_depth)


def first_unsafe_char(text: str) -> int | None:
    """Index of the first character outside the value allow-list, if any."""
    for index, char in enumerate(text):
        if not SAFE_VALUE_CHAR.fullmatch(char):
            return index
    return None


def _coerce_number(raw: Scalar) -> int | float:
    if isinstance(raw, bool):
        raise ValueError(f"Expected a number, got {raw!r}")
    if isinstance(raw, (int, float)):
        return raw
    text = raw.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        raise ValueError(f"Expected a number, got '{raw}'") from None
    if number != number or number in (float("inf"), float("-inf")):
        raise ValueError(f"Expected a finite number, got '{raw}'")
    return number


def _coerce_boolean(raw: Scalar) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"Expected true or false, got '{raw}'")


def _coerce_date(raw: Scalar) -> str:
    if not isinstance(raw, str):
        raise ValueError(f"Expected a date, got {raw!r}")
    text = raw.strip()
    relative = RELATIVE_DATE.match(text)
    if relative:
        _, amount, unit = relative.groups()
        if amount is not None and int(amount) * _UNIT_SECONDS[unit.lower()] > MAX_RELATIVE_SECONDS:
            raise ValueError(
                f"Relative date '{raw}' is more than {MAX_RELATIVE_YEARS} years from now"
            )
        return text.lower()
    try:
        parse_datetime(text)
    except ValueError:
        raise ValueError(
            f"Expected an ISO date (YYYY-MM-DD[THH:MM[:SS]]) or now[+-]N[smhdw], got '{raw}'"
        ) from None
    return text


def coerce_value(field_type: FieldType, raw: Scalar) -> Scalar:
    """Coerce a literal from a filter string to the field's value type.

    Dates are validated but kept as text; relative dates such as ``now+7d``
    are resolved against the clock only when evaluated.

    Raises:
        ValueError: If the literal is not a valid value for the type.
    """
    if field_type is FieldType.NUMBER:
        return _coerce_number(raw)
    if field_type is FieldType.BOOLEAN:
        return _coerce_boolean(raw)
    if field_type is FieldType.DATE:
        return _coerce_date(raw)
    return str(raw)


def parse_datetime(text: str) -> datetime:
    """Parse an ISO date or datetime; naive values are taken as UTC."""
    if len(text) == 10:
        day = date.fromisoformat(text)
        return datetime(day.year, day.month, day.day, tzinfo=UTC)
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def resolve_date(value: str, now: datetime) -> datetime:
    """Turn a coerced date value into an aware instant."""
    match = RELATIVE_DATE.match(value)
    if match is None:
        return parse_datetime(value)
    sign, amount, unit = match.groups()
    if sign is None:
        return now
    delta = timedelta(seconds=int(amount) * _UNIT_SECONDS[unit.lower()])
    return now + delta if sign == "+" else now - delta


def _spec(
    name: str,
    field_type: FieldType,
    server: Iterable[Operator] = (),
    attribute: str | None = None,
    remote_name: str | None = None,
    aliases: tuple[str, ...] = (),
) -> FieldSpec:
    return FieldSpec(
        name=name,
        type=field_type,
        attribute=attribute or name,
        remote_name=remote_name or name,
        server_operators=frozenset(server),
        aliases=aliases,
    )


_NUMERIC_SERVER = _EQUALITY | _ORDERING | _SETS
_DATE_SERVER = _EQUALITY | _ORDERING


def default_task_schema() -> FieldSchema:
    """Schema for Vikunja tasks with conservative remote operator support.

    The remote API has no substring operator and filters labels by id rather
    than title, so ``contains`` and every label comparison run client-side.
    """
    return FieldSchema(
        [
            _spec("id", FieldType.NUMBER, _NUMERIC_SERVER),
            _spec("title", FieldType.STRING, _EQUALITY | _SETS),
            _spec("description", FieldType.STRING),
            _spec("done", FieldType.BOOLEAN, _EQUALITY),
            _spec("priority", FieldType.NUMBER, _NUMERIC_SERVER),
            _spec("percent_done", FieldType.NUMBER, _NUMERIC_SERVER, aliases=("percentDone",)),
            _spec("due_date", FieldType.DATE, _DATE_SERVER, aliases=("dueDate", "due")),
            _spec("start_date", FieldType.DATE, _DATE_SERVER, aliases=("startDate",)),
            _spec("end_date", FieldType.DATE, _DATE_SERVER, aliases=("endDate",)),
            _spec("done_at", FieldType.DATE, _DATE_SERVER, aliases=("doneAt",)),
            _spec("created", FieldType.DATE, _DATE_SERVER),
            _spec("updated", FieldType.DATE, _DATE_SERVER),
            _spec(
                "project",
                FieldType.NUMBER,
                _EQUALITY | _SETS,
                attribute="project_id",
                aliases=("project_id", "projectId"),
            ),
            _spec("labels", FieldType.LIST, aliases=("label",)),
            _spec("assignees", FieldType.LIST, _EQUALITY | _SETS, aliases=("assignee",)),
        ]
    )
