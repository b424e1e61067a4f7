"""Filter string parser and validator.

Turns a filter string such as::

    priority >= 3 && done = false
    (labels contains 'bug' OR title = 'Release') AND due_date < now+7d

into a validated, bounded :class:`FilterExpression`. Parsing is pure: the same
string and schema always produce structurally equal expressions.

Keywords are case-insensitive. ``&&``/``AND`` and ``||``/``OR`` combine
conditions, AND binds tighter than OR, and parentheses group. Set operators
take a list: ``priority in (1, 2)`` or ``priority in 1, 2``; ``between`` takes
exactly two values.

Every rejection raises a :class:`FilterError` subclass carrying the position
of the offending text:

- :class:`ParseError` for malformed syntax
- :class:`ValidationError` for unknown fields, invalid operators, bad values
  or characters outside the value allow-list
- :class:`LimitExceededError` when length, nesting depth or condition count
  exceed the configured ceilings
"""

from dataclasses import dataclass
from enum import Enum, auto

from ..utils.errors import LimitExceededError, ParseError, ValidationError
from .expression import Condition, FilterExpression, Group, Logic, Node, Operator, Scalar
from .expression import depth as expression_depth
from .schema import TEXT_TYPES, FieldSchema, FieldSpec, coerce_value, first_unsafe_char

DEFAULT_MAX_LENGTH = 4096
DEFAULT_MAX_DEPTH = 6
DEFAULT_MAX_CONDITIONS = 50


@dataclass(frozen=True)
class FilterLimits:
    """Ceilings that keep parsing and evaluation cheap."""

    max_length: int = DEFAULT_MAX_LENGTH
    max_depth: int = DEFAULT_MAX_DEPTH
    max_conditions: int = DEFAULT_MAX_CONDITIONS


class _TokenType(Enum):
    WORD = auto()  # Field name, keyword or unquoted value
    STRING = auto()  # Quoted value
    OPERATOR = auto()  # = != > >= < <=
    AND = auto()  # &&
    OR = auto()  # ||
    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()
    EOF = auto()


@dataclass
class _Token:
    type: _TokenType
    value: str
    pos: int  # Position in original string for error messages

    @property
    def keyword(self) -> str:
        return self.value.upper() if self.type == _TokenType.WORD else ""


_SYMBOL_OPERATORS = (">=", "<=", "!=", "=", ">", "<")
_WORD_STOP_CHARS = "()=!<>&|,'\""
_KEYWORD_OPERATORS = {
    "CONTAINS": Operator.CONTAINS,
    "LIKE": Operator.CONTAINS,
    "IN": Operator.IN,
    "BETWEEN": Operator.BETWEEN,
}


class _Tokenizer:
    """Tokenizer for filter strings."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.length = len(text)

    def _skip_whitespace(self) -> None:
        while self.pos < self.length and self.text[self.pos].isspace():
            self.pos += 1

    def _read_quoted_string(self) -> str:
        quote = self.text[self.pos]
        start_pos = self.pos
        end = self.text.find(quote, self.pos + 1)
        if end == -1:
            raise ParseError(
                f"Unterminated quoted string starting at position {start_pos}",
                start_pos,
                self.text[start_pos : start_pos + 20],
            )
        self.pos = end + 1
        return self.text[start_pos + 1 : end]

    def _read_word(self) -> str:
        start = self.pos
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch in _WORD_STOP_CHARS or ch.isspace():
                break
            self.pos += 1
        return self.text[start : self.pos]

    def tokenize(self) -> list[_Token]:
        tokens: list[_Token] = []

        while True:
            self._skip_whitespace()
            if self.pos >= self.length:
                tokens.append(_Token(_TokenType.EOF, "", self.pos))
                return tokens

            ch = self.text[self.pos]
            start_pos = self.pos
            pair = self.text[self.pos : self.pos + 2]

            if ch == "(":
                tokens.append(_Token(_TokenType.LPAREN, ch, start_pos))
                self.pos += 1
            elif ch == ")":
                tokens.append(_Token(_TokenType.RPAREN, ch, start_pos))
                self.pos += 1
            elif ch == ",":
                tokens.append(_Token(_TokenType.COMMA, ch, start_pos))
                self.pos += 1
            elif pair == "&&":
                tokens.append(_Token(_TokenType.AND, pair, start_pos))
                self.pos += 2
            elif pair == "||":
                tokens.append(_Token(_TokenType.OR, pair, start_pos))
                self.pos += 2
            elif ch in "&|":
                raise ParseError(
                    f"Unexpected '{ch}' at position {start_pos}. Hint: use '{ch * 2}'",
                    start_pos,
                    ch,
                )
            elif pair == "==":
                raise ParseError(
                    f"Unexpected '==' at position {start_pos}. Hint: use single '=' for equality",
                    start_pos,
                    pair,
                )
            elif ch in "=!<>":
                op = next((op for op in _SYMBOL_OPERATORS if self.text.startswith(op, self.pos)), None)
                if op is None:
                    raise ParseError(f"Unexpected character '{ch}' at position {start_pos}", start_pos, ch)
                tokens.append(_Token(_TokenType.OPERATOR, op, start_pos))
                self.pos += len(op)
            elif ch in "'\"":
                tokens.append(_Token(_TokenType.STRING, self._read_quoted_string(), start_pos))
            else:
                tokens.append(_Token(_TokenType.WORD, self._read_word(), start_pos))


class _Parser:
    """Recursive descent parser that validates against the schema as it goes."""

    def __init__(self, tokens: list[_Token], schema: FieldSchema, limits: FilterLimits):
        self.tokens = tokens
        self.pos = 0
        self.schema = schema
        self.limits = limits
        self.condition_count = 0
        self.paren_depth = 0

    def _current(self) -> _Token:
        return self.tokens[self.pos]

    def _advance(self) -> _Token:
        token = self.tokens[self.pos]
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return token

    def _is_and(self, token: _Token) -> bool:
        return token.type == _TokenType.AND or token.keyword == "AND"

    def _is_or(self, token: _Token) -> bool:
        return token.type == _TokenType.OR or token.keyword == "OR"

    def parse(self) -> Group:
        if self._current().type == _TokenType.EOF:
            raise ParseError("Empty filter expression", 0, "")

        node = self._parse_or()

        token = self._current()
        if token.type == _TokenType.RPAREN:
            raise ParseError(f"Unbalanced ')' at position {token.pos}", token.pos, token.value)
        if token.type != _TokenType.EOF:
            raise ParseError(
                f"Unexpected '{token.value}' at position {token.pos}. "
                "Hint: join conditions with AND/OR and quote values containing spaces",
                token.pos,
                token.value,
            )

        if isinstance(node, Condition):
            return Group(Logic.AND, (node,))
        return node

    def _parse_or(self) -> Node:
        children = [self._parse_and()]
        while self._is_or(self._current()):
            self._advance()
            children.append(self._parse_and())
        return children[0] if len(children) == 1 else Group(Logic.OR, tuple(children))

    def _parse_and(self) -> Node:
        children = [self._parse_atom()]
        while self._is_and(self._current()):
            self._advance()
            children.append(self._parse_atom())
        return children[0] if len(children) == 1 else Group(Logic.AND, tuple(children))

    def _parse_atom(self) -> Node:
        token = self._current()

        if token.type == _TokenType.LPAREN:
            self.paren_depth += 1
            if self.paren_depth > self.limits.max_depth:
                raise LimitExceededError(
                    "nesting depth", self.paren_depth, self.limits.max_depth, token.pos, token.value
                )
            self._advance()
            node = self._parse_or()
            closing = self._current()
            if closing.type != _TokenType.RPAREN:
                raise ParseError(
                    f"Unbalanced parentheses: expected ')' at position {closing.pos}",
                    closing.pos,
                    closing.value,
                )
            self._advance()
            self.paren_depth -= 1
            return node

        if token.keyword in ("AND", "OR"):
            raise ParseError(
                f"Unexpected '{token.value}' at position {token.pos}: missing condition",
                token.pos,
                token.value,
            )
        if token.type == _TokenType.WORD:
            return self._parse_condition()

        if token.type == _TokenType.EOF:
            raise ParseError("Unexpected end of expression", token.pos, "")
        if token.type == _TokenType.OPERATOR:
            raise ParseError(
                f"Missing field name before operator '{token.value}' at position {token.pos}",
                token.pos,
                token.value,
            )
        raise ParseError(f"Expected a field name at position {token.pos}", token.pos, token.value)

    def _parse_condition(self) -> Condition:
        field_token = self._advance()
        spec = self.schema.lookup(field_token.value)
        if spec is None:
            raise ValidationError(
                f"Unknown field '{field_token.value}' at position {field_token.pos}. "
                f"Known fields: {', '.join(self.schema.field_names)}",
                field_token.pos,
                field_token.value,
            )

        self.condition_count += 1
        if self.condition_count > self.limits.max_conditions:
            raise LimitExceededError(
                "condition count",
                self.condition_count,
                self.limits.max_conditions,
                field_token.pos,
                field_token.value,
            )

        op_token = self._current()
        operator = self._parse_operator(spec)
        if not spec.supports(operator):
            raise ValidationError(
                f"Operator '{operator.value}' is not valid for {spec.type.value} field "
                f"'{spec.name}' at position {op_token.pos}",
                op_token.pos,
                op_token.value,
            )

        value_tokens = self._parse_values(operator)
        values = tuple(self._coerce(spec, token) for token in value_tokens)

        if operator.takes_range and len(values) != 2:
            raise ValidationError(
                f"Operator 'between' requires exactly 2 values, got {len(values)} "
                f"at position {op_token.pos}",
                op_token.pos,
                op_token.value,
            )
        if operator.takes_set or operator.takes_range:
            return Condition(spec.name, operator, values, field_token.pos)
        return Condition(spec.name, operator, values[0], field_token.pos)

    def _parse_operator(self, spec: FieldSpec) -> Operator:
        token = self._current()
        if token.type == _TokenType.OPERATOR:
            self._advance()
            return Operator(token.value)
        if token.keyword in _KEYWORD_OPERATORS:
            self._advance()
            return _KEYWORD_OPERATORS[token.keyword]
        if token.keyword == "NOT":
            self._advance()
            if self._current().keyword != "IN":
                raise ParseError(
                    f"Expected 'in' after 'not' at position {self._current().pos}",
                    self._current().pos,
                    self._current().value,
                )
            self._advance()
            return Operator.NOT_IN
        raise ParseError(
            f"Expected an operator after '{spec.name}' at position {token.pos}",
            token.pos,
            token.value,
        )

    def _expect_scalar(self) -> _Token:
        token = self._current()
        if token.type not in (_TokenType.WORD, _TokenType.STRING):
            raise ParseError(
                f"Expected a value at position {token.pos}", token.pos, token.value
            )
        return self._advance()

    def _parse_values(self, operator: Operator) -> list[_Token]:
        if not (operator.takes_set or operator.takes_range):
            return [self._expect_scalar()]

        open_token = self._current()
        parenthesized = open_token.type == _TokenType.LPAREN
        if parenthesized:
            self._advance()
            if self._current().type == _TokenType.RPAREN:
                raise ValidationError(
                    f"Operator '{operator.value}' requires at least one value "
                    f"at position {open_token.pos}",
                    open_token.pos,
                    "()",
                )

        values = [self._expect_scalar()]
        while self._current().type == _TokenType.COMMA:
            self._advance()
            values.append(self._expect_scalar())

        if parenthesized:
            closing = self._current()
            if closing.type != _TokenType.RPAREN:
                raise ParseError(
                    f"Expected ')' to close the value list at position {closing.pos}",
                    closing.pos,
                    closing.value,
                )
            self._advance()
        return values

    def _coerce(self, spec: FieldSpec, token: _Token) -> Scalar:
        offset = 1 if token.type == _TokenType.STRING else 0
        if spec.type in TEXT_TYPES:
            bad = first_unsafe_char(token.value)
            if bad is not None:
                char = token.value[bad]
                raise ValidationError(
                    f"Character {char!r} is not allowed in filter values "
                    f"(position {token.pos + offset + bad})",
                    token.pos + offset + bad,
                    char,
                )
            if not token.value.strip():
                raise ValidationError(
                    f"Empty value for field '{spec.name}' at position {token.pos}",
                    token.pos,
                    token.value,
                )
        try:
            return coerce_value(spec.type, token.value)
        except ValueError as e:
            raise ValidationError(
                f"Invalid value for {spec.type.value} field '{spec.name}' "
                f"at position {token.pos}: {e}",
                token.pos,
                token.value,
            ) from None


class FilterParser:
    """Parses filter strings against a field schema within fixed limits.

    Usage:
        parser = FilterParser(default_task_schema())
        expression = parser.parse("priority >= 3 AND done = false")
    """

    def __init__(self, schema: FieldSchema, limits: FilterLimits | None = None):
        self.schema = schema
        self.limits = limits or FilterLimits()

    def parse(self, raw: str) -> FilterExpression:
        """Parse and validate a filter string.

        Raises:
            ParseError: If the string is malformed
            ValidationError: If a field, operator or value is not acceptable
            LimitExceededError: If the string is too long, too deep or too big
        """
        if len(raw) > self.limits.max_length:
            raise LimitExceededError(
                "filter length",
                len(raw),
                self.limits.max_length,
                self.limits.max_length,
                raw[self.limits.max_length : self.limits.max_length + 20],
            )
        if not raw.strip():
            raise ParseError("Empty filter expression", 0, "")

        tokens = _Tokenizer(raw).tokenize()
        root = _Parser(tokens, self.schema, self.limits).parse()

        root_depth = expression_depth(root)
        if root_depth > self.limits.max_depth:
            raise LimitExceededError("nesting depth", root_depth, self.limits.max_depth, 0, raw[:20])

        return FilterExpression(root=root, raw_source=raw)


def parse_filter(raw: str, schema: FieldSchema, limits: FilterLimits | None = None) -> FilterExpression:
    """Parse a filter string; see :class:`FilterParser`."""
    return FilterParser(schema, limits).parse(raw)
