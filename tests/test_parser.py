"""Tests for the filter expression parser."""

import pytest

from vikunja_mcp.filtering.expression import Condition, Group, Logic, Operator, expression_to_string
from vikunja_mcp.filtering.parser import FilterLimits, FilterParser, parse_filter
from vikunja_mcp.utils.errors import LimitExceededError, ParseError, ValidationError


class TestParseValidFilters:
    """Tests for filters that should parse."""

    def test_simple_conjunction(self, parser: FilterParser):
        expression = parser.parse("priority >= 3 AND done = false")

        assert expression.root == Group(
            Logic.AND,
            (
                Condition("priority", Operator.GTE, 3),
                Condition("done", Operator.EQ, False),
            ),
        )
        assert expression.raw_source == "priority >= 3 AND done = false"

    def test_symbolic_and_keyword_logic_are_equivalent(self, parser: FilterParser):
        assert parser.parse("priority >= 3 && done = false") == parser.parse(
            "priority >= 3 and done = false"
        )

    def test_single_condition_is_wrapped_in_group(self, parser: FilterParser):
        expression = parser.parse("done = true")

        assert expression.root.logic == Logic.AND
        assert expression.root.children == (Condition("done", Operator.EQ, True),)

    def test_and_binds_tighter_than_or(self, parser: FilterParser):
        expression = parser.parse("priority = 1 || priority = 2 && done = false")

        assert expression.root == Group(
            Logic.OR,
            (
                Condition("priority", Operator.EQ, 1),
                Group(
                    Logic.AND,
                    (
                        Condition("priority", Operator.EQ, 2),
                        Condition("done", Operator.EQ, False),
                    ),
                ),
            ),
        )

    def test_parentheses_override_precedence(self, parser: FilterParser):
        expression = parser.parse("(priority = 1 OR priority = 2) AND done = false")

        assert expression.root.logic == Logic.AND
        assert isinstance(expression.root.children[0], Group)
        assert expression.root.children[0].logic == Logic.OR

    def test_chains_are_flattened(self, parser: FilterParser):
        expression = parser.parse("id = 1 && id = 2 && id = 3")

        assert len(expression.root.children) == 3
        assert expression.depth == 1

    def test_field_aliases_resolve_to_canonical_name(self, parser: FilterParser):
        expression = parser.parse("dueDate < 2024-01-01 && percentDone >= 0.5")

        fields = [condition.field for condition in expression.conditions()]
        assert fields == ["due_date", "percent_done"]

    def test_field_names_are_case_insensitive(self, parser: FilterParser):
        expression = parser.parse("PRIORITY = 3")

        assert next(expression.conditions()).field == "priority"

    def test_in_with_parenthesized_list(self, parser: FilterParser):
        condition = next(parser.parse("priority in (1, 2, 3)").conditions())

        assert condition.operator == Operator.IN
        assert condition.value == (1, 2, 3)

    def test_in_with_bare_list(self, parser: FilterParser):
        condition = next(parser.parse("priority IN 1, 2").conditions())

        assert condition.value == (1, 2)

    def test_not_in(self, parser: FilterParser):
        condition = next(parser.parse("labels not in (bug, docs)").conditions())

        assert condition.operator == Operator.NOT_IN
        assert condition.value == ("bug", "docs")

    def test_between_takes_two_values(self, parser: FilterParser):
        condition = next(parser.parse("priority between (1, 3)").conditions())

        assert condition.operator == Operator.BETWEEN
        assert condition.value == (1, 3)

    def test_like_is_an_alias_for_contains(self, parser: FilterParser):
        condition = next(parser.parse("title like 'release'").conditions())

        assert condition.operator == Operator.CONTAINS

    def test_quoted_values_may_contain_spaces(self, parser: FilterParser):
        condition = next(parser.parse('title = "Write release notes"').conditions())

        assert condition.value == "Write release notes"

    def test_values_are_coerced_to_field_type(self, parser: FilterParser):
        expression = parser.parse("done = yes && percent_done > 0.25 && id = 7")

        assert [c.value for c in expression.conditions()] == [True, 0.25, 7]

    def test_dates_are_kept_as_text(self, parser: FilterParser):
        expression = parser.parse("due_date < now+7d && created >= 2024-01-01T10:00:00")

        assert [c.value for c in expression.conditions()] == ["now+7d", "2024-01-01T10:00:00"]

    def test_condition_positions_point_at_field(self, parser: FilterParser):
        conditions = list(parser.parse("done = false && priority > 2").conditions())

        assert [c.position for c in conditions] == [0, 16]


class TestParseDeterminism:
    """Parsing is pure: equal input gives structurally equal output."""

    @pytest.mark.parametrize(
        "raw",
        [
            "priority >= 3 AND done = false",
            "(labels contains 'bug' OR title = 'Release notes') AND due_date < now+7d",
            "project in (1, 2) && (assignees = alice || assignees = bob)",
            "percent_done between (0.1, 0.9) && done != true",
        ],
    )
    def test_same_input_same_ast(self, schema, raw: str):
        assert FilterParser(schema).parse(raw) == FilterParser(schema).parse(raw)

    @pytest.mark.parametrize(
        "raw",
        [
            "priority >= 3 AND done = false",
            "(labels contains 'bug' OR title = 'Release notes') AND due_date < now+7d",
            "labels not in (bug, docs) || priority between (1, 3)",
        ],
    )
    def test_canonical_string_parses_back(self, parser: FilterParser, raw: str):
        expression = parser.parse(raw)

        assert parser.parse(expression_to_string(expression)) == expression

    def test_parse_filter_helper(self, schema):
        assert parse_filter("id = 1", schema) == FilterParser(schema).parse("id = 1")


class TestParseErrors:
    """Every rejection is typed and carries a position."""

    @pytest.mark.parametrize("raw", ["", "   "])
    def test_empty_filter(self, parser: FilterParser, raw: str):
        with pytest.raises(ParseError):
            parser.parse(raw)

    def test_missing_value(self, parser: FilterParser):
        with pytest.raises(ParseError, match="Expected a value"):
            parser.parse("priority >= ")

    def test_missing_operator(self, parser: FilterParser):
        with pytest.raises(ParseError, match="Expected an operator") as exc_info:
            parser.parse("priority 3")
        assert exc_info.value.position == 9

    def test_unclosed_parenthesis(self, parser: FilterParser):
        with pytest.raises(ParseError, match="Unbalanced"):
            parser.parse("(priority = 1")

    def test_unexpected_closing_parenthesis(self, parser: FilterParser):
        with pytest.raises(ParseError, match="Unbalanced") as exc_info:
            parser.parse("priority = 1)")
        assert exc_info.value.position == 12

    def test_single_ampersand_has_hint(self, parser: FilterParser):
        with pytest.raises(ParseError, match="use '&&'") as exc_info:
            parser.parse("priority = 1 & done = true")
        assert exc_info.value.position == 13
        assert exc_info.value.fragment == "&"

    def test_double_equals_has_hint(self, parser: FilterParser):
        with pytest.raises(ParseError, match="single '='"):
            parser.parse("priority == 1")

    def test_dangling_logic_keyword(self, parser: FilterParser):
        with pytest.raises(ParseError, match="missing condition"):
            parser.parse("priority = 1 AND AND done = true")

    def test_trailing_logic(self, parser: FilterParser):
        with pytest.raises(ParseError, match="end of expression"):
            parser.parse("priority = 1 &&")

    def test_unterminated_string(self, parser: FilterParser):
        with pytest.raises(ParseError, match="Unterminated") as exc_info:
            parser.parse("title = 'abc")
        assert exc_info.value.position == 8

    def test_conditions_must_be_joined(self, parser: FilterParser):
        with pytest.raises(ParseError, match="join conditions"):
            parser.parse("priority = 1 done = true")

    def test_unknown_field_is_rejected(self, parser: FilterParser):
        with pytest.raises(ValidationError, match="Unknown field 'colour'") as exc_info:
            parser.parse("done = false && colour = red")
        assert exc_info.value.position == 16
        assert exc_info.value.fragment == "colour"

    def test_operator_must_fit_field_type(self, parser: FilterParser):
        with pytest.raises(ValidationError, match="not valid for number field") as exc_info:
            parser.parse("priority contains 3")
        assert exc_info.value.position == 9

    def test_ordering_on_boolean_is_rejected(self, parser: FilterParser):
        with pytest.raises(ValidationError):
            parser.parse("done > false")

    @pytest.mark.parametrize(
        "raw",
        ["priority = high", "done = maybe", "due_date < tomorrow", "id = nan"],
    )
    def test_invalid_values(self, parser: FilterParser, raw: str):
        with pytest.raises(ValidationError, match="Invalid value"):
            parser.parse(raw)

    @pytest.mark.parametrize("value", ["now+999999w", "now-999999d", "now+5300w"])
    def test_relative_date_out_of_range(self, parser: FilterParser, value: str):
        """Relative offsets beyond 100 years are rejected at parse time."""
        with pytest.raises(ValidationError, match="more than 100 years") as exc_info:
            parser.parse(f"due_date < {value} OR description contains 'wip'")
        assert exc_info.value.position == 11
        assert exc_info.value.fragment == value

    def test_between_requires_two_values(self, parser: FilterParser):
        with pytest.raises(ValidationError, match="exactly 2 values"):
            parser.parse("priority between (1, 2, 3)")

    def test_in_requires_non_empty_set(self, parser: FilterParser):
        with pytest.raises(ValidationError, match="at least one value") as exc_info:
            parser.parse("priority in ()")
        assert exc_info.value.fragment == "()"

    def test_not_without_in(self, parser: FilterParser):
        with pytest.raises(ParseError, match="Expected 'in' after 'not'"):
            parser.parse("labels not bug")

    def test_disallowed_character_in_quoted_value(self, parser: FilterParser):
        with pytest.raises(ValidationError, match="not allowed") as exc_info:
            parser.parse("title = 'a;b'")
        assert exc_info.value.position == 10
        assert exc_info.value.fragment == ";"

    def test_disallowed_character_in_bare_value(self, parser: FilterParser):
        with pytest.raises(ValidationError, match="not allowed") as exc_info:
            parser.parse("title = a;b")
        assert exc_info.value.position == 9

    @pytest.mark.parametrize("value", ["a%b", "x*", "$(rm)", "a\\b", "{x}"])
    def test_injection_style_characters_rejected(self, parser: FilterParser, value: str):
        with pytest.raises(ValidationError):
            parser.parse(f"description = '{value}'")

    def test_blank_quoted_value(self, parser: FilterParser):
        with pytest.raises(ValidationError, match="Empty value"):
            parser.parse("title = '  '")


class TestParserLimits:
    """Length, depth and condition count ceilings."""

    def test_overlong_filter_is_rejected(self, parser: FilterParser):
        raw = "title = '" + "a" * 4990 + "'"
        assert len(raw) == 5000

        with pytest.raises(LimitExceededError) as exc_info:
            parser.parse(raw)

        error = exc_info.value
        assert str(error) == "filter length 5000 exceeds limit 4096"
        assert error.limit == "filter length"
        assert error.actual == 5000
        assert error.maximum == 4096
        assert error.position == 4096

    def test_filter_at_length_limit_is_accepted(self, schema):
        parser = FilterParser(schema, FilterLimits(max_length=20))

        parser.parse("priority = 1".ljust(20))

    def test_nesting_depth_is_rejected(self, parser: FilterParser):
        raw = "(" * 7 + "priority = 1" + ")" * 7

        with pytest.raises(LimitExceededError) as exc_info:
            parser.parse(raw)

        assert str(exc_info.value) == "nesting depth 7 exceeds limit 6"
        assert exc_info.value.position == 6

    def test_nesting_within_limit_is_accepted(self, parser: FilterParser):
        raw = "(" * 6 + "priority = 1" + ")" * 6

        assert parser.parse(raw).condition_count == 1

    def test_ast_depth_is_checked(self, schema):
        parser = FilterParser(schema, FilterLimits(max_depth=2))

        with pytest.raises(LimitExceededError, match="nesting depth 3 exceeds limit 2"):
            parser.parse("id = 1 && (id = 2 || (id = 3 && id = 4))")

    def test_condition_count_is_rejected(self, parser: FilterParser):
        raw = " && ".join(f"id != {i}" for i in range(51))

        with pytest.raises(LimitExceededError) as exc_info:
            parser.parse(raw)

        assert str(exc_info.value) == "condition count 51 exceeds limit 50"

    def test_condition_count_at_limit_is_accepted(self, parser: FilterParser):
        raw = " && ".join(f"id != {i}" for i in range(50))

        assert parser.parse(raw).condition_count == 50

    def test_custom_limits(self, schema):
        parser = FilterParser(schema, FilterLimits(max_length=100, max_depth=1, max_conditions=2))

        with pytest.raises(LimitExceededError, match="condition count 3 exceeds limit 2"):
            parser.parse("id = 1 && id = 2 && id = 3")
        with pytest.raises(LimitExceededError, match="nesting depth 2 exceeds limit 1"):
            parser.parse("((id = 1))")
