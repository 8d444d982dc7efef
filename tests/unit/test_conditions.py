"""Unit tests for the step condition evaluator."""

from __future__ import annotations

import pytest
from factories import make_dp

from stepflow.engine.workflow.conditions import (
    AllOf,
    AnyOf,
    BoolLiteral,
    Compare,
    ConditionParser,
    LexemeKind,
    Not,
    Truthy,
    evaluate,
    evaluate_condition,
    parse_literal,
    tokenize,
)
from stepflow.engine.workflow.datapoints import DataPointStore


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ('"" != ""', False),
        ('"a" != ""', True),
        ('5 > 3 && "" != ""', False),
        ("1 > 2 || 3 > 2", True),
        ("true", True),
        ("FALSE", False),
        ("!false", True),
        ("!true", False),
        ('"abc" == "abc"', True),
        ("'abc' == \"abc\"", True),
        ("10 > 9", True),
        ("10 >= 10", True),
        ("2 <= 1", False),
        ("0.8 < 0.9", True),
        ('"b" > "a"', True),
        ("10 > 9a", False),
        ("true == true", True),
        ('""', False),
        ("''", False),
        ("anything", True),
        ("1 == 1.0", True),
    ],
)
def test_evaluate_truth_table(expression: str, expected: bool) -> None:
    assert evaluate(expression) is expected


def test_empty_condition_is_true() -> None:
    assert evaluate_condition("", []) is True
    assert evaluate_condition("   ", []) is True
    assert evaluate_condition(None, []) is True


def test_operators_inside_quotes_do_not_split() -> None:
    assert evaluate('"a && b" == "a && b"') is True
    assert evaluate('"x || y" != "x"') is True
    assert evaluate('"a > b"') is True


def test_escaped_quote_does_not_close_string() -> None:
    lexemes = tokenize(r'"say \"hi\" && bye" == x')
    kinds = [lx.kind for lx in lexemes]
    assert kinds == [LexemeKind.STRING, LexemeKind.OPERATOR, LexemeKind.TEXT]


def test_parser_dispatch_order() -> None:
    parser = ConditionParser()

    assert parser.parse("TRUE") == BoolLiteral(True)
    assert isinstance(parser.parse("!a == b"), Not)
    assert isinstance(parser.parse("a || b && c"), AllOf)
    assert isinstance(parser.parse("a || b"), AnyOf)
    assert parser.parse("a >= 3") == Compare(">=", "a", 3)
    assert parser.parse("plain") == Truthy("plain")


def test_comparison_needs_exactly_two_operands() -> None:
    parser = ConditionParser()
    assert isinstance(parser.parse("1 == 1 == 1"), Truthy)


def test_parse_literal() -> None:
    assert parse_literal('"x"') == "x"
    assert parse_literal("'x'") == "x"
    assert parse_literal("true") is True
    assert parse_literal("12") == 12
    assert parse_literal("1.5") == 1.5
    assert parse_literal("infinity") == "infinity"
    assert parse_literal("abc") == "abc"


def test_condition_with_tokens() -> None:
    data = DataPointStore([make_dp("sel", {"text": "hi"}), make_dp("score", {"value": 0.9})])

    assert evaluate_condition('"${sel.text}" != ""', data) is True
    assert evaluate_condition("${score.value} >= 0.8", data) is True
    assert evaluate_condition('"${missing.text}" != ""', data) is False


def test_condition_on_empty_value_is_false() -> None:
    data = DataPointStore([make_dp("sel", {"text": ""})])
    assert evaluate_condition('"${sel.text}" != ""', data) is False


def test_evaluation_failure_fails_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(self: ConditionParser, source: str) -> object:
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(ConditionParser, "parse", boom)
    assert evaluate("1 == 1") is False
