"""Boolean step conditions.

A condition is a string such as ``"${sel.text}" != "" && ${score.value} >= 0.8``.
Tokens are resolved first, then the text is lexed and parsed into a small
expression tree and evaluated.

Dispatch order (this is the whole precedence story):

1. ``true`` / ``false`` (case-insensitive) as the entire expression
2. a leading ``!`` negates everything after it
3. top-level ``&&`` splits into parts that must all be true
4. otherwise top-level ``||`` splits into parts of which one must be true
5. otherwise the first of ``>= <= == != > <`` that splits the text into
   exactly two operands is a comparison
6. otherwise ``""``, ``''`` and empty text are false; anything else is true

Operators inside single or double quotes never split (a backslash escapes a
quote). Evaluation never raises: any failure makes the condition false.
"""

from __future__ import annotations

import logging
import math
import operator
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .datapoints import DataPointStore
from .models import DataPoint
from .tokens import TokenResolver, stringify

logger = logging.getLogger(__name__)

COMPARISON_OPERATORS: tuple[str, ...] = (">=", "<=", "==", "!=", ">", "<")

# Longest first so ">=" never lexes as ">" followed by text.
_OPERATOR_LEXEMES: tuple[str, ...] = ("&&", "||", ">=", "<=", "==", "!=", ">", "<", "!")
_QUOTES = frozenset("\"'")


class LexemeKind(str, Enum):
    TEXT = "text"
    STRING = "string"
    OPERATOR = "operator"


@dataclass(frozen=True, slots=True)
class Lexeme:
    kind: LexemeKind
    text: str
    start: int
    end: int


def tokenize(source: str) -> list[Lexeme]:
    """Split ``source`` into quoted strings, operators and bare text runs.

    Whitespace separates lexemes and is dropped. An unterminated quote swallows
    the rest of the input.
    """

    lexemes: list[Lexeme] = []
    pos = 0
    length = len(source)
    while pos < length:
        char = source[pos]
        if char.isspace():
            pos += 1
            continue

        if char in _QUOTES and (pos == 0 or source[pos - 1] != "\\"):
            end = pos + 1
            while end < length and not (source[end] == char and source[end - 1] != "\\"):
                end += 1
            end = min(end + 1, length)
            lexemes.append(Lexeme(LexemeKind.STRING, source[pos:end], pos, end))
            pos = end
            continue

        op = next((o for o in _OPERATOR_LEXEMES if source.startswith(o, pos)), None)
        if op is not None:
            lexemes.append(Lexeme(LexemeKind.OPERATOR, op, pos, pos + len(op)))
            pos += len(op)
            continue

        end = pos + 1
        while end < length:
            nxt = source[end]
            if nxt.isspace() or (nxt in _QUOTES and source[end - 1] != "\\"):
                break
            if any(source.startswith(o, end) for o in _OPERATOR_LEXEMES):
                break
            end += 1
        lexemes.append(Lexeme(LexemeKind.TEXT, source[pos:end], pos, end))
        pos = end
    return lexemes


# -- expression tree ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BoolLiteral:
    value: bool


@dataclass(frozen=True, slots=True)
class Not:
    operand: Expr


@dataclass(frozen=True, slots=True)
class AllOf:
    parts: tuple[Expr, ...]


@dataclass(frozen=True, slots=True)
class AnyOf:
    parts: tuple[Expr, ...]


@dataclass(frozen=True, slots=True)
class Compare:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True, slots=True)
class Truthy:
    text: str


Expr = Union[BoolLiteral, Not, AllOf, AnyOf, Compare, Truthy]


def parse_literal(text: str) -> Any:
    """Operand value: quoted string, boolean, number, or the raw text."""

    text = text.strip()
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if len(text) >= 1 and text[0] in _QUOTES and text[-1] == text[0]:
        return text[1:-1]
    number = _parse_number(text)
    return text if number is None else number


def _parse_number(text: str) -> float | int | None:
    text = text.strip()
    if not text:
        return None
    lowered = text.lower()
    if "_" in text:
        return None
    if lowered.startswith(("0x", "0o", "0b")):
        try:
            return int(text, 0)
        except ValueError:
            return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() and "." not in text and "e" not in lowered else number


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        number = _parse_number(value)
        return None if number is None else float(number)
    return None


class ConditionParser:
    """Recursive-descent parser from condition text to an :data:`Expr` tree."""

    def parse(self, source: str) -> Expr:
        text = source.strip()
        lowered = text.lower()
        if lowered == "true":
            return BoolLiteral(True)
        if lowered == "false":
            return BoolLiteral(False)
        if text.startswith("!"):
            return Not(self.parse(text[1:]))

        lexemes = tokenize(text)

        parts = self._split(text, lexemes, "&&")
        if len(parts) >= 2:
            return AllOf(tuple(self.parse(p) for p in parts))

        parts = self._split(text, lexemes, "||")
        if len(parts) >= 2:
            return AnyOf(tuple(self.parse(p) for p in parts))

        for op in COMPARISON_OPERATORS:
            parts = self._split(text, lexemes, op)
            if len(parts) == 2:
                return Compare(op, parse_literal(parts[0]), parse_literal(parts[1]))

        return Truthy(text)

    @staticmethod
    def _split(text: str, lexemes: Iterable[Lexeme], op: str) -> list[str]:
        """Source text between top-level occurrences of ``op``; empty parts dropped."""

        groups: list[list[Lexeme]] = [[]]
        for lexeme in lexemes:
            if lexeme.kind is LexemeKind.OPERATOR and lexeme.text == op:
                groups.append([])
            else:
                groups[-1].append(lexeme)
        return [text[g[0].start : g[-1].end].strip() for g in groups if g]


_ORDERINGS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def evaluate_expression(expr: Expr) -> bool:
    if isinstance(expr, BoolLiteral):
        return expr.value
    if isinstance(expr, Not):
        return not evaluate_expression(expr.operand)
    if isinstance(expr, AllOf):
        return all(evaluate_expression(p) for p in expr.parts)
    if isinstance(expr, AnyOf):
        return any(evaluate_expression(p) for p in expr.parts)
    if isinstance(expr, Compare):
        return _compare(expr.op, expr.left, expr.right)
    if isinstance(expr, Truthy):
        return expr.text not in {'""', "''", ""}
    raise TypeError(f"Unknown expression node: {type(expr).__name__}")


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return stringify(left) == stringify(right)
    if op == "!=":
        return stringify(left) != stringify(right)

    compare = _ORDERINGS[op]
    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        return compare(left_num, right_num)
    return compare(stringify(left), stringify(right))


def evaluate(expression: str) -> bool:
    """Evaluate an already-interpolated expression. Never raises."""

    try:
        return evaluate_expression(ConditionParser().parse(expression))
    except Exception:
        logger.warning("Condition evaluation failed", extra={"condition": expression}, exc_info=True)
        return False


def evaluate_condition(
    condition: str | None, data_points: DataPointStore | Iterable[DataPoint]
) -> bool:
    """Decide whether a step runs.

    An empty condition always runs the step; any failure skips it.
    """

    if condition is None or not str(condition).strip():
        return True

    try:
        interpolated = TokenResolver(data_points).resolve_text(str(condition).strip())
    except Exception:
        logger.warning("Condition interpolation failed", extra={"condition": condition}, exc_info=True)
        return False

    result = evaluate(interpolated)
    logger.debug(
        "Condition evaluated",
        extra={"condition": condition, "interpolated": interpolated, "result": result},
    )
    return result
