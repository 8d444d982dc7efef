"""`${dataPointId[.field]}` tokens: scanning, creation and resolution.

Token grammar::

    "${" IDENT [ "." ( IDENT | "__raw__" ) ] "}"      IDENT = [A-Za-z0-9_-]+

Tokens are resolved against the run's data point store when the containing step
executes. A token that cannot be resolved, even after id normalization, becomes
the empty string so unresolved placeholders never reach a prompt or the page.
"""

from __future__ import annotations

import json
import logging
import math
import string
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from .datapoints import DataPointStore
from .models import DataPoint

logger = logging.getLogger(__name__)

RAW_FIELD = "__raw__"
TOKEN_OPEN = "${"
TOKEN_CLOSE = "}"

_IDENT_CHARS = frozenset(string.ascii_letters + string.digits + "_-")

# Shortest digit run treated as a timestamp suffix (seconds since the epoch).
_MIN_TIMESTAMP_DIGITS = 10


@dataclass(frozen=True, slots=True)
class TokenRef:
    data_point_id: str
    field: str | None = None

    @property
    def is_raw(self) -> bool:
        return self.field == RAW_FIELD

    def __str__(self) -> str:
        return create_token(self.data_point_id, self.field)


@dataclass(frozen=True, slots=True)
class TokenSpan:
    start: int
    end: int
    ref: TokenRef


def _read_ident(text: str, pos: int) -> int:
    end = pos
    while end < len(text) and text[end] in _IDENT_CHARS:
        end += 1
    return end


def _match_at(text: str, start: int) -> TokenSpan | None:
    pos = start + len(TOKEN_OPEN)
    ident_end = _read_ident(text, pos)
    if ident_end == pos:
        return None
    data_point_id = text[pos:ident_end]
    pos = ident_end

    field: str | None = None
    if pos < len(text) and text[pos] == ".":
        field_end = _read_ident(text, pos + 1)
        if field_end == pos + 1:
            return None
        field = text[pos + 1 : field_end]
        pos = field_end

    if not text.startswith(TOKEN_CLOSE, pos):
        return None
    return TokenSpan(start=start, end=pos + len(TOKEN_CLOSE), ref=TokenRef(data_point_id, field))


def scan_tokens(text: str) -> Iterator[TokenSpan]:
    """Yield every well-formed token in ``text``, left to right, non-overlapping."""

    if not isinstance(text, str):
        return
    pos = 0
    while True:
        start = text.find(TOKEN_OPEN, pos)
        if start < 0:
            return
        span = _match_at(text, start)
        if span is None:
            pos = start + 1
            continue
        yield span
        pos = span.end


def iter_placeholders(text: str) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` of every ``${...}`` placeholder, well-formed or not."""

    pos = 0
    while True:
        start = text.find(TOKEN_OPEN, pos)
        if start < 0:
            return
        end = text.find(TOKEN_CLOSE, start + len(TOKEN_OPEN))
        if end < 0:
            return
        yield start, end + 1
        pos = end + 1


def create_token(data_point_id: str, field: str | None = None) -> str:
    if field:
        return f"{TOKEN_OPEN}{data_point_id}.{field}{TOKEN_CLOSE}"
    return f"{TOKEN_OPEN}{data_point_id}{TOKEN_CLOSE}"


def parse_token(token: str) -> TokenRef | None:
    """Parse a string that is exactly one token (surrounding whitespace allowed)."""

    if not isinstance(token, str):
        return None
    stripped = token.strip()
    span = _match_at(stripped, 0) if stripped.startswith(TOKEN_OPEN) else None
    if span is None or span.end != len(stripped):
        return None
    return span.ref


def is_pure_token(value: object) -> bool:
    return isinstance(value, str) and parse_token(value) is not None


def has_tokens(text: object) -> bool:
    if not isinstance(text, str):
        return False
    return next(scan_tokens(text), None) is not None


def extract_token_references(text: object) -> list[TokenRef]:
    """All references in ``text`` in order of appearance.

    ``__raw__`` is a rendering hint, not a field, so it is reported as ``field=None``.
    """

    if not isinstance(text, str):
        return []
    refs: list[TokenRef] = []
    for span in scan_tokens(text):
        field = None if span.ref.is_raw else span.ref.field
        refs.append(TokenRef(span.ref.data_point_id, field))
    return refs


def to_pretty_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def stringify(value: Any) -> str:
    """Plain string conversion for token output and condition operands.

    Follows the host's conventions: ``None`` is empty, booleans are lower case,
    integral floats drop the fractional part, records and lists are pretty JSON.
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list, tuple)):
        return to_pretty_json(value)
    return str(value)


def render_value(value: Any, field: str | None) -> str:
    """Apply the field-extraction rule of a token to a data point value."""

    if field is None or field == RAW_FIELD:
        return stringify(value)
    if isinstance(value, dict):
        return stringify(value.get(field))
    if isinstance(value, list):
        if field.isdigit() and int(field) < len(value):
            return stringify(value[int(field)])
        return ""
    # A field on a scalar value falls back to the whole value.
    return stringify(value)


def _split_timestamp(data_point_id: str) -> tuple[str, str] | None:
    base, sep, tail = data_point_id.rpartition("_")
    if not sep or not base or not tail.isdigit():
        return None
    return base, tail


class TokenResolver:
    """Resolve tokens against one run's data points."""

    def __init__(self, data_points: DataPointStore | Iterable[DataPoint]) -> None:
        if isinstance(data_points, DataPointStore):
            self._store = data_points
        else:
            self._store = DataPointStore(data_points)

    @property
    def store(self) -> DataPointStore:
        return self._store

    def lookup(self, data_point_id: str) -> DataPoint | None:
        """Find a data point by id, falling back to id normalization."""

        found = self._store.get(data_point_id)
        if found is not None:
            return found

        for strategy in (self._strip_output_timestamp, self._strip_context_timestamp, self._kb_prefix):
            found = strategy(data_point_id)
            if found is not None:
                logger.debug(
                    "Data point id normalized",
                    extra={"requested": data_point_id, "resolved": found.id},
                )
                return found
        return None

    def _strip_output_timestamp(self, data_point_id: str) -> DataPoint | None:
        # step_1_output_1712345678901 -> step_1_output
        split = _split_timestamp(data_point_id)
        if split is None or not split[0].endswith("_output"):
            return None
        return self._store.get(split[0])

    def _strip_context_timestamp(self, data_point_id: str) -> DataPoint | None:
        # selected_text_1712345678901 -> selected_text, or the provider that produced it
        split = _split_timestamp(data_point_id)
        if split is None or len(split[1]) < _MIN_TIMESTAMP_DIGITS:
            return None
        base = split[0]
        found = self._store.get(base) or self._store.find_by_source(base)
        if found is not None:
            return found
        segments = base.split("_")
        for size in range(len(segments) - 1, 0, -1):
            provider_id = "_".join(segments[:size])
            found = self._store.get(provider_id)
            if found is not None:
                return found
        return None

    def _kb_prefix(self, data_point_id: str) -> DataPoint | None:
        # kb_kb_<entry> -> kb_<entry>; exact ids first, then ids extending one by a "_" segment
        if not data_point_id.startswith("kb_"):
            return None
        candidates = [data_point_id]
        current = data_point_id
        while current.startswith("kb_kb_"):
            current = current[len("kb_") :]
            candidates.append(current)
        for candidate in candidates:
            found = self._store.get(candidate) or self._store.find_by_prefix(f"{candidate}_")
            if found is not None:
                return found
        return None

    def resolve_reference(self, ref: TokenRef) -> str:
        data_point = self.lookup(ref.data_point_id)
        if data_point is None:
            logger.warning(
                "Unresolved data point reference",
                extra={"data_point_id": ref.data_point_id, "available": len(self._store)},
            )
            return ""
        return render_value(data_point.value, ref.field)

    def resolve_text(self, text: str) -> str:
        """Replace every token in ``text``; text without tokens is returned as is."""

        if not isinstance(text, str):
            return stringify(text)

        spans = list(scan_tokens(text))
        if not spans:
            return text

        resolved: dict[TokenRef, str] = {}
        parts: list[str] = []
        pos = 0
        for span in spans:
            parts.append(text[pos : span.start])
            if span.ref not in resolved:
                resolved[span.ref] = self.resolve_reference(span.ref)
            parts.append(resolved[span.ref])
            pos = span.end
        parts.append(text[pos:])
        return "".join(parts)


def interpolate(text: str, data_points: DataPointStore | Iterable[DataPoint]) -> str:
    return TokenResolver(data_points).resolve_text(text)
