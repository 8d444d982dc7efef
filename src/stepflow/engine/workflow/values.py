"""Typed view of step input values.

Step inputs arrive as arbitrary JSON. They are classified into a small tagged
tree (literal, token-bearing text, record, list) and walked by visitors, so the
token resolver, the repair engine and the validator share one traversal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from .tokens import TokenResolver, create_token, has_tokens

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class LiteralValue:
    value: Any


@dataclass(frozen=True, slots=True)
class TemplateValue:
    """A string containing at least one token."""

    text: str


@dataclass(frozen=True, slots=True)
class RecordValue:
    fields: tuple[tuple[str, InputValue], ...]


@dataclass(frozen=True, slots=True)
class ListValue:
    items: tuple[InputValue, ...]


InputValue = Union[LiteralValue, TemplateValue, RecordValue, ListValue]


def is_legacy_reference(raw: object) -> bool:
    """``{"type": "data_point", "dataPointId": ...}`` objects from older workflows."""

    return (
        isinstance(raw, Mapping)
        and raw.get("type") == "data_point"
        and isinstance(raw.get("dataPointId"), str)
    )


def legacy_reference_to_token(raw: Mapping[str, Any]) -> str:
    field = raw.get("field")
    return create_token(raw["dataPointId"], field if isinstance(field, str) else None)


def classify(raw: Any) -> InputValue:
    if isinstance(raw, str):
        return TemplateValue(raw) if has_tokens(raw) else LiteralValue(raw)
    if is_legacy_reference(raw):
        return TemplateValue(legacy_reference_to_token(raw))
    if isinstance(raw, Mapping):
        return RecordValue(tuple((str(k), classify(v)) for k, v in raw.items()))
    if isinstance(raw, (list, tuple)):
        return ListValue(tuple(classify(item) for item in raw))
    return LiteralValue(raw)


class InputVisitor(ABC, Generic[T]):
    """Walk an :data:`InputValue` tree, tracking the dotted path of each node."""

    def visit(self, node: InputValue, path: str = "") -> T:
        if isinstance(node, TemplateValue):
            return self.visit_template(node, path)
        if isinstance(node, RecordValue):
            return self.visit_record(node, path)
        if isinstance(node, ListValue):
            return self.visit_list(node, path)
        return self.visit_literal(node, path)

    @abstractmethod
    def visit_literal(self, node: LiteralValue, path: str) -> T:
        """A value without tokens, returned or inspected as is."""

    @abstractmethod
    def visit_template(self, node: TemplateValue, path: str) -> T:
        """A string holding at least one token."""

    @abstractmethod
    def visit_record(self, node: RecordValue, path: str) -> T:
        """A nested object; children are visited with ``child_path``."""

    @abstractmethod
    def visit_list(self, node: ListValue, path: str) -> T:
        """A list; items are visited with their index in the path."""


def child_path(path: str, key: str | int) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


class ResolvingVisitor(InputVisitor[Any]):
    """Rebuild plain JSON with every token replaced by its resolved text."""

    def __init__(self, resolver: TokenResolver) -> None:
        self._resolver = resolver

    def visit_literal(self, node: LiteralValue, path: str) -> Any:
        return node.value

    def visit_template(self, node: TemplateValue, path: str) -> Any:
        return self._resolver.resolve_text(node.text)

    def visit_record(self, node: RecordValue, path: str) -> Any:
        return {key: self.visit(value, child_path(path, key)) for key, value in node.fields}

    def visit_list(self, node: ListValue, path: str) -> Any:
        return [self.visit(item, child_path(path, i)) for i, item in enumerate(node.items)]


class TemplateCollector(InputVisitor[list[tuple[str, str]]]):
    """Collect ``(path, text)`` for every token-bearing string."""

    def visit_literal(self, node: LiteralValue, path: str) -> list[tuple[str, str]]:
        return []

    def visit_template(self, node: TemplateValue, path: str) -> list[tuple[str, str]]:
        return [(path, node.text)]

    def visit_record(self, node: RecordValue, path: str) -> list[tuple[str, str]]:
        out: list[tuple[str, str]] = []
        for key, value in node.fields:
            out.extend(self.visit(value, child_path(path, key)))
        return out

    def visit_list(self, node: ListValue, path: str) -> list[tuple[str, str]]:
        out: list[tuple[str, str]] = []
        for i, item in enumerate(node.items):
            out.extend(self.visit(item, child_path(path, i)))
        return out


def resolve_input(raw: Any, resolver: TokenResolver) -> Any:
    """Resolve tokens at every leaf of a (possibly nested) step input."""

    return ResolvingVisitor(resolver).visit(classify(raw))


def collect_templates(raw: Any, path: str = "") -> list[tuple[str, str]]:
    return TemplateCollector().visit(classify(raw), path)
