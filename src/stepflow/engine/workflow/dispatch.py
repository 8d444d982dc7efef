"""Contracts between the run scheduler and the host.

All host calls are asynchronous request/response. Dispatchers may return a
:class:`DispatchResponse` or a plain ``{"success", "data", "error"}`` mapping.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import DataPoint, DispatchResponse, KnowledgeEntry

logger = logging.getLogger(__name__)

DispatchReply = DispatchResponse | Mapping[str, Any]


class ContextSource(Protocol):
    """Gathers the per-run context (selection, page content, ...)."""

    async def gather_context(self) -> Sequence[DataPoint | Mapping[str, Any]]: ...


class KnowledgeSource(Protocol):
    async def list_entries(self) -> Sequence[KnowledgeEntry]: ...


class TaskDispatcher(Protocol):
    async def execute_task(self, task_id: str, input: dict[str, Any]) -> DispatchReply: ...


class HandlerDispatcher(Protocol):
    async def execute_handler(self, handler_id: str, input: dict[str, Any]) -> DispatchReply: ...


def coerce_response(reply: object) -> DispatchResponse:
    """Normalize whatever a dispatcher returned into a :class:`DispatchResponse`."""

    if isinstance(reply, DispatchResponse):
        return reply
    if isinstance(reply, Mapping):
        return DispatchResponse.model_validate(dict(reply))
    raise TypeError(f"Dispatcher returned {type(reply).__name__}, expected a response object")


@dataclass(frozen=True, slots=True)
class StaticContextSource:
    records: tuple[DataPoint | Mapping[str, Any], ...] = ()

    async def gather_context(self) -> Sequence[DataPoint | Mapping[str, Any]]:
        return list(self.records)


@dataclass(frozen=True, slots=True)
class EmptyKnowledgeSource:
    async def list_entries(self) -> Sequence[KnowledgeEntry]:
        return []


@dataclass(slots=True)
class SimulatedDispatcher:
    """Dry-run dispatcher: every task and handler succeeds and echoes its input.

    Calls are recorded in order as ``(kind, target_id, input)`` so a dry run can
    show exactly what would have been sent to the host.
    """

    calls: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    async def execute_task(self, task_id: str, input: dict[str, Any]) -> DispatchResponse:
        self.calls.append(("task", task_id, input))
        logger.info("Simulated task dispatch", extra={"task_id": task_id})
        return DispatchResponse(success=True, data={"taskId": task_id, "input": input})

    async def execute_handler(self, handler_id: str, input: dict[str, Any]) -> DispatchResponse:
        self.calls.append(("handler", handler_id, input))
        logger.info("Simulated handler dispatch", extra={"handler_id": handler_id})
        return DispatchResponse(success=True, data={"handlerId": handler_id, "input": input})
