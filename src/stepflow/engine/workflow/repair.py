"""Repair step-output references broken by step id drift.

Generated workflows often reference ``${step_123_output}`` while the step that
was finally assigned is ``step_123_0``. This pass finds such references and
rewrites them when exactly one step is the obvious target.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from .models import Workflow
from .tokens import create_token, scan_tokens
from .values import child_path

logger = logging.getLogger(__name__)

OUTPUT_MARKER = "_output"

_OUTPUT_SUFFIX = re.compile(r"_output(?:_\d+)?$")


class RepairSuggestion(BaseModel):
    field: str
    old_value: str
    new_value: str
    reason: str

    @property
    def applied(self) -> bool:
        return self.old_value != self.new_value

    def to_json(self) -> dict[str, str]:
        return {
            "field": self.field,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "reason": self.reason,
        }


@dataclass(slots=True)
class RepairResult:
    repaired: bool
    workflow: Any
    suggestions: list[RepairSuggestion] = field(default_factory=list)
    fixed_count: int = 0

    def to_json(self) -> dict[str, object]:
        return {
            "repaired": self.repaired,
            "fixedCount": self.fixed_count,
            "suggestions": [s.to_json() for s in self.suggestions],
        }


@dataclass(frozen=True, slots=True)
class StepIdMatch:
    """Outcome of looking up the step a broken reference most likely meant."""

    candidate: str | None
    candidates: tuple[str, ...] = ()

    @property
    def ambiguous(self) -> bool:
        return self.candidate is None and len(self.candidates) > 1


def referenced_step_id(data_point_id: str) -> str | None:
    """``step_1_output`` and ``step_1_output_1712345678`` both give ``step_1``."""

    if OUTPUT_MARKER not in data_point_id:
        return None
    stripped = _OUTPUT_SUFFIX.sub("", data_point_id)
    if stripped == data_point_id or not stripped:
        return None
    return stripped


def _segments_compatible(a: list[str], b: list[str]) -> bool:
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    return longer[: len(shorter)] == shorter


def _by_length_then_name(step_id: str) -> tuple[int, str]:
    return len(step_id), step_id


def match_step_id(referenced_id: str, step_ids: Iterable[str]) -> StepIdMatch:
    ref_segments = referenced_id.split("_")
    compatible = sorted(
        (
            sid
            for sid in set(step_ids)
            if sid != referenced_id and _segments_compatible(ref_segments, sid.split("_"))
        ),
        key=_by_length_then_name,
    )
    if not compatible:
        return StepIdMatch(candidate=None)

    # Compatible on two or more segments: the shortest wins outright.
    strong = [sid for sid in compatible if min(len(ref_segments), len(sid.split("_"))) >= 2]
    if strong:
        return StepIdMatch(candidate=strong[0], candidates=tuple(strong))

    # Only the leading segment in common: usable when it points at a single step.
    if len(compatible) == 1:
        return StepIdMatch(candidate=compatible[0], candidates=tuple(compatible))
    return StepIdMatch(candidate=None, candidates=tuple(compatible))


def find_closest_step_id(referenced_id: str, step_ids: Iterable[str]) -> str | None:
    return match_step_id(referenced_id, step_ids).candidate


def _map_strings(value: Any, path: str, fn: Callable[[str, str], str]) -> Any:
    if isinstance(value, str):
        return fn(value, path)
    if isinstance(value, dict):
        return {k: _map_strings(v, child_path(path, str(k)), fn) for k, v in value.items()}
    if isinstance(value, list):
        return [_map_strings(item, child_path(path, i), fn) for i, item in enumerate(value)]
    return value


class _ReferenceRepairer:
    def __init__(self, step_ids: list[str]) -> None:
        self._step_ids = step_ids
        self._known = set(step_ids)
        self.suggestions: list[RepairSuggestion] = []
        self.fixed_count = 0

    def __call__(self, text: str, path: str) -> str:
        seen: set[str] = set()
        replacements: dict[str, str] = {}
        for span in scan_tokens(text):
            token = text[span.start : span.end]
            if token in seen:
                continue
            seen.add(token)

            step_id = referenced_step_id(span.ref.data_point_id)
            if step_id is None or step_id in self._known:
                continue

            match = match_step_id(step_id, self._step_ids)
            if match.candidate is None:
                if match.ambiguous:
                    reason = (
                        f"Step output reference '{step_id}' not found and it matches several "
                        f"steps ({', '.join(match.candidates)}). Please review manually."
                    )
                else:
                    reason = (
                        f"Step output reference '{step_id}' not found and no matching step ID "
                        "could be determined. Please review manually."
                    )
                self.suggestions.append(
                    RepairSuggestion(field=path, old_value=token, new_value=token, reason=reason)
                )
                logger.warning(
                    "Unrepairable step output reference",
                    extra={"field": path, "token": token, "candidates": list(match.candidates)},
                )
                continue

            new_token = create_token(f"{match.candidate}{OUTPUT_MARKER}", span.ref.field)
            replacements[token] = new_token
            self.fixed_count += 1
            self.suggestions.append(
                RepairSuggestion(
                    field=path,
                    old_value=token,
                    new_value=new_token,
                    reason=(
                        f"Step output reference '{step_id}' not found. "
                        f"Auto-corrected to match step '{match.candidate}'."
                    ),
                )
            )
            logger.info(
                "Step output reference repaired",
                extra={"field": path, "old": token, "new": new_token},
            )

        for old, new in replacements.items():
            text = text.replace(old, new)
        return text


def repair_step_output_references(workflow: Workflow | dict[str, Any]) -> RepairResult:
    """Rewrite ``${<stepId>_output}`` references whose step no longer exists.

    The input is never modified; the returned workflow is a deep copy of the
    same shape (``Workflow`` model in, model out; dict in, dict out).
    """

    is_model = isinstance(workflow, Workflow)
    data: Any = workflow.to_json() if is_model else copy.deepcopy(workflow)

    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        return RepairResult(repaired=False, workflow=workflow if is_model else data)

    step_ids = [s["id"] for s in data["steps"] if isinstance(s, dict) and isinstance(s.get("id"), str)]
    repairer = _ReferenceRepairer(step_ids)

    for index, step in enumerate(data["steps"]):
        if not isinstance(step, dict):
            continue
        prefix = f"steps[{index}]"
        if "input" in step:
            step["input"] = _map_strings(step["input"], f"{prefix}.input", repairer)
        if isinstance(step.get("condition"), str):
            step["condition"] = repairer(step["condition"], f"{prefix}.condition")

    result_workflow: Any = Workflow.model_validate(data) if is_model else data
    return RepairResult(
        repaired=repairer.fixed_count > 0,
        workflow=result_workflow,
        suggestions=repairer.suggestions,
        fixed_count=repairer.fixed_count,
    )


def repair_workflow(workflow: Workflow | dict[str, Any]) -> RepairResult:
    """Run every repair pass; currently only step output references."""

    return repair_step_output_references(workflow)
