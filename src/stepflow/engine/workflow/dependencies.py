"""Static analysis of step-output references between steps.

A step may only consume ``<stepId>_output`` of a *task* step declared before it.
Anything else resolves to an empty string at run time, which is almost always a
workflow authoring mistake worth surfacing early.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .models import StepKind, WorkflowStep
from .repair import referenced_step_id
from .tokens import TokenRef, extract_token_references
from .values import collect_templates


class ReferenceProblem(str, Enum):
    UNKNOWN_STEP = "unknown_step"
    FORWARD = "forward"
    HANDLER_OUTPUT = "handler_output"


@dataclass(frozen=True, slots=True)
class StepReference:
    step_index: int
    step_id: str | None
    field: str
    ref: TokenRef
    target_step_id: str


@dataclass(frozen=True, slots=True)
class DependencyIssue:
    reference: StepReference
    problem: ReferenceProblem

    @property
    def message(self) -> str:
        target = self.reference.target_step_id
        if self.problem is ReferenceProblem.UNKNOWN_STEP:
            return f"Token references non-existent step: {target}"
        if self.problem is ReferenceProblem.FORWARD:
            return f"Token references output of step '{target}' which has not run yet at this point"
        return f"Token references output of handler step '{target}'; handlers produce no output"


@dataclass(frozen=True, slots=True)
class _StepView:
    id: str | None
    kind: str | None
    input: Any
    condition: Any


def _view(step: WorkflowStep | Mapping[str, Any]) -> _StepView:
    if isinstance(step, WorkflowStep):
        return _StepView(step.id, step.kind.value, step.input, step.condition)
    step_id = step.get("id")
    kind = step.get("type")
    return _StepView(
        step_id if isinstance(step_id, str) else None,
        kind if isinstance(kind, str) else None,
        step.get("input"),
        step.get("condition"),
    )


def step_output_references(
    step: WorkflowStep | Mapping[str, Any], index: int
) -> list[StepReference]:
    """Every step-output token used by ``step`` (input and condition), in order."""

    view = _view(step)
    prefix = f"steps[{index}]"
    texts = collect_templates(view.input, f"{prefix}.input") if view.input is not None else []
    if isinstance(view.condition, str):
        texts.append((f"{prefix}.condition", view.condition))

    out: list[StepReference] = []
    for path, text in texts:
        for ref in extract_token_references(text):
            target = referenced_step_id(ref.data_point_id)
            if target is None:
                continue
            out.append(StepReference(index, view.id, path, ref, target))
    return out


def analyze_dependencies(
    steps: Sequence[WorkflowStep | Mapping[str, Any]],
) -> list[DependencyIssue]:
    views = [_view(s) if isinstance(s, (WorkflowStep, Mapping)) else None for s in steps]
    position: dict[str, int] = {}
    kinds: dict[str, str | None] = {}
    for index, view in enumerate(views):
        if view is not None and view.id is not None and view.id not in position:
            position[view.id] = index
            kinds[view.id] = view.kind

    issues: list[DependencyIssue] = []
    for index, step in enumerate(steps):
        if views[index] is None:
            continue
        for reference in step_output_references(step, index):
            target = reference.target_step_id
            if target not in position:
                problem = ReferenceProblem.UNKNOWN_STEP
            elif position[target] >= index:
                problem = ReferenceProblem.FORWARD
            elif kinds[target] == StepKind.HANDLER.value:
                problem = ReferenceProblem.HANDLER_OUTPUT
            else:
                continue
            issues.append(DependencyIssue(reference, problem))
    return issues
