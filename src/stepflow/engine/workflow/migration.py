"""Convert legacy ``{"type": "data_point", ...}`` input references to tokens."""

from __future__ import annotations

import copy
from typing import Any

from .models import Workflow
from .values import is_legacy_reference, legacy_reference_to_token


def _migrate_value(value: Any) -> Any:
    if is_legacy_reference(value):
        return legacy_reference_to_token(value)
    if isinstance(value, dict):
        return {k: _migrate_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_migrate_value(item) for item in value]
    return value


def _contains_legacy_reference(value: Any) -> bool:
    if is_legacy_reference(value):
        return True
    if isinstance(value, dict):
        return any(_contains_legacy_reference(v) for v in value.values())
    if isinstance(value, list):
        return any(_contains_legacy_reference(item) for item in value)
    return False


def _steps_of(workflow: Workflow | dict[str, Any]) -> list[Any]:
    if isinstance(workflow, Workflow):
        return [step.input for step in workflow.steps]
    steps = workflow.get("steps") if isinstance(workflow, dict) else None
    if not isinstance(steps, list):
        return []
    return [step.get("input") for step in steps if isinstance(step, dict)]


def needs_migration(workflow: Workflow | dict[str, Any]) -> bool:
    return any(_contains_legacy_reference(step_input) for step_input in _steps_of(workflow))


def migrate_to_token_notation(workflow: Workflow | dict[str, Any]) -> Workflow | dict[str, Any]:
    """Return a copy whose step inputs use ``${id.field}`` tokens only.

    Workflows without legacy references come back as an equal copy.
    """

    if isinstance(workflow, Workflow):
        steps = [
            step.model_copy(update={"input": _migrate_value(step.input)}) for step in workflow.steps
        ]
        return workflow.model_copy(update={"steps": steps})

    migrated = copy.deepcopy(workflow)
    steps = migrated.get("steps") if isinstance(migrated, dict) else None
    if isinstance(steps, list):
        for step in steps:
            if isinstance(step, dict) and "input" in step:
                step["input"] = _migrate_value(step["input"])
    return migrated
