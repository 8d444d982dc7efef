"""Structural validation of workflow JSON.

Validation works on the raw JSON shape rather than the pydantic models so that a
half-broken generated workflow still yields a full list of findings instead of
the first parse error.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Literal

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .dependencies import ReferenceProblem, analyze_dependencies
from .models import RetryConfig, StepKind, Workflow
from .repair import match_step_id
from .tokens import iter_placeholders, parse_token
from .values import child_path

logger = logging.getLogger(__name__)

TRIGGER_TYPES: tuple[str, ...] = ("manual", "onPageLoad", "onSelection", "onFocus", "schedule")
WEBSITE_CONFIG_TYPES: tuple[str, ...] = ("all", "specific", "exclude")
STEP_ID_PREFIX = "step_"

# Trigger type -> optional string field it may carry.
_TRIGGER_STRING_FIELDS: dict[str, str] = {
    "manual": "shortcut",
    "onPageLoad": "pattern",
    "onSelection": "selector",
}


class ValidationIssue(BaseModel):
    field: str
    message: str
    level: Literal["error", "warning"]


class ValidationReport(BaseModel):
    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)


class CatalogEntry(BaseModel):
    """A task or handler the host can dispatch, with its input JSON schema."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    description: str = ""
    input_schema: dict[str, Any] | None = Field(default=None, alias="inputSchema")


class StepCatalog(BaseModel):
    tasks: list[CatalogEntry] = Field(default_factory=list)
    handlers: list[CatalogEntry] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path) -> StepCatalog:
        return cls.model_validate(json.loads(path.read_text(encoding="utf-8")))

    def entries(self, kind: StepKind) -> list[CatalogEntry]:
        return self.tasks if kind is StepKind.TASK else self.handlers

    def get(self, kind: StepKind, entry_id: str) -> CatalogEntry | None:
        for entry in self.entries(kind):
            if entry.id == entry_id:
                return entry
        return None


def _iter_strings(value: Any, path: str) -> Iterator[tuple[str, str]]:
    if isinstance(value, str):
        yield path, value
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from _iter_strings(item, child_path(path, str(key)))
    elif isinstance(value, list):
        for index, item in enumerate(value):
            yield from _iter_strings(item, child_path(path, index))


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class _Findings:
    def __init__(self) -> None:
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []

    def error(self, field: str, message: str) -> None:
        self.errors.append(ValidationIssue(field=field, message=message, level="error"))

    def warning(self, field: str, message: str) -> None:
        self.warnings.append(ValidationIssue(field=field, message=message, level="warning"))

    def report(self) -> ValidationReport:
        return ValidationReport(valid=not self.errors, errors=self.errors, warnings=self.warnings)


class WorkflowValidator:
    """Check a workflow for problems that would make it fail or misbehave.

    Without a catalog, task and handler ids are only checked for presence. With
    one, unknown ids are errors and step inputs are validated against the
    entry's JSON schema.
    """

    def __init__(self, catalog: StepCatalog | None = None) -> None:
        self._catalog = catalog

    def validate(self, workflow: Workflow | dict[str, Any]) -> ValidationReport:
        findings = _Findings()
        data = workflow.to_json() if isinstance(workflow, Workflow) else workflow

        if not isinstance(data, dict):
            findings.error("workflow", "Workflow must be an object")
            return findings.report()

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            findings.error("name", "Workflow name is required and must be a string")
        description = data.get("description")
        if not isinstance(description, str) or not description.strip():
            findings.warning("description", "Workflow description is recommended")

        triggers = data.get("triggers")
        if not isinstance(triggers, list) or not triggers:
            findings.error("triggers", "At least one trigger is required")
        else:
            for index, trigger in enumerate(triggers):
                self._validate_trigger(trigger, f"triggers[{index}]", findings)

        if data.get("websiteConfig") is not None:
            self._validate_website_config(data["websiteConfig"], findings)

        steps = data.get("steps")
        if not isinstance(steps, list):
            findings.error("steps", "Steps must be an array")
        elif not steps:
            findings.warning("steps", "Workflow has no steps")
        else:
            self._validate_steps(steps, findings)

        report = findings.report()
        logger.debug(
            "Workflow validated",
            extra={
                "workflow_id": data.get("id"),
                "errors": len(report.errors),
                "warnings": len(report.warnings),
            },
        )
        return report

    def _validate_trigger(self, trigger: Any, prefix: str, findings: _Findings) -> None:
        if not isinstance(trigger, dict) or not isinstance(trigger.get("type"), str):
            findings.error(f"{prefix}.type", "Trigger type is required")
            return

        trigger_type = trigger["type"]
        if trigger_type not in TRIGGER_TYPES:
            findings.error(
                f"{prefix}.type",
                f"Invalid trigger type '{trigger_type}'. Must be one of: {', '.join(TRIGGER_TYPES)}",
            )

        field = _TRIGGER_STRING_FIELDS.get(trigger_type)
        if field is not None and trigger.get(field) is not None and not isinstance(trigger[field], str):
            findings.error(f"{prefix}.{field}", f"{field.capitalize()} must be a string")

        if trigger_type == "schedule" and not trigger.get("schedule"):
            findings.warning(f"{prefix}.schedule", "Schedule trigger should have a schedule field")

    def _validate_website_config(self, config: Any, findings: _Findings) -> None:
        config_type = config.get("type") if isinstance(config, dict) else None
        if config_type not in WEBSITE_CONFIG_TYPES:
            findings.error(
                "websiteConfig.type", "Website config type must be 'all', 'specific', or 'exclude'"
            )
            return
        if config_type in ("specific", "exclude") and not config.get("patterns"):
            findings.warning(
                "websiteConfig.patterns", "Patterns should be provided for specific/exclude types"
            )

    def _validate_steps(self, steps: list[Any], findings: _Findings) -> None:
        seen: dict[str, int] = {}
        for index, step in enumerate(steps):
            prefix = f"steps[{index}]"
            if not isinstance(step, dict):
                findings.error(prefix, "Step must be an object")
                continue
            step_id = step.get("id")
            if isinstance(step_id, str) and step_id:
                if step_id in seen:
                    findings.error(
                        f"{prefix}.id", f"Duplicate step ID '{step_id}' (also used by steps[{seen[step_id]}])"
                    )
                else:
                    seen[step_id] = index
            self._validate_step(step, prefix, findings)

        step_ids = list(seen)
        for issue in analyze_dependencies(steps):
            ref = issue.reference
            if issue.problem is ReferenceProblem.UNKNOWN_STEP:
                hint = ""
                match = match_step_id(ref.target_step_id, step_ids)
                if match.candidate is not None:
                    suffix = f".{ref.ref.field}" if ref.ref.field else ""
                    hint = (
                        f" Did you mean: {match.candidate}? "
                        f"Expected format: ${{{match.candidate}_output{suffix}}}"
                    )
                findings.error(ref.field, issue.message + hint)
            else:
                findings.warning(ref.field, issue.message)

    def _validate_step(self, step: dict[str, Any], prefix: str, findings: _Findings) -> None:
        step_id = step.get("id")
        if not isinstance(step_id, str) or not step_id:
            findings.error(f"{prefix}.id", "Step ID is required and must be a string")
        elif not step_id.startswith(STEP_ID_PREFIX):
            findings.warning(f"{prefix}.id", f"Step ID should start with '{STEP_ID_PREFIX}'")

        step_input = step.get("input")
        if not isinstance(step_input, dict):
            findings.error(f"{prefix}.input", "Step input must be an object")

        try:
            kind = StepKind(step.get("type"))
        except ValueError:
            findings.error(f"{prefix}.type", "Step type must be 'task' or 'handler'")
            kind = None

        if kind is not None:
            id_field = "taskId" if kind is StepKind.TASK else "handlerId"
            target = step.get(id_field)
            if not isinstance(target, str) or not target:
                findings.error(f"{prefix}.{id_field}", f"{kind.value.capitalize()} step must have a {id_field}")
            elif self._catalog is not None:
                self._validate_against_catalog(kind, target, step_input, prefix, findings)

        condition = step.get("condition")
        if condition is not None and not isinstance(condition, str):
            findings.error(f"{prefix}.condition", "Condition must be a string")
        elif condition:
            self._validate_token_syntax(condition, f"{prefix}.condition", findings)

        delay = step.get("delay")
        if delay is not None and (not _is_number(delay) or delay < 0):
            findings.error(f"{prefix}.delay", "Delay must be a non-negative number")

        retry = step.get("retry")
        if retry is not None:
            try:
                RetryConfig.model_validate(retry)
            except ValidationError as e:
                findings.error(f"{prefix}.retry", f"Invalid retry configuration: {e.error_count()} error(s)")

        if isinstance(step_input, dict):
            for path, text in _iter_strings(step_input, f"{prefix}.input"):
                self._validate_token_syntax(text, path, findings)

    def _validate_against_catalog(
        self,
        kind: StepKind,
        target: str,
        step_input: Any,
        prefix: str,
        findings: _Findings,
    ) -> None:
        assert self._catalog is not None
        id_field = "taskId" if kind is StepKind.TASK else "handlerId"
        entry = self._catalog.get(kind, target)
        if entry is None:
            available = ", ".join(e.id for e in self._catalog.entries(kind))
            label = "Task" if kind is StepKind.TASK else "Handler"
            findings.error(
                f"{prefix}.{id_field}", f"{label} '{target}' not found. Available: {available}"
            )
            return
        if not entry.input_schema or not isinstance(step_input, dict):
            return

        try:
            Draft202012Validator.check_schema(entry.input_schema)
        except SchemaError as e:
            logger.warning("Catalog input schema is invalid", extra={"entry_id": target, "error": e.message})
            findings.warning(f"{prefix}.{id_field}", f"Input schema for '{target}' is invalid: {e.message}")
            return

        validator = Draft202012Validator(entry.input_schema)
        errors = sorted(
            validator.iter_errors(step_input), key=lambda err: [str(p) for p in err.absolute_path]
        )
        for error in errors:
            path = f"{prefix}.input"
            for part in error.absolute_path:
                path = child_path(path, part if isinstance(part, int) else str(part))
            findings.error(path, error.message)

    @staticmethod
    def _validate_token_syntax(text: str, field: str, findings: _Findings) -> None:
        for start, end in iter_placeholders(text):
            placeholder = text[start:end]
            if parse_token(placeholder) is None:
                findings.error(field, f"Invalid token syntax: {placeholder}")


def validate_workflow(
    workflow: Workflow | dict[str, Any], catalog: StepCatalog | None = None
) -> ValidationReport:
    return WorkflowValidator(catalog).validate(workflow)
