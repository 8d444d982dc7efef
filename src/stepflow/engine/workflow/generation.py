"""Turn model-generated workflow text into a runnable :class:`Workflow`.

No model is called here. The caller hands over the raw response text and gets
back the parsed, normalized, migrated, repaired and validated workflow together
with every intermediate report, so a UI can explain what was changed.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .migration import migrate_to_token_notation, needs_migration
from .models import Workflow, now_ms
from .repair import RepairResult, repair_workflow
from .validation import ValidationReport, WorkflowValidator

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")

DEFAULT_WORKFLOW_NAME = "Untitled Workflow"
DEFAULT_VERSION = "1.0.0"


class JSONParseError(ValueError):
    pass


def extract_json_from_response(response: str) -> str:
    """Strip markdown fences and return the outermost ``{...}`` span, if any."""

    cleaned = _FENCE.sub("", response.strip())
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        return cleaned[first : last + 1]
    return cleaned


def _single_to_double_quotes(text: str) -> str:
    out: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            # \' is only meaningful inside a single-quoted string
            out.append(nxt if quote == "'" and nxt == "'" else char + nxt)
            i += 2
            continue
        if quote is None and char in "\"'":
            quote = char
            out.append('"')
        elif quote is not None and char == quote:
            quote = None
            out.append('"')
        elif quote == "'" and char == '"':
            out.append('\\"')
        else:
            out.append(char)
        i += 1
    return "".join(out)


def repair_json(text: str) -> str:
    """Fix the syntax slips models commonly make: trailing commas, bare keys, single quotes."""

    repaired = _TRAILING_COMMA.sub(r"\1", text)
    repaired = _UNQUOTED_KEY.sub(r'\1"\2":', repaired)
    return _single_to_double_quotes(repaired)


@dataclass(frozen=True, slots=True)
class ParsedJSON:
    data: Any
    repaired: bool


def parse_json_with_repair(text: str) -> ParsedJSON:
    """Parse as is, then the extracted object, then the repaired extraction.

    Raises :class:`JSONParseError` with the last parser message when all fail.
    """

    try:
        return ParsedJSON(json.loads(text), repaired=False)
    except json.JSONDecodeError:
        pass

    extracted = extract_json_from_response(text)
    try:
        return ParsedJSON(json.loads(extracted), repaired=False)
    except json.JSONDecodeError:
        pass

    try:
        return ParsedJSON(json.loads(repair_json(extracted)), repaired=True)
    except json.JSONDecodeError as e:
        raise JSONParseError(f"Failed to parse JSON: {e}") from e


def normalize_generated(data: dict[str, Any], *, now: int | None = None) -> dict[str, Any]:
    """Fill in the structure a generated workflow commonly omits."""

    stamp = now_ms() if now is None else now
    normalized = dict(data)

    if not isinstance(normalized.get("triggers"), list) or not normalized["triggers"]:
        normalized["triggers"] = [{"type": "manual"}]
    if not isinstance(normalized.get("steps"), list):
        normalized["steps"] = []
    if not normalized.get("websiteConfig"):
        normalized["websiteConfig"] = {"type": "all", "patterns": ""}

    steps: list[Any] = []
    for index, step in enumerate(normalized["steps"]):
        if isinstance(step, dict) and not step.get("id"):
            step = {**step, "id": f"step_{stamp}_{index}"}
        steps.append(step)
    normalized["steps"] = steps
    return normalized


def _apply_workflow_defaults(data: dict[str, Any], stamp: int) -> dict[str, Any]:
    return {
        **data,
        "id": data.get("id") or f"workflow_{stamp}",
        "name": data.get("name") or DEFAULT_WORKFLOW_NAME,
        "description": data.get("description") or "",
        "dataPoints": data.get("dataPoints") or [],
        "enabled": data.get("enabled", True),
        "createdAt": data.get("createdAt") or stamp,
        "updatedAt": data.get("updatedAt") or stamp,
        "version": data.get("version") or DEFAULT_VERSION,
    }


@dataclass(slots=True)
class MaterializationResult:
    success: bool
    raw_response: str
    workflow: Workflow | None = None
    validation: ValidationReport | None = None
    repair: RepairResult | None = None
    migrated: bool = False
    error: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "success": self.success,
            "rawResponse": self.raw_response,
            "migrated": self.migrated,
        }
        if self.workflow is not None:
            out["workflow"] = self.workflow.to_json()
        if self.validation is not None:
            out["validation"] = self.validation.model_dump(mode="json")
        if self.repair is not None:
            out["repair"] = self.repair.to_json()
        if self.error is not None:
            out["error"] = self.error
        return out


def materialize_generated_workflow(
    raw_response: str,
    validator: WorkflowValidator | None = None,
    now: int | None = None,
) -> MaterializationResult:
    if not raw_response or not raw_response.strip():
        return MaterializationResult(
            success=False, raw_response=raw_response or "", error="Empty response"
        )

    stamp = now_ms() if now is None else now
    validator = validator or WorkflowValidator()

    try:
        parsed = parse_json_with_repair(raw_response)
    except JSONParseError as e:
        logger.warning("Generated workflow is not valid JSON", extra={"error": str(e)})
        return MaterializationResult(success=False, raw_response=raw_response, error=str(e))

    if not isinstance(parsed.data, dict):
        return MaterializationResult(
            success=False, raw_response=raw_response, error="Generated JSON is not an object"
        )

    data = normalize_generated(parsed.data, now=stamp)

    migrated = needs_migration(data)
    if migrated:
        data = migrate_to_token_notation(data)  # type: ignore[assignment]

    repair = repair_workflow(data)
    data = repair.workflow
    if repair.repaired:
        logger.info("Repaired generated workflow", extra={"fixed_count": repair.fixed_count})

    validation = validator.validate(data)
    if not validation.valid:
        return MaterializationResult(
            success=False,
            raw_response=raw_response,
            validation=validation,
            repair=repair,
            migrated=migrated,
            error="Validation failed: " + "; ".join(e.message for e in validation.errors),
        )

    try:
        workflow = Workflow.model_validate(_apply_workflow_defaults(data, stamp))
    except ValidationError as e:
        return MaterializationResult(
            success=False,
            raw_response=raw_response,
            validation=validation,
            repair=repair,
            migrated=migrated,
            error=f"Workflow does not match the expected shape: {e.error_count()} error(s)",
        )

    logger.info(
        "Generated workflow materialized",
        extra={"workflow_id": workflow.id, "steps": len(workflow.steps), "parse_repaired": parsed.repaired},
    )
    return MaterializationResult(
        success=True,
        raw_response=raw_response,
        workflow=workflow,
        validation=validation,
        repair=repair,
        migrated=migrated,
    )
