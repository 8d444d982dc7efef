"""CLI entrypoint for the workflow engine.

Runs use a simulated dispatcher that echoes each step's resolved input, so a
workflow can be checked end to end (conditions, tokens, step order) without a
host attached.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from stepflow import __version__
from stepflow.engine.config import EngineSettings
from stepflow.engine.errors import WorkflowNotFound
from stepflow.engine.logging import configure_logging
from stepflow.engine.storage import KnowledgeStore, WorkflowStore
from stepflow.engine.workflow.dispatch import SimulatedDispatcher, StaticContextSource
from stepflow.engine.workflow.executor import WorkflowRunner
from stepflow.engine.workflow.generation import materialize_generated_workflow
from stepflow.engine.workflow.models import KnowledgeEntry, Workflow, now_ms
from stepflow.engine.workflow.repair import repair_workflow
from stepflow.engine.workflow.validation import StepCatalog, WorkflowValidator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_FAILED = 3
EXIT_NOT_FOUND = 4


class UsageError(Exception):
    """Bad input files or arguments; reported without a traceback."""


def _parse_tags(value: str | None) -> list[str]:
    if value is None:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise UsageError(f"File not found: {path}") from e
    except json.JSONDecodeError as e:
        raise UsageError(f"{path} is not valid JSON: {e}") from e


def _load_workflow_file(path: Path) -> Workflow:
    try:
        return Workflow.model_validate(_read_json(path))
    except ValidationError as e:
        raise UsageError(f"{path} is not a valid workflow:\n{e}") from e


def _load_catalog(path: Path | None) -> StepCatalog | None:
    if path is None:
        return None
    try:
        return StepCatalog.model_validate(_read_json(path))
    except ValidationError as e:
        raise UsageError(f"{path} is not a valid step catalog:\n{e}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepflow",
        description="Validate, repair and run declarative step workflows",
    )
    parser.add_argument("--version", action="version", version=f"stepflow {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate a workflow JSON file")
    validate.add_argument("path", type=Path, help="Workflow JSON file")
    validate.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="Task/handler catalog JSON (defaults to STEPFLOW_CATALOG_PATH)",
    )

    repair = subparsers.add_parser(
        "repair", help="Fix step output references that point at missing steps"
    )
    repair.add_argument("path", type=Path, help="Workflow JSON file")
    repair.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the repaired workflow here (the input file is never modified)",
    )

    materialize = subparsers.add_parser(
        "materialize", help="Build a workflow from model-generated text"
    )
    materialize.add_argument("path", type=Path, help="File holding the raw model response")
    materialize.add_argument(
        "--save", action="store_true", help="Persist the workflow to the store on success"
    )

    run = subparsers.add_parser(
        "run", help="Dry-run a workflow with a dispatcher that echoes resolved input"
    )
    run.add_argument("workflow", help="Stored workflow id, or a path to a workflow JSON file")
    run.add_argument(
        "--context",
        type=Path,
        default=None,
        help="JSON list of data point records used as the run's context",
    )

    workflows = subparsers.add_parser("workflows", help="Manage stored workflows")
    workflow_commands = workflows.add_subparsers(dest="action", required=True)
    workflow_commands.add_parser("list", help="List stored workflows")
    show = workflow_commands.add_parser("show", help="Print a stored workflow")
    show.add_argument("workflow_id")
    delete = workflow_commands.add_parser("delete", help="Delete a stored workflow")
    delete.add_argument("workflow_id")

    kb = subparsers.add_parser("kb", help="Manage knowledge entries")
    kb_commands = kb.add_subparsers(dest="action", required=True)
    kb_commands.add_parser("list", help="List knowledge entries")
    kb_add = kb_commands.add_parser("add", help="Add or replace a knowledge entry")
    kb_add.add_argument("--id", dest="entry_id", default=None, help="Entry id (generated if omitted)")
    kb_add.add_argument("--name", required=True, help="Entry name")
    kb_add.add_argument("--content", default=None, help="Entry text")
    kb_add.add_argument(
        "--content-file", type=Path, default=None, help="Read the entry text from a file"
    )
    kb_add.add_argument("--type", dest="entry_type", default="text", choices=["text", "file", "url"])
    kb_add.add_argument("--tags", default=None, help="Comma-separated tags")
    kb_delete = kb_commands.add_parser("delete", help="Delete a knowledge entry")
    kb_delete.add_argument("entry_id")

    return parser


def _cmd_validate(args: argparse.Namespace, settings: EngineSettings) -> int:
    catalog = _load_catalog(args.catalog or settings.catalog_path)
    report = WorkflowValidator(catalog).validate(_read_json(args.path))
    _print_json(report.model_dump(mode="json"))
    return EXIT_OK if report.valid else EXIT_FAILED


def _cmd_repair(args: argparse.Namespace) -> int:
    result = repair_workflow(_read_json(args.path))
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(
            json.dumps(result.workflow, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )
        logger.info("Repaired workflow written", extra={"path": str(args.output)})
    _print_json(result.to_json())
    return EXIT_OK


def _cmd_materialize(args: argparse.Namespace, settings: EngineSettings) -> int:
    try:
        raw = args.path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise UsageError(f"File not found: {args.path}") from e

    validator = WorkflowValidator(_load_catalog(settings.catalog_path))
    result = materialize_generated_workflow(raw, validator=validator)
    if result.success and args.save and result.workflow is not None:
        WorkflowStore(settings.workflows_file).save(result.workflow)

    payload = result.to_json()
    payload.pop("rawResponse", None)
    _print_json(payload)
    return EXIT_OK if result.success else EXIT_FAILED


def _cmd_run(args: argparse.Namespace, settings: EngineSettings) -> int:
    candidate = Path(args.workflow)
    if candidate.suffix == ".json" or candidate.is_file():
        workflow = _load_workflow_file(candidate)
    else:
        workflow = WorkflowStore(settings.workflows_file).require(args.workflow)

    records: list[Any] = []
    if args.context is not None:
        loaded = _read_json(args.context)
        if not isinstance(loaded, list):
            raise UsageError(f"{args.context} must hold a JSON list of data point records")
        records = loaded

    dispatcher = SimulatedDispatcher()
    runner = WorkflowRunner.from_settings(
        settings,
        tasks=dispatcher,
        handlers=dispatcher,
        context_source=StaticContextSource(tuple(records)),
        knowledge_source=KnowledgeStore(settings.knowledge_file),
    )
    result = asyncio.run(runner.run(workflow))
    _print_json(result.model_dump(mode="json"))
    return EXIT_OK if result.success else EXIT_FAILED


def _cmd_workflows(args: argparse.Namespace, settings: EngineSettings) -> int:
    store = WorkflowStore(settings.workflows_file)
    if args.action == "list":
        for workflow in store.list():
            state = "enabled" if workflow.enabled else "disabled"
            print(f"{workflow.id}\t{workflow.name}\t{len(workflow.steps)} step(s)\t{state}")
        return EXIT_OK
    if args.action == "show":
        _print_json(store.require(args.workflow_id).to_json())
        return EXIT_OK
    if args.action == "delete":
        if not store.delete(args.workflow_id):
            raise WorkflowNotFound(args.workflow_id)
        print(f"Deleted workflow {args.workflow_id}")
        return EXIT_OK
    raise UsageError(f"Unknown workflows action: {args.action}")


def _cmd_kb(args: argparse.Namespace, settings: EngineSettings) -> int:
    store = KnowledgeStore(settings.knowledge_file)
    if args.action == "list":
        for entry in store.list():
            tags = ",".join(entry.tags)
            print(f"{entry.id}\t{entry.name}\t{entry.type}\t{tags}")
        return EXIT_OK
    if args.action == "add":
        if args.content_file is not None:
            content = args.content_file.read_text(encoding="utf-8")
        elif args.content is not None:
            content = args.content
        else:
            raise UsageError("kb add needs --content or --content-file")
        entry = store.save(
            KnowledgeEntry(
                id=args.entry_id or f"entry_{now_ms()}",
                name=args.name,
                content=content,
                type=args.entry_type,
                tags=_parse_tags(args.tags),
            )
        )
        print(f"Saved knowledge entry {entry.id} (token: ${{kb_{entry.id}.text}})")
        return EXIT_OK
    if args.action == "delete":
        if not store.delete(args.entry_id):
            print(f"Knowledge entry not found: {args.entry_id}", file=sys.stderr)
            return EXIT_NOT_FOUND
        print(f"Deleted knowledge entry {args.entry_id}")
        return EXIT_OK
    raise UsageError(f"Unknown kb action: {args.action}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment / .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings.log_level)

    try:
        if args.command == "validate":
            return _cmd_validate(args, settings)
        if args.command == "repair":
            return _cmd_repair(args)
        if args.command == "materialize":
            return _cmd_materialize(args, settings)
        if args.command == "run":
            return _cmd_run(args, settings)
        if args.command == "workflows":
            return _cmd_workflows(args, settings)
        if args.command == "kb":
            return _cmd_kb(args, settings)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_USAGE

    except UsageError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    except WorkflowNotFound as e:
        logger.warning(str(e), extra={"workflow_id": e.workflow_id})
        print(str(e), file=sys.stderr)
        return EXIT_NOT_FOUND

    except Exception:
        logger.exception("Command failed")
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
