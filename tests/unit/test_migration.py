"""Unit tests for legacy data point reference migration."""

from __future__ import annotations

from factories import task_step, workflow_json

from stepflow.engine.workflow.migration import migrate_to_token_notation, needs_migration
from stepflow.engine.workflow.models import Workflow

LEGACY = {"type": "data_point", "dataPointId": "sel", "field": "text"}


def test_needs_migration_detects_nested_references() -> None:
    assert needs_migration(workflow_json(task_step("step_1", input={"text": LEGACY})))
    assert needs_migration(workflow_json(task_step("step_1", input={"parts": [{"x": LEGACY}]})))
    assert not needs_migration(workflow_json(task_step("step_1", input={"text": "${sel.text}"})))
    assert not needs_migration({"name": "no steps"})


def test_migration_converts_to_tokens() -> None:
    wf = workflow_json(
        task_step(
            "step_1",
            input={
                "text": LEGACY,
                "whole": {"type": "data_point", "dataPointId": "page"},
                "parts": [LEGACY, "plain"],
                "count": 3,
            },
        )
    )

    migrated = migrate_to_token_notation(wf)

    assert migrated["steps"][0]["input"] == {
        "text": "${sel.text}",
        "whole": "${page}",
        "parts": ["${sel.text}", "plain"],
        "count": 3,
    }
    assert wf["steps"][0]["input"]["text"] == LEGACY
    assert not needs_migration(migrated)


def test_migration_of_workflow_model() -> None:
    wf = Workflow.model_validate(workflow_json(task_step("step_1", input={"text": LEGACY})))

    migrated = migrate_to_token_notation(wf)

    assert isinstance(migrated, Workflow)
    assert migrated.steps[0].input == {"text": "${sel.text}"}
    assert needs_migration(wf)
