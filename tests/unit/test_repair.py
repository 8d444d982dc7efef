"""Unit tests for step output reference repair."""

from __future__ import annotations

import copy

from factories import handler_step, task_step, workflow_json

from stepflow.engine.workflow.models import Workflow
from stepflow.engine.workflow.repair import (
    find_closest_step_id,
    match_step_id,
    referenced_step_id,
    repair_workflow,
)


def test_referenced_step_id() -> None:
    assert referenced_step_id("step_1_output") == "step_1"
    assert referenced_step_id("step_1_output_1712345678") == "step_1"
    assert referenced_step_id("selected_text") is None
    assert referenced_step_id("_output") is None


def test_find_closest_prefers_shortest_then_lexicographic() -> None:
    ids = ["step_100_0_1", "step_100_1", "step_100_0", "step_2"]
    assert find_closest_step_id("step_100", ids) == "step_100_0"
    assert find_closest_step_id("step_100_0_1_5", ids) == "step_100_0"
    assert find_closest_step_id("step_300", ids) is None


def test_leading_segment_only_match_must_be_unique() -> None:
    assert find_closest_step_id("step", ["step_1"]) == "step_1"

    match = match_step_id("step", ["step_1", "step_2"])
    assert match.candidate is None
    assert match.ambiguous
    assert match.candidates == ("step_1", "step_2")


def test_repair_rewrites_drifted_reference() -> None:
    wf = workflow_json(
        task_step("step_100_0", input={"text": "${sel.text}"}),
        handler_step("step_200_0", input={"content": "Result: ${step_100_output.x}"}),
    )
    original = copy.deepcopy(wf)

    result = repair_workflow(wf)

    assert result.repaired is True
    assert result.fixed_count == 1
    assert result.workflow["steps"][1]["input"]["content"] == "Result: ${step_100_0_output.x}"
    assert wf == original

    (suggestion,) = result.suggestions
    assert suggestion.field == "steps[1].input.content"
    assert suggestion.old_value == "${step_100_output.x}"
    assert suggestion.new_value == "${step_100_0_output.x}"
    assert "step_100_0" in suggestion.reason


def test_repair_counts_each_token_once_per_field() -> None:
    wf = workflow_json(
        task_step("step_1_0"),
        task_step("step_2_0", input={"text": "${step_1_output} / ${step_1_output}"}),
    )

    result = repair_workflow(wf)

    assert result.fixed_count == 1
    assert result.workflow["steps"][1]["input"]["text"] == "${step_1_0_output} / ${step_1_0_output}"


def test_repair_covers_conditions_and_nested_lists() -> None:
    wf = workflow_json(
        task_step("step_5_0"),
        task_step(
            "step_6_0",
            input={"parts": [{"text": "${step_5_output.summary}"}]},
            condition='"${step_5_output}" != ""',
        ),
    )

    result = repair_workflow(wf)

    step = result.workflow["steps"][1]
    assert step["input"]["parts"][0]["text"] == "${step_5_0_output.summary}"
    assert step["condition"] == '"${step_5_0_output}" != ""'
    assert result.fixed_count == 2
    assert {s.field for s in result.suggestions} == {
        "steps[1].input.parts[0].text",
        "steps[1].condition",
    }


def test_unrepairable_reference_is_left_for_review() -> None:
    wf = workflow_json(
        task_step("step_1"),
        task_step("step_2", input={"text": "${step_9_output}"}),
    )

    result = repair_workflow(wf)

    assert result.repaired is False
    assert result.fixed_count == 0
    assert result.workflow["steps"][1]["input"]["text"] == "${step_9_output}"
    (suggestion,) = result.suggestions
    assert suggestion.old_value == suggestion.new_value == "${step_9_output}"
    assert "review manually" in suggestion.reason


def test_ambiguous_reference_is_left_for_review() -> None:
    wf = workflow_json(
        task_step("step_1"),
        task_step("step_2"),
        task_step("step_3", input={"text": "${step_output}"}),
    )

    result = repair_workflow(wf)

    assert result.fixed_count == 0
    assert result.workflow["steps"][2]["input"]["text"] == "${step_output}"
    assert "several" in result.suggestions[0].reason


def test_valid_references_produce_no_suggestions() -> None:
    wf = workflow_json(
        task_step("step_1"),
        task_step("step_2", input={"text": "${step_1_output} ${sel.text}"}),
    )

    result = repair_workflow(wf)

    assert result.repaired is False
    assert result.suggestions == []


def test_repair_accepts_workflow_model() -> None:
    wf = Workflow.model_validate(
        workflow_json(
            task_step("step_100_0"),
            task_step("step_101_0", input={"text": "${step_100_output}"}),
        )
    )

    result = repair_workflow(wf)

    assert isinstance(result.workflow, Workflow)
    assert result.workflow.steps[1].input["text"] == "${step_100_0_output}"
    assert wf.steps[1].input["text"] == "${step_100_output}"


def test_repair_tolerates_missing_steps() -> None:
    result = repair_workflow({"name": "no steps"})
    assert result.repaired is False
    assert result.workflow == {"name": "no steps"}
