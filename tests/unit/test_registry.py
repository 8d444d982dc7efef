"""Unit tests for the run registry state machine."""

from __future__ import annotations

import pytest

from stepflow.engine.errors import IllegalTransitionError, WorkflowAlreadyRunning
from stepflow.engine.workflow.registry import RunRegistry, RunState, transition


def test_transition_rejects_illegal_transitions() -> None:
    with pytest.raises(IllegalTransitionError):
        transition(current=RunState.IDLE, to=RunState.COMPLETED)
    with pytest.raises(IllegalTransitionError):
        transition(current=RunState.RUNNING, to=RunState.RUNNING)


def test_begin_and_finish_cycle() -> None:
    registry = RunRegistry()
    assert registry.state("wf") is RunState.IDLE

    registry.begin("wf")
    assert registry.is_running("wf")
    assert registry.running_ids() == ["wf"]

    assert registry.finish("wf", success=True) is RunState.COMPLETED
    assert not registry.is_running("wf")

    registry.begin("wf")
    assert registry.finish("wf", success=False) is RunState.FAILED
    assert registry.state("wf") is RunState.IDLE


def test_second_begin_is_rejected() -> None:
    registry = RunRegistry()
    registry.begin("wf")

    with pytest.raises(WorkflowAlreadyRunning) as excinfo:
        registry.begin("wf")
    assert str(excinfo.value) == "Workflow already running: wf"
    assert registry.try_begin("wf") is False
    assert registry.try_begin("other") is True


def test_finish_without_begin_is_illegal() -> None:
    with pytest.raises(IllegalTransitionError):
        RunRegistry().finish("never-started", success=True)


def test_registries_are_independent() -> None:
    first, second = RunRegistry(), RunRegistry()
    first.begin("wf")
    assert second.try_begin("wf") is True


def test_finished_runs_are_forgotten() -> None:
    registry = RunRegistry()
    for n in range(50):
        registry.begin(f"wf_{n}")
        registry.finish(f"wf_{n}", success=n % 2 == 0)

    assert registry.running_ids() == []
    assert registry._states == {}
