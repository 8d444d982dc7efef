"""Exception hierarchy for the workflow engine.

Most of these never escape :meth:`WorkflowRunner.run`; they are raised at the
seams (dispatch, registry, stores) and converted into structured results.
"""

from __future__ import annotations

from dataclasses import dataclass


class StepflowError(Exception):
    """Base class for all engine errors."""


class DispatchError(StepflowError):
    """A task or handler dispatch failed or reported ``success: false``."""


class DispatchTimeoutError(DispatchError):
    def __init__(self, target: str, timeout_seconds: float) -> None:
        super().__init__(f"{target} timed out after {timeout_seconds:g}s")
        self.target = target
        self.timeout_seconds = timeout_seconds


class IllegalTransitionError(StepflowError, ValueError):
    pass


@dataclass(frozen=True, slots=True)
class WorkflowAlreadyRunning(StepflowError):
    """Raised by the run registry when a workflow id is already in flight."""

    workflow_id: str

    def __str__(self) -> str:
        return f"Workflow already running: {self.workflow_id}"


@dataclass(frozen=True, slots=True)
class WorkflowNotFound(StepflowError):
    workflow_id: str

    def __str__(self) -> str:
        return f"Workflow not found: {self.workflow_id}"
