"""Per-workflow run state and the at-most-one-active-run guard."""

from __future__ import annotations

import threading
from enum import Enum

from stepflow.engine.errors import IllegalTransitionError, WorkflowAlreadyRunning


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.RUNNING},
    RunState.RUNNING: {RunState.COMPLETED, RunState.FAILED},
    RunState.COMPLETED: {RunState.RUNNING},
    RunState.FAILED: {RunState.RUNNING},
}


def transition(*, current: RunState, to: RunState) -> RunState:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


class RunRegistry:
    """Tracks which workflow ids have a run in flight.

    One registry is shared by every scheduler that must not overlap; independent
    registries never see each other's runs. Marking a run as started is a single
    locked check-and-set, so two callers can never both begin the same id.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, RunState] = {}

    def state(self, workflow_id: str) -> RunState:
        with self._lock:
            return self._states.get(workflow_id, RunState.IDLE)

    def is_running(self, workflow_id: str) -> bool:
        return self.state(workflow_id) is RunState.RUNNING

    def running_ids(self) -> list[str]:
        with self._lock:
            return sorted(k for k, v in self._states.items() if v is RunState.RUNNING)

    def begin(self, workflow_id: str) -> None:
        """Mark ``workflow_id`` running or raise :class:`WorkflowAlreadyRunning`."""

        with self._lock:
            current = self._states.get(workflow_id, RunState.IDLE)
            if current is RunState.RUNNING:
                raise WorkflowAlreadyRunning(workflow_id)
            self._states[workflow_id] = transition(current=current, to=RunState.RUNNING)

    def try_begin(self, workflow_id: str) -> bool:
        try:
            self.begin(workflow_id)
        except WorkflowAlreadyRunning:
            return False
        return True

    def finish(self, workflow_id: str, *, success: bool) -> RunState:
        """Record the outcome and forget ``workflow_id``.

        Only in-flight runs are kept, so the registry does not grow with every
        finished run. The terminal state is returned to the caller.
        """

        target = RunState.COMPLETED if success else RunState.FAILED
        with self._lock:
            current = self._states.pop(workflow_id, RunState.IDLE)
            return transition(current=current, to=target)
