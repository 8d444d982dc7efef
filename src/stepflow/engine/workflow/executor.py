"""Sequential workflow run scheduler.

A run gates each step on its condition, waits out its delay, resolves its input
tokens against the run's data points and dispatches it to the host. Step
failures are recorded and the run moves on; nothing a step does can abort the
steps after it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from stepflow.engine.config import EngineSettings
from stepflow.engine.errors import DispatchTimeoutError, WorkflowAlreadyRunning

from .conditions import evaluate_condition
from .datapoints import (
    DataPointStore,
    coerce_context_records,
    knowledge_data_points,
    task_output_data_point,
)
from .dependencies import analyze_dependencies
from .dispatch import (
    ContextSource,
    DispatchReply,
    EmptyKnowledgeSource,
    HandlerDispatcher,
    KnowledgeSource,
    StaticContextSource,
    TaskDispatcher,
    coerce_response,
)
from .models import (
    DataPoint,
    DispatchResponse,
    RetryConfig,
    RunResult,
    StepKind,
    StepResult,
    StepStatus,
    Workflow,
    WorkflowStep,
    now_ms,
)
from .registry import RunRegistry
from .tokens import TokenResolver
from .values import resolve_input

logger = logging.getLogger(__name__)

SKIPPED_REASON = "condition evaluated to false"

Sleep = Callable[[float], Awaitable[Any]]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class WorkflowRunner:
    """Run workflows against a host's dispatchers.

    Args:
        tasks: Executes ``task`` steps; a successful result becomes a data point.
        handlers: Executes ``handler`` steps; results are recorded only.
        context_source: Supplies the run's initial context data points.
        knowledge_source: Supplies knowledge entries, exposed as ``kb_<id>``.
        registry: Shared run registry. Schedulers sharing one never overlap on
            a workflow id.
        dispatch_timeout: Seconds before a single dispatch counts as failed.
            ``None`` waits indefinitely.
        max_step_delay: Upper bound for a step's ``delay``.
        sleep: Awaitable used for step delays and retry back-off.
    """

    def __init__(
        self,
        *,
        tasks: TaskDispatcher,
        handlers: HandlerDispatcher,
        context_source: ContextSource | None = None,
        knowledge_source: KnowledgeSource | None = None,
        registry: RunRegistry | None = None,
        dispatch_timeout: float | None = None,
        max_step_delay: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._tasks = tasks
        self._handlers = handlers
        self._context_source = context_source or StaticContextSource()
        self._knowledge_source = knowledge_source or EmptyKnowledgeSource()
        self._registry = registry or RunRegistry()
        self._dispatch_timeout = dispatch_timeout
        self._max_step_delay = max_step_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs: Any) -> WorkflowRunner:
        kwargs.setdefault("dispatch_timeout", settings.dispatch_timeout_seconds)
        kwargs.setdefault("max_step_delay", settings.max_step_delay_seconds)
        return cls(**kwargs)

    @property
    def registry(self) -> RunRegistry:
        return self._registry

    async def run(self, workflow: Workflow) -> RunResult:
        """Execute ``workflow`` once. Never raises.

        A second call for a workflow id that is still running returns a failed
        result immediately without dispatching anything.
        """

        started = time.monotonic()
        workflow_id = workflow.id or f"workflow_{now_ms()}"
        if not self._registry.try_begin(workflow_id):
            error = str(WorkflowAlreadyRunning(workflow_id))
            logger.warning("Workflow run rejected", extra={"workflow_id": workflow_id, "error": error})
            return RunResult(workflow_id=workflow_id, success=False, error=error)

        logger.info(
            "Workflow run started",
            extra={"workflow_id": workflow_id, "steps": len(workflow.steps)},
        )
        results: list[StepResult] = []
        store = DataPointStore()
        result: RunResult | None = None
        try:
            store = await self._initial_store()
            self._warn_on_dependencies(workflow_id, workflow)
            for step in workflow.steps:
                results.append(await self._run_step_guarded(workflow_id, step, store))
            result = RunResult(
                workflow_id=workflow_id,
                success=not any(r.status is StepStatus.FAILED for r in results),
                results=results,
                data_points=store.snapshot(),
                duration_ms=_elapsed_ms(started),
            )
        except Exception as e:
            logger.exception("Workflow run aborted", extra={"workflow_id": workflow_id})
            result = RunResult(
                workflow_id=workflow_id,
                success=False,
                results=results,
                data_points=store.snapshot(),
                error=str(e) or type(e).__name__,
                duration_ms=_elapsed_ms(started),
            )
        finally:
            self._registry.finish(workflow_id, success=result is not None and result.success)

        logger.info(
            "Workflow run finished",
            extra={
                "workflow_id": workflow_id,
                "success": result.success,
                "failed_steps": result.failed_steps,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _initial_store(self) -> DataPointStore:
        context: list[DataPoint] = []
        try:
            context = coerce_context_records(await self._context_source.gather_context())
        except Exception:
            logger.warning("Context gathering failed; continuing without context", exc_info=True)

        knowledge: list[DataPoint] = []
        try:
            knowledge = knowledge_data_points(await self._knowledge_source.list_entries())
        except Exception:
            logger.warning("Knowledge loading failed; continuing without knowledge", exc_info=True)

        store = DataPointStore(context)
        for data_point in knowledge:
            store.add(data_point)
        logger.debug(
            "Run data points initialized",
            extra={"context": len(context), "knowledge": len(knowledge)},
        )
        return store

    def _warn_on_dependencies(self, workflow_id: str, workflow: Workflow) -> None:
        for issue in analyze_dependencies(workflow.steps):
            logger.warning(
                issue.message,
                extra={
                    "workflow_id": workflow_id,
                    "step_id": issue.reference.step_id,
                    "field": issue.reference.field,
                    "problem": issue.problem.value,
                },
            )

    async def _run_step_guarded(
        self, workflow_id: str, step: WorkflowStep, store: DataPointStore
    ) -> StepResult:
        # Any stage of a step (condition, delay, input resolution) may raise;
        # it fails that step only.
        started = time.monotonic()
        try:
            return await self._run_step(workflow_id, step, store)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.exception(
                "Step failed",
                extra={"workflow_id": workflow_id, "step_id": step.id, "kind": step.kind.value},
            )
            return StepResult(
                step_id=step.id,
                kind=step.kind,
                status=StepStatus.FAILED,
                error=error,
                duration_ms=_elapsed_ms(started),
            )

    async def _run_step(
        self, workflow_id: str, step: WorkflowStep, store: DataPointStore
    ) -> StepResult:
        started = time.monotonic()
        log_extra = {"workflow_id": workflow_id, "step_id": step.id, "kind": step.kind.value}

        if not evaluate_condition(step.condition, store):
            logger.info("Step skipped", extra={**log_extra, "reason": SKIPPED_REASON})
            return StepResult(
                step_id=step.id,
                kind=step.kind,
                status=StepStatus.SKIPPED,
                reason=SKIPPED_REASON,
            )

        if step.delay:
            await self._sleep(self._clamp_delay(step, log_extra))

        target = step.target_id
        if not target:
            field = "taskId" if step.kind is StepKind.TASK else "handlerId"
            error = f"Step {step.id} has no {field}"
            logger.warning("Step failed", extra={**log_extra, "error": error})
            return StepResult(
                step_id=step.id,
                kind=step.kind,
                status=StepStatus.FAILED,
                error=error,
                duration_ms=_elapsed_ms(started),
            )

        resolved = resolve_input(step.input, TokenResolver(store))
        response, error, attempts = await self._dispatch_with_retry(step, target, resolved, log_extra)

        if error is None:
            assert response is not None
            if step.kind is StepKind.TASK:
                store.add(task_output_data_point(step.id, response.data))
            logger.info("Step succeeded", extra={**log_extra, "attempts": attempts})
            status = StepStatus.SUCCEEDED
        else:
            logger.warning("Step failed", extra={**log_extra, "attempts": attempts, "error": error})
            status = StepStatus.FAILED

        return StepResult(
            step_id=step.id,
            kind=step.kind,
            status=status,
            result=response,
            error=error,
            attempts=attempts,
            duration_ms=_elapsed_ms(started),
        )

    def _clamp_delay(self, step: WorkflowStep, log_extra: dict[str, Any]) -> float:
        delay = float(step.delay or 0)
        if self._max_step_delay is not None and delay > self._max_step_delay:
            logger.warning(
                "Step delay clamped",
                extra={**log_extra, "requested": delay, "clamped_to": self._max_step_delay},
            )
            return self._max_step_delay
        return delay

    async def _dispatch_with_retry(
        self,
        step: WorkflowStep,
        target: str,
        resolved: dict[str, Any],
        log_extra: dict[str, Any],
    ) -> tuple[DispatchResponse | None, str | None, int]:
        retry = step.retry or RetryConfig()
        response: DispatchResponse | None = None
        error: str | None = None
        attempt = 0
        for attempt in range(1, retry.max_attempts + 1):
            if attempt > 1:
                wait = retry.wait_before(attempt)
                logger.info("Retrying step", extra={**log_extra, "attempt": attempt, "wait": wait})
                if wait > 0:
                    await self._sleep(wait)
            try:
                response = await self._dispatch_once(step.kind, target, resolved)
            except Exception as e:
                response = None
                error = str(e) or type(e).__name__
                continue
            if response.success:
                return response, None, attempt
            error = response.error or f"{step.kind.value} {target} reported failure"
        return response, error, attempt

    async def _dispatch_once(
        self, kind: StepKind, target: str, resolved: dict[str, Any]
    ) -> DispatchResponse:
        call: Awaitable[DispatchReply]
        if kind is StepKind.TASK:
            call = self._tasks.execute_task(target, resolved)
        else:
            call = self._handlers.execute_handler(target, resolved)

        if self._dispatch_timeout is None:
            return coerce_response(await call)
        try:
            return coerce_response(await asyncio.wait_for(call, timeout=self._dispatch_timeout))
        except TimeoutError as e:
            raise DispatchTimeoutError(f"{kind.value} {target}", self._dispatch_timeout) from e
