"""Pydantic models for workflows, data points and run results.

These mirror the workflow JSON exchanged with the host (camelCase on the wire)
and are the stable contracts between the store, the repair/validation passes and
the run scheduler.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class DataPointType(str, Enum):
    CONTEXT = "context"
    TASK_OUTPUT = "task_output"
    STATIC = "static"


class StepKind(str, Enum):
    TASK = "task"
    HANDLER = "handler"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class DataPoint(BaseModel):
    """A named, typed value available for token substitution during a run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique within a run")
    name: str = Field(default="")
    type: DataPointType = Field(default=DataPointType.CONTEXT)
    value: Any = Field(default=None)
    source: str = Field(default="", description="Origin tag: 'kb', a provider id or a step id")
    timestamp: int = Field(default_factory=now_ms)


class KnowledgeEntry(BaseModel):
    """A persisted knowledge-base entry."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    content: str = ""
    type: Literal["text", "file", "url"] = "text"
    tags: list[str] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")

    def to_data_point(self) -> DataPoint:
        return DataPoint(
            id=f"kb_{self.id}",
            name=f"KB: {self.name}",
            type=DataPointType.CONTEXT,
            value={"text": self.content, "title": self.name, "source": "kb"},
            source="kb",
            timestamp=self.updated_at or self.created_at or now_ms(),
        )


class RetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_attempts: int = Field(default=1, ge=1, alias="maxAttempts")
    delay: float = Field(default=0.0, ge=0, description="Seconds before the second attempt")
    backoff_multiplier: float = Field(default=1.0, ge=1, alias="backoffMultiplier")

    def wait_before(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (2-based; the first attempt never waits)."""

        return self.delay * self.backoff_multiplier ** (attempt - 2)


class WorkflowStep(BaseModel):
    """A single workflow action.

    Unknown keys (editor metadata such as ``output`` or ``parallel``) are kept so a
    load/save cycle does not lose data.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    id: str
    kind: StepKind = Field(..., alias="type")
    task_id: str | None = Field(default=None, alias="taskId")
    handler_id: str | None = Field(default=None, alias="handlerId")
    input: dict[str, Any] = Field(default_factory=dict)
    condition: str | None = None
    delay: float | None = Field(default=None, ge=0, description="Seconds to wait before running")
    retry: RetryConfig | None = None

    @property
    def target_id(self) -> str | None:
        return self.task_id if self.kind is StepKind.TASK else self.handler_id

    @property
    def output_id(self) -> str:
        """Id of the data point a completed task step produces."""

        return f"{self.id}_output"


class WorkflowTrigger(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["manual", "onPageLoad", "onSelection", "onFocus", "schedule"]
    pattern: str | None = None
    selector: str | None = None
    schedule: str | None = None
    shortcut: str | None = None


class WebsiteConfig(BaseModel):
    type: Literal["all", "specific", "exclude"] = "all"
    patterns: str = ""


class Workflow(BaseModel):
    """A workflow definition as persisted and exchanged with the host."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = None
    name: str = ""
    description: str = ""
    steps: list[WorkflowStep] = Field(default_factory=list)
    triggers: list[WorkflowTrigger] = Field(default_factory=list)
    data_points: list[DataPoint] = Field(default_factory=list, alias="dataPoints")
    enabled: bool = True
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")
    version: str = "1.0.0"
    website_config: WebsiteConfig | None = Field(default=None, alias="websiteConfig")

    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DispatchResponse(BaseModel):
    """Response envelope of a task or handler dispatch."""

    success: bool
    data: Any = None
    error: str | None = None


class StepResult(BaseModel):
    step_id: str
    kind: StepKind
    status: StepStatus
    result: DispatchResponse | None = None
    error: str | None = None
    reason: str | None = None
    attempts: int = 0
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status is not StepStatus.FAILED

    @property
    def skipped(self) -> bool:
        return self.status is StepStatus.SKIPPED


class RunResult(BaseModel):
    workflow_id: str
    success: bool
    results: list[StepResult] = Field(default_factory=list)
    data_points: list[DataPoint] = Field(default_factory=list)
    error: str | None = None
    duration_ms: int = 0

    @property
    def failed_steps(self) -> list[str]:
        return [r.step_id for r in self.results if r.status is StepStatus.FAILED]
