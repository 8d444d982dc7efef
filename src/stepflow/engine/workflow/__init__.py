"""Workflow domain: models, data points, tokens, conditions, repair and the runner.

This package introduces first-class types for:
- Data points and the per-run data point store
- `${id.field}` tokens and their resolution
- Step conditions
- Static passes over workflow definitions (repair, migration, validation)
- The sequential run scheduler and its run registry
"""

from .executor import WorkflowRunner
from .models import (
    DataPoint,
    DataPointType,
    KnowledgeEntry,
    RunResult,
    StepKind,
    StepResult,
    StepStatus,
    Workflow,
    WorkflowStep,
)
from .registry import RunRegistry, RunState

__all__ = [
    "DataPoint",
    "DataPointType",
    "KnowledgeEntry",
    "RunRegistry",
    "RunResult",
    "RunState",
    "StepKind",
    "StepResult",
    "StepStatus",
    "Workflow",
    "WorkflowRunner",
    "WorkflowStep",
]
