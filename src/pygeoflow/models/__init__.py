"""Core data models for workflow execution.

Defines workflows, steps, analysis results, their status machines, and
retry classification.

Design: Dependency-Free Models
These types have no dependencies on executor or storage modules to
prevent circular imports and enable clean layering.
"""

from pygeoflow.models.result import AnalysisResult
from pygeoflow.models.retry import RetryableError, can_retry, is_retryable
from pygeoflow.models.status import ResultStatus, StepStatus, WorkflowStatus
from pygeoflow.models.workflow import (
    DEFAULT_MAX_RETRIES,
    Step,
    StepType,
    TimeRange,
    Workflow,
    WorkflowType,
)

__all__ = [
    "AnalysisResult",
    "DEFAULT_MAX_RETRIES",
    "ResultStatus",
    "RetryableError",
    "Step",
    "StepStatus",
    "StepType",
    "TimeRange",
    "Workflow",
    "WorkflowStatus",
    "WorkflowType",
    "can_retry",
    "is_retryable",
]
