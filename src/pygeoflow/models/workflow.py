"""Workflow definition: a named, schedulable sequence of typed steps.

Design: Value Objects with explicit mutation points
Workflow and Step are plain dataclasses. Only the runner that owns the
current execution mutates them (status, retry_count, last_run_at), and
every change reaches storage through WorkflowStore.save().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from uuid_extensions import uuid7

from pygeoflow.models.status import StepStatus, WorkflowStatus

DEFAULT_MAX_RETRIES = 3


class WorkflowType(Enum):
    """Category of analysis a workflow performs.

    The AI_ANALYSIS step handler selects its output from this value.
    """

    ENVIRONMENTAL_MONITORING = "ENVIRONMENTAL_MONITORING"
    ASSET_TRACKING = "ASSET_TRACKING"
    ANOMALY_DETECTION = "ANOMALY_DETECTION"
    CHANGE_DETECTION = "CHANGE_DETECTION"
    CLASSIFICATION = "CLASSIFICATION"
    SEGMENTATION = "SEGMENTATION"
    PREDICTIVE_MAINTENANCE = "PREDICTIVE_MAINTENANCE"
    CUSTOM = "CUSTOM"

    @classmethod
    def parse(cls, value: str | WorkflowType) -> WorkflowType:
        """Parse a type name case-insensitively.

        Raises:
            ValueError: If the name is not a known workflow type
        """
        if isinstance(value, WorkflowType):
            return value
        try:
            return cls(value.strip().upper())
        except (AttributeError, ValueError):
            raise ValueError(f"Invalid workflow type: {value}") from None

    def __str__(self) -> str:
        return self.value


class StepType(Enum):
    """Closed set of step kinds understood by the handler registry."""

    DATA_COLLECTION = "DATA_COLLECTION"
    PREPROCESSING = "PREPROCESSING"
    AI_ANALYSIS = "AI_ANALYSIS"
    POSTPROCESSING = "POSTPROCESSING"
    NOTIFICATION = "NOTIFICATION"
    LAMBDA_FUNCTION = "LAMBDA_FUNCTION"

    @classmethod
    def from_tag(cls, tag: str | None) -> StepType | None:
        """Resolve a declared step tag, case-insensitively.

        Returns None for a missing or unknown tag; the executor decides
        how to report it.
        """
        if tag is None:
            return None
        try:
            return cls(tag.strip().upper())
        except ValueError:
            return None

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TimeRange:
    """Time window of interest. Both bounds are optional and opaque to the engine."""

    start: datetime | None = None
    end: datetime | None = None


@dataclass
class Step:
    """One typed unit of work within a workflow, with its own retry budget.

    The declared type is kept as the raw tag so a stored workflow with a bad
    tag still loads; it fails when the step executes.
    """

    name: str
    """Step name, unique by convention within a workflow."""

    type: str | None
    """Declared step type tag (see StepType)."""

    configuration: str | None = None
    """Opaque configuration string; format depends on the step type."""

    description: str | None = None

    status: StepStatus = StepStatus.PENDING

    retry_count: int = 0
    """Retries consumed so far. Persisted across executions."""

    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self):
        """Validate invariants after creation."""
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        if not 0 <= self.retry_count <= self.max_retries:
            raise ValueError(
                f"retry_count must be between 0 and max_retries ({self.max_retries}), "
                f"got {self.retry_count}"
            )

    @property
    def step_type(self) -> StepType | None:
        """Resolved step type, or None if the tag is missing or unknown."""
        return StepType.from_tag(self.type)

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation used by the storage adapters."""
        return {
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "configuration": self.configuration,
            "status": self.status.value,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Step:
        return cls(
            name=data["name"],
            description=data.get("description"),
            type=data.get("type"),
            configuration=data.get("configuration"),
            status=StepStatus(data.get("status") or StepStatus.PENDING.value),
            retry_count=data.get("retryCount", 0),
            max_retries=data.get("maxRetries", DEFAULT_MAX_RETRIES),
        )


@dataclass
class Workflow:
    """A named, schedulable sequence of typed steps plus analysis metadata."""

    name: str
    type: WorkflowType | None = None
    steps: list[Step] = field(default_factory=list)
    """Ordered steps. Order is significant and preserved by every store."""

    id: str = field(default_factory=lambda: str(uuid7()))
    description: str | None = None
    status: WorkflowStatus = WorkflowStatus.CREATED
    created_at: datetime = field(default_factory=datetime.now)
    last_run_at: datetime | None = None

    next_scheduled_run: datetime | None = None
    """When the scheduler should run this workflow. Meaningful only when SCHEDULED."""

    schedule_expression: str | None = None
    """Recurrence rule interpreted by a NextRunPolicy. Empty means one-shot."""

    is_active: bool = True
    area_of_interest: Any = None
    """Geometry attached to the workflow; copied verbatim into results."""

    time_range: TimeRange = field(default_factory=TimeRange)
    parameters: dict[str, str] = field(default_factory=dict)
    model_ids: list[str] = field(default_factory=list)

    @property
    def is_recurring(self) -> bool:
        """True when a schedule expression is set."""
        return bool(self.schedule_expression and self.schedule_expression.strip())

    def is_due(self, now: datetime) -> bool:
        """Due means active with a next run at or before now."""
        return (
            self.is_active
            and self.next_scheduled_run is not None
            and self.next_scheduled_run <= now
        )

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"Workflow(id={self.id!r}, name={self.name!r}, type={self.type}, "
            f"status={self.status}, steps={len(self.steps)}, "
            f"next_scheduled_run={self.next_scheduled_run!r})"
        )
