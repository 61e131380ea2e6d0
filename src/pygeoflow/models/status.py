"""Status enumerations for workflow execution tracking.

Defines lifecycle states for workflows, their individual steps, and the
analysis results recorded for each execution.
"""

from enum import Enum


class WorkflowStatus(Enum):
    """Status of a workflow definition.

    Lifecycle:
        CREATED → SCHEDULED → RUNNING → COMPLETED/FAILED

    A recurring workflow goes back to SCHEDULED after each run. Cancelling a
    scheduled workflow clears its next run and returns it to CREATED.
    """

    CREATED = "CREATED"
    """Workflow exists but has no pending run."""

    SCHEDULED = "SCHEDULED"
    """Workflow has a next_scheduled_run and is eligible for the scheduler."""

    RUNNING = "RUNNING"
    """An execution is in progress."""

    COMPLETED = "COMPLETED"
    """Last execution finished with every step completed."""

    FAILED = "FAILED"
    """Last execution stopped on a failed step or an error."""

    CANCELLED = "CANCELLED"
    """Reserved for cancelled workflows."""

    @property
    def is_terminal(self) -> bool:
        """Check if this status ends an execution."""
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)

    def __str__(self) -> str:
        return self.value


class StepStatus(Enum):
    """Status of a single workflow step.

    Lifecycle:
        PENDING → RUNNING → COMPLETED/FAILED
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    def __str__(self) -> str:
        return self.value


class ResultStatus(Enum):
    """Status of an analysis result.

    Lifecycle:
        PROCESSING → COMPLETED/FAILED

    There is no retry at this level. Retries happen inside step
    execution, before the result reaches a terminal state.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (no more writes expected)."""
        return self in (ResultStatus.COMPLETED, ResultStatus.FAILED, ResultStatus.CANCELLED)

    def __str__(self) -> str:
        return self.value
