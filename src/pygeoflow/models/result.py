"""Durable record of one workflow execution's outcome."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from uuid_extensions import uuid7

from pygeoflow.models.status import ResultStatus
from pygeoflow.models.workflow import TimeRange, Workflow


@dataclass
class AnalysisResult:
    """Outcome of a single workflow execution.

    Created with status PROCESSING when the execution starts. The result
    recorder performs one terminal write (COMPLETED or FAILED) that sets
    completion_date and processing_time_ms; after that the record is not
    modified.

    result_data layout:
        stepResults: ordered list of per-step result maps
        totalSteps: number of steps defined on the workflow
        completedSteps: number of steps that actually completed
        error / failedStep: present on failure
    """

    workflow_id: str
    name: str
    id: str = field(default_factory=lambda: str(uuid7()))
    description: str | None = None
    execution_date: datetime = field(default_factory=datetime.now)
    completion_date: datetime | None = None
    status: ResultStatus = ResultStatus.PROCESSING
    processing_time_ms: int | None = None
    result_data: dict[str, Any] = field(default_factory=dict)
    confidence_score: float | None = None
    area_of_interest: Any = None
    time_range: TimeRange = field(default_factory=TimeRange)

    @classmethod
    def start(cls, workflow: Workflow, now: datetime) -> AnalysisResult:
        """Create the PROCESSING record for a new execution of a workflow.

        Area of interest and time range are copied from the workflow as they
        are at execution start.
        """
        return cls(
            workflow_id=workflow.id,
            name=f"Execution of {workflow.name}",
            description=f"Analysis result for workflow: {workflow.name}",
            execution_date=now,
            status=ResultStatus.PROCESSING,
            area_of_interest=workflow.area_of_interest,
            time_range=workflow.time_range,
        )

    @property
    def is_finished(self) -> bool:
        return self.completion_date is not None

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"AnalysisResult(id={self.id!r}, workflow_id={self.workflow_id!r}, "
            f"status={self.status}, processing_time_ms={self.processing_time_ms})"
        )
