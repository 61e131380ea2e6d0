"""Terminal write of an execution and its duration metric.

The recorder completes the AnalysisResult (status, completion_date,
processing_time_ms), then merges the execution state into a freshly
loaded copy of the workflow. Scheduling fields (next_scheduled_run,
schedule_expression, is_active) are taken from storage, not from the
runner's copy, so a schedule() or cancel() issued while the workflow was
running is not overwritten. The terminal status is only written while the
stored status is still RUNNING, for the same reason.

Metrics are best effort: a sink failure is logged and the outcome stands.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pygeoflow.integrations.base import MetricsSink
from pygeoflow.models import AnalysisResult, ResultStatus, Workflow, WorkflowStatus
from pygeoflow.storage.base import ResultStore, WorkflowStore

logger = logging.getLogger(__name__)

UNKNOWN_WORKFLOW_TYPE = "UNKNOWN"


class ResultRecorder:
    """Persist terminal execution outcomes.

    Usage:
        recorder = ResultRecorder(store, store, LoggingMetricsSink())
        result = await recorder.record(workflow, result, succeeded=True)
    """

    def __init__(
        self,
        workflows: WorkflowStore,
        results: ResultStore,
        metrics: MetricsSink | None = None,
    ):
        self._workflows = workflows
        self._results = results
        self._metrics = metrics

    async def record(
        self, workflow: Workflow, result: AnalysisResult, succeeded: bool
    ) -> AnalysisResult:
        """Write the terminal state of one execution.

        Args:
            workflow: The runner's copy of the workflow (carries step state)
            result: The PROCESSING result of this execution
            succeeded: Whether every step completed

        Returns:
            The completed result

        Raises:
            StorageError: If a write fails
        """
        completion = datetime.now()
        result.completion_date = completion
        result.processing_time_ms = max(
            0, int((completion - result.execution_date).total_seconds() * 1000)
        )
        result.status = ResultStatus.COMPLETED if succeeded else ResultStatus.FAILED
        await self._results.save_result(result)

        workflow.status = WorkflowStatus.COMPLETED if succeeded else WorkflowStatus.FAILED

        latest = await self._workflows.find_by_id(workflow.id)
        if latest is None:
            # Deleted mid-flight; saving would bring it back
            logger.warning(f"Workflow {workflow.id} was deleted during execution")
        else:
            if latest.status == WorkflowStatus.RUNNING:
                latest.status = workflow.status
            latest.last_run_at = workflow.last_run_at
            latest.steps = workflow.steps
            await self._workflows.save(latest)

        logger.info(
            f"Workflow executed: {workflow.name} ({workflow.id}) "
            f"status={result.status} time={result.processing_time_ms}ms"
        )

        await self._emit_metric(workflow, result)
        return result

    async def _emit_metric(self, workflow: Workflow, result: AnalysisResult) -> None:
        if self._metrics is None:
            return

        workflow_type = workflow.type.value if workflow.type is not None else UNKNOWN_WORKFLOW_TYPE
        try:
            await self._metrics.record(workflow_type, result.processing_time_ms)
        except Exception as e:
            logger.warning(f"Failed to record execution time metric for {workflow.id}: {e}")
