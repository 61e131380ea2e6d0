"""Execution of one workflow, start to terminal result.

States: START -> RUNNING -> COMPLETED | FAILED

START     Load the workflow (WorkflowNotFoundError if absent), persist a
          PROCESSING AnalysisResult, mark the workflow RUNNING.
RUNNING   Execute steps in stored order, one at a time. Each step sees a
          read-only snapshot of the context; its output is merged after it
          succeeds. The first failed step stops the run.
TERMINAL  Hand the result to the ResultRecorder.

Every failure after START ends in a FAILED result; the runner only raises
for a missing workflow or a storage failure writing the initial records.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pygeoflow.errors import WorkflowNotFoundError
from pygeoflow.executor.outcome import StepFailed
from pygeoflow.executor.recorder import ResultRecorder
from pygeoflow.executor.step import StepExecutor, error_message
from pygeoflow.models import AnalysisResult, Workflow, WorkflowStatus
from pygeoflow.storage.base import ResultStore, WorkflowStore

logger = logging.getLogger(__name__)

NO_STEPS_ERROR = "No steps defined for workflow"


class WorkflowRunner:
    """Run workflows by id.

    Not reentrant per workflow: callers (Scheduler, WorkflowService) hold
    the workflow's claim while a run is in progress.

    Usage:
        runner = WorkflowRunner(store, store, StepExecutor(registry), recorder)
        result = await runner.run(workflow_id)
    """

    def __init__(
        self,
        workflows: WorkflowStore,
        results: ResultStore,
        executor: StepExecutor,
        recorder: ResultRecorder,
    ):
        self._workflows = workflows
        self._results = results
        self._executor = executor
        self._recorder = recorder

    async def run(self, workflow_id: str) -> AnalysisResult:
        """Execute a workflow once and return its terminal result.

        Each call produces a new, independent AnalysisResult.

        Raises:
            WorkflowNotFoundError: If no workflow has this id
            StorageError: If the initial records cannot be written
        """
        workflow = await self._workflows.find_by_id(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)

        now = datetime.now()
        result = AnalysisResult.start(workflow, now)
        await self._results.save_result(result)

        workflow.status = WorkflowStatus.RUNNING
        workflow.last_run_at = now
        await self._workflows.save(workflow)

        try:
            succeeded = await self._run_steps(workflow, result)
        except Exception as e:
            logger.error(f"Error executing workflow: {workflow.name} ({workflow.id}): {e}")
            result.result_data["error"] = error_message(e)
            succeeded = False

        return await self._recorder.record(workflow, result, succeeded)

    async def _run_steps(self, workflow: Workflow, result: AnalysisResult) -> bool:
        total_steps = len(workflow.steps)
        if total_steps == 0:
            logger.warning(f"No steps defined for workflow: {workflow.name}")
            result.result_data = {
                "stepResults": [],
                "totalSteps": 0,
                "completedSteps": 0,
                "error": NO_STEPS_ERROR,
            }
            return False

        context: dict[str, Any] = {}
        step_results: list[dict[str, Any]] = []
        completed = 0

        for step in workflow.steps:
            outcome = await self._executor.execute(workflow, step, context)

            if isinstance(outcome, StepFailed):
                step_results.append(outcome.entry)
                result.result_data = {
                    "stepResults": step_results,
                    "totalSteps": total_steps,
                    "completedSteps": completed,
                    "failedStep": step.name,
                    "error": outcome.message,
                }
                return False

            step_results.append(outcome.result)
            context.update(outcome.output)
            completed += 1

            score = outcome.output.get("confidenceScore")
            if isinstance(score, (int, float)) and not isinstance(score, bool):
                result.confidence_score = float(score)

        result.result_data = {
            "stepResults": step_results,
            "totalSteps": total_steps,
            "completedSteps": completed,
        }
        return True
