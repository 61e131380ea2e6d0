"""Single-step execution with immediate retry.

Retry rule: when a handler raises a retryable error and the step still has
budget (retry_count < max_retries), retry_count is incremented and the
handler is called exactly once more, immediately. A second failure, an
exhausted budget or a non-retryable error fails the step.

retry_count is part of the stored step, so the budget is shared by every
execution of the workflow and never exceeds max_retries.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pygeoflow.executor.context import StepInput
from pygeoflow.executor.handlers import HandlerRegistry
from pygeoflow.executor.outcome import StepFailed, StepOutcome, StepSucceeded
from pygeoflow.models import Step, StepStatus, Workflow, can_retry

logger = logging.getLogger(__name__)


def error_message(error: BaseException) -> str:
    """Message recorded for a failure; falls back to the exception type."""
    return str(error) or type(error).__name__


class StepExecutor:
    """Run one step through its registered handler.

    Never raises for handler failures; the outcome says what happened.
    """

    def __init__(self, registry: HandlerRegistry):
        self._registry = registry

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    async def execute(
        self, workflow: Workflow, step: Step, context: Mapping[str, Any]
    ) -> StepOutcome:
        """Execute a step against a snapshot of the workflow context.

        Mutates step.status and step.retry_count; the caller persists them.

        Args:
            workflow: Workflow the step belongs to
            step: Step to execute
            context: Outputs accumulated by earlier steps

        Returns:
            StepSucceeded or StepFailed
        """
        step.status = StepStatus.RUNNING
        logger.info(f"Executing workflow step: {step.name} for workflow: {workflow.name}")

        try:
            return await self._attempt(workflow, step, context, attempts=1)
        except Exception as e:
            logger.error(
                f"Error executing workflow step: {step.name} for workflow: {workflow.name}: "
                f"{error_message(e)}"
            )
            if not can_retry(step, e):
                return self._fail(step, e, attempts=1)

        step.retry_count += 1
        logger.warning(
            f"Retrying workflow step: {step.name} "
            f"(attempt {step.retry_count} of {step.max_retries})"
        )

        try:
            return await self._attempt(workflow, step, context, attempts=2)
        except Exception as retry_error:
            logger.error(
                f"Retry failed for workflow step: {step.name}: {error_message(retry_error)}"
            )
            return self._fail(step, retry_error, attempts=2)

    async def _attempt(
        self, workflow: Workflow, step: Step, context: Mapping[str, Any], attempts: int
    ) -> StepSucceeded:
        start_time = datetime.now()
        handler = self._registry.resolve(step)
        output = await handler(StepInput.for_step(workflow, step, context))
        output = dict(output or {})

        result: dict[str, Any] = {
            "stepName": step.name,
            "stepType": step.type,
            "startTime": start_time.isoformat(),
        }
        result.update(output)
        result["endTime"] = datetime.now().isoformat()
        result["status"] = StepStatus.COMPLETED.value

        step.status = StepStatus.COMPLETED
        logger.info(f"Completed workflow step: {step.name} for workflow: {workflow.name}")
        return StepSucceeded(result=result, output=output, attempts=attempts)

    def _fail(self, step: Step, error: BaseException, attempts: int) -> StepFailed:
        step.status = StepStatus.FAILED
        entry = {
            "stepName": step.name,
            "status": StepStatus.FAILED.value,
            "error": error_message(error),
        }
        return StepFailed(entry=entry, error=error, attempts=attempts)
