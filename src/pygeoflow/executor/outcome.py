"""
Step execution outcomes.

**Design Pattern**: State Machine using Union types

A step either succeeds or fails; the StepExecutor returns one of these
values instead of raising, so the WorkflowRunner decides what happens next
without exception plumbing.

Example:
    ```python
    outcome = await executor.execute(workflow, step, context)

    match outcome:
        case StepSucceeded(result, output):
            context.update(output)
        case StepFailed(entry, _):
            abort(entry)
    ```
"""

from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "StepSucceeded",
    "StepFailed",
    "StepOutcome",
    "is_succeeded",
    "is_failed",
]


@dataclass(frozen=True)
class StepSucceeded:
    """
    The step handler returned normally.

    Attributes:
        result: Step result recorded in stepResults
            ({stepName, stepType, startTime, ...output, endTime, status})
        output: The handler's delta, merged into the workflow context
    """

    result: dict[str, Any]
    output: dict[str, Any] = field(default_factory=dict)
    attempts: int = 1

    def __str__(self) -> str:
        return f"StepSucceeded({self.result.get('stepName')})"


@dataclass(frozen=True)
class StepFailed:
    """
    The step failed terminally.

    Attributes:
        entry: Error entry recorded in stepResults ({stepName, status, error})
        error: The exception that ended the step
    """

    entry: dict[str, Any]
    error: BaseException | None = None
    attempts: int = 1

    @property
    def message(self) -> str:
        return self.entry.get("error", "")

    def __str__(self) -> str:
        return f"StepFailed({self.entry.get('stepName')}: {self.message})"


StepOutcome = StepSucceeded | StepFailed


def is_succeeded(outcome: StepOutcome) -> bool:
    """Type guard to check if outcome is StepSucceeded."""
    return isinstance(outcome, StepSucceeded)


def is_failed(outcome: StepOutcome) -> bool:
    """Type guard to check if outcome is StepFailed."""
    return isinstance(outcome, StepFailed)
