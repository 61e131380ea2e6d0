"""
Executor module - Runtime engine for workflow executions.

This module contains the execution components:
- handlers: StepType -> handler registry and the built-in handlers
- step: single-step execution with immediate retry
- runner: one workflow execution, start to terminal result
- recorder: terminal write plus duration metric
- scheduler: periodic selection and bounded worker pool
- next_run: pluggable next-run policies for recurring workflows
"""

from pygeoflow.executor.context import StepInput
from pygeoflow.executor.handlers import HandlerRegistry, StepHandler
from pygeoflow.executor.lambda_step import (
    LambdaFunctionHandler,
    ResolvedFunction,
    resolve_function_name,
)
from pygeoflow.executor.next_run import (
    FixedIntervalPolicy,
    IntervalExpressionPolicy,
    NextRunPolicy,
    parse_interval,
)
from pygeoflow.executor.outcome import (
    StepFailed,
    StepOutcome,
    StepSucceeded,
    is_failed,
    is_succeeded,
)
from pygeoflow.executor.recorder import ResultRecorder
from pygeoflow.executor.runner import WorkflowRunner
from pygeoflow.executor.scheduler import (
    ScheduledRunReport,
    Scheduler,
    SchedulerError,
    SchedulerHandle,
)
from pygeoflow.executor.step import StepExecutor

__all__ = [
    # Handlers
    "StepInput",
    "StepHandler",
    "HandlerRegistry",
    "LambdaFunctionHandler",
    "ResolvedFunction",
    "resolve_function_name",
    # Step outcome state machine
    "StepSucceeded",
    "StepFailed",
    "StepOutcome",
    "is_succeeded",
    "is_failed",
    # Execution
    "StepExecutor",
    "WorkflowRunner",
    "ResultRecorder",
    # Scheduling
    "Scheduler",
    "SchedulerHandle",
    "SchedulerError",
    "ScheduledRunReport",
    "NextRunPolicy",
    "FixedIntervalPolicy",
    "IntervalExpressionPolicy",
    "parse_interval",
]
