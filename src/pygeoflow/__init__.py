"""
Geoflow: Workflow Execution Engine for Geospatial AI Analysis

Runs workflows (ordered sequences of typed steps) on a schedule, with
per-step retry, durable execution results and per-workflow mutual
exclusion across schedulers.

Design Pattern: Façade Pattern
This module re-exports the pieces applications use, hiding how storage,
step execution and scheduling are wired together.

Example:
    ```python
    import asyncio
    from datetime import datetime
    from pygeoflow import (
        InMemoryStore, Step, Workflow, WorkflowService, WorkflowType,
    )

    async def main():
        store = InMemoryStore()
        service = WorkflowService.with_defaults(store)

        workflow = await service.create(Workflow(
            name="Anomaly watch",
            type=WorkflowType.ANOMALY_DETECTION,
            steps=[
                Step(name="collect", type="DATA_COLLECTION"),
                Step(name="analyze", type="AI_ANALYSIS"),
            ],
        ))
        result = await service.execute(workflow.id)
        print(result.status, result.result_data["stepResults"][1])

    asyncio.run(main())
    ```
"""

# Core types
from pygeoflow.models import (
    AnalysisResult,
    ResultStatus,
    RetryableError,
    Step,
    StepStatus,
    StepType,
    TimeRange,
    Workflow,
    WorkflowStatus,
    WorkflowType,
)

# Errors
from pygeoflow.errors import (
    InvalidConfigurationError,
    RemoteInvocationError,
    WorkflowBusyError,
    WorkflowNotFoundError,
)

# Storage (Adapter pattern)
from pygeoflow.storage import InMemoryStore, ResultStore, StorageError, WorkflowStore

# Collaborators
from pygeoflow.integrations import (
    FunctionInvoker,
    HttpFunctionInvoker,
    InMemoryMetricsSink,
    LocalFunctionInvoker,
    LoggingMetricsSink,
    MetricsSink,
)

# Execution
from pygeoflow.executor import (
    FixedIntervalPolicy,
    HandlerRegistry,
    IntervalExpressionPolicy,
    NextRunPolicy,
    ResultRecorder,
    Scheduler,
    SchedulerError,
    SchedulerHandle,
    StepExecutor,
    StepInput,
    WorkflowRunner,
)
from pygeoflow.service import WorkflowService

__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy access to backends with optional drivers."""
    if name in ("SqliteStore", "RedisStore"):
        import pygeoflow.storage

        return getattr(pygeoflow.storage, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Models
    "AnalysisResult",
    "ResultStatus",
    "RetryableError",
    "Step",
    "StepStatus",
    "StepType",
    "TimeRange",
    "Workflow",
    "WorkflowStatus",
    "WorkflowType",
    # Errors
    "InvalidConfigurationError",
    "RemoteInvocationError",
    "WorkflowBusyError",
    "WorkflowNotFoundError",
    "StorageError",
    "SchedulerError",
    # Storage
    "WorkflowStore",
    "ResultStore",
    "InMemoryStore",
    "SqliteStore",
    "RedisStore",
    # Collaborators
    "FunctionInvoker",
    "MetricsSink",
    "HttpFunctionInvoker",
    "LocalFunctionInvoker",
    "LoggingMetricsSink",
    "InMemoryMetricsSink",
    # Execution
    "StepInput",
    "HandlerRegistry",
    "StepExecutor",
    "WorkflowRunner",
    "ResultRecorder",
    "Scheduler",
    "SchedulerHandle",
    "NextRunPolicy",
    "FixedIntervalPolicy",
    "IntervalExpressionPolicy",
    "WorkflowService",
    "__version__",
]
