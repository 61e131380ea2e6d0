"""Application-level operations on workflows.

Design Pattern: Façade Pattern
WorkflowService bundles the store, the runner and the claim protocol
behind the operations an application exposes: create, look up, delete,
execute now, schedule, cancel and execution history.

Manual execution takes the same per-workflow claim as the scheduler, so a
workflow never runs twice at once regardless of who started it.

Example:
    ```python
    store = await SqliteStore.in_memory()
    service = WorkflowService.with_defaults(store, invoker=LocalFunctionInvoker())

    workflow = await service.create(Workflow(name="NDVI watch", steps=[...]))
    result = await service.execute(workflow.id)
    await service.schedule(workflow.id, datetime.now() + timedelta(hours=1))
    ```
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from uuid_extensions import uuid7

from pygeoflow.errors import WorkflowBusyError, WorkflowNotFoundError
from pygeoflow.executor.handlers import HandlerRegistry
from pygeoflow.executor.recorder import ResultRecorder
from pygeoflow.executor.runner import WorkflowRunner
from pygeoflow.executor.scheduler import DEFAULT_CLAIM_LEASE
from pygeoflow.executor.step import StepExecutor
from pygeoflow.integrations.base import FunctionInvoker, MetricsSink
from pygeoflow.models import AnalysisResult, Workflow, WorkflowStatus, WorkflowType
from pygeoflow.storage.base import ResultStore, WorkflowStore

logger = logging.getLogger(__name__)


def parse_status(value: str | WorkflowStatus) -> WorkflowStatus:
    """Parse a workflow status name case-insensitively.

    Raises:
        ValueError: If the name is not a known status
    """
    if isinstance(value, WorkflowStatus):
        return value
    try:
        return WorkflowStatus(value.strip().upper())
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid workflow status: {value}") from None


class WorkflowService:
    """Workflow operations for applications."""

    def __init__(
        self,
        workflows: WorkflowStore,
        results: ResultStore,
        runner: WorkflowRunner,
        owner_id: str | None = None,
        claim_lease: timedelta = DEFAULT_CLAIM_LEASE,
    ):
        """
        Args:
            workflows: Workflow store
            results: Result store
            runner: Runner used by execute()
            owner_id: Claim owner id for manual executions
            claim_lease: Lease taken for manual executions
        """
        self._workflows = workflows
        self._results = results
        self._runner = runner
        self._owner_id = owner_id or f"service-{uuid7()}"
        self._claim_lease = claim_lease

    @classmethod
    def with_defaults(
        cls,
        store: WorkflowStore,
        invoker: FunctionInvoker | None = None,
        metrics: MetricsSink | None = None,
        results: ResultStore | None = None,
    ) -> WorkflowService:
        """Wire a service with the built-in handlers.

        `store` is used for results too unless `results` is given, which
        suits the bundled backends (they implement both interfaces).
        """
        result_store = results if results is not None else store
        recorder = ResultRecorder(store, result_store, metrics)
        executor = StepExecutor(HandlerRegistry.default(invoker))
        runner = WorkflowRunner(store, result_store, executor, recorder)
        return cls(store, result_store, runner)

    @property
    def runner(self) -> WorkflowRunner:
        return self._runner

    @property
    def owner_id(self) -> str:
        return self._owner_id

    # ========================================================================
    # Definitions
    # ========================================================================

    async def create(self, workflow: Workflow) -> Workflow:
        """Store a new workflow.

        Status is SCHEDULED when a next run is already set, else CREATED.
        """
        workflow.status = (
            WorkflowStatus.SCHEDULED
            if workflow.next_scheduled_run is not None
            else WorkflowStatus.CREATED
        )
        await self._workflows.save(workflow)
        logger.info(f"Created workflow: {workflow.name} ({workflow.id})")
        return workflow

    async def update(self, workflow: Workflow) -> Workflow:
        """Replace the stored definition of an existing workflow."""
        await self.get(workflow.id)
        return await self._workflows.save(workflow)

    async def get(self, workflow_id: str) -> Workflow:
        """
        Raises:
            WorkflowNotFoundError: If no workflow has this id
        """
        workflow = await self._workflows.find_by_id(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def list_workflows(self) -> list[Workflow]:
        return await self._workflows.find_all()

    async def find_by_name(self, fragment: str) -> list[Workflow]:
        """Workflows whose name contains `fragment`, ignoring case."""
        needle = fragment.lower()
        return [w for w in await self._workflows.find_all() if needle in w.name.lower()]

    async def find_by_type(self, workflow_type: str | WorkflowType) -> list[Workflow]:
        wanted = WorkflowType.parse(workflow_type)
        return [w for w in await self._workflows.find_all() if w.type == wanted]

    async def find_by_status(self, status: str | WorkflowStatus) -> list[Workflow]:
        wanted = parse_status(status)
        return [w for w in await self._workflows.find_all() if w.status == wanted]

    async def find_active(self) -> list[Workflow]:
        return [w for w in await self._workflows.find_all() if w.is_active]

    async def delete(self, workflow_id: str) -> None:
        """Delete a workflow together with its execution history.

        Raises:
            WorkflowNotFoundError: If no workflow has this id
        """
        if not await self._workflows.delete(workflow_id):
            raise WorkflowNotFoundError(workflow_id)
        logger.info(f"Deleted workflow: {workflow_id}")

    # ========================================================================
    # Execution and scheduling
    # ========================================================================

    async def execute(self, workflow_id: str) -> AnalysisResult:
        """Run a workflow now and return its terminal result.

        The workflow ends up COMPLETED or FAILED; its next_scheduled_run is
        left as it was.

        Raises:
            WorkflowNotFoundError: If no workflow has this id
            WorkflowBusyError: If the workflow is already executing
        """
        await self.get(workflow_id)

        claimed = await self._workflows.claim_workflow(
            workflow_id, self._owner_id, self._claim_lease
        )
        if not claimed:
            owner = await self._workflows.claim_owner(workflow_id)
            raise WorkflowBusyError(workflow_id, owner)

        try:
            return await self._runner.run(workflow_id)
        finally:
            await self._workflows.release_workflow(workflow_id, self._owner_id)

    async def schedule(self, workflow_id: str, when: datetime) -> Workflow:
        """Set the next run and mark the workflow SCHEDULED."""
        workflow = await self.get(workflow_id)
        workflow.next_scheduled_run = when
        workflow.status = WorkflowStatus.SCHEDULED
        await self._workflows.save(workflow)
        logger.info(f"Scheduled workflow {workflow.name} ({workflow_id}) for {when.isoformat()}")
        return workflow

    async def cancel(self, workflow_id: str) -> Workflow:
        """Clear the next run and return the workflow to CREATED.

        A run that is already in progress is not interrupted, but a
        recurring workflow cancelled this way is not rescheduled after it.
        """
        workflow = await self.get(workflow_id)
        workflow.next_scheduled_run = None
        workflow.status = WorkflowStatus.CREATED
        await self._workflows.save(workflow)
        logger.info(f"Cancelled scheduled workflow {workflow.name} ({workflow_id})")
        return workflow

    async def history(self, workflow_id: str) -> list[AnalysisResult]:
        """Execution results of a workflow, newest first.

        Raises:
            WorkflowNotFoundError: If no workflow has this id
        """
        await self.get(workflow_id)
        return await self._results.find_by_workflow_order_by_date_desc(workflow_id)

    async def get_result(self, result_id: str) -> AnalysisResult | None:
        return await self._results.find_result(result_id)
