"""Periodic scheduler for due workflows.

Design Pattern: Producer/Consumer with bounded queue
A single ticker task selects due workflows and enqueues their ids on a
bounded asyncio.Queue; a fixed pool of worker tasks consumes the queue and
runs each workflow. The ticker never runs a workflow inline, and a full
queue holds the ticker back (backpressure).

Per-workflow mutual exclusion:
Before a workflow id is enqueued the scheduler takes its claim in the
store (WorkflowStore.claim_workflow) and only releases it once the run and
the rescheduling are done. A second scheduler (or a manual execution)
cannot run the same id while the claim is held. A lease bounds how long a
crashed owner can block the workflow; runs longer than the lease lose
that protection.

Each tick:
1. find_due(now), then keep SCHEDULED workflows only
2. skip ids already in flight here, claim the rest and re-check they are due
3. enqueue claimed ids
Each worker, per id:
4. run the workflow (failures are logged and isolated)
5. if recurring and still scheduled, store the next run (status SCHEDULED)
6. release the claim

Known limitation: cancel() stops future runs but does not interrupt a run
that is already in flight.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

from uuid_extensions import uuid7

from pygeoflow.executor.next_run import FixedIntervalPolicy, NextRunPolicy
from pygeoflow.executor.runner import WorkflowRunner
from pygeoflow.executor.step import error_message
from pygeoflow.models import AnalysisResult, ResultStatus, Workflow, WorkflowStatus
from pygeoflow.storage.base import WorkflowStore

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 60.0
DEFAULT_MAX_CONCURRENT_WORKFLOWS = 4
DEFAULT_CLAIM_LEASE = timedelta(hours=1)


class SchedulerError(Exception):
    """Scheduler operation failed.

    Raised for invalid configuration and invalid lifecycle calls.
    """

    pass


@dataclass(frozen=True)
class ScheduledRunReport:
    """What happened to one workflow during a scheduler pass."""

    workflow_id: str
    result: AnalysisResult | None = None
    error: str | None = None
    """Set when the run raised instead of producing a result."""

    next_run: datetime | None = None
    """Next scheduled run stored for a recurring workflow, else None."""

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.status == ResultStatus.COMPLETED


class Scheduler:
    """
    Run due workflows on a fixed tick with a bounded worker pool.

    Design Patterns:
    - Builder: with_*() methods for configuration
    - Template Method: _process() defines the per-workflow sequence

    Usage:
        scheduler = Scheduler(store, runner) \\
            .with_tick_interval(5) \\
            .with_max_concurrent_workflows(8)

        handle = await scheduler.start()
        # ... let it run ...
        await handle.shutdown()

        # Or one synchronous pass (batch jobs, tests)
        reports = await scheduler.execute_due()
    """

    def __init__(
        self,
        workflows: WorkflowStore,
        runner: WorkflowRunner,
        scheduler_id: str | None = None,
    ):
        """Initialize scheduler.

        Args:
            workflows: Store used to select, claim and reschedule workflows
            runner: Runner that executes one workflow
            scheduler_id: Claim owner id (defaults to a generated one)
        """
        self._workflows = workflows
        self._runner = runner
        self._scheduler_id = scheduler_id or f"scheduler-{uuid7()}"

        self._tick_interval = DEFAULT_TICK_INTERVAL
        self._max_concurrent = DEFAULT_MAX_CONCURRENT_WORKFLOWS
        self._claim_lease = DEFAULT_CLAIM_LEASE
        self._policy: NextRunPolicy = FixedIntervalPolicy()

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._queue: asyncio.Queue[str] | None = None
        self._ticker_task: asyncio.Task | None = None
        self._worker_tasks: list[asyncio.Task] = []

        # Workflow ids claimed by this scheduler and not yet finished
        self._in_flight: set[str] = set()

    # ========================================================================
    # Configuration
    # ========================================================================

    @property
    def scheduler_id(self) -> str:
        return self._scheduler_id

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def max_concurrent_workflows(self) -> int:
        return self._max_concurrent

    @property
    def claim_lease(self) -> timedelta:
        return self._claim_lease

    @property
    def next_run_policy(self) -> NextRunPolicy:
        return self._policy

    def with_tick_interval(self, seconds: float) -> Scheduler:
        """Set the seconds between ticks (builder pattern). Default 60.

        Returns:
            self for method chaining
        """
        if seconds <= 0:
            raise SchedulerError(f"tick interval must be positive, got {seconds}")
        self._tick_interval = float(seconds)
        return self

    def with_max_concurrent_workflows(self, max_concurrent: int) -> Scheduler:
        """Set the worker pool size (builder pattern). Default 4.

        This also bounds the dispatch queue, so at most 2 x max_concurrent
        workflows are claimed ahead of execution.

        Returns:
            self for method chaining
        """
        if max_concurrent < 1:
            raise SchedulerError(f"max concurrent workflows must be >= 1, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        return self

    def with_claim_lease(self, lease: timedelta) -> Scheduler:
        """Set how long a claim stays valid without release (builder pattern).

        Returns:
            self for method chaining
        """
        if lease <= timedelta(0):
            raise SchedulerError(f"claim lease must be positive, got {lease}")
        self._claim_lease = lease
        return self

    def with_next_run_policy(self, policy: NextRunPolicy) -> Scheduler:
        """Set the policy that computes the next run of recurring workflows.

        Returns:
            self for method chaining
        """
        self._policy = policy
        return self

    def from_env(self) -> Scheduler:
        """Read configuration from environment variables (builder pattern).

        - GEOFLOW_TICK_INTERVAL: seconds between ticks
        - GEOFLOW_MAX_CONCURRENT_WORKFLOWS: worker pool size
        - GEOFLOW_CLAIM_LEASE_SECONDS: claim lease
        - GEOFLOW_SCHEDULER_ID: claim owner id

        Unset variables keep the current value.

        Example:
            # $ export GEOFLOW_TICK_INTERVAL=5
            scheduler = Scheduler(store, runner).from_env()

        Raises:
            SchedulerError: If a variable holds an invalid value
        """
        tick = os.environ.get("GEOFLOW_TICK_INTERVAL")
        if tick:
            self.with_tick_interval(_env_number("GEOFLOW_TICK_INTERVAL", tick, float))

        workers = os.environ.get("GEOFLOW_MAX_CONCURRENT_WORKFLOWS")
        if workers:
            self.with_max_concurrent_workflows(
                _env_number("GEOFLOW_MAX_CONCURRENT_WORKFLOWS", workers, int)
            )

        lease = os.environ.get("GEOFLOW_CLAIM_LEASE_SECONDS")
        if lease:
            seconds = _env_number("GEOFLOW_CLAIM_LEASE_SECONDS", lease, float)
            self.with_claim_lease(timedelta(seconds=seconds))

        scheduler_id = os.environ.get("GEOFLOW_SCHEDULER_ID")
        if scheduler_id:
            self._scheduler_id = scheduler_id

        return self

    # ========================================================================
    # Selection and per-workflow processing
    # ========================================================================

    async def select_due(self, now: datetime) -> list[Workflow]:
        """Due workflows that are SCHEDULED.

        find_due() does not filter on status, so the filter is applied here.
        """
        due = await self._workflows.find_due(now)
        selected = [w for w in due if w.status == WorkflowStatus.SCHEDULED]
        if len(selected) != len(due):
            logger.debug(
                f"Scheduler {self._scheduler_id}: skipped {len(due) - len(selected)} "
                "due workflows that are not SCHEDULED"
            )
        return selected

    async def _claim(self, workflow_id: str, now: datetime) -> bool:
        """Claim a selected workflow and confirm it is still due.

        The selection may be stale: another owner can run and release the
        workflow between find_due() and the claim.

        A store failure is logged and reported as not claimed, so one
        workflow cannot stop the rest of the pass. A claim already taken
        is released again.
        """
        if workflow_id in self._in_flight:
            return False
        try:
            claimed = await self._workflows.claim_workflow(
                workflow_id, self._scheduler_id, self._claim_lease
            )
        except Exception as e:
            logger.error(f"Scheduler {self._scheduler_id}: failed to claim {workflow_id}: {e}")
            return False
        if not claimed:
            logger.debug(f"Scheduler {self._scheduler_id}: {workflow_id} is claimed elsewhere")
            return False

        try:
            current = await self._workflows.find_by_id(workflow_id)
        except Exception as e:
            logger.error(f"Scheduler {self._scheduler_id}: failed to load {workflow_id}: {e}")
            await self._release(workflow_id)
            return False

        if current is None or current.status != WorkflowStatus.SCHEDULED or not current.is_due(now):
            logger.debug(f"Scheduler {self._scheduler_id}: {workflow_id} is no longer due")
            await self._release(workflow_id)
            return False

        self._in_flight.add(workflow_id)
        return True

    async def _release(self, workflow_id: str) -> None:
        self._in_flight.discard(workflow_id)
        try:
            await self._workflows.release_workflow(workflow_id, self._scheduler_id)
        except Exception as e:
            # The lease expires on its own
            logger.error(f"Scheduler {self._scheduler_id}: failed to release {workflow_id}: {e}")

    async def _process(self, workflow_id: str, now: datetime | None = None) -> ScheduledRunReport:
        """Run one claimed workflow, reschedule it, release the claim."""
        result: AnalysisResult | None = None
        error: str | None = None
        next_run: datetime | None = None

        try:
            try:
                result = await self._runner.run(workflow_id)
            except Exception as e:
                error = error_message(e)
                logger.error(f"Error executing scheduled workflow: {workflow_id}: {error}")

            try:
                next_run = await self._reschedule(workflow_id, now or datetime.now())
            except Exception as e:
                logger.error(f"Error rescheduling workflow: {workflow_id}: {e}")
        finally:
            await self._release(workflow_id)

        return ScheduledRunReport(
            workflow_id=workflow_id, result=result, error=error, next_run=next_run
        )

    async def _reschedule(self, workflow_id: str, now: datetime) -> datetime | None:
        """Store the next run of a recurring workflow.

        Reloads the workflow first: a workflow cancelled or deactivated
        while it ran keeps its cancelled state.
        """
        workflow = await self._workflows.find_by_id(workflow_id)
        if workflow is None or not workflow.is_recurring:
            return None
        if not workflow.is_active or workflow.next_scheduled_run is None:
            logger.info(f"Workflow {workflow_id} was cancelled during execution, not rescheduled")
            return None

        workflow.next_scheduled_run = self._policy.next_run(workflow, now)
        workflow.status = WorkflowStatus.SCHEDULED
        await self._workflows.save(workflow)

        logger.info(
            f"Workflow {workflow.name} ({workflow_id}) rescheduled for "
            f"{workflow.next_scheduled_run.isoformat()}"
        )
        return workflow.next_scheduled_run

    # ========================================================================
    # Synchronous pass
    # ========================================================================

    async def execute_due(self, now: datetime | None = None) -> list[ScheduledRunReport]:
        """Run one full scheduler pass and wait for it to finish.

        Selects, claims and runs every due workflow (up to
        max_concurrent_workflows at a time) and reschedules recurring ones
        relative to `now`.

        Returns:
            One report per workflow this scheduler claimed
        """
        now = now or datetime.now()
        due = await self.select_due(now)

        claimed: list[str] = []
        try:
            for workflow in due:
                if await self._claim(workflow.id, now):
                    claimed.append(workflow.id)
        except BaseException:
            # Nothing will run the ids claimed so far
            for workflow_id in claimed:
                await self._release(workflow_id)
            raise
        if not claimed:
            return []

        logger.info(f"Scheduler {self._scheduler_id}: executing {len(claimed)} due workflows")
        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def bounded(workflow_id: str) -> ScheduledRunReport:
            async with semaphore:
                return await self._process(workflow_id, now)

        return list(await asyncio.gather(*(bounded(wid) for wid in claimed)))

    # ========================================================================
    # Background loop
    # ========================================================================

    async def start(self) -> SchedulerHandle:
        """Start the ticker and the worker pool.

        Returns SchedulerHandle immediately.

        Raises:
            SchedulerError: If the scheduler is already running
        """
        if self._running:
            raise SchedulerError(f"Scheduler {self._scheduler_id} is already running")

        self._running = True
        self._shutdown_event.clear()
        self._queue = asyncio.Queue(maxsize=self._max_concurrent * 2)
        self._worker_tasks = [
            asyncio.create_task(self._worker(n)) for n in range(self._max_concurrent)
        ]
        self._ticker_task = asyncio.create_task(self._ticker())

        logger.info(
            f"Scheduler {self._scheduler_id} started "
            f"(tick={self._tick_interval}s, workers={self._max_concurrent})"
        )
        return SchedulerHandle(self, self._ticker_task)

    async def tick(self, now: datetime | None = None) -> int:
        """Select and enqueue due workflows. Requires start().

        Returns:
            Number of workflows enqueued
        """
        if self._queue is None:
            raise SchedulerError("Scheduler is not started")

        now = now or datetime.now()
        enqueued = 0
        for workflow in await self.select_due(now):
            if not await self._claim(workflow.id, now):
                continue
            try:
                await self._queue.put(workflow.id)
            except asyncio.CancelledError:
                await self._release(workflow.id)
                raise
            enqueued += 1

        logger.debug(f"Scheduler {self._scheduler_id}: tick enqueued {enqueued} workflows")
        return enqueued

    async def _ticker(self) -> None:
        """Tick until shutdown. A failing tick is logged and retried next period."""
        while self._running and not self._shutdown_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler {self._scheduler_id}: tick failed: {e}")

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._tick_interval)
            except TimeoutError:
                pass

    async def _worker(self, number: int) -> None:
        """Consume workflow ids until cancelled."""
        logger.debug(f"Scheduler {self._scheduler_id}: worker {number} started")
        while True:
            workflow_id = await self._queue.get()
            try:
                await self._process(workflow_id)
            except Exception as e:
                logger.error(f"Scheduler worker {number}: unexpected error for {workflow_id}: {e}")
            finally:
                self._queue.task_done()

    async def shutdown(self) -> None:
        """Stop ticking, finish queued and in-flight runs, stop the workers."""
        logger.info(f"Scheduler {self._scheduler_id} shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self._ticker_task and not self._ticker_task.done():
            try:
                await self._ticker_task
            except asyncio.CancelledError:
                pass

        if self._queue is not None:
            await self._queue.join()

        await self._cancel_workers()
        self._queue = None
        logger.info(f"Scheduler {self._scheduler_id} stopped")

    async def abort(self) -> None:
        """Cancel everything immediately. Claims of interrupted runs expire with their lease."""
        self._running = False
        self._shutdown_event.set()
        if self._ticker_task and not self._ticker_task.done():
            self._ticker_task.cancel()
        await self._cancel_workers()
        self._queue = None

    async def _cancel_workers(self) -> None:
        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []


class SchedulerHandle:
    """Handle for controlling a running scheduler.

    Composition - handle HAS-A scheduler, not IS-A scheduler.

    Usage:
        handle = await scheduler.start()
        await handle.shutdown()
    """

    def __init__(self, scheduler: Scheduler, task: asyncio.Task):
        self._scheduler = scheduler
        self._task = task

    def scheduler_id(self) -> str:
        return self._scheduler.scheduler_id

    def is_running(self) -> bool:
        """Return True if the ticker task is still running."""
        return not self._task.done()

    async def shutdown(self) -> None:
        """Graceful stop: waits for queued and in-flight workflows."""
        await self._scheduler.shutdown()
        logger.info("Scheduler handle closed")

    async def abort(self) -> None:
        """Stop without waiting for in-flight workflows.

        Note: Interrupted workflows stay RUNNING with a PROCESSING result.
        Prefer shutdown() for normal termination.
        """
        await self._scheduler.abort()


def _env_number(name: str, raw: str, kind: type):
    try:
        return kind(raw)
    except ValueError:
        raise SchedulerError(f"Invalid value for {name}: {raw!r}") from None
