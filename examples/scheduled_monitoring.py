"""
Scheduled Environmental Monitoring

A recurring NDVI workflow runs on a background scheduler backed by SQLite.
Its third step calls a "function" through the LAMBDA_FUNCTION step type;
here the function is a local callable, in production it would be an
HttpFunctionInvoker pointed at a function service.

Scenario:
- 3 workflows: two recurring ("+2s"), one one-shot
- Scheduler ticks every 0.5s with 2 workers
- Recurring workflows are rescheduled after every run
- The one-shot workflow runs exactly once

Key Features:
- Per-workflow claims (no overlapping runs of the same workflow)
- Interval expressions for recurrence
- Execution time metrics written to the log

Run:
    PYTHONPATH=src python examples/scheduled_monitoring.py
"""

import asyncio
import json
import logging
import tempfile
from datetime import datetime
from pathlib import Path

from pygeoflow import (
    IntervalExpressionPolicy,
    LocalFunctionInvoker,
    LoggingMetricsSink,
    Scheduler,
    Step,
    Workflow,
    WorkflowService,
    WorkflowType,
)
from pygeoflow.storage.sqlite import SqliteStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def tile_images(payload: str) -> str:
    """Pretend image tiler: reports how many tiles it produced."""
    request = json.loads(payload)
    return json.dumps({"statusCode": 200, "tiles": 16, "workflowId": request["workflowId"]})


def monitoring_workflow(name: str, schedule_expression: str | None) -> Workflow:
    return Workflow(
        name=name,
        type=WorkflowType.ENVIRONMENTAL_MONITORING,
        schedule_expression=schedule_expression,
        next_scheduled_run=datetime.now(),
        parameters={"notificationRecipients": "field-team@example.com"},
        steps=[
            Step(name="collect", type="DATA_COLLECTION"),
            Step(name="preprocess", type="PREPROCESSING"),
            Step(name="tile", type="LAMBDA_FUNCTION", configuration='{"functionName": "tiler"}'),
            Step(name="analyze", type="AI_ANALYSIS"),
            Step(name="report", type="POSTPROCESSING"),
            Step(name="notify", type="NOTIFICATION"),
        ],
    )


async def main():
    db_path = Path(tempfile.mkdtemp()) / "geoflow.db"
    store = SqliteStore(str(db_path))
    await store.connect()

    invoker = LocalFunctionInvoker().register("tiler", tile_images)
    service = WorkflowService.with_defaults(store, invoker, LoggingMetricsSink())

    workflows = [
        await service.create(monitoring_workflow("NDVI Rhine basin", "+2s")),
        await service.create(monitoring_workflow("NDVI Danube delta", "+2s")),
        await service.create(monitoring_workflow("Flood extent check", None)),
    ]

    scheduler = (
        Scheduler(store, service.runner, "scheduler-demo")
        .with_tick_interval(0.5)
        .with_max_concurrent_workflows(2)
        .with_next_run_policy(IntervalExpressionPolicy())
    )
    handle = await scheduler.start()

    await asyncio.sleep(5)
    await handle.shutdown()

    for workflow in workflows:
        history = await service.history(workflow.id)
        current = await service.get(workflow.id)
        print(
            f"{workflow.name:<22} runs={len(history)} status={current.status} "
            f"next={current.next_scheduled_run}"
        )

    await store.close()


if __name__ == "__main__":
    asyncio.run(main())
