"""Store contract tests, run against the in-memory and SQLite backends.

Timestamps in these tests are whole milliseconds so the SQLite encoding
round-trips them exactly.
"""

from datetime import datetime, timedelta

import pytest

from conftest import make_scheduled, make_workflow
from pygeoflow.models import (
    AnalysisResult,
    ResultStatus,
    Step,
    StepStatus,
    TimeRange,
    WorkflowStatus,
    WorkflowType,
)
from pygeoflow.storage import InMemoryStore, StorageError
from pygeoflow.storage.sqlite import SqliteStore

NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture(params=["memory", "sqlite"])
async def store(request):
    """Each contract test runs once per backend."""
    if request.param == "memory":
        backend = InMemoryStore()
    else:
        backend = await SqliteStore.in_memory()
    yield backend
    await backend.close()


def finished_result(workflow, executed_at, status=ResultStatus.COMPLETED):
    result = AnalysisResult.start(workflow, executed_at)
    result.status = status
    result.completion_date = executed_at + timedelta(seconds=3)
    result.processing_time_ms = 3000
    return result


# =============================================================================
# Workflows
# =============================================================================


@pytest.mark.asyncio
async def test_save_and_find(store):
    workflow = make_workflow(
        "DATA_COLLECTION",
        "AI_ANALYSIS",
        "NOTIFICATION",
        description="Weekly vegetation index",
        created_at=NOW,
        schedule_expression="+7d",
        next_scheduled_run=NOW + timedelta(days=7),
        time_range=TimeRange(NOW - timedelta(days=30), NOW),
        parameters={"notificationRecipients": "ops@example.com"},
        model_ids=["ndvi-v2"],
        area_of_interest={"type": "Polygon", "coordinates": [[[8.4, 49.5], [8.5, 49.5]]]},
    )
    workflow.steps[1].retry_count = 2
    workflow.steps[1].status = StepStatus.FAILED

    await store.save(workflow)
    loaded = await store.find_by_id(workflow.id)

    assert loaded.name == workflow.name
    assert loaded.description == "Weekly vegetation index"
    assert loaded.type == WorkflowType.ENVIRONMENTAL_MONITORING
    assert loaded.created_at == NOW
    assert loaded.next_scheduled_run == NOW + timedelta(days=7)
    assert loaded.schedule_expression == "+7d"
    assert loaded.time_range == workflow.time_range
    assert loaded.parameters == {"notificationRecipients": "ops@example.com"}
    assert loaded.model_ids == ["ndvi-v2"]
    assert loaded.area_of_interest == workflow.area_of_interest
    assert [s.name for s in loaded.steps] == ["step-0", "step-1", "step-2"]
    assert loaded.steps[1].retry_count == 2
    assert loaded.steps[1].status == StepStatus.FAILED


@pytest.mark.asyncio
async def test_find_missing(store):
    assert await store.find_by_id("missing") is None
    assert await store.find_result("missing") is None


@pytest.mark.asyncio
async def test_save_replaces(store):
    workflow = make_workflow("DATA_COLLECTION", created_at=NOW)
    await store.save(workflow)

    workflow.status = WorkflowStatus.RUNNING
    workflow.steps.append(Step(name="late", type="NOTIFICATION"))
    await store.save(workflow)

    loaded = await store.find_by_id(workflow.id)
    assert loaded.status == WorkflowStatus.RUNNING
    assert [s.name for s in loaded.steps] == ["step-0", "late"]
    assert len(await store.find_all()) == 1


@pytest.mark.asyncio
async def test_unknown_step_tag_survives_storage(store):
    workflow = make_workflow("SATELLITE_TASKING", created_at=NOW)
    await store.save(workflow)

    loaded = await store.find_by_id(workflow.id)
    assert loaded.steps[0].type == "SATELLITE_TASKING"
    assert loaded.steps[0].step_type is None


@pytest.mark.asyncio
async def test_find_all_oldest_first(store):
    newer = make_workflow("DATA_COLLECTION", created_at=NOW)
    older = make_workflow("DATA_COLLECTION", created_at=NOW - timedelta(hours=1))
    await store.save(newer)
    await store.save(older)

    assert [w.id for w in await store.find_all()] == [older.id, newer.id]


@pytest.mark.asyncio
async def test_returned_records_are_detached(store):
    workflow = make_workflow("DATA_COLLECTION", created_at=NOW)
    await store.save(workflow)

    loaded = await store.find_by_id(workflow.id)
    loaded.steps[0].status = StepStatus.COMPLETED
    workflow.name = "renamed locally"

    fresh = await store.find_by_id(workflow.id)
    assert fresh.steps[0].status == StepStatus.PENDING
    assert fresh.name == "NDVI watch"


@pytest.mark.asyncio
async def test_find_due(store):
    early = make_scheduled("DATA_COLLECTION", now=NOW, due_in=timedelta(hours=-2))
    late = make_scheduled("DATA_COLLECTION", now=NOW, due_in=timedelta(minutes=-1))
    exact = make_scheduled("DATA_COLLECTION", now=NOW, due_in=timedelta(0))
    future = make_scheduled("DATA_COLLECTION", now=NOW, due_in=timedelta(seconds=1))
    inactive = make_scheduled("DATA_COLLECTION", now=NOW, is_active=False)
    unscheduled = make_workflow("DATA_COLLECTION")
    # Status is not part of the due condition
    finished = make_scheduled("DATA_COLLECTION", now=NOW, due_in=timedelta(minutes=-30))
    finished.status = WorkflowStatus.COMPLETED

    for w in (late, future, exact, inactive, unscheduled, early, finished):
        await store.save(w)

    due = await store.find_due(NOW)
    assert [w.id for w in due] == [early.id, finished.id, late.id, exact.id]


@pytest.mark.asyncio
async def test_delete_cascades(store):
    workflow = make_workflow("DATA_COLLECTION", created_at=NOW)
    other = make_workflow("DATA_COLLECTION", created_at=NOW)
    await store.save(workflow)
    await store.save(other)
    result = finished_result(workflow, NOW)
    kept = finished_result(other, NOW)
    await store.save_result(result)
    await store.save_result(kept)
    await store.claim_workflow(workflow.id, "scheduler-1", timedelta(minutes=5))

    assert await store.delete(workflow.id) is True

    assert await store.find_by_id(workflow.id) is None
    assert await store.find_result(result.id) is None
    assert await store.find_by_workflow_order_by_date_desc(workflow.id) == []
    assert await store.claim_owner(workflow.id) is None
    assert (await store.find_result(kept.id)).workflow_id == other.id
    assert await store.delete(workflow.id) is False


# =============================================================================
# Claims
# =============================================================================


@pytest.mark.asyncio
async def test_claim_is_exclusive(store):
    assert await store.claim_workflow("wf-1", "scheduler-a", timedelta(minutes=5))
    assert not await store.claim_workflow("wf-1", "scheduler-b", timedelta(minutes=5))
    assert await store.claim_owner("wf-1") == "scheduler-a"

    # Different workflows are independent
    assert await store.claim_workflow("wf-2", "scheduler-b", timedelta(minutes=5))


@pytest.mark.asyncio
async def test_claim_renewal_by_owner(store):
    assert await store.claim_workflow("wf-1", "scheduler-a", timedelta(minutes=5))
    assert await store.claim_workflow("wf-1", "scheduler-a", timedelta(minutes=5))


@pytest.mark.asyncio
async def test_release(store):
    await store.claim_workflow("wf-1", "scheduler-a", timedelta(minutes=5))

    # Someone else's release is a no-op
    await store.release_workflow("wf-1", "scheduler-b")
    assert await store.claim_owner("wf-1") == "scheduler-a"

    await store.release_workflow("wf-1", "scheduler-a")
    assert await store.claim_owner("wf-1") is None
    assert await store.claim_workflow("wf-1", "scheduler-b", timedelta(minutes=5))


@pytest.mark.asyncio
async def test_expired_claim(store):
    await store.claim_workflow("wf-1", "scheduler-a", timedelta(milliseconds=-1))

    assert await store.claim_owner("wf-1") is None
    assert await store.claim_workflow("wf-1", "scheduler-b", timedelta(minutes=5))
    assert await store.claim_owner("wf-1") == "scheduler-b"


# =============================================================================
# Results
# =============================================================================


@pytest.mark.asyncio
async def test_save_and_find_result(store):
    workflow = make_workflow(
        "DATA_COLLECTION",
        created_at=NOW,
        area_of_interest={"type": "Point", "coordinates": [8.44, 49.49]},
    )
    result = finished_result(workflow, NOW)
    result.confidence_score = 0.87
    result.result_data = {
        "stepResults": [{"stepName": "step-0", "status": "COMPLETED"}],
        "totalSteps": 1,
        "completedSteps": 1,
    }

    await store.save_result(result)
    loaded = await store.find_result(result.id)

    assert loaded.workflow_id == workflow.id
    assert loaded.name == "Execution of NDVI watch"
    assert loaded.status == ResultStatus.COMPLETED
    assert loaded.execution_date == NOW
    assert loaded.completion_date == NOW + timedelta(seconds=3)
    assert loaded.processing_time_ms == 3000
    assert loaded.confidence_score == 0.87
    assert loaded.result_data == result.result_data
    assert loaded.area_of_interest == {"type": "Point", "coordinates": [8.44, 49.49]}


@pytest.mark.asyncio
async def test_result_terminal_write_replaces(store):
    workflow = make_workflow("DATA_COLLECTION", created_at=NOW)
    result = AnalysisResult.start(workflow, NOW)
    await store.save_result(result)
    assert (await store.find_result(result.id)).status == ResultStatus.PROCESSING

    result.status = ResultStatus.FAILED
    result.completion_date = NOW + timedelta(seconds=1)
    await store.save_result(result)

    [only] = await store.find_by_workflow_order_by_date_desc(workflow.id)
    assert only.status == ResultStatus.FAILED
    assert only.is_finished


@pytest.mark.asyncio
async def test_history_newest_first(store):
    workflow = make_workflow("DATA_COLLECTION", created_at=NOW)
    oldest = finished_result(workflow, NOW - timedelta(days=2))
    newest = finished_result(workflow, NOW)
    middle = finished_result(workflow, NOW - timedelta(days=1), ResultStatus.FAILED)
    for r in (oldest, newest, middle):
        await store.save_result(r)
    await store.save_result(finished_result(make_workflow("DATA_COLLECTION"), NOW))

    history = await store.find_by_workflow_order_by_date_desc(workflow.id)
    assert [r.id for r in history] == [newest.id, middle.id, oldest.id]


@pytest.mark.asyncio
async def test_reset(store):
    workflow = make_workflow("DATA_COLLECTION", created_at=NOW)
    await store.save(workflow)
    await store.save_result(finished_result(workflow, NOW))
    await store.claim_workflow(workflow.id, "scheduler-a", timedelta(minutes=5))

    await store.reset()

    assert await store.find_all() == []
    assert await store.find_by_workflow_order_by_date_desc(workflow.id) == []
    assert await store.claim_owner(workflow.id) is None


# =============================================================================
# SQLite specifics
# =============================================================================


@pytest.mark.asyncio
async def test_sqlite_requires_connect():
    store = SqliteStore(":memory:")
    with pytest.raises(StorageError, match="Not connected"):
        await store.find_by_id("wf-1")


@pytest.mark.asyncio
async def test_sqlite_repr(temp_db_path):
    assert repr(SqliteStore(":memory:")) == "SqliteStore(in-memory)"
    assert repr(SqliteStore(str(temp_db_path))) == f"SqliteStore({temp_db_path})"


@pytest.mark.asyncio
async def test_sqlite_truncates_to_milliseconds(sqlite_memory_store):
    created = datetime(2024, 6, 1, 12, 0, 0, 123456)
    workflow = make_workflow("DATA_COLLECTION", created_at=created)
    await sqlite_memory_store.save(workflow)

    loaded = await sqlite_memory_store.find_by_id(workflow.id)
    assert loaded.created_at == datetime(2024, 6, 1, 12, 0, 0, 123000)


@pytest.mark.asyncio
async def test_sqlite_file_store_survives_reconnect(temp_db_path):
    store = SqliteStore(str(temp_db_path))
    await store.connect()
    workflow = make_scheduled("DATA_COLLECTION", "AI_ANALYSIS", now=NOW)
    await store.save(workflow)
    await store.save_result(finished_result(workflow, NOW))
    await store.close()

    reopened = SqliteStore(str(temp_db_path))
    await reopened.connect()
    try:
        loaded = await reopened.find_by_id(workflow.id)
        assert [s.type for s in loaded.steps] == ["DATA_COLLECTION", "AI_ANALYSIS"]
        assert len(await reopened.find_by_workflow_order_by_date_desc(workflow.id)) == 1
        assert [w.id for w in await reopened.find_due(NOW)] == [workflow.id]
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_sqlite_connect_is_idempotent(sqlite_file_store):
    await sqlite_file_store.connect()
    await sqlite_file_store.save(make_workflow("DATA_COLLECTION"))
    assert len(await sqlite_file_store.find_all()) == 1
