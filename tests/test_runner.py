"""Tests for workflow execution: step ordering, aggregation and terminal states."""

import pytest

from conftest import FULL_PIPELINE, Engine, make_workflow
from pygeoflow.errors import WorkflowNotFoundError
from pygeoflow.executor import HandlerRegistry
from pygeoflow.models import (
    ResultStatus,
    Step,
    StepStatus,
    StepType,
    TimeRange,
    WorkflowStatus,
    WorkflowType,
)


async def always_fails(step_input):
    raise RuntimeError("preprocessing cluster unavailable")


@pytest.mark.asyncio
async def test_all_steps_succeed(engine):
    workflow = make_workflow(*FULL_PIPELINE)
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert result.status == ResultStatus.COMPLETED
    assert result.result_data["totalSteps"] == 5
    assert result.result_data["completedSteps"] == 5
    assert "error" not in result.result_data
    assert result.completion_date is not None
    assert result.processing_time_ms >= 0

    stored = await engine.store.find_by_id(workflow.id)
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.last_run_at == result.execution_date
    assert all(step.status == StepStatus.COMPLETED for step in stored.steps)


@pytest.mark.asyncio
async def test_step_results_follow_stored_order(engine):
    workflow = make_workflow(*reversed(FULL_PIPELINE))
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    names = [r["stepName"] for r in result.result_data["stepResults"]]
    types = [r["stepType"] for r in result.result_data["stepResults"]]
    assert names == [s.name for s in workflow.steps]
    assert types == list(reversed(FULL_PIPELINE))


@pytest.mark.asyncio
async def test_anomaly_detection_scenario(engine):
    workflow = make_workflow(
        "DATA_COLLECTION", "AI_ANALYSIS", workflow_type=WorkflowType.ANOMALY_DETECTION
    )
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    analysis = result.result_data["stepResults"][1]
    assert analysis["analysisType"] == "Anomaly Detection"
    assert analysis["anomaliesFound"] == 3
    assert analysis["confidenceScore"] == 0.87
    assert result.confidence_score == 0.87


@pytest.mark.asyncio
async def test_confidence_score_absent_without_scoring_step(engine):
    workflow = make_workflow("DATA_COLLECTION", workflow_type=WorkflowType.CUSTOM)
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)
    assert result.confidence_score is None


@pytest.mark.asyncio
async def test_failing_step_stops_the_run(in_memory_store):
    registry = HandlerRegistry.default().register(StepType.PREPROCESSING, always_fails)
    engine = Engine(in_memory_store, registry=registry)
    workflow = make_workflow("DATA_COLLECTION", "PREPROCESSING", "AI_ANALYSIS")
    await in_memory_store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert result.status == ResultStatus.FAILED
    data = result.result_data
    assert data["failedStep"] == "step-1"
    assert data["error"] == "preprocessing cluster unavailable"
    assert data["totalSteps"] == 3
    assert data["completedSteps"] == 1
    assert data["stepResults"][-1] == {
        "stepName": "step-1",
        "status": "FAILED",
        "error": "preprocessing cluster unavailable",
    }

    stored = await in_memory_store.find_by_id(workflow.id)
    assert stored.status == WorkflowStatus.FAILED
    assert [s.status for s in stored.steps] == [
        StepStatus.COMPLETED,
        StepStatus.FAILED,
        StepStatus.PENDING,
    ]
    assert stored.steps[1].retry_count == 1


@pytest.mark.asyncio
async def test_always_failing_step_exhausts_budget_over_executions(in_memory_store):
    registry = HandlerRegistry.default().register(StepType.PREPROCESSING, always_fails)
    engine = Engine(in_memory_store, registry=registry)
    workflow = make_workflow("PREPROCESSING")
    await in_memory_store.save(workflow)

    for _ in range(5):
        result = await engine.runner.run(workflow.id)
        assert result.status == ResultStatus.FAILED
        stored = await in_memory_store.find_by_id(workflow.id)
        assert stored.steps[0].retry_count <= stored.steps[0].max_retries

    assert stored.steps[0].retry_count == stored.steps[0].max_retries


@pytest.mark.asyncio
async def test_zero_steps_fail(engine):
    workflow = make_workflow()
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert result.status == ResultStatus.FAILED
    assert result.result_data["error"] == "No steps defined for workflow"
    assert result.result_data["totalSteps"] == 0
    stored = await engine.store.find_by_id(workflow.id)
    assert stored.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_unknown_step_type_fails_workflow(engine):
    workflow = make_workflow("DATA_COLLECTION", "TELEPORT", "NOTIFICATION")
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert result.status == ResultStatus.FAILED
    assert result.result_data["error"] == "Unknown step type: TELEPORT"
    assert result.result_data["completedSteps"] == 1


@pytest.mark.asyncio
async def test_lambda_remote_failure_does_not_abort(in_memory_store, failing_invoker):
    engine = Engine(in_memory_store, invoker=failing_invoker)
    workflow = make_workflow("DATA_COLLECTION", "LAMBDA_FUNCTION", "NOTIFICATION")
    workflow.steps[1].configuration = "functionName=proc-img"
    await in_memory_store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert result.status == ResultStatus.COMPLETED
    lambda_result = result.result_data["stepResults"][1]
    assert lambda_result["success"] is False
    assert lambda_result["functionName"] == "proc-img"
    assert lambda_result["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_lambda_receives_accumulated_context(engine, fake_invoker):
    import json

    workflow = make_workflow("DATA_COLLECTION", "LAMBDA_FUNCTION")
    workflow.steps[1].configuration = '{"functionName": "proc-img"}'
    await engine.store.save(workflow)

    await engine.runner.run(workflow.id)

    payload = json.loads(fake_invoker.calls[0][1])
    assert payload["contextData"]["dataSource"] == "Sentinel-2"
    # Only handler outputs are merged, not step bookkeeping
    assert "stepName" not in payload["contextData"]


@pytest.mark.asyncio
async def test_null_lambda_configuration_fails_workflow(engine, fake_invoker):
    workflow = make_workflow("LAMBDA_FUNCTION")
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert result.status == ResultStatus.FAILED
    stored = await engine.store.find_by_id(workflow.id)
    assert stored.steps[0].retry_count == 0
    assert fake_invoker.calls == []


@pytest.mark.asyncio
async def test_later_steps_see_earlier_outputs(in_memory_store):
    seen = {}

    async def inspect_context(step_input):
        seen.update(step_input.context)
        return {"inspected": True}

    registry = HandlerRegistry.default().register(StepType.POSTPROCESSING, inspect_context)
    engine = Engine(in_memory_store, registry=registry)
    workflow = make_workflow("DATA_COLLECTION", "PREPROCESSING", "POSTPROCESSING")
    await in_memory_store.save(workflow)

    await engine.runner.run(workflow.id)

    assert seen["dataCollected"] is True
    assert seen["cloudMasking"] is True


@pytest.mark.asyncio
async def test_rerun_creates_independent_result(engine):
    workflow = make_workflow("DATA_COLLECTION")
    await engine.store.save(workflow)

    first = await engine.runner.run(workflow.id)
    second = await engine.runner.run(workflow.id)

    assert first.id != second.id
    assert second.status == ResultStatus.COMPLETED
    history = await engine.store.find_by_workflow_order_by_date_desc(workflow.id)
    assert {r.id for r in history} == {first.id, second.id}
    assert history[0].id == second.id


@pytest.mark.asyncio
async def test_result_copies_area_and_time_range(engine):
    from datetime import datetime

    area = {"type": "Polygon", "coordinates": [[[8.4, 49.5], [8.5, 49.5], [8.5, 49.6], [8.4, 49.5]]]}
    time_range = TimeRange(start=datetime(2024, 5, 1), end=datetime(2024, 5, 31))
    workflow = make_workflow("DATA_COLLECTION", area_of_interest=area, time_range=time_range)
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert result.area_of_interest == area
    assert result.time_range == time_range
    assert result.name == f"Execution of {workflow.name}"
    assert result.description == f"Analysis result for workflow: {workflow.name}"


@pytest.mark.asyncio
async def test_missing_workflow(engine):
    with pytest.raises(WorkflowNotFoundError, match="Workflow not found with id: nope"):
        await engine.runner.run("nope")


@pytest.mark.asyncio
async def test_metric_recorded_per_execution(engine, metrics_sink):
    workflow = make_workflow("DATA_COLLECTION", workflow_type=WorkflowType.ASSET_TRACKING)
    await engine.store.save(workflow)

    result = await engine.runner.run(workflow.id)

    assert metrics_sink.values_for("ASSET_TRACKING") == [float(result.processing_time_ms)]
    datum = metrics_sink.data[0]
    assert datum.metric_name == "AiWorkflowExecutionTime"
    assert datum.unit == "Milliseconds"


@pytest.mark.asyncio
async def test_step_with_explicit_retry_budget_round_trips(engine):
    workflow = make_workflow()
    workflow.steps = [Step(name="collect", type="DATA_COLLECTION", max_retries=5)]
    await engine.store.save(workflow)

    await engine.runner.run(workflow.id)

    stored = await engine.store.find_by_id(workflow.id)
    assert stored.steps[0].max_retries == 5
