"""Tests for workflow, step and result models."""

from datetime import datetime, timedelta

import pytest

from pygeoflow.errors import InvalidConfigurationError, RemoteInvocationError
from pygeoflow.models import (
    AnalysisResult,
    ResultStatus,
    Step,
    StepStatus,
    StepType,
    TimeRange,
    Workflow,
    WorkflowStatus,
    WorkflowType,
    can_retry,
    is_retryable,
)

NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest.mark.parametrize(
    "tag,expected",
    [
        ("AI_ANALYSIS", StepType.AI_ANALYSIS),
        ("ai_analysis", StepType.AI_ANALYSIS),
        (" Lambda_Function ", StepType.LAMBDA_FUNCTION),
        ("SATELLITE_TASKING", None),
        (None, None),
    ],
)
def test_step_type_from_tag(tag, expected):
    assert StepType.from_tag(tag) is expected


def test_workflow_type_parse():
    assert WorkflowType.parse("segmentation") is WorkflowType.SEGMENTATION
    assert WorkflowType.parse(WorkflowType.CUSTOM) is WorkflowType.CUSTOM
    with pytest.raises(ValueError, match="Invalid workflow type: WEATHER"):
        WorkflowType.parse("WEATHER")


def test_step_defaults():
    step = Step(name="collect", type="DATA_COLLECTION")
    assert step.status == StepStatus.PENDING
    assert step.retry_count == 0
    assert step.max_retries == 3


@pytest.mark.parametrize("kwargs", [{"max_retries": -1}, {"retry_count": 4}, {"retry_count": -1}])
def test_step_rejects_invalid_retry_values(kwargs):
    with pytest.raises(ValueError):
        Step(name="s", type="DATA_COLLECTION", **kwargs)


def test_step_dict_keeps_raw_tag():
    step = Step(name="odd", type="satellite_tasking", configuration="{}", retry_count=1)
    restored = Step.from_dict(step.to_dict())
    assert restored == step
    assert restored.step_type is None


def test_workflow_defaults():
    workflow = Workflow(name="NDVI watch")
    assert workflow.status == WorkflowStatus.CREATED
    assert workflow.is_active
    assert workflow.steps == []
    assert workflow.id
    assert workflow.id != Workflow(name="NDVI watch").id


@pytest.mark.parametrize(
    "expression,recurring",
    [(None, False), ("", False), ("   ", False), ("0 6 * * *", True), ("+1h", True)],
)
def test_is_recurring(expression, recurring):
    assert Workflow(name="w", schedule_expression=expression).is_recurring is recurring


def test_is_due():
    workflow = Workflow(name="w", next_scheduled_run=NOW)
    assert workflow.is_due(NOW)
    assert workflow.is_due(NOW + timedelta(seconds=1))
    assert not workflow.is_due(NOW - timedelta(seconds=1))

    workflow.is_active = False
    assert not workflow.is_due(NOW)
    assert not Workflow(name="w").is_due(NOW)


def test_result_start_copies_workflow_fields():
    workflow = Workflow(
        name="Flood extent",
        area_of_interest={"type": "Point", "coordinates": [6.96, 50.94]},
        time_range=TimeRange(NOW - timedelta(days=1), NOW),
    )

    result = AnalysisResult.start(workflow, NOW)

    assert result.workflow_id == workflow.id
    assert result.name == "Execution of Flood extent"
    assert result.description == "Analysis result for workflow: Flood extent"
    assert result.status == ResultStatus.PROCESSING
    assert result.execution_date == NOW
    assert result.area_of_interest == workflow.area_of_interest
    assert result.time_range == workflow.time_range
    assert not result.is_finished


def test_terminal_statuses():
    assert ResultStatus.COMPLETED.is_terminal
    assert not ResultStatus.PROCESSING.is_terminal
    assert WorkflowStatus.FAILED.is_terminal
    assert not WorkflowStatus.SCHEDULED.is_terminal


def test_retry_classification():
    step = Step(name="s", type="AI_ANALYSIS", max_retries=1)

    assert is_retryable(TimeoutError())
    assert not is_retryable(InvalidConfigurationError("Unknown step type: X"))
    assert not is_retryable(RemoteInvocationError("fn", "bad input", retryable=False))

    assert can_retry(step, ConnectionError())
    step.retry_count = 1
    assert not can_retry(step, ConnectionError())
