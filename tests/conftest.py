"""
Pytest configuration and fixtures for pygeoflow tests.

Provides reusable fixtures for storage backends, collaborators, workflow
factories and hypothesis strategies.
"""

import shutil
import tempfile
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from hypothesis import strategies as st

from pygeoflow.errors import RemoteInvocationError
from pygeoflow.executor import (
    HandlerRegistry,
    ResultRecorder,
    Scheduler,
    StepExecutor,
    WorkflowRunner,
)
from pygeoflow.integrations import InMemoryMetricsSink
from pygeoflow.models import Step, StepType, Workflow, WorkflowStatus, WorkflowType
from pygeoflow.service import WorkflowService
from pygeoflow.storage import InMemoryStore
from pygeoflow.storage.sqlite import SqliteStore


def pytest_sessionfinish(session, exitstatus):
    """Force cleanup after all tests complete to prevent CI hanging."""
    import os

    # In CI environments only, force exit to prevent hanging
    if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
        os._exit(exitstatus)


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
async def in_memory_store() -> AsyncGenerator[InMemoryStore, None]:
    """Async in-memory storage fixture with automatic cleanup."""
    store = InMemoryStore()
    yield store
    await store.reset()


@pytest.fixture
async def sqlite_memory_store() -> AsyncGenerator[SqliteStore, None]:
    """Async SQLite in-memory storage fixture with automatic cleanup."""
    store = SqliteStore(":memory:")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "test.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
async def sqlite_file_store(temp_db_path: Path) -> AsyncGenerator[SqliteStore, None]:
    """Async SQLite file-based storage fixture with automatic cleanup."""
    store = SqliteStore(str(temp_db_path))
    await store.connect()
    yield store
    await store.close()


# =============================================================================
# Collaborators
# =============================================================================


class FakeInvoker:
    """FunctionInvoker double that records calls.

    `response` is returned for every call unless `error` is set, in which
    case the error is raised.
    """

    def __init__(self, response: str | None = '{"statusCode": 200}', error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def invoke(self, function_name: str, payload: str) -> str | None:
        self.calls.append((function_name, payload))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def failing_invoker() -> FakeInvoker:
    return FakeInvoker(error=RemoteInvocationError("proc-img", "connection refused"))


@pytest.fixture
def metrics_sink() -> InMemoryMetricsSink:
    return InMemoryMetricsSink()


class Engine:
    """Fully wired engine over one store, for tests."""

    def __init__(self, store, invoker=None, metrics=None, registry=None):
        self.store = store
        self.registry = registry or HandlerRegistry.default(invoker)
        self.metrics = metrics
        self.executor = StepExecutor(self.registry)
        self.recorder = ResultRecorder(store, store, metrics)
        self.runner = WorkflowRunner(store, store, self.executor, self.recorder)
        self.service = WorkflowService(store, store, self.runner)

    def scheduler(self, scheduler_id: str = "scheduler-test") -> Scheduler:
        return Scheduler(self.store, self.runner, scheduler_id)


@pytest.fixture
def engine(in_memory_store, fake_invoker, metrics_sink) -> Engine:
    """Engine over the in-memory store with a fake invoker and metrics sink."""
    return Engine(in_memory_store, invoker=fake_invoker, metrics=metrics_sink)


@pytest.fixture
def sqlite_engine(sqlite_memory_store, fake_invoker, metrics_sink) -> Engine:
    return Engine(sqlite_memory_store, invoker=fake_invoker, metrics=metrics_sink)


# =============================================================================
# Workflow factories
# =============================================================================


def make_workflow(
    *step_types: str,
    name: str = "NDVI watch",
    workflow_type: WorkflowType | None = WorkflowType.ENVIRONMENTAL_MONITORING,
    **kwargs,
) -> Workflow:
    """Workflow with one step per given type tag, named step-0, step-1, ..."""
    steps = [Step(name=f"step-{i}", type=tag) for i, tag in enumerate(step_types)]
    return Workflow(name=name, type=workflow_type, steps=steps, **kwargs)


def make_scheduled(
    *step_types: str,
    due_in: timedelta = timedelta(minutes=-1),
    now: datetime | None = None,
    **kwargs,
) -> Workflow:
    """SCHEDULED workflow whose next run is `now + due_in` (due by default)."""
    now = now or datetime.now()
    return make_workflow(
        *step_types,
        status=WorkflowStatus.SCHEDULED,
        next_scheduled_run=now + due_in,
        **kwargs,
    )


@pytest.fixture
def workflow_factory() -> Callable[..., Workflow]:
    return make_workflow


@pytest.fixture
def scheduled_factory() -> Callable[..., Workflow]:
    return make_scheduled


FULL_PIPELINE = (
    "DATA_COLLECTION",
    "PREPROCESSING",
    "AI_ANALYSIS",
    "POSTPROCESSING",
    "NOTIFICATION",
)


# =============================================================================
# Hypothesis strategies for property-based testing
# =============================================================================

builtin_step_types = st.sampled_from(
    [t.value for t in StepType if t is not StepType.LAMBDA_FUNCTION]
)

workflow_types = st.one_of(st.none(), st.sampled_from(list(WorkflowType)))

step_names = st.text(
    min_size=1, max_size=30, alphabet=st.characters(whitelist_categories=("Lu", "Ll", "Nd"))
)


@st.composite
def workflow_strategy(draw, min_steps: int = 1, max_steps: int = 8):
    """Strategy for workflows made of built-in (always succeeding) steps."""
    tags = draw(st.lists(builtin_step_types, min_size=min_steps, max_size=max_steps))
    # Mixed case exercises case-insensitive step type resolution
    tags = [draw(st.sampled_from([tag, tag.lower(), tag.title()])) for tag in tags]
    return Workflow(
        name=draw(step_names),
        type=draw(workflow_types),
        steps=[Step(name=f"s{i}", type=tag) for i, tag in enumerate(tags)],
    )
