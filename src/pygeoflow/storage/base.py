"""
Store interfaces - abstract contracts for workflow and result persistence.

Design Pattern: Adapter Pattern
WorkflowStore and ResultStore define the target interfaces that every
storage backend implements. SQLite, Redis and in-memory backends adapt to
these contracts; the runner and scheduler only depend on the abstractions.

Transaction boundary: every mutating method is one atomic state
transition (create-result, complete-result, update-workflow). A crash
between two calls never leaves a partially written record.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from pygeoflow.models import AnalysisResult, Workflow


class StorageError(Exception):
    """
    Storage operation failed.

    Adapters wrap backend exceptions in StorageError (with the original
    as __cause__) so callers handle one error type.
    """

    pass


class WorkflowStore(ABC):
    """
    Persistence contract for workflow definitions.

    Also provides per-workflow claims: a time-limited lease that gives one
    owner the right to execute a workflow. The scheduler claims a workflow
    before dispatching it, so the same id never runs in two overlapping
    executions.
    """

    @abstractmethod
    async def find_by_id(self, workflow_id: str) -> Workflow | None:
        """
        Retrieve a workflow.

        Returns:
            Workflow if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_all(self) -> list[Workflow]:
        """Return every stored workflow, oldest first."""
        pass

    @abstractmethod
    async def save(self, workflow: Workflow) -> Workflow:
        """
        Insert or replace a workflow, atomically.

        Step order is preserved exactly as given.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, workflow_id: str) -> bool:
        """
        Delete a workflow, its results and any claim on it.

        Returns:
            True if a workflow was deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def find_due(self, now: datetime) -> list[Workflow]:
        """
        Find workflows that are due: next_scheduled_run <= now AND is_active.

        Status is NOT filtered here. Callers that only want SCHEDULED
        workflows must filter explicitly.

        Args:
            now: Reference time

        Returns:
            Due workflows ordered by next_scheduled_run (may be empty)
        """
        pass

    @abstractmethod
    async def claim_workflow(self, workflow_id: str, owner: str, lease: timedelta) -> bool:
        """
        Try to take the execution claim for a workflow.

        Succeeds if the workflow is unclaimed, the previous lease expired,
        or the same owner already holds it (the lease is renewed).

        Args:
            workflow_id: Workflow to claim
            owner: Claim owner (scheduler or service instance id)
            lease: How long the claim stays valid without release

        Returns:
            True if the caller now holds the claim
        """
        pass

    @abstractmethod
    async def release_workflow(self, workflow_id: str, owner: str) -> None:
        """
        Release a claim. No-op if the claim is held by someone else.
        """
        pass

    async def claim_owner(self, workflow_id: str) -> str | None:
        """Return the current (unexpired) claim owner, if the backend can tell."""
        return None


class ResultStore(ABC):
    """
    Persistence contract for analysis results.
    """

    @abstractmethod
    async def save_result(self, result: AnalysisResult) -> AnalysisResult:
        """
        Insert or replace a result, atomically.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def find_result(self, result_id: str) -> AnalysisResult | None:
        """Retrieve a result by id."""
        pass

    @abstractmethod
    async def find_by_workflow_order_by_date_desc(self, workflow_id: str) -> list[AnalysisResult]:
        """
        Execution history of a workflow, newest execution first.
        """
        pass
