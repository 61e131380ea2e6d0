"""In-memory storage implementation for pygeoflow.

Design Pattern: Adapter Pattern
InMemoryStore adapts in-memory dictionaries to the WorkflowStore and
ResultStore interfaces.

Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta

from pygeoflow.models import AnalysisResult, Workflow
from pygeoflow.storage.base import ResultStore, WorkflowStore


class InMemoryStore(WorkflowStore, ResultStore):
    """In-memory storage for tests and single-process deployments.

    Can be substituted for SqliteStore without changing client code.
    Records are deep-copied on the way in and out, so callers never share
    mutable state with the store (or with each other).

    Usage:
        store = InMemoryStore()
        await store.save(workflow)
    """

    def __init__(self):
        """Initialize empty storage."""
        # Storage: {workflow_id: Workflow}
        self._workflows: dict[str, Workflow] = {}

        # Storage: {result_id: AnalysisResult}
        self._results: dict[str, AnalysisResult] = {}

        # Claims: {workflow_id: (owner, expires_at)}
        self._claims: dict[str, tuple[str, datetime]] = {}

        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        """Return string representation of storage instance."""
        return "InMemoryStore"

    # ========================================================================
    # WorkflowStore
    # ========================================================================

    async def find_by_id(self, workflow_id: str) -> Workflow | None:
        async with self._lock:
            workflow = self._workflows.get(workflow_id)
            return copy.deepcopy(workflow) if workflow is not None else None

    async def find_all(self) -> list[Workflow]:
        async with self._lock:
            workflows = sorted(self._workflows.values(), key=lambda w: w.created_at)
            return [copy.deepcopy(w) for w in workflows]

    async def save(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            self._workflows[workflow.id] = copy.deepcopy(workflow)
            return workflow

    async def delete(self, workflow_id: str) -> bool:
        async with self._lock:
            self._claims.pop(workflow_id, None)
            # Results belong to their workflow and go with it
            self._results = {
                rid: r for rid, r in self._results.items() if r.workflow_id != workflow_id
            }
            return self._workflows.pop(workflow_id, None) is not None

    async def find_due(self, now: datetime) -> list[Workflow]:
        async with self._lock:
            due = [w for w in self._workflows.values() if w.is_due(now)]
            due.sort(key=lambda w: w.next_scheduled_run)
            return [copy.deepcopy(w) for w in due]

    async def claim_workflow(self, workflow_id: str, owner: str, lease: timedelta) -> bool:
        async with self._lock:
            now = datetime.now()
            current = self._claims.get(workflow_id)
            if current is not None:
                current_owner, expires_at = current
                if current_owner != owner and expires_at > now:
                    return False
            self._claims[workflow_id] = (owner, now + lease)
            return True

    async def release_workflow(self, workflow_id: str, owner: str) -> None:
        async with self._lock:
            current = self._claims.get(workflow_id)
            if current is not None and current[0] == owner:
                del self._claims[workflow_id]

    async def claim_owner(self, workflow_id: str) -> str | None:
        async with self._lock:
            current = self._claims.get(workflow_id)
            if current is None or current[1] <= datetime.now():
                return None
            return current[0]

    # ========================================================================
    # ResultStore
    # ========================================================================

    async def save_result(self, result: AnalysisResult) -> AnalysisResult:
        async with self._lock:
            self._results[result.id] = copy.deepcopy(result)
            return result

    async def find_result(self, result_id: str) -> AnalysisResult | None:
        async with self._lock:
            result = self._results.get(result_id)
            return copy.deepcopy(result) if result is not None else None

    async def find_by_workflow_order_by_date_desc(self, workflow_id: str) -> list[AnalysisResult]:
        async with self._lock:
            # Insertion order breaks ties between equal execution dates
            results = [
                (r.execution_date, seq, r)
                for seq, r in enumerate(self._results.values())
                if r.workflow_id == workflow_id
            ]
            results.sort(key=lambda item: item[:2], reverse=True)
            return [copy.deepcopy(r) for _, _, r in results]

    async def reset(self) -> None:
        """Clear all data (for testing/demos)."""
        async with self._lock:
            self._workflows.clear()
            self._results.clear()
            self._claims.clear()

    async def close(self) -> None:
        """Nothing to release; present for interface parity with other backends."""
        return None
