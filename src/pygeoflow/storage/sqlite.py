"""SQLite-backed storage implementation for pygeoflow.

Design Pattern: Adapter Pattern
SqliteStore adapts an SQLite database to the WorkflowStore and ResultStore
interfaces.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- IMMEDIATE transactions, one per state transition
- Index on (is_active, next_scheduled_run) for due-workflow queries
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path

import aiosqlite

from pygeoflow.models import (
    AnalysisResult,
    ResultStatus,
    TimeRange,
    Workflow,
    WorkflowStatus,
    WorkflowType,
)
from pygeoflow.storage.base import ResultStore, StorageError, WorkflowStore
from pygeoflow.storage.encoding import (
    dump_json,
    dump_opaque,
    dump_steps,
    from_millis,
    load_json,
    load_opaque,
    load_steps,
    to_millis,
)

_WORKFLOW_COLUMNS = """
    id, name, description, type, status, created_at, last_run_at,
    next_scheduled_run, schedule_expression, is_active, area_of_interest,
    time_range_start, time_range_end, steps, parameters, model_ids
"""

_RESULT_COLUMNS = """
    id, workflow_id, name, description, execution_date, completion_date,
    status, processing_time_ms, result_data, confidence_score,
    area_of_interest, time_range_start, time_range_end
"""


class SqliteStore(WorkflowStore, ResultStore):
    """SQLite-backed durable storage.

    After __init__, the instance is not yet usable. Call connect() first.
    This follows asyncio best practices (no async in __init__).

    Usage:
        store = SqliteStore("workflows.db")
        await store.connect()
        try:
            await store.save(workflow)
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteStore:
        """
        Create an in-memory SQLite store for testing.

        Example:
            store = await SqliteStore.in_memory()
            # Ready to use immediately
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        """Return string representation of storage instance."""
        if self.db_path == ":memory:":
            return "SqliteStore(in-memory)"
        return f"SqliteStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create tables and indexes
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit; transactions are explicit
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()
        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()

    async def _create_schema(self) -> None:
        """Create database tables and indexes.

        Schema design:
        - workflows: one row per workflow, steps kept as an ordered JSON list
        - workflow_claims: execution leases, at most one owner per workflow
        - analysis_results: one row per execution
        - INTEGER timestamps (milliseconds)
        """
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                type TEXT,
                status TEXT CHECK( status IN (
                    'CREATED','SCHEDULED','RUNNING','COMPLETED','FAILED','CANCELLED'
                ) ) NOT NULL,
                created_at INTEGER NOT NULL,
                last_run_at INTEGER,
                next_scheduled_run INTEGER,
                schedule_expression TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                area_of_interest BLOB,
                time_range_start INTEGER,
                time_range_end INTEGER,
                steps TEXT NOT NULL DEFAULT '[]',
                parameters TEXT NOT NULL DEFAULT '{}',
                model_ids TEXT NOT NULL DEFAULT '[]'
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_workflows_due
            ON workflows(is_active, next_scheduled_run)
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS workflow_claims (
                workflow_id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                expires_at INTEGER NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS analysis_results (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                execution_date INTEGER NOT NULL,
                completion_date INTEGER,
                status TEXT CHECK( status IN (
                    'PENDING','PROCESSING','COMPLETED','FAILED','CANCELLED'
                ) ) NOT NULL,
                processing_time_ms INTEGER,
                result_data TEXT NOT NULL DEFAULT '{}',
                confidence_score REAL,
                area_of_interest BLOB,
                time_range_start INTEGER,
                time_range_end INTEGER
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_results_workflow
            ON analysis_results(workflow_id, execution_date)
        """)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a block inside one IMMEDIATE transaction.

        Rolls back and raises StorageError on any database failure.
        """
        self._check_connected()
        async with self._lock:
            await self._connection.execute("BEGIN IMMEDIATE")
            try:
                yield self._connection
            except Exception as e:
                await self._connection.execute("ROLLBACK")
                if isinstance(e, StorageError):
                    raise
                raise StorageError(f"Transaction failed: {e}") from e
            else:
                await self._connection.execute("COMMIT")

    # ========================================================================
    # WorkflowStore
    # ========================================================================

    async def find_by_id(self, workflow_id: str) -> Workflow | None:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE id = ?",
                (workflow_id,),
            )
            row = await cursor.fetchone()

        return self._row_to_workflow(row) if row is not None else None

    async def find_all(self) -> list[Workflow]:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows ORDER BY created_at ASC"
            )
            rows = await cursor.fetchall()

        return [self._row_to_workflow(row) for row in rows]

    async def save(self, workflow: Workflow) -> Workflow:
        async with self._transaction() as conn:
            await conn.execute(
                f"""
                INSERT OR REPLACE INTO workflows ({_WORKFLOW_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    workflow.id,
                    workflow.name,
                    workflow.description,
                    workflow.type.value if workflow.type is not None else None,
                    workflow.status.value,
                    to_millis(workflow.created_at),
                    to_millis(workflow.last_run_at),
                    to_millis(workflow.next_scheduled_run),
                    workflow.schedule_expression,
                    1 if workflow.is_active else 0,
                    dump_opaque(workflow.area_of_interest),
                    to_millis(workflow.time_range.start),
                    to_millis(workflow.time_range.end),
                    dump_steps(workflow.steps),
                    dump_json(workflow.parameters),
                    dump_json(workflow.model_ids),
                ),
            )
        return workflow

    async def delete(self, workflow_id: str) -> bool:
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
            deleted = cursor.rowcount > 0
            await conn.execute(
                "DELETE FROM workflow_claims WHERE workflow_id = ?", (workflow_id,)
            )
            await conn.execute(
                "DELETE FROM analysis_results WHERE workflow_id = ?", (workflow_id,)
            )
        return deleted

    async def find_due(self, now: datetime) -> list[Workflow]:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"""
                SELECT {_WORKFLOW_COLUMNS}
                FROM workflows
                WHERE is_active = 1
                  AND next_scheduled_run IS NOT NULL
                  AND next_scheduled_run <= ?
                ORDER BY next_scheduled_run ASC
                """,
                (to_millis(now),),
            )
            rows = await cursor.fetchall()

        return [self._row_to_workflow(row) for row in rows]

    async def claim_workflow(self, workflow_id: str, owner: str, lease: timedelta) -> bool:
        """Claim with a single UPSERT.

        Design Pattern: Optimistic Concurrency Control
        The DO UPDATE only fires when the existing claim is ours or has
        expired, so exactly one owner wins a contested claim.
        """
        now = datetime.now()
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO workflow_claims (workflow_id, owner, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(workflow_id) DO UPDATE
                SET owner = excluded.owner,
                    expires_at = excluded.expires_at
                WHERE workflow_claims.owner = excluded.owner
                   OR workflow_claims.expires_at <= ?
                """,
                (workflow_id, owner, to_millis(now + lease), to_millis(now)),
            )
            return cursor.rowcount > 0

    async def release_workflow(self, workflow_id: str, owner: str) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                "DELETE FROM workflow_claims WHERE workflow_id = ? AND owner = ?",
                (workflow_id, owner),
            )

    async def claim_owner(self, workflow_id: str) -> str | None:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT owner FROM workflow_claims WHERE workflow_id = ? AND expires_at > ?",
                (workflow_id, to_millis(datetime.now())),
            )
            row = await cursor.fetchone()

        return row[0] if row else None

    # ========================================================================
    # ResultStore
    # ========================================================================

    async def save_result(self, result: AnalysisResult) -> AnalysisResult:
        async with self._transaction() as conn:
            await conn.execute(
                f"""
                INSERT OR REPLACE INTO analysis_results ({_RESULT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.id,
                    result.workflow_id,
                    result.name,
                    result.description,
                    to_millis(result.execution_date),
                    to_millis(result.completion_date),
                    result.status.value,
                    result.processing_time_ms,
                    dump_json(result.result_data),
                    result.confidence_score,
                    dump_opaque(result.area_of_interest),
                    to_millis(result.time_range.start),
                    to_millis(result.time_range.end),
                ),
            )
        return result

    async def find_result(self, result_id: str) -> AnalysisResult | None:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"SELECT {_RESULT_COLUMNS} FROM analysis_results WHERE id = ?",
                (result_id,),
            )
            row = await cursor.fetchone()

        return self._row_to_result(row) if row is not None else None

    async def find_by_workflow_order_by_date_desc(self, workflow_id: str) -> list[AnalysisResult]:
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                f"""
                SELECT {_RESULT_COLUMNS}
                FROM analysis_results
                WHERE workflow_id = ?
                ORDER BY execution_date DESC, rowid DESC
                """,
                (workflow_id,),
            )
            rows = await cursor.fetchall()

        return [self._row_to_result(row) for row in rows]

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def reset(self) -> None:
        """Clear all data (for testing/demos).

        After reset, storage is empty but functional.
        """
        async with self._transaction() as conn:
            await conn.execute("DELETE FROM workflows")
            await conn.execute("DELETE FROM workflow_claims")
            await conn.execute("DELETE FROM analysis_results")

    async def close(self) -> None:
        """Close storage connections.

        Explicit resource cleanup, not relying on GC.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> None:
        """Guard clause: Ensure connection is open."""
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    def _row_to_workflow(self, row: tuple) -> Workflow:
        """Convert database row to Workflow (column order of _WORKFLOW_COLUMNS)."""
        return Workflow(
            id=row[0],
            name=row[1],
            description=row[2],
            type=WorkflowType(row[3]) if row[3] else None,
            status=WorkflowStatus(row[4]),
            created_at=from_millis(row[5]),
            last_run_at=from_millis(row[6]),
            next_scheduled_run=from_millis(row[7]),
            schedule_expression=row[8],
            is_active=bool(row[9]),
            area_of_interest=load_opaque(row[10]),
            time_range=TimeRange(start=from_millis(row[11]), end=from_millis(row[12])),
            steps=load_steps(row[13]),
            parameters=load_json(row[14], default={}),
            model_ids=load_json(row[15], default=[]),
        )

    def _row_to_result(self, row: tuple) -> AnalysisResult:
        """Convert database row to AnalysisResult (column order of _RESULT_COLUMNS)."""
        return AnalysisResult(
            id=row[0],
            workflow_id=row[1],
            name=row[2],
            description=row[3],
            execution_date=from_millis(row[4]),
            completion_date=from_millis(row[5]),
            status=ResultStatus(row[6]),
            processing_time_ms=row[7],
            result_data=load_json(row[8], default={}),
            confidence_score=row[9],
            area_of_interest=load_opaque(row[10]),
            time_range=TimeRange(start=from_millis(row[11]), end=from_millis(row[12])),
        )
