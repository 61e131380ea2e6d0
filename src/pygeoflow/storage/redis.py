"""Redis-based storage implementation.

Provides a Redis backend so several scheduler processes on separate machines
can share workflow definitions, results and execution claims.

Data Structures:
- geoflow:workflow:{id} (HASH): Workflow fields
- geoflow:workflows (ZSET): All workflow ids (score = created_at ms)
- geoflow:schedule (ZSET): Active scheduled workflows (score = next run ms)
- geoflow:claim:{id} (STRING): Claim owner, expires with the lease (PX)
- geoflow:result:{id} (HASH): AnalysisResult fields
- geoflow:results:{workflow_id} (ZSET): Result ids (score = execution ms)

Key Features:
- Atomic operations: Uses MULTI/EXEC for consistency
- Due lookup: ZRANGEBYSCORE on the schedule index
- Claims: Lua compare-and-set so only the owner renews or releases

Design: Adapter Pattern
Implements WorkflowStore and ResultStore for Redis.
"""

from __future__ import annotations

from datetime import datetime, timedelta

try:
    import redis.asyncio as redis
except ImportError:
    raise ImportError("redis-py is required for RedisStore. Install with: pip install redis")

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

WORKFLOWS_KEY = "geoflow:workflows"
SCHEDULE_KEY = "geoflow:schedule"

# KEYS[1] = claim key, ARGV[1] = owner, ARGV[2] = lease in ms
_CLAIM_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current == false or current == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[1], 'PX', ARGV[2])
    return 1
end
return 0
"""

# KEYS[1] = claim key, ARGV[1] = owner
_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def _text(value: bytes | None) -> str | None:
    if value is None or value == b"":
        return None
    return value.decode("utf-8")


class RedisStore(WorkflowStore, ResultStore):
    """Redis storage using connection pooling.

    Usage:
        store = RedisStore("redis://localhost:6379")
        await store.connect()

        await store.save(workflow)
        due = await store.find_due(datetime.now())
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", max_connections: int = 16):
        """Initialize Redis storage.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisStore({self._redis_url})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        self._redis = redis.from_url(
            self._redis_url,
            decode_responses=False,  # Area of interest is stored as binary
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _workflow_key(workflow_id: str) -> str:
        return f"geoflow:workflow:{workflow_id}"

    @staticmethod
    def _claim_key(workflow_id: str) -> str:
        return f"geoflow:claim:{workflow_id}"

    @staticmethod
    def _result_key(result_id: str) -> str:
        return f"geoflow:result:{result_id}"

    @staticmethod
    def _results_index_key(workflow_id: str) -> str:
        return f"geoflow:results:{workflow_id}"

    # ========================================================================
    # WorkflowStore
    # ========================================================================

    async def find_by_id(self, workflow_id: str) -> Workflow | None:
        self._check_connected()
        try:
            data = await self._redis.hgetall(self._workflow_key(workflow_id))
        except redis.RedisError as e:
            raise StorageError(f"Failed to load workflow {workflow_id}: {e}") from e
        return self._hash_to_workflow(data) if data else None

    async def find_all(self) -> list[Workflow]:
        self._check_connected()
        ids = await self._redis.zrange(WORKFLOWS_KEY, 0, -1)
        return await self._load_workflows(ids)

    async def save(self, workflow: Workflow) -> Workflow:
        self._check_connected()

        key = self._workflow_key(workflow.id)
        fields = self._workflow_to_hash(workflow)
        next_run_ms = to_millis(workflow.next_scheduled_run)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                # Replace, not merge: cleared optional fields must disappear
                await pipe.delete(key)
                await pipe.hset(key, mapping=fields)
                await pipe.zadd(WORKFLOWS_KEY, {workflow.id: to_millis(workflow.created_at)})
                if workflow.is_active and next_run_ms is not None:
                    await pipe.zadd(SCHEDULE_KEY, {workflow.id: next_run_ms})
                else:
                    await pipe.zrem(SCHEDULE_KEY, workflow.id)
                await pipe.execute()
        except redis.RedisError as e:
            raise StorageError(f"Failed to save workflow {workflow.id}: {e}") from e

        return workflow

    async def delete(self, workflow_id: str) -> bool:
        self._check_connected()

        index_key = self._results_index_key(workflow_id)
        result_ids = await self._redis.zrange(index_key, 0, -1)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.delete(self._workflow_key(workflow_id))
                await pipe.zrem(WORKFLOWS_KEY, workflow_id)
                await pipe.zrem(SCHEDULE_KEY, workflow_id)
                await pipe.delete(self._claim_key(workflow_id))
                for result_id in result_ids:
                    await pipe.delete(self._result_key(result_id.decode("utf-8")))
                await pipe.delete(index_key)
                replies = await pipe.execute()
        except redis.RedisError as e:
            raise StorageError(f"Failed to delete workflow {workflow_id}: {e}") from e

        return bool(replies[0])

    async def find_due(self, now: datetime) -> list[Workflow]:
        self._check_connected()
        ids = await self._redis.zrangebyscore(SCHEDULE_KEY, "-inf", to_millis(now))
        workflows = await self._load_workflows(ids)
        # The index can briefly lag a concurrent save; re-check the record itself
        return [w for w in workflows if w.is_due(now)]

    async def claim_workflow(self, workflow_id: str, owner: str, lease: timedelta) -> bool:
        self._check_connected()
        lease_ms = max(1, int(lease.total_seconds() * 1000))
        try:
            claimed = await self._redis.eval(
                _CLAIM_SCRIPT, 1, self._claim_key(workflow_id), owner, lease_ms
            )
        except redis.RedisError as e:
            raise StorageError(f"Failed to claim workflow {workflow_id}: {e}") from e
        return bool(claimed)

    async def release_workflow(self, workflow_id: str, owner: str) -> None:
        self._check_connected()
        try:
            await self._redis.eval(_RELEASE_SCRIPT, 1, self._claim_key(workflow_id), owner)
        except redis.RedisError as e:
            raise StorageError(f"Failed to release workflow {workflow_id}: {e}") from e

    async def claim_owner(self, workflow_id: str) -> str | None:
        self._check_connected()
        return _text(await self._redis.get(self._claim_key(workflow_id)))

    # ========================================================================
    # ResultStore
    # ========================================================================

    async def save_result(self, result: AnalysisResult) -> AnalysisResult:
        self._check_connected()

        key = self._result_key(result.id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.delete(key)
                await pipe.hset(key, mapping=self._result_to_hash(result))
                await pipe.zadd(
                    self._results_index_key(result.workflow_id),
                    {result.id: to_millis(result.execution_date)},
                )
                await pipe.execute()
        except redis.RedisError as e:
            raise StorageError(f"Failed to save result {result.id}: {e}") from e

        return result

    async def find_result(self, result_id: str) -> AnalysisResult | None:
        self._check_connected()
        data = await self._redis.hgetall(self._result_key(result_id))
        return self._hash_to_result(data) if data else None

    async def find_by_workflow_order_by_date_desc(self, workflow_id: str) -> list[AnalysisResult]:
        self._check_connected()
        ids = await self._redis.zrevrange(self._results_index_key(workflow_id), 0, -1)
        if not ids:
            return []

        async with self._redis.pipeline(transaction=False) as pipe:
            for result_id in ids:
                await pipe.hgetall(self._result_key(result_id.decode("utf-8")))
            rows = await pipe.execute()

        return [self._hash_to_result(row) for row in rows if row]

    async def reset(self) -> None:
        """Delete every geoflow key (for testing/demos)."""
        self._check_connected()
        keys = [key async for key in self._redis.scan_iter(match="geoflow:*")]
        if keys:
            await self._redis.delete(*keys)

    # ========================================================================
    # Conversion
    # ========================================================================

    async def _load_workflows(self, ids: list[bytes]) -> list[Workflow]:
        if not ids:
            return []

        async with self._redis.pipeline(transaction=False) as pipe:
            for workflow_id in ids:
                await pipe.hgetall(self._workflow_key(workflow_id.decode("utf-8")))
            rows = await pipe.execute()

        return [self._hash_to_workflow(row) for row in rows if row]

    @staticmethod
    def _workflow_to_hash(workflow: Workflow) -> dict[str, str | bytes | int]:
        fields = {
            "id": workflow.id,
            "name": workflow.name,
            "description": workflow.description,
            "type": workflow.type.value if workflow.type is not None else None,
            "status": workflow.status.value,
            "created_at": to_millis(workflow.created_at),
            "last_run_at": to_millis(workflow.last_run_at),
            "next_scheduled_run": to_millis(workflow.next_scheduled_run),
            "schedule_expression": workflow.schedule_expression,
            "is_active": "1" if workflow.is_active else "0",
            "area_of_interest": dump_opaque(workflow.area_of_interest),
            "time_range_start": to_millis(workflow.time_range.start),
            "time_range_end": to_millis(workflow.time_range.end),
            "steps": dump_steps(workflow.steps),
            "parameters": dump_json(workflow.parameters),
            "model_ids": dump_json(workflow.model_ids),
        }
        # Redis hashes have no NULL; absent field means None
        return {k: v for k, v in fields.items() if v is not None}

    @staticmethod
    def _hash_to_workflow(data: dict[bytes, bytes]) -> Workflow:
        type_value = _text(data.get(b"type"))
        return Workflow(
            id=_text(data[b"id"]),
            name=_text(data[b"name"]),
            description=_text(data.get(b"description")),
            type=WorkflowType(type_value) if type_value else None,
            status=WorkflowStatus(_text(data[b"status"])),
            created_at=from_millis(data[b"created_at"]),
            last_run_at=from_millis(data.get(b"last_run_at")),
            next_scheduled_run=from_millis(data.get(b"next_scheduled_run")),
            schedule_expression=_text(data.get(b"schedule_expression")),
            is_active=data.get(b"is_active") == b"1",
            area_of_interest=load_opaque(data.get(b"area_of_interest")),
            time_range=TimeRange(
                start=from_millis(data.get(b"time_range_start")),
                end=from_millis(data.get(b"time_range_end")),
            ),
            steps=load_steps(data.get(b"steps")),
            parameters=load_json(data.get(b"parameters"), default={}),
            model_ids=load_json(data.get(b"model_ids"), default=[]),
        )

    @staticmethod
    def _result_to_hash(result: AnalysisResult) -> dict[str, str | bytes | int | float]:
        fields = {
            "id": result.id,
            "workflow_id": result.workflow_id,
            "name": result.name,
            "description": result.description,
            "execution_date": to_millis(result.execution_date),
            "completion_date": to_millis(result.completion_date),
            "status": result.status.value,
            "processing_time_ms": result.processing_time_ms,
            "result_data": dump_json(result.result_data),
            "confidence_score": result.confidence_score,
            "area_of_interest": dump_opaque(result.area_of_interest),
            "time_range_start": to_millis(result.time_range.start),
            "time_range_end": to_millis(result.time_range.end),
        }
        return {k: v for k, v in fields.items() if v is not None}

    @staticmethod
    def _hash_to_result(data: dict[bytes, bytes]) -> AnalysisResult:
        processing = data.get(b"processing_time_ms")
        confidence = data.get(b"confidence_score")
        return AnalysisResult(
            id=_text(data[b"id"]),
            workflow_id=_text(data[b"workflow_id"]),
            name=_text(data[b"name"]),
            description=_text(data.get(b"description")),
            execution_date=from_millis(data[b"execution_date"]),
            completion_date=from_millis(data.get(b"completion_date")),
            status=ResultStatus(_text(data[b"status"])),
            processing_time_ms=int(processing) if processing is not None else None,
            result_data=load_json(data.get(b"result_data"), default={}),
            confidence_score=float(confidence) if confidence is not None else None,
            area_of_interest=load_opaque(data.get(b"area_of_interest")),
            time_range=TimeRange(
                start=from_millis(data.get(b"time_range_start")),
                end=from_millis(data.get(b"time_range_end")),
            ),
        )
