"""Storage backends for workflow definitions and analysis results.

Provides multiple storage implementations behind a common interface:
    - WorkflowStore / ResultStore: Abstract interfaces
    - SqliteStore: SQLite-backed storage
    - RedisStore: Redis-backed distributed storage
    - InMemoryStore: In-memory storage for testing

Design: Adapter Pattern + Dependency Inversion (SOLID)
    All storage implementations adapt to the store interfaces.
    The executor depends on the abstractions, so backends can be swapped
    without touching execution code.
"""

from pygeoflow.storage.base import ResultStore, StorageError, WorkflowStore
from pygeoflow.storage.memory import InMemoryStore

# Backends with optional drivers are imported lazily so a missing redis
# install only matters to callers that ask for RedisStore.


def __getattr__(name: str):
    """Lazy import storage implementations with third-party drivers."""
    if name == "RedisStore":
        from pygeoflow.storage.redis import RedisStore

        return RedisStore
    elif name == "SqliteStore":
        from pygeoflow.storage.sqlite import SqliteStore

        return SqliteStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "InMemoryStore",
    "RedisStore",
    "ResultStore",
    "SqliteStore",
    "StorageError",
    "WorkflowStore",
]
