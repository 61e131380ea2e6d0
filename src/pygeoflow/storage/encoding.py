"""Value encoding shared by the SQLite and Redis adapters.

Timestamps are stored as INTEGER milliseconds, steps/parameters/result data
as JSON, and opaque geometry values as pickle blobs since the engine never
inspects them.
"""

from __future__ import annotations

import json
import pickle
from datetime import date, datetime
from typing import Any

from pygeoflow.models import Step


def to_millis(value: datetime | None) -> int | None:
    """Convert a datetime to integer milliseconds since the epoch."""
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def from_millis(value: int | bytes | str | None) -> datetime | None:
    """Inverse of to_millis. Accepts raw Redis bytes as well as integers."""
    if value is None or value == b"" or value == "":
        return None
    return datetime.fromtimestamp(int(value) / 1000.0)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_json(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def load_json(value: str | bytes | None, default: Any = None) -> Any:
    if value is None or value == b"" or value == "":
        return default
    return json.loads(value)


def dump_steps(steps: list[Step]) -> str:
    return dump_json([step.to_dict() for step in steps])


def load_steps(value: str | bytes | None) -> list[Step]:
    return [Step.from_dict(item) for item in load_json(value, default=[])]


def dump_opaque(value: Any) -> bytes | None:
    """Pickle an opaque value (geometry). None stays None."""
    if value is None:
        return None
    return pickle.dumps(value)


def load_opaque(value: bytes | None) -> Any:
    if value is None or value == b"":
        return None
    return pickle.loads(value)
