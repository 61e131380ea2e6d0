"""Metrics sink implementations.

Execution time is reported as a CloudWatch-style datum:

    namespace:  BASF/JavaGIS
    metric:     AiWorkflowExecutionTime
    unit:       Milliseconds
    dimension:  WorkflowType=<workflow type name>
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "BASF/JavaGIS"
EXECUTION_TIME_METRIC = "AiWorkflowExecutionTime"


@dataclass(frozen=True)
class MetricDatum:
    """One recorded metric value."""

    metric_name: str
    value: float
    unit: str
    dimensions: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def execution_time(cls, workflow_type: str, duration_ms: int) -> MetricDatum:
        return cls(
            metric_name=EXECUTION_TIME_METRIC,
            value=float(duration_ms),
            unit="Milliseconds",
            dimensions={"WorkflowType": workflow_type},
        )


class LoggingMetricsSink:
    """Write metric data to the log instead of a metrics service."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE, level: int = logging.INFO):
        self.namespace = namespace
        self._level = level

    async def record(self, workflow_type: str, duration_ms: int) -> None:
        datum = MetricDatum.execution_time(workflow_type, duration_ms)
        dims = ",".join(f"{k}={v}" for k, v in datum.dimensions.items())
        logger.log(
            self._level,
            f"metric {self.namespace}/{datum.metric_name} "
            f"value={datum.value:.0f} unit={datum.unit} dimensions=[{dims}]",
        )


class InMemoryMetricsSink:
    """Keep metric data in memory so tests can assert on it."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE):
        self.namespace = namespace
        self.data: list[MetricDatum] = []
        self._lock = asyncio.Lock()

    async def record(self, workflow_type: str, duration_ms: int) -> None:
        async with self._lock:
            self.data.append(MetricDatum.execution_time(workflow_type, duration_ms))

    def values_for(self, workflow_type: str) -> list[float]:
        """Recorded execution times for one workflow type."""
        return [d.value for d in self.data if d.dimensions.get("WorkflowType") == workflow_type]

    def clear(self) -> None:
        self.data.clear()
