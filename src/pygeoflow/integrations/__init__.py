"""Adapters for the engine's external collaborators.

- FunctionInvoker / MetricsSink: Protocols the engine depends on
- HttpFunctionInvoker: httpx-based Lambda Invoke-style client
- LocalFunctionInvoker: in-process functions
- LoggingMetricsSink / InMemoryMetricsSink: metric sinks
"""

from pygeoflow.integrations.base import FunctionInvoker, MetricsSink
from pygeoflow.integrations.invokers import HttpFunctionInvoker, LocalFunctionInvoker
from pygeoflow.integrations.metrics import (
    EXECUTION_TIME_METRIC,
    InMemoryMetricsSink,
    LoggingMetricsSink,
    MetricDatum,
)

__all__ = [
    "EXECUTION_TIME_METRIC",
    "FunctionInvoker",
    "HttpFunctionInvoker",
    "InMemoryMetricsSink",
    "LocalFunctionInvoker",
    "LoggingMetricsSink",
    "MetricDatum",
    "MetricsSink",
]
