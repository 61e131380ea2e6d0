"""Next-run policies for recurring workflows.

The scheduler asks a NextRunPolicy when a recurring workflow should run
again. The default is a fixed one-day interval; this is a placeholder for
a real cron evaluator, which can be plugged in without touching the
scheduler.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from pygeoflow.models import Workflow

DEFAULT_INTERVAL = timedelta(days=1)

_INTERVAL_EXPRESSION = re.compile(r"^\+\s*(\d+)\s*([smhd])$", re.IGNORECASE)
_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


@runtime_checkable
class NextRunPolicy(Protocol):
    """Compute the next run of a recurring workflow."""

    def next_run(self, workflow: Workflow, now: datetime) -> datetime:
        """
        Args:
            workflow: Workflow that just ran (schedule_expression is set)
            now: Reference time

        Returns:
            When the workflow should run next
        """
        ...


class FixedIntervalPolicy:
    """Always run again after the same interval, ignoring the expression."""

    def __init__(self, interval: timedelta = DEFAULT_INTERVAL):
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval

    def next_run(self, workflow: Workflow, now: datetime) -> datetime:
        return now + self.interval

    def __repr__(self) -> str:
        return f"FixedIntervalPolicy({self.interval})"


def parse_interval(expression: str | None) -> timedelta | None:
    """Parse a "+<n><s|m|h|d>" expression such as "+24h" or "+15m".

    Returns:
        The interval, or None if the expression has another form
    """
    if not expression:
        return None
    match = _INTERVAL_EXPRESSION.match(expression.strip())
    if match is None:
        return None
    amount = int(match.group(1))
    if amount == 0:
        return None
    return timedelta(**{_UNITS[match.group(2).lower()]: amount})


class IntervalExpressionPolicy:
    """Honor "+<n><unit>" schedule expressions, else use a default interval.

    Example:
        ```python
        policy = IntervalExpressionPolicy()
        policy.next_run(workflow_with("+6h"), now)        # now + 6 hours
        policy.next_run(workflow_with("0 0 * * *"), now)  # now + 1 day
        ```
    """

    def __init__(self, default: timedelta = DEFAULT_INTERVAL):
        self._fallback = FixedIntervalPolicy(default)

    def next_run(self, workflow: Workflow, now: datetime) -> datetime:
        interval = parse_interval(workflow.schedule_expression)
        if interval is None:
            return self._fallback.next_run(workflow, now)
        return now + interval

    def __repr__(self) -> str:
        return f"IntervalExpressionPolicy(default={self._fallback.interval})"
