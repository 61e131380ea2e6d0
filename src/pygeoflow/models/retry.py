"""
Retry classification for step execution.

Design Pattern: Strategy Pattern
Errors decide for themselves whether a retry can help, so the step
executor does not need to know every error type.

A step retries immediately, at most once per failure, and only while its
retry budget (max_retries) has room. Configuration errors opt out.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pygeoflow.models.workflow import Step


class RetryableError(Exception):
    """
    Base class for errors that can specify whether they should be retried.

    Example:
        class QuotaError(RetryableError):
            def __init__(self, message: str, is_retryable: bool = True):
                super().__init__(message)
                self._retryable = is_retryable

            def is_retryable(self) -> bool:
                return self._retryable

        # Transient error - step gets its immediate retry
        raise QuotaError("Rate limited", is_retryable=True)

        # Permanent error - step fails on the first attempt
        raise QuotaError("Account disabled", is_retryable=False)
    """

    def is_retryable(self) -> bool:
        """
        Returns True if this error is transient and the step may be retried.

        Returns:
            True if retryable, False if permanent
        """
        return True


def is_retryable(error: BaseException) -> bool:
    """Classify an arbitrary exception.

    Errors that do not implement is_retryable() are treated as transient.
    """
    if isinstance(error, RetryableError):
        return error.is_retryable()
    return True


def can_retry(step: Step, error: BaseException) -> bool:
    """Return True if the step should get an immediate retry for this error.

    Args:
        step: Step whose handler just failed
        error: The exception raised by the handler

    Returns:
        True when the error is retryable and retry_count < max_retries
    """
    if not is_retryable(error):
        return False
    return step.retry_count < step.max_retries
