"""Domain errors raised by the workflow engine.

Configuration problems are permanent (not retried); remote invocation
failures carry their own retryability so invokers can classify them.
Storage and scheduler errors live next to the code that raises them
(pygeoflow.storage.base.StorageError, pygeoflow.executor.scheduler.SchedulerError).
"""

from pygeoflow.models.retry import RetryableError

__all__ = [
    "WorkflowNotFoundError",
    "WorkflowBusyError",
    "InvalidConfigurationError",
    "RemoteInvocationError",
]


class WorkflowNotFoundError(Exception):
    """Referenced workflow does not exist.

    Surfaced to the caller, never retried.
    """

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found with id: {workflow_id}")
        self.workflow_id = workflow_id


class WorkflowBusyError(Exception):
    """Workflow is claimed by another execution."""

    def __init__(self, workflow_id: str, owner: str | None = None):
        message = f"Workflow {workflow_id} is already executing"
        if owner:
            message += f" (claimed by {owner})"
        super().__init__(message)
        self.workflow_id = workflow_id
        self.owner = owner


class InvalidConfigurationError(RetryableError):
    """A step cannot run as configured.

    Raised for a null or unknown step type and for a LAMBDA_FUNCTION
    configuration without a usable function name. Retrying cannot help,
    so the step fails on its first attempt and the execution aborts.
    """

    def is_retryable(self) -> bool:
        return False


class RemoteInvocationError(RetryableError):
    """A remote function invocation failed.

    Example:
        ```python
        raise RemoteInvocationError("proc-img", "Unhandled: division by zero")
        ```

    Attributes:
        function_name: Name of the function that was invoked
        retryable: Whether the failure looks transient
    """

    def __init__(self, function_name: str, message: str, retryable: bool = True):
        super().__init__(message)
        self.function_name = function_name
        self.message = message
        self._retryable = retryable

    def is_retryable(self) -> bool:
        return self._retryable

    def __str__(self) -> str:
        return f"{self.function_name}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"RemoteInvocationError(function_name={self.function_name!r}, "
            f"message={self.message!r}, retryable={self._retryable})"
        )
