"""
Collaborator protocols consumed by the execution engine.

**Pattern**: Interface Segregation Principle (SOLID)
The engine only needs two narrow capabilities from the outside world:
invoking a remote function and recording a duration metric. Anything with
the right async methods satisfies these protocols; no inheritance needed.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class FunctionInvoker(Protocol):
    """
    Protocol for remote (Lambda-like) function invocation.

    **Contract**:
    - `invoke()` sends the JSON payload to the named function and returns
      the raw response body, or None when the function returned nothing
    - Transport and remote failures are raised, never returned; the
      LAMBDA_FUNCTION step handler catches them and reports them in the
      step output

    **Example**:
        ```python
        class EchoInvoker:
            async def invoke(self, function_name: str, payload: str) -> str | None:
                return payload

        assert isinstance(EchoInvoker(), FunctionInvoker)
        ```
    """

    async def invoke(self, function_name: str, payload: str) -> str | None:
        """
        Invoke a function synchronously (request/response).

        Args:
            function_name: Name of the function to invoke
            payload: JSON-encoded request payload

        Returns:
            Response body as text, or None for an empty response

        Raises:
            RemoteInvocationError: If the invocation failed
        """
        ...


@runtime_checkable
class MetricsSink(Protocol):
    """
    Protocol for execution-time metrics (CloudWatch-like).

    **Contract**:
    - `record()` is called once per finished execution with the workflow
      type name and the wall-clock duration
    - Failures may be raised; the result recorder logs them and carries on
    """

    async def record(self, workflow_type: str, duration_ms: int) -> None:
        """
        Record the duration of one workflow execution.

        Args:
            workflow_type: WorkflowType name, or "UNKNOWN" for untyped workflows
            duration_ms: Processing time in milliseconds
        """
        ...
