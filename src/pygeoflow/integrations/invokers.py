"""Function invoker implementations.

HttpFunctionInvoker calls functions over HTTP using the Lambda Invoke
request/response shape:

    POST {endpoint}/2015-03-31/functions/{function_name}/invocations
    body: JSON payload

A function-level error is signalled by the X-Amz-Function-Error response
header; transport errors and HTTP status >= 400 are failures as well.

LocalFunctionInvoker dispatches to in-process callables, for tests and
single-process deployments.
"""

from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Awaitable, Callable

import httpx

from pygeoflow.errors import RemoteInvocationError

logger = logging.getLogger(__name__)

DEFAULT_INVOKE_PATH = "/2015-03-31/functions/{function_name}/invocations"
DEFAULT_TIMEOUT = 30.0

LocalFunction = Callable[[str], "str | None | Awaitable[str | None]"]


class HttpFunctionInvoker:
    """Invoke remote functions through an HTTP endpoint.

    The invoker owns its httpx.AsyncClient unless one is passed in.
    Call close() (or use it as an async context manager) to release it.

    Usage:
        async with HttpFunctionInvoker("http://localhost:9001") as invoker:
            body = await invoker.invoke("proc-img", '{"workflowId": "..."}')
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = DEFAULT_TIMEOUT,
        invoke_path: str = DEFAULT_INVOKE_PATH,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the invoker.

        Args:
            endpoint: Base URL of the function service
            timeout: Request timeout in seconds
            invoke_path: Path template containing {function_name}
            client: Optional pre-configured client (not closed by close())
        """
        if not endpoint:
            raise ValueError("endpoint must not be empty")
        self._endpoint = endpoint.rstrip("/")
        self._invoke_path = invoke_path
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_env(cls) -> HttpFunctionInvoker:
        """Build an invoker from GEOFLOW_FUNCTION_ENDPOINT / GEOFLOW_FUNCTION_TIMEOUT.

        Raises:
            ValueError: If the endpoint is not set or the timeout is not a number
        """
        endpoint = os.environ.get("GEOFLOW_FUNCTION_ENDPOINT")
        if not endpoint:
            raise ValueError("GEOFLOW_FUNCTION_ENDPOINT is not set")

        raw_timeout = os.environ.get("GEOFLOW_FUNCTION_TIMEOUT")
        try:
            timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
        except ValueError:
            raise ValueError(f"Invalid GEOFLOW_FUNCTION_TIMEOUT: {raw_timeout}") from None

        return cls(endpoint, timeout=timeout)

    def __repr__(self) -> str:
        return f"HttpFunctionInvoker({self._endpoint})"

    def url_for(self, function_name: str) -> str:
        return self._endpoint + self._invoke_path.format(function_name=function_name)

    async def invoke(self, function_name: str, payload: str) -> str | None:
        url = self.url_for(function_name)
        logger.debug(f"Invoking function {function_name} at {url}")

        try:
            response = await self._client.post(
                url,
                content=payload.encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise RemoteInvocationError(function_name, f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteInvocationError(function_name, f"Transport error: {e}") from e

        function_error = response.headers.get("X-Amz-Function-Error")
        if function_error:
            raise RemoteInvocationError(
                function_name,
                f"{function_error}: {response.text}",
                retryable=False,
            )

        if response.status_code >= 400:
            # 5xx and throttling are worth another attempt, other client errors are not
            retryable = response.status_code >= 500 or response.status_code == 429
            raise RemoteInvocationError(
                function_name,
                f"HTTP {response.status_code}: {response.text}",
                retryable=retryable,
            )

        body = response.text
        return body if body else None

    async def close(self) -> None:
        """Close the underlying client if this invoker created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpFunctionInvoker:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class LocalFunctionInvoker:
    """Invoke registered in-process callables by name.

    Functions receive the JSON payload string and return a response string
    (or None). Both plain and async functions are accepted.

    Example:
        ```python
        invoker = LocalFunctionInvoker()
        invoker.register("proc-img", lambda payload: '{"tiles": 12}')
        ```
    """

    def __init__(self, functions: dict[str, LocalFunction] | None = None):
        self._functions: dict[str, LocalFunction] = dict(functions or {})

    def register(self, function_name: str, function: LocalFunction) -> LocalFunctionInvoker:
        """Register a function under a name.

        Returns:
            self for method chaining
        """
        self._functions[function_name] = function
        return self

    def __len__(self) -> int:
        return len(self._functions)

    def __contains__(self, function_name: str) -> bool:
        return function_name in self._functions

    async def invoke(self, function_name: str, payload: str) -> str | None:
        function = self._functions.get(function_name)
        if function is None:
            raise RemoteInvocationError(
                function_name, "Function not found", retryable=False
            )

        try:
            response = function(payload)
            if inspect.isawaitable(response):
                response = await response
        except RemoteInvocationError:
            raise
        except Exception as e:
            raise RemoteInvocationError(function_name, str(e)) from e

        return response
