"""LAMBDA_FUNCTION step: resolve a function name and invoke it remotely.

Function name resolution accepts three configuration shapes, tried in order:

1. JSON object with a "functionName" field:
       {"functionName": "proc-img", "bands": ["B04", "B08"]}
2. A "functionName" token followed by "=" or ":":
       functionName=proc-img
       functionName: 'proc-img'
   This also covers a JSON object whose "functionName" is not a string:
       {"functionName": 7}  ->  "7"
3. The whole (trimmed) string:
       proc-img

Remote failures do not fail the step. They are reported in the step output
with success=False so the workflow can carry on.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pygeoflow.errors import InvalidConfigurationError
from pygeoflow.executor.context import StepInput
from pygeoflow.integrations.base import FunctionInvoker

logger = logging.getLogger(__name__)

_FUNCTION_NAME_TOKEN = re.compile(r"""functionName["']?\s*[=:]\s*["']?([^"',{}\[\]\s;&]+)""")


@dataclass(frozen=True)
class ResolvedFunction:
    """Function name plus the configuration merged into the invocation payload."""

    function_name: str
    config: dict[str, Any] = field(default_factory=dict)
    tier: int = 1
    """Which resolution rule matched (1 = JSON, 2 = token, 3 = whole string)."""


def resolve_function_name(configuration: str | None) -> ResolvedFunction:
    """Resolve the function to invoke from a step configuration string.

    Raises:
        InvalidConfigurationError: If the configuration is missing or no
            usable function name can be extracted
    """
    if configuration is None:
        raise InvalidConfigurationError("Step configuration is null for Lambda function step")

    text = configuration.strip()
    if not text:
        raise InvalidConfigurationError(
            f"Lambda function name not found in configuration: {configuration!r}"
        )

    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None

    name = parsed.get("functionName") if isinstance(parsed, dict) else None
    # A non-string "functionName" (e.g. a number) is read as a token below
    if isinstance(parsed, dict) and (name is None or isinstance(name, str)):
        if name is None or not name.strip():
            raise InvalidConfigurationError(
                f"Lambda function name not found in configuration: {configuration}"
            )
        return ResolvedFunction(function_name=name.strip(), config=parsed, tier=1)

    if "functionName" in text:
        match = _FUNCTION_NAME_TOKEN.search(text)
        if match is None:
            raise InvalidConfigurationError(
                f"Lambda function name not found in configuration: {configuration}"
            )
        name = match.group(1)
        tier = 2
    else:
        name = text
        tier = 3

    return ResolvedFunction(
        function_name=name,
        config={"functionName": name, "originalConfig": configuration},
        tier=tier,
    )


class LambdaFunctionHandler:
    """Step handler bound to a FunctionInvoker.

    Usage:
        registry.register(StepType.LAMBDA_FUNCTION, LambdaFunctionHandler(invoker))
    """

    def __init__(self, invoker: FunctionInvoker):
        self._invoker = invoker

    def __repr__(self) -> str:
        return f"LambdaFunctionHandler({self._invoker!r})"

    async def __call__(self, step_input: StepInput) -> dict[str, Any]:
        # Configuration errors propagate: they are not remote failures
        resolved = resolve_function_name(step_input.step.configuration)
        function_name = resolved.function_name

        payload: dict[str, Any] = {
            "workflowId": step_input.workflow_id,
            "stepName": step_input.step.name,
            "contextData": dict(step_input.context),
        }
        payload.update(resolved.config)

        output: dict[str, Any] = {"functionName": function_name}
        try:
            payload_json = json.dumps(payload, default=str)
            response = await self._invoker.invoke(function_name, payload_json)
        except Exception as e:
            logger.error(f"Error invoking Lambda function {function_name}: {e}")
            output["success"] = False
            output["error"] = f"Failed to invoke Lambda function: {e}"
            return output

        if response:
            output["success"] = True
            output["lambdaResponse"] = response
        else:
            output["success"] = False
            output["error"] = "Empty response from Lambda function"

        logger.info(f"Lambda function {function_name} executed for step: {step_input.step.name}")
        return output
