"""Step handler registry and the built-in step handlers.

A handler is an async function taking a StepInput and returning the dict
of outputs the step contributes to the workflow context. The registry maps
each StepType to exactly one handler; adding a step type is a
registration, not a new branch in the executor.

Example:
    ```python
    registry = HandlerRegistry.default(invoker)

    async def loud_notification(step_input: StepInput) -> dict[str, Any]:
        return {"notificationSent": True, "notificationType": "SMS"}

    registry.register(StepType.NOTIFICATION, loud_notification)
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pygeoflow.errors import InvalidConfigurationError
from pygeoflow.executor.context import StepInput
from pygeoflow.executor.lambda_step import LambdaFunctionHandler
from pygeoflow.integrations.base import FunctionInvoker
from pygeoflow.models import Step, StepType, WorkflowType

logger = logging.getLogger(__name__)

StepHandler = Callable[[StepInput], Awaitable[dict[str, Any]]]

DEFAULT_RECIPIENTS = ("admin@basf.com", "analyst@basf.com")
RECIPIENTS_PARAMETER = "notificationRecipients"


class HandlerRegistry:
    """Registry mapping step types to their handlers.

    Example:
        ```python
        registry = HandlerRegistry()
        registry.register(StepType.DATA_COLLECTION, collect_data)
        handler = registry.resolve(step)
        ```
    """

    def __init__(self):
        """Create a new empty handler registry."""
        self._handlers: dict[StepType, StepHandler] = {}

    @classmethod
    def default(cls, invoker: FunctionInvoker | None = None) -> HandlerRegistry:
        """Registry with every built-in handler.

        LAMBDA_FUNCTION is only registered when an invoker is supplied.
        """
        registry = cls()
        registry.register(StepType.DATA_COLLECTION, collect_data)
        registry.register(StepType.PREPROCESSING, preprocess)
        registry.register(StepType.AI_ANALYSIS, analyze)
        registry.register(StepType.POSTPROCESSING, postprocess)
        registry.register(StepType.NOTIFICATION, notify)
        if invoker is not None:
            registry.register(StepType.LAMBDA_FUNCTION, LambdaFunctionHandler(invoker))
        return registry

    def register(self, step_type: StepType, handler: StepHandler) -> HandlerRegistry:
        """Register (or replace) the handler for a step type.

        Returns:
            self for method chaining
        """
        if not isinstance(step_type, StepType):
            raise TypeError(f"step_type must be a StepType, got {type(step_type).__name__}")
        logger.debug(f"Registered step handler: {step_type}")
        self._handlers[step_type] = handler
        return self

    def get_handler(self, step_type: StepType) -> StepHandler | None:
        """Get the handler for a step type.

        Returns:
            Handler if registered, None otherwise
        """
        return self._handlers.get(step_type)

    def resolve(self, step: Step) -> StepHandler:
        """Find the handler for a step's declared type.

        Raises:
            InvalidConfigurationError: If the type is null, unknown or has no handler
        """
        if step.type is None:
            raise InvalidConfigurationError("Step type cannot be null")

        step_type = step.step_type
        if step_type is None:
            raise InvalidConfigurationError(f"Unknown step type: {step.type}")

        handler = self._handlers.get(step_type)
        if handler is None:
            raise InvalidConfigurationError(f"No handler registered for step type: {step_type}")
        return handler

    def __contains__(self, step_type: StepType) -> bool:
        return step_type in self._handlers

    def __len__(self) -> int:
        """Returns the number of registered step types."""
        return len(self._handlers)

    def is_empty(self) -> bool:
        """Returns True if no step types are registered."""
        return len(self._handlers) == 0


# =============================================================================
# Built-in handlers
# =============================================================================


async def collect_data(step_input: StepInput) -> dict[str, Any]:
    logger.info(f"Data collection completed for step: {step_input.step.name}")
    return {
        "dataCollected": True,
        "dataSize": "1.2GB",
        "dataFormat": "GeoTIFF",
        "dataSource": "Sentinel-2",
    }


async def preprocess(step_input: StepInput) -> dict[str, Any]:
    logger.info(f"Preprocessing completed for step: {step_input.step.name}")
    return {
        "preprocessingCompleted": True,
        "cloudMasking": True,
        "atmosphericCorrection": True,
        "geometricCorrection": True,
    }


_ANALYSIS_BY_WORKFLOW_TYPE: dict[WorkflowType, dict[str, Any]] = {
    WorkflowType.ENVIRONMENTAL_MONITORING: {
        "analysisType": "Environmental Monitoring",
        "ndviMean": 0.65,
        "vegetationHealth": "Good",
        "anomaliesDetected": 2,
    },
    WorkflowType.PREDICTIVE_MAINTENANCE: {
        "analysisType": "Predictive Maintenance",
        "equipmentHealth": "Normal",
        "maintenanceRequired": False,
        "riskScore": 0.15,
    },
    WorkflowType.ANOMALY_DETECTION: {
        "analysisType": "Anomaly Detection",
        "anomaliesFound": 3,
        "confidenceScore": 0.87,
        "alertLevel": "Medium",
    },
}

_GENERIC_ANALYSIS = {"analysisType": "Generic Analysis", "analysisCompleted": True}


async def analyze(step_input: StepInput) -> dict[str, Any]:
    """AI analysis; the output is chosen by the workflow's type."""
    output = _ANALYSIS_BY_WORKFLOW_TYPE.get(step_input.workflow_type, _GENERIC_ANALYSIS)
    logger.info(f"AI analysis completed for step: {step_input.step.name}")
    return dict(output)


async def postprocess(step_input: StepInput) -> dict[str, Any]:
    logger.info(f"Postprocessing completed for step: {step_input.step.name}")
    return {
        "postprocessingCompleted": True,
        "reportGenerated": True,
        "visualizationCreated": True,
        "outputFormat": "PDF",
    }


async def notify(step_input: StepInput) -> dict[str, Any]:
    """Email notification.

    Recipients come from the comma separated workflow parameter
    "notificationRecipients" when set.
    """
    configured = step_input.parameters.get(RECIPIENTS_PARAMETER, "")
    recipients = [r.strip() for r in configured.split(",") if r.strip()]
    if not recipients:
        recipients = list(DEFAULT_RECIPIENTS)

    logger.info(f"Notification sent for step: {step_input.step.name}")
    return {
        "notificationSent": True,
        "notificationType": "Email",
        "recipients": recipients,
    }
