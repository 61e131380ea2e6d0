"""
Per-step input passed to step handlers.

Design: Immutable input, explicit merge on output
Each handler receives a frozen StepInput whose `context` is a read-only
snapshot of everything earlier steps produced. Handlers return a delta
dict; the WorkflowRunner merges it into its own context after the step
succeeds. Handlers therefore cannot alias or mutate another step's data.

Example:
    ```python
    async def count_tiles(step_input: StepInput) -> dict[str, Any]:
        size = step_input.context.get("dataSize")
        return {"tileCount": 12, "basedOn": size}
    ```
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pygeoflow.models import Step, Workflow, WorkflowType


@dataclass(frozen=True)
class StepInput:
    """Everything a handler may read while executing one step."""

    workflow_id: str
    workflow_name: str
    workflow_type: WorkflowType | None
    """The workflow's type, not the step's. AI_ANALYSIS output depends on it."""

    step: Step
    context: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    """Read-only snapshot of the accumulated outputs of earlier steps."""

    parameters: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def for_step(cls, workflow: Workflow, step: Step, context: Mapping[str, Any]) -> StepInput:
        """Build the input for a step, snapshotting the current context."""
        return cls(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            workflow_type=workflow.type,
            step=step,
            context=MappingProxyType(dict(context)),
            parameters=MappingProxyType(dict(workflow.parameters)),
        )
