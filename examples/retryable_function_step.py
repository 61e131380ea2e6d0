"""
Step Failures and Retries

Shows the two ways a step reacts to trouble.

Scenario:
- A custom AI_ANALYSIS handler fails once with a transient error
- A LAMBDA_FUNCTION step calls a function that rejects its input

Behavior:
- A handler that raises gets one immediate retry (retry_count goes to 1)
- retry_count is stored with the step, so the budget spans executions
- A failed function invocation does not fail the step: the step completes
  with success=False and the error in its output

Run:
    PYTHONPATH=src python examples/retryable_function_step.py
"""

import asyncio
import json
import logging

from pygeoflow import (
    HandlerRegistry,
    InMemoryStore,
    LocalFunctionInvoker,
    RemoteInvocationError,
    ResultRecorder,
    Step,
    StepExecutor,
    StepType,
    Workflow,
    WorkflowRunner,
    WorkflowService,
    WorkflowType,
)

logging.basicConfig(level=logging.WARNING)

# Evidence
ANALYSIS_CALLS = 0


async def flaky_analysis(step_input):
    global ANALYSIS_CALLS
    ANALYSIS_CALLS += 1
    if ANALYSIS_CALLS == 1:
        raise ConnectionError("model server warming up")
    return {"analysisType": "Change Detection", "changedArea": 0.042, "confidenceScore": 0.91}


def strict(payload: str) -> str:
    raise RemoteInvocationError("strict", "payload rejected: missing bbox", retryable=False)


async def main():
    store = InMemoryStore()
    invoker = LocalFunctionInvoker().register("strict", strict)
    registry = HandlerRegistry.default(invoker).register(StepType.AI_ANALYSIS, flaky_analysis)
    runner = WorkflowRunner(store, store, StepExecutor(registry), ResultRecorder(store, store))
    service = WorkflowService(store, store, runner)

    workflow = await service.create(
        Workflow(
            name="Quarry change detection",
            type=WorkflowType.CHANGE_DETECTION,
            steps=[
                Step(name="collect", type="DATA_COLLECTION"),
                Step(name="analyze", type="AI_ANALYSIS"),
                Step(name="export", type="LAMBDA_FUNCTION", configuration="strict"),
            ],
        )
    )

    result = await service.execute(workflow.id)
    stored = await service.get(workflow.id)

    print(f"result={result.status} confidence={result.confidence_score}")
    for step, step_result in zip(stored.steps, result.result_data["stepResults"]):
        print(f"  {step.name:<8} status={step.status} retries={step.retry_count}/{step.max_retries}")
        if step.name == "export":
            print(f"           {json.dumps({k: step_result[k] for k in ('success', 'error')})}")
    print(f"analysis handler was called {ANALYSIS_CALLS} times")


if __name__ == "__main__":
    asyncio.run(main())
