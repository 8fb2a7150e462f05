"""Flow runner: the consumer contract wrapped around the step engine.

One runner is built per workflow consumer and registered on the provider.
It is the only thing a provider ever calls, whether the flow was started by
this instance or by another one:

    validate data → engine (steps + rollback) → on_complete → validate result
                         └── on failure → on_error (once) → re-raise original
"""

from __future__ import annotations

from typing import Any

from causeway.core.aio import maybe_await
from causeway.core.errors import StepExecutionError
from causeway.core.logging import bound_context, get_logger
from causeway.core.schema import validate_payload, validate_result
from causeway.events.message import new_correlation_id
from causeway.workflows.consumer import error_hook, step_handlers
from causeway.workflows.definition import WorkflowDefinition
from causeway.workflows.engine import FlowRun, StepEngine
from causeway.workflows.provider import FlowRequest

logger = get_logger(__name__)


class FlowRunner:
    """Callable ``(FlowRequest) -> result`` for one consumer."""

    def __init__(
        self,
        definition: WorkflowDefinition[Any, Any],
        consumer: Any,
        *,
        engine: StepEngine | None = None,
    ) -> None:
        self.definition = definition
        self.consumer = consumer
        self.engine = engine or StepEngine()

    async def __call__(self, request: FlowRequest) -> Any:
        name = self.definition.name
        data = validate_payload("workflow", name, self.definition.data_schema, request.data)

        correlation_id = request.meta.get("correlation_id") or new_correlation_id()
        log = logger.bind(workflow=name, flow_id=request.flow_id, correlation_id=correlation_id)
        run = FlowRun(
            flow_id=request.flow_id,
            definition=self.definition,
            handlers=step_handlers(self.consumer) or {},
            data=data,
            correlation_id=correlation_id,
            log=log,
            meta=dict(request.meta),
        )

        failure: Exception | None = None
        with bound_context(correlation_id=correlation_id, flow_id=request.flow_id):
            log.info("workflow.start", step_count=len(self.definition.step_names))
            try:
                await self.engine.run(run)
                result = await maybe_await(self.consumer.on_complete(run.workflow_context()))
                validate_result("workflow", name, self.definition.result_schema, result)
            except StepExecutionError as exc:
                failure = exc.cause
            except Exception as exc:
                failure = exc

            if failure is not None:
                log.warning(
                    "workflow.failed",
                    failed_step=run.failed_step,
                    error=str(failure),
                    rollback_failures=len(run.rollback_errors),
                )
                await self._notify_error(run, failure)

        if failure is not None:
            raise failure
        log.info("workflow.complete", completed_steps=len(run.results))
        return result

    async def _notify_error(self, run: FlowRun, error: Exception) -> None:
        hook = error_hook(self.consumer)
        if hook is None:
            return
        try:
            await maybe_await(hook(run.workflow_context(), error))
        except Exception as exc:
            run.log.warning("workflow.on_error_failed", error=str(exc))


__all__ = ["FlowRunner"]
