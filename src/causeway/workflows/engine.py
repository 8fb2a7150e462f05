"""
Step execution and rollback engine.

Manifesto:
    A workflow either produces a fully validated result or rolls back what
    it did and reports the error that caused the failure. Compensation is
    driven by an explicit stack of completed steps, never by recursion, so
    the order is strictly the reverse of completion and a failing rollback
    cannot stop the cascade.

Architecture:
    ::

        for group in definition.step_groups:          (strictly in order)
            SEQUENTIAL: execute(step)
            PARALLEL:   execute(all members) concurrently, wait for ALL to settle
            │
            ├─ success → results[step] = output; completed.push(step)
            │            (parallel: in settlement order, even if a sibling failed)
            └─ any failure, once the group has settled:
                   while completed: step = completed.pop(); rollback(step)
                       └─ rollback raised → RollbackError logged + collected, continue
                   raise StepExecutionError(failed_step, original_error)

    The step that failed is never rolled back: it never completed.

Guardrails:
    Rollback handlers should be idempotent. A flow that is replayed by
    hand after a partial run may compensate the same step twice.

Tags:
    causeway, workflows, saga, rollback, compensation, asyncio

Doc-Types:
    - API Reference
    - Architecture
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from causeway.core.aio import maybe_await
from causeway.core.errors import ConsumerConfigurationError, RollbackError, StepExecutionError
from causeway.core.logging import get_logger
from causeway.core.schema import validate_step_output
from causeway.workflows.context import StepContext, WorkflowContext
from causeway.workflows.definition import StepDefinition, StepGroup, StepKind, WorkflowDefinition

logger = get_logger(__name__)


@dataclass
class FlowRun:
    """Mutable state of one flow while the engine walks its groups."""

    flow_id: str
    definition: WorkflowDefinition[Any, Any]
    handlers: Mapping[str, Any]
    data: Any
    correlation_id: str
    log: Any = None
    meta: dict[str, Any] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    failed_step: str | None = None
    rollback_errors: list[RollbackError] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.log is None:
            self.log = logger

    def step_context(
        self,
        step_name: str,
        *,
        results: Mapping[str, Any] | None = None,
        rollback: bool = False,
    ) -> StepContext[Any]:
        return StepContext(
            flow_id=self.flow_id,
            workflow_name=self.definition.name,
            step_name=step_name,
            data=self.data,
            results=results if results is not None else MappingProxyType(dict(self.results)),
            log=self.log.bind(step=step_name),
            correlation_id=self.correlation_id,
            meta=self.meta,
            rollback=rollback,
        )

    def workflow_context(self) -> WorkflowContext[Any]:
        return WorkflowContext(
            flow_id=self.flow_id,
            workflow_name=self.definition.name,
            data=self.data,
            results=MappingProxyType(dict(self.results)),
            log=self.log,
            correlation_id=self.correlation_id,
            meta=self.meta,
            failed_step=self.failed_step,
            rollback_errors=tuple(self.rollback_errors),
        )


@dataclass
class SettledStep:
    step: StepDefinition
    output: Any = None
    error: Exception | None = None


class StepEngine:
    """Walks a definition's step groups for one :class:`FlowRun`.

    Args:
        parallel_concurrency: Optional cap on members of one parallel group
            running at once. ``None`` starts every member together.
    """

    def __init__(self, *, parallel_concurrency: int | None = None) -> None:
        if parallel_concurrency is not None and parallel_concurrency < 1:
            raise ValueError("parallel_concurrency must be >= 1")
        self.parallel_concurrency = parallel_concurrency

    async def run(self, run: FlowRun) -> dict[str, Any]:
        """Execute every group; returns the recorded step outputs.

        Raises:
            StepExecutionError: after rollback, wrapping the first failure
                (settlement order) of the failing group
        """
        completed: list[StepDefinition] = []
        for group in run.definition.step_groups:
            if group.kind is StepKind.SEQUENTIAL:
                snapshot = MappingProxyType(dict(run.results))
                settled = [await self._settle(run, group.steps[0], snapshot)]
            else:
                settled = await self._run_parallel(run, group)

            failures: list[SettledStep] = []
            for outcome in settled:
                if outcome.error is None:
                    run.results[outcome.step.name] = outcome.output
                    completed.append(outcome.step)
                else:
                    failures.append(outcome)

            if failures:
                first = failures[0]
                run.failed_step = first.step.name
                await self.rollback(run, completed)
                raise StepExecutionError(first.step.name, first.error)
        return dict(run.results)

    async def _run_parallel(self, run: FlowRun, group: StepGroup) -> list[SettledStep]:
        snapshot = MappingProxyType(dict(run.results))
        limit = (
            asyncio.Semaphore(self.parallel_concurrency)
            if self.parallel_concurrency is not None
            else contextlib.nullcontext()
        )
        settled: list[SettledStep] = []

        async def run_member(step: StepDefinition) -> None:
            async with limit:
                outcome = await self._settle(run, step, snapshot)
            settled.append(outcome)

        run.log.debug("workflow.parallel.start", steps=[step.name for step in group.steps])
        await asyncio.gather(*(run_member(step) for step in group.steps))
        return settled

    async def _settle(
        self, run: FlowRun, step: StepDefinition, snapshot: Mapping[str, Any]
    ) -> SettledStep:
        handler = run.handlers.get(step.name)
        try:
            if handler is None:
                raise ConsumerConfigurationError(
                    run.definition.name, f'no handler for step "{step.name}"'
                )
            output = await maybe_await(handler.execute(run.step_context(step.name, results=snapshot)))
            validate_step_output(run.definition.name, step.name, step.output_schema, output)
        except Exception as exc:
            run.log.warning("workflow.step.failed", step=step.name, error=str(exc))
            return SettledStep(step, error=exc)
        run.log.debug("workflow.step.completed", step=step.name)
        return SettledStep(step, output=output)

    async def rollback(self, run: FlowRun, completed: list[StepDefinition]) -> None:
        """Pop ``completed`` and compensate each step, most recent first."""
        if not completed:
            return
        run.log.info("workflow.rollback.start", steps=[step.name for step in reversed(completed)])
        snapshot = MappingProxyType(dict(run.results))
        while completed:
            step = completed.pop()
            handler = run.handlers.get(step.name)
            compensate = getattr(handler, "rollback", None)
            if compensate is None:
                continue
            try:
                await maybe_await(
                    compensate(run.step_context(step.name, results=snapshot, rollback=True))
                )
            except Exception as exc:
                run.rollback_errors.append(RollbackError(step.name, exc))
                run.log.error("workflow.rollback.failed", step=step.name, error=str(exc))
            else:
                run.log.debug("workflow.rollback.step_completed", step=step.name)
        run.log.info("workflow.rollback.complete", failures=len(run.rollback_errors))


__all__ = ["FlowRun", "SettledStep", "StepEngine"]
