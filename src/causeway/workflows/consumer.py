"""Workflow consumer protocol and step handlers.

A consumer must implement ``on_complete``. ``steps`` (a mapping of step name
to :class:`StepHandler`) is required when the definition declares steps, and
``on_error`` is optional. All callables may be sync or async.

Rollback handlers should be idempotent: a flow replayed by hand after a
partial run can compensate the same step more than once.

Example::

    class FulfilOrder:
        def __init__(self, payments):
            self.steps = {
                "validate": StepHandler(self.validate),
                "charge": StepHandler(payments.charge, rollback=payments.refund),
                "notify": StepHandler(self.notify),
            }

        def on_complete(self, ctx: WorkflowContext[Order]) -> Receipt:
            return Receipt(charge_id=ctx.results["charge"]["id"])
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from causeway.workflows.context import StepContext, WorkflowContext

StepFn = Callable[[StepContext[Any]], Any]


@dataclass(frozen=True)
class StepHandler:
    """Behaviour for one step: ``execute`` and an optional compensating ``rollback``."""

    execute: StepFn
    rollback: StepFn | None = None


@runtime_checkable
class WorkflowConsumer(Protocol):
    def on_complete(self, ctx: WorkflowContext[Any]) -> Any: ...


def step_handlers(consumer: Any) -> Mapping[str, StepHandler] | None:
    return getattr(consumer, "steps", None)


def error_hook(consumer: Any) -> Any:
    return getattr(consumer, "on_error", None)


__all__ = ["StepFn", "StepHandler", "WorkflowConsumer", "step_handlers", "error_hook"]
