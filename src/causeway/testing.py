"""Test harness: provider doubles and step-call recording.

Test doubles:
  RecordingEventProvider    → in-process provider that records subscribe/emit calls
  SlowEventProvider         → in-process provider that delays every delivery
  RecordingWorkflowProvider → in-process provider that records consumer/emitter registration

Helpers:
  StepRecorder              → builds step handlers that log "step-execute" /
                              "step-rollback" calls and fail on demand

Example::

    from causeway.testing import RecordingEventProvider

    provider = RecordingEventProvider()
    coordinator = EventCoordinator(provider=provider)
    coordinator.register_definition(ORDER_SHIPPED)    # emitter-only
    coordinator.register_consumers()
    assert provider.subscription_count == 0
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from causeway.events.memory import InProcessEventProvider
from causeway.events.message import EmitOptions, EventMessage
from causeway.events.provider import MessageHandler
from causeway.events.subscription import EventSubscription
from causeway.workflows.consumer import StepHandler
from causeway.workflows.context import StepContext
from causeway.workflows.definition import WorkflowDefinition
from causeway.workflows.memory import InProcessFlowHandle, InProcessWorkflowProvider
from causeway.workflows.provider import FlowRunnerFn


@dataclass(frozen=True)
class EmitCall:
    name: str
    payload: Any
    meta: dict[str, Any]
    options: EmitOptions | None


class RecordingEventProvider(InProcessEventProvider):
    """In-process provider recording every subscribe and emit."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.subscribed_names: list[str] = []
        self.emitted: list[EmitCall] = []
        self.subscriptions_returned: list[EventSubscription[Any]] = []

    def subscribe(self, name: str, handler: MessageHandler) -> str:
        self.subscribed_names.append(name)
        return super().subscribe(name, handler)

    def emit(
        self,
        name: str,
        payload: Any,
        meta: dict[str, Any] | None = None,
        options: EmitOptions | None = None,
    ) -> EventSubscription[Any]:
        self.emitted.append(EmitCall(name, payload, dict(meta or {}), options))
        subscription = super().emit(name, payload, meta, options)
        self.subscriptions_returned.append(subscription)
        return subscription

    def emitted_names(self) -> list[str]:
        return [call.name for call in self.emitted]


class SlowEventProvider(InProcessEventProvider):
    """In-process provider whose handlers never finish quickly.

    Each handler waits ``processing_delay`` seconds before running, which
    shakes out code that assumes an emitted event is handled by the time
    ``emit`` returns.
    """

    def __init__(self, processing_delay: float = 0.05, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.processing_delay = processing_delay

    def subscribe(self, name: str, handler: MessageHandler) -> str:
        async def delayed(message: EventMessage) -> Any:
            await asyncio.sleep(self.processing_delay)
            return await handler(message)

        return super().subscribe(name, delayed)


class RecordingWorkflowProvider(InProcessWorkflowProvider):
    """In-process workflow provider recording registration and execution."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.registered_consumers: list[str] = []
        self.registered_emitters: list[str] = []
        self.executed: list[str] = []

    def register_consumer(self, name: str, runner: FlowRunnerFn) -> None:
        self.registered_consumers.append(name)
        super().register_consumer(name, runner)

    def register_emitter(self, name: str) -> None:
        self.registered_emitters.append(name)
        super().register_emitter(name)

    async def execute(
        self,
        definition: WorkflowDefinition[Any, Any],
        data: Any,
        meta: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> InProcessFlowHandle:
        self.executed.append(definition.name)
        return await super().execute(definition, data, meta, timeout)


@dataclass
class StepRecorder:
    """Shared call log for step handlers built with :meth:`handlers`.

    Example::

        recorder = StepRecorder()
        steps = recorder.handlers(
            ["validate", "charge", "notify"],
            fail={"charge": ValueError("insufficient funds")},
        )
        ...
        assert recorder.calls == ["validate-execute", "charge-execute", "validate-rollback"]
    """

    calls: list[str] = field(default_factory=list)
    contexts: list[StepContext[Any]] = field(default_factory=list)

    def handlers(
        self,
        names: Iterable[str],
        *,
        fail: Mapping[str, Exception] | None = None,
        fail_rollback: Mapping[str, Exception] | None = None,
        outputs: Mapping[str, Any] | None = None,
        delays: Mapping[str, float] | None = None,
        without_rollback: Iterable[str] = (),
    ) -> dict[str, StepHandler]:
        fail = fail or {}
        fail_rollback = fail_rollback or {}
        outputs = outputs or {}
        delays = delays or {}
        no_rollback = set(without_rollback)

        def make(name: str) -> StepHandler:
            async def execute(ctx: StepContext[Any]) -> Any:
                if name in delays:
                    await asyncio.sleep(delays[name])
                self.calls.append(f"{name}-execute")
                self.contexts.append(ctx)
                if name in fail:
                    raise fail[name]
                return outputs.get(name, {"step": name})

            async def rollback(ctx: StepContext[Any]) -> None:
                self.calls.append(f"{name}-rollback")
                if name in fail_rollback:
                    raise fail_rollback[name]

            return StepHandler(execute, None if name in no_rollback else rollback)

        return {name: make(name) for name in names}

    def executed(self) -> list[str]:
        return [call.removesuffix("-execute") for call in self.calls if call.endswith("-execute")]

    def rolled_back(self) -> list[str]:
        return [call.removesuffix("-rollback") for call in self.calls if call.endswith("-rollback")]


__all__ = [
    "EmitCall",
    "RecordingEventProvider",
    "SlowEventProvider",
    "RecordingWorkflowProvider",
    "StepRecorder",
]
