"""Validated handler adapter between a provider and an event consumer.

The provider calls the adapter with a raw :class:`EventMessage`; the adapter
runs the full consumer contract around it:

    validate payload → on_event → validate result → on_success
                             └── on failure → on_error → re-raise

Hook failures are logged and never replace the primary result or error.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from causeway.core.aio import maybe_await
from causeway.core.logging import bound_context, get_logger
from causeway.core.schema import validate_payload, validate_result
from causeway.events.consumer import error_hook, success_hook
from causeway.events.context import EventContext
from causeway.events.definition import EventDefinition
from causeway.events.message import EmitOptions, EventMessage
from causeway.events.subscription import EventSubscription

logger = get_logger(__name__)

EmitFn = Callable[..., EventSubscription[Any]]


class ValidatedEventHandler:
    """Callable subscribed on the provider for one consumer."""

    def __init__(self, definition: EventDefinition[Any, Any], consumer: Any, emit: EmitFn) -> None:
        self.definition = definition
        self.consumer = consumer
        self._emit = emit

    async def __call__(self, message: EventMessage) -> Any:
        name = self.definition.name
        data = validate_payload("event", name, self.definition.data_schema, message.payload)

        log = logger.bind(
            event_name=name,
            event_id=message.event_id,
            correlation_id=message.correlation_id,
        )
        ctx: EventContext[Any] = EventContext(
            event_id=message.event_id,
            event_name=name,
            data=data,
            log=log,
            correlation_id=message.correlation_id,
            causation_id=message.causation_id,
            meta=dict(message.meta),
            timestamp=message.timestamp,
            _emit=self._chained_emit(message),
        )

        with bound_context(correlation_id=message.correlation_id, event_id=message.event_id):
            try:
                result = await maybe_await(self.consumer.on_event(ctx))
                validate_result("event", name, self.definition.result_schema, result)
            except Exception as error:
                log.debug("event_handler_failed", error=str(error), error_type=type(error).__name__)
                await self._run_hook("on_error", error_hook(self.consumer), ctx, error)
                raise
            await self._run_hook("on_success", success_hook(self.consumer), ctx, result)
        return result

    def _chained_emit(self, message: EventMessage) -> Callable[..., EventSubscription[Any]]:
        meta = {**message.meta, "correlation_id": message.correlation_id}

        def emit(event: Any, payload: Any, *, delay: float | None = None) -> EventSubscription[Any]:
            return self._emit(
                event,
                payload,
                meta=meta,
                options=EmitOptions(delay=delay, causation_id=message.event_id),
            )

        return emit

    async def _run_hook(self, hook_name: str, hook: Any, ctx: EventContext[Any], arg: Any) -> None:
        if hook is None:
            return
        try:
            await maybe_await(hook(ctx, arg))
        except Exception as exc:
            ctx.log.warning("event_hook_failed", hook=hook_name, error=str(exc))


__all__ = ["ValidatedEventHandler"]
