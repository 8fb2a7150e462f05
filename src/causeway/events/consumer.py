"""Event consumer protocol.

Only ``on_event`` is required. ``on_success`` and ``on_error`` are optional
capabilities detected with ``getattr``; any of the three may be sync or async.

Example::

    class SendReceipt:
        def __init__(self, mailer):
            self.mailer = mailer

        async def on_event(self, ctx: EventContext[OrderPlaced]) -> bool:
            await self.mailer.send(ctx.data.order_id)
            return True

        def on_error(self, ctx, error):
            ctx.log.warning("receipt_failed", error=str(error))
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from causeway.events.context import EventContext


@runtime_checkable
class EventConsumer(Protocol):
    def on_event(self, ctx: EventContext[Any]) -> Any: ...


def success_hook(consumer: Any) -> Any:
    return getattr(consumer, "on_success", None)


def error_hook(consumer: Any) -> Any:
    return getattr(consumer, "on_error", None)


__all__ = ["EventConsumer", "success_hook", "error_hook"]
