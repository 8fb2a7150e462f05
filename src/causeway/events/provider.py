"""Event provider protocol.

Coordinators depend only on this interface; the in-process provider, the
Redis provider and test doubles are interchangeable behind it. ``emit`` may
return before the event is processed anywhere: results always arrive through
the returned :class:`EventSubscription`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from causeway.events.message import EmitOptions, EventMessage
from causeway.events.subscription import EventSubscription

MessageHandler = Callable[[EventMessage], Awaitable[Any]]


@runtime_checkable
class EventProvider(Protocol):
    def emit(
        self,
        name: str,
        payload: Any,
        meta: dict[str, Any] | None = None,
        options: EmitOptions | None = None,
    ) -> EventSubscription[Any]:
        """Hand an event to the transport; returns a waitable handle."""
        ...

    def subscribe(self, name: str, handler: MessageHandler) -> str:
        """Route events named ``name`` to ``handler``; returns a subscription id."""
        ...

    async def start(self) -> None:
        """Bring the provider up. Idempotent."""
        ...

    async def stop(self) -> None:
        """Tear the provider down. Idempotent."""
        ...


__all__ = ["EventProvider", "MessageHandler"]
