"""
In-process event provider.

Manifesto:
    Single-process deployments and test suites need a provider that behaves
    like a real transport without infrastructure. Deliveries therefore never
    run inline with ``emit``: each one gets its own asyncio task, so code
    that accidentally relies on synchronous handling fails here too.

Behaviour:
    - The first subscribed handler's result settles the subscription; other
      handlers for the same name run fire-and-forget with failures logged
    - An event nobody subscribed to resolves ``None``
    - ``EmitOptions.delay`` postpones delivery with ``asyncio.sleep``
    - ``EmitOptions.idempotency_key`` deduplicates within ``idempotency_ttl``
    - ``stop()`` cancels pending deliveries and rejects their subscriptions
      with :class:`ProviderStoppedError`

Tags:
    causeway, events, in-memory, asyncio, testing, single-node

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from causeway.core.errors import ProviderStoppedError
from causeway.core.logging import get_logger
from causeway.events.idempotency import EventIdempotency
from causeway.events.message import EmitOptions, EventMessage, new_correlation_id
from causeway.events.provider import MessageHandler
from causeway.events.subscription import EventSubscription

__all__ = ["InProcessEventProvider"]


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    name: str
    handler: MessageHandler


class InProcessEventProvider:
    """Provider delivering events to handlers in the current event loop.

    Example::

        provider = InProcessEventProvider()
        provider.subscribe("order.placed", handle_order)
        await provider.start()
        result = await provider.emit("order.placed", {"order_id": "o-1"}).wait()
    """

    def __init__(self, *, idempotency_ttl: float = 300.0) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._idempotency = EventIdempotency(ttl=idempotency_ttl)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._started = False
        self._log = get_logger(__name__)

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._log.debug("event_provider_started", provider="in_process")

    async def stop(self) -> None:
        if not self._started and not self._tasks:
            return
        self._started = False
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._idempotency.clear()
        self._log.debug("event_provider_stopped", provider="in_process", cancelled=len(pending))

    # ── Subscriptions ────────────────────────────────────────────

    def subscribe(self, name: str, handler: MessageHandler) -> str:
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        self._subscriptions[sub_id] = Subscription(id=sub_id, name=name, handler=handler)
        self._log.debug("event_subscribed", event_name=name, subscription_id=sub_id)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)

    def handler_count(self, name: str) -> int:
        return sum(1 for sub in self._subscriptions.values() if sub.name == name)

    # ── Emission ─────────────────────────────────────────────────

    def emit(
        self,
        name: str,
        payload: Any,
        meta: dict[str, Any] | None = None,
        options: EmitOptions | None = None,
    ) -> EventSubscription[Any]:
        options = options or EmitOptions()
        meta = dict(meta or {})
        message = EventMessage(
            event_name=name,
            payload=payload,
            correlation_id=meta.get("correlation_id") or new_correlation_id(),
            causation_id=options.causation_id or meta.get("causation_id"),
            meta=meta,
        )
        subscription: EventSubscription[Any] = EventSubscription(
            message.event_id, message.correlation_id
        )

        if options.idempotency_key is not None and not self._idempotency.claim(
            options.idempotency_key
        ):
            self._log.debug(
                "event_deduplicated",
                event_name=name,
                idempotency_key=options.idempotency_key,
            )
            subscription.resolve(None)
            return subscription

        self._spawn(self._deliver(message, subscription, options.delay))
        self._log.debug(
            "event_emitted",
            event_name=name,
            event_id=message.event_id,
            correlation_id=message.correlation_id,
            delay=options.delay,
        )
        return subscription

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(
        self,
        message: EventMessage,
        subscription: EventSubscription[Any],
        delay: float | None,
    ) -> None:
        try:
            if delay:
                await asyncio.sleep(delay)
            handlers = [
                sub.handler
                for sub in self._subscriptions.values()
                if sub.name == message.event_name
            ]
            if not handlers:
                subscription.resolve(None)
                return
            first, *rest = handlers
            for handler in rest:
                self._spawn(self._safe_call(handler, message))
            result = await first(message)
        except asyncio.CancelledError:
            subscription.reject(
                ProviderStoppedError(f'Delivery of "{message.event_name}" cancelled by stop()')
            )
            raise
        except Exception as exc:
            subscription.reject(exc)
        else:
            subscription.resolve(result)

    async def _safe_call(self, handler: MessageHandler, message: EventMessage) -> None:
        try:
            await handler(message)
        except Exception as e:
            self._log.warning(
                "event_handler_error",
                event_name=message.event_name,
                event_id=message.event_id,
                error=str(e),
            )
