"""
Redis-backed event provider.

Manifesto:
    Multi-node deployments need events to cross process boundaries, and a
    request/response emit needs its result to find its way back to the
    emitting instance. Lists give at-most-once work queues (BLPOP removes
    an entry before its handler runs, so a worker that dies mid-event drops
    it); a pub/sub channel carries completions back.

Architecture:
    ::

        emit() ──► SET NX {prefix}:events:idem:{key}        (optional dedup)
               ├─► RPUSH {prefix}:events:{name}              (immediate)
               └─► ZADD  {prefix}:events:delayed  score=due  (delayed)
                        │
                   scheduler: ZRANGEBYSCORE + ZREM → RPUSH

        worker (one per *subscribed* name only)
               BLPOP {prefix}:events:{name} → handler
               └─► PUBLISH {prefix}:events:completed {event_id, status, result|error}

        listener (every instance)
               SUBSCRIBE {prefix}:events:completed → settle local EventSubscription

    Emitter-only instances never start a worker, so they never pop work
    they cannot handle. An entry pushed twice (a manual replay, say) is
    handled once per process: seen event ids are skipped with
    :class:`EventIdempotency`.

Requires: ``pip install redis`` or ``causeway[redis]``

Tags:
    causeway, events, redis, queues, pub-sub, multi-node, import-guarded

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from causeway.core.errors import (
    ErrorContext,
    ProviderError,
    ProviderNotStartedError,
    ProviderStoppedError,
    RemoteExecutionError,
    WaitTimeoutError,
)
from causeway.core.logging import get_logger
from causeway.core.schema import to_jsonable
from causeway.events.idempotency import EventIdempotency
from causeway.events.message import EmitOptions, EventMessage, new_correlation_id
from causeway.events.provider import MessageHandler
from causeway.events.subscription import EventSubscription

__all__ = ["RedisEventProvider"]


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    name: str
    handler: MessageHandler


class RedisEventProvider:
    """Redis list/pub-sub provider for multi-node deployments.

    Example::

        provider = RedisEventProvider("redis://localhost:6379/0", prefix="orders")
        provider.subscribe("order.placed", handle_order)
        await provider.start()
        result = await provider.emit("order.placed", {"order_id": "o-1"}).wait(timeout=10)

    Subscriptions for events nobody consumes never settle on their own; wait
    with a timeout. The scheduler rejects any subscription still unsettled
    ``completion_ttl`` seconds after it became due, which bounds the pending
    map.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "causeway",
        block_timeout: float = 1.0,
        poll_interval: float = 0.5,
        idempotency_ttl: float = 300.0,
        completion_ttl: float = 300.0,
        client: Any = None,
    ) -> None:
        self._redis_url = redis_url
        self._prefix = prefix
        self._block_timeout = block_timeout
        self._poll_interval = poll_interval
        self._idempotency_ttl = idempotency_ttl
        self._completion_ttl = completion_ttl
        self._redis: Any = client
        self._owns_client = client is None
        self._pubsub: Any = None
        self._subscriptions: dict[str, Subscription] = {}
        self._pending: dict[str, EventSubscription[Any]] = {}
        self._deadlines: dict[str, float] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._background: list[asyncio.Task[None]] = []
        self._sends: set[asyncio.Task[Any]] = set()
        self._processed = EventIdempotency()
        self._started = False
        self._log = get_logger(__name__)

    # ── Keys ─────────────────────────────────────────────────────

    def queue_key(self, name: str) -> str:
        return f"{self._prefix}:events:{name}"

    @property
    def delayed_key(self) -> str:
        return f"{self._prefix}:events:delayed"

    @property
    def completion_channel(self) -> str:
        return f"{self._prefix}:events:completed"

    def idempotency_key(self, key: str) -> str:
        return f"{self._prefix}:events:idem:{key}"

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Connect, listen for completions and start workers for subscribed names."""
        if self._started:
            return
        if self._redis is None:
            try:
                import redis.asyncio as aioredis
            except ImportError as e:
                raise ImportError(
                    "redis package required for RedisEventProvider. "
                    "Install with: pip install causeway[redis]"
                ) from e
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)

        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.completion_channel)
        self._started = True

        self._background = [
            asyncio.create_task(self._listen()),
            asyncio.create_task(self._schedule_delayed()),
        ]
        for name in {sub.name for sub in self._subscriptions.values()}:
            self._ensure_worker(name)
        self._log.info("event_provider_started", provider="redis", workers=sorted(self._workers))

    async def stop(self) -> None:
        """Cancel workers, reject pending subscriptions and close connections."""
        if not self._started:
            return
        self._started = False

        tasks = [*self._workers.values(), *self._background, *self._sends]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._background.clear()

        for subscription in self._pending.values():
            subscription.reject(ProviderStoppedError("RedisEventProvider stopped before completion"))
        self._pending.clear()
        self._deadlines.clear()

        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        if self._owns_client and self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._log.info("event_provider_stopped", provider="redis")

    # ── Subscriptions ────────────────────────────────────────────

    def subscribe(self, name: str, handler: MessageHandler) -> str:
        sub_id = f"redis_sub_{uuid.uuid4().hex[:12]}"
        self._subscriptions[sub_id] = Subscription(id=sub_id, name=name, handler=handler)
        if self._started:
            self._ensure_worker(name)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def worker_names(self) -> list[str]:
        return sorted(self._workers)

    def _ensure_worker(self, name: str) -> None:
        if name not in self._workers:
            self._workers[name] = asyncio.create_task(self._work(name))

    def _handlers_for(self, name: str) -> list[MessageHandler]:
        return [sub.handler for sub in self._subscriptions.values() if sub.name == name]

    # ── Emission ─────────────────────────────────────────────────

    def emit(
        self,
        name: str,
        payload: Any,
        meta: dict[str, Any] | None = None,
        options: EmitOptions | None = None,
    ) -> EventSubscription[Any]:
        if not self._started:
            raise ProviderNotStartedError("RedisEventProvider")
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
        self._pending[message.event_id] = subscription
        self._deadlines[message.event_id] = (
            time.monotonic() + (options.delay or 0) + self._completion_ttl
        )
        self._spawn(self._send(message, subscription, options))
        return subscription

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _send(
        self,
        message: EventMessage,
        subscription: EventSubscription[Any],
        options: EmitOptions,
    ) -> None:
        try:
            if options.idempotency_key is not None:
                claimed = await self._redis.set(
                    self.idempotency_key(options.idempotency_key),
                    message.event_id,
                    nx=True,
                    ex=max(1, int(self._idempotency_ttl)),
                )
                if not claimed:
                    self._release(message.event_id)
                    subscription.resolve(None)
                    self._log.debug(
                        "event_deduplicated",
                        event_name=message.event_name,
                        idempotency_key=options.idempotency_key,
                    )
                    return

            body = json.dumps(message.to_dict())
            if options.delay:
                await self._redis.zadd(self.delayed_key, {body: time.time() + options.delay})
            else:
                await self._redis.rpush(self.queue_key(message.event_name), body)
            self._log.debug(
                "event_emitted",
                event_name=message.event_name,
                event_id=message.event_id,
                correlation_id=message.correlation_id,
                delay=options.delay,
            )
        except Exception as exc:
            self._release(message.event_id)
            subscription.reject(
                ProviderError(f'Failed to enqueue event "{message.event_name}"', cause=exc)
            )
            self._log.error("event_enqueue_failed", event_name=message.event_name, error=str(exc))

    # ── Workers ──────────────────────────────────────────────────

    async def _work(self, name: str) -> None:
        queue = self.queue_key(name)
        while True:
            try:
                item = await self._redis.blpop([queue], timeout=self._block_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.error("event_worker_error", event_name=name, error=str(e))
                await asyncio.sleep(self._poll_interval)
                continue
            if item is None:
                continue
            _, raw = item
            try:
                await self._process(name, raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.error("event_process_error", event_name=name, error=str(e))

    async def _process(self, name: str, raw: str) -> None:
        """Run the handlers for one raw queue entry and publish the outcome."""
        try:
            message = EventMessage.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            self._log.warning("event_parse_error", event_name=name, error=str(e))
            return

        if not self._processed.claim(message.event_id):
            self._log.debug("event_duplicate_skipped", event_name=name, event_id=message.event_id)
            return

        handlers = self._handlers_for(name)
        if not handlers:
            await self._publish_outcome(
                {"event_id": message.event_id, "status": "completed", "result": None}
            )
            return

        first, *rest = handlers
        for handler in rest:
            self._spawn(self._safe_call(handler, message))
        try:
            result = await first(message)
            outcome = {
                "event_id": message.event_id,
                "status": "completed",
                "result": to_jsonable(result),
            }
        except Exception as e:
            self._log.warning(
                "event_handler_error",
                event_name=name,
                event_id=message.event_id,
                error=str(e),
            )
            outcome = {
                "event_id": message.event_id,
                "status": "failed",
                "error": str(e),
                "error_type": type(e).__name__,
            }
        await self._publish_outcome(outcome)

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

    async def _publish_outcome(self, outcome: dict[str, Any]) -> None:
        await self._redis.publish(self.completion_channel, json.dumps(outcome))

    # ── Completions ──────────────────────────────────────────────

    async def _listen(self) -> None:
        """Background task settling local subscriptions from completions."""
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    outcome = json.loads(message["data"])
                except ValueError as e:
                    self._log.warning("event_completion_parse_error", error=str(e))
                    continue
                self._settle(outcome)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.error("event_listener_error", error=str(e))

    def _settle(self, outcome: dict[str, Any]) -> None:
        subscription = self._release(outcome.get("event_id"))
        if subscription is None:
            return
        if outcome.get("status") == "completed":
            subscription.resolve(outcome.get("result"))
        else:
            subscription.reject(
                RemoteExecutionError(
                    outcome.get("error") or "Remote handler failed",
                    error_type=outcome.get("error_type"),
                )
            )

    def _release(self, event_id: str | None) -> EventSubscription[Any] | None:
        self._deadlines.pop(event_id, None)
        return self._pending.pop(event_id, None)

    def expire_pending(self, now: float | None = None) -> int:
        """Reject subscriptions whose completion never arrived; returns how many."""
        now = time.monotonic() if now is None else now
        expired = [event_id for event_id, deadline in self._deadlines.items() if deadline <= now]
        for event_id in expired:
            subscription = self._release(event_id)
            if subscription is None:
                continue
            subscription.reject(
                WaitTimeoutError(
                    f'No completion for event "{event_id}" within {self._completion_ttl}s',
                    context=ErrorContext(event_id=event_id),
                )
            )
        if expired:
            self._log.debug("event_pending_expired", count=len(expired))
        return len(expired)

    # ── Delayed delivery ─────────────────────────────────────────

    async def _schedule_delayed(self) -> None:
        while True:
            try:
                await self.promote_due()
                self.expire_pending()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.error("event_scheduler_error", error=str(e))
            await asyncio.sleep(self._poll_interval)

    async def promote_due(self, now: float | None = None) -> int:
        """Move due delayed events onto their queues; returns how many moved.

        ``ZREM`` decides which instance moves an entry when several race.
        """
        now = time.time() if now is None else now
        due = await self._redis.zrangebyscore(self.delayed_key, "-inf", now)
        moved = 0
        for raw in due:
            if not await self._redis.zrem(self.delayed_key, raw):
                continue
            name = json.loads(raw)["event_name"]
            await self._redis.rpush(self.queue_key(name), raw)
            moved += 1
        return moved
