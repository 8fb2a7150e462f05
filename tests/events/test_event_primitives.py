"""Tests for event definitions, messages, subscriptions and idempotency."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime

import pytest
from pydantic import BaseModel

from causeway.core.errors import DefinitionError, WaitTimeoutError
from causeway.events import EmitOptions, EventIdempotency, EventMessage, EventSubscription, define_event


class OrderPlaced(BaseModel):
    order_id: str
    total: float


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ── Definitions ──────────────────────────────────────────────────────


class TestDefineEvent:
    def test_fields(self):
        definition = define_event("order.placed", data=OrderPlaced, result=bool)
        assert definition.name == "order.placed"
        assert definition.data_schema is OrderPlaced
        assert definition.result_schema is bool

    def test_result_defaults_to_none(self):
        assert define_event("order.shipped", data=dict).result_schema is None

    def test_frozen(self):
        definition = define_event("order.placed", data=OrderPlaced)
        with pytest.raises(dataclasses.FrozenInstanceError):
            definition.name = "other"

    def test_empty_name_rejected(self):
        with pytest.raises(DefinitionError):
            define_event("  ", data=dict)

    def test_equal_definitions(self):
        assert define_event("a", data=int) == define_event("a", data=int)
        assert define_event("a", data=int) != define_event("a", data=str)


# ── Messages ─────────────────────────────────────────────────────────


class TestEventMessage:
    def test_ids_generated(self):
        first = EventMessage(event_name="a", payload={}, correlation_id="c1")
        second = EventMessage(event_name="a", payload={}, correlation_id="c1")
        assert first.event_id != second.event_id
        assert first.timestamp.tzinfo is not None

    def test_to_dict_serialises_payload_and_timestamp(self):
        message = EventMessage(
            event_name="order.placed",
            payload=OrderPlaced(order_id="o-1", total=9.5),
            correlation_id="c1",
            causation_id="evt-0",
            timestamp=datetime(2024, 5, 1, tzinfo=UTC),
        )
        data = message.to_dict()
        assert data["payload"] == {"order_id": "o-1", "total": 9.5}
        assert data["timestamp"] == "2024-05-01T00:00:00+00:00"

        restored = EventMessage.from_dict(data)
        assert restored.event_id == message.event_id
        assert restored.causation_id == "evt-0"
        assert restored.timestamp == message.timestamp

    def test_emit_options_defaults(self):
        options = EmitOptions()
        assert options.delay is None
        assert options.causation_id is None
        assert options.idempotency_key is None


# ── Subscriptions ────────────────────────────────────────────────────


class TestEventSubscription:
    @pytest.mark.asyncio
    async def test_resolve(self):
        sub = EventSubscription("evt-1", "c1")
        assert not sub.done
        sub.resolve({"ok": True})
        assert sub.done
        assert await sub.wait() == {"ok": True}

    @pytest.mark.asyncio
    async def test_reject(self):
        sub = EventSubscription("evt-1", "c1")
        sub.reject(ValueError("boom"))
        with pytest.raises(ValueError, match="boom"):
            await sub.wait()

    @pytest.mark.asyncio
    async def test_first_settlement_wins(self):
        sub = EventSubscription("evt-1", "c1")
        sub.resolve(1)
        sub.resolve(2)
        sub.reject(ValueError("late"))
        assert await sub == 1

    @pytest.mark.asyncio
    async def test_wait_timeout(self):
        sub = EventSubscription("evt-1", "c1")
        with pytest.raises(WaitTimeoutError, match="evt-1"):
            await sub.wait(timeout=0.01)
        assert not sub.done

    @pytest.mark.asyncio
    async def test_wait_can_be_repeated_after_timeout(self):
        sub = EventSubscription("evt-1", "c1")
        with pytest.raises(WaitTimeoutError):
            await sub.wait(timeout=0.01)
        asyncio.get_running_loop().call_later(0.01, sub.resolve, "late")
        assert await sub.wait(timeout=1) == "late"


# ── Idempotency ──────────────────────────────────────────────────────


class TestEventIdempotency:
    def test_mark_and_check(self):
        seen = EventIdempotency(ttl=60)
        assert not seen.is_processed("evt-1")
        seen.mark_processed("evt-1")
        assert seen.is_processed("evt-1")
        assert len(seen) == 1

    def test_expiry(self):
        clock = FakeClock()
        seen = EventIdempotency(ttl=60, clock=clock)
        seen.mark_processed("evt-1")
        clock.now = 61
        assert not seen.is_processed("evt-1")

    def test_max_size_evicts_oldest(self):
        seen = EventIdempotency(max_size=2)
        for key in ("a", "b", "c"):
            seen.mark_processed(key)
        assert not seen.is_processed("a")
        assert seen.is_processed("b")
        assert seen.is_processed("c")

    def test_expired_keys_pruned_on_write(self):
        clock = FakeClock()
        seen = EventIdempotency(ttl=10, clock=clock)
        seen.mark_processed("old")
        clock.now = 20
        seen.mark_processed("new")
        assert len(seen) == 1

    def test_claim(self):
        seen = EventIdempotency()
        assert seen.claim("k") is True
        assert seen.claim("k") is False

    def test_invalid_max_size(self):
        with pytest.raises(ValueError):
            EventIdempotency(max_size=0)
