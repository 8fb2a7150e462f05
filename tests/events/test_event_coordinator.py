"""Tests for causeway.events.coordinator: registration, emission, causality and hooks."""

from __future__ import annotations

import pytest

from causeway.container import Container
from causeway.core.errors import (
    DuplicateRegistrationError,
    NotConfiguredError,
    PayloadValidationError,
    RegistrationError,
    ResultValidationError,
    UnregisteredDefinitionError,
)
from causeway.core.logging import bound_context
from causeway.events import EmitOptions, EventCoordinator, InProcessEventProvider, define_event
from causeway.testing import RecordingEventProvider


class AcceptOrder:
    def __init__(self) -> None:
        self.seen = []
        self.returned = []

    async def on_event(self, ctx):
        self.seen.append(ctx)
        result = {"status": "accepted", "orderId": ctx.data["orderId"]}
        self.returned.append(result)
        return result


class RecordShipment:
    def __init__(self) -> None:
        self.seen = []

    async def on_event(self, ctx):
        self.seen.append(ctx)


class Mailer:
    pass


class SendReceipt:
    def __init__(self, mailer: Mailer) -> None:
        self.mailer = mailer

    def on_event(self, ctx):
        return {"status": "sent", "orderId": ctx.data["orderId"]}


class HookedConsumer:
    def __init__(self, *, fail=None, result=None, hook_error=None) -> None:
        self.fail = fail
        self.result = result if result is not None else {"status": "ok"}
        self.hook_error = hook_error
        self.successes = []
        self.errors = []
        self.calls = 0

    async def on_event(self, ctx):
        self.calls += 1
        if self.fail is not None:
            raise self.fail
        return self.result

    async def on_success(self, ctx, result):
        self.successes.append(result)
        if self.hook_error is not None:
            raise self.hook_error

    def on_error(self, ctx, error):
        self.errors.append(error)
        if self.hook_error is not None:
            raise self.hook_error


@pytest.fixture
def provider():
    return RecordingEventProvider()


@pytest.fixture
def coordinator(provider):
    return EventCoordinator(provider=provider)


async def started(coordinator):
    coordinator.register_consumers()
    await coordinator.start()
    return coordinator


# ── Registration ─────────────────────────────────────────────────────


class TestRegistration:
    def test_duplicate_definition_rejected_and_first_kept(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        other = define_event("order.placed", data=dict)
        with pytest.raises(DuplicateRegistrationError, match="(?i)duplicate"):
            coordinator.register_definition(other)
        assert coordinator.get_definition("order.placed") is order_placed

    def test_add_consumer_requires_definition(self, coordinator, order_placed):
        with pytest.raises(UnregisteredDefinitionError):
            coordinator.add_consumer(order_placed, AcceptOrder)

    def test_add_consumer_rejects_foreign_definition(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        with pytest.raises(RegistrationError):
            coordinator.add_consumer(define_event("order.placed", data=int), AcceptOrder)

    def test_second_consumer_rejected(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, AcceptOrder)
        with pytest.raises(DuplicateRegistrationError):
            coordinator.add_consumer(order_placed, HookedConsumer)

    def test_add_consumer_does_not_instantiate(self, coordinator, order_placed):
        created = []

        class Counting(AcceptOrder):
            def __init__(self) -> None:
                super().__init__()
                created.append(self)

        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, Counting)
        assert created == []
        assert coordinator.has_consumer("order.placed")
        assert not coordinator.has_registered_consumer("order.placed")
        assert coordinator.get_consumer("order.placed") is None

        coordinator.register_consumers()
        assert len(created) == 1
        assert coordinator.get_consumer("order.placed") is created[0]

    def test_consumer_resolved_with_dependencies(self, provider, order_placed):
        container = Container()
        mailer = Mailer()
        container.register_instance(Mailer, mailer)
        coordinator = EventCoordinator(container, provider)
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, SendReceipt, [Mailer])
        coordinator.register_consumers()
        assert coordinator.get_consumer("order.placed").mailer is mailer

    def test_consumer_instance_used_as_is(self, coordinator, order_placed):
        instance = AcceptOrder()
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, instance)
        coordinator.register_consumers()
        assert coordinator.get_consumer("order.placed") is instance

    def test_registered_names_in_order(self, coordinator, order_placed, order_shipped):
        coordinator.register_definition(order_placed)
        coordinator.register_definition(order_shipped)
        assert coordinator.get_registered_names() == ["order.placed", "order.shipped"]


# ── Subscription topology ────────────────────────────────────────────


class TestSubscriptionTopology:
    def test_emitter_only_definition_never_subscribed(self, coordinator, provider, order_shipped):
        coordinator.register_definition(order_shipped)
        coordinator.register_consumers()
        assert provider.subscription_count == 0
        assert provider.subscribed_names == []

    def test_one_subscription_per_consumer(self, coordinator, provider, order_placed, order_shipped):
        coordinator.register_definition(order_placed)
        coordinator.register_definition(order_shipped)
        for index in range(3):
            coordinator.register_definition(define_event(f"audit.{index}", data=dict))
        coordinator.add_consumer(order_placed, AcceptOrder)
        coordinator.register_consumers()
        assert provider.subscribed_names == ["order.placed"]

    def test_default_provider_created_on_registration(self, order_placed):
        coordinator = EventCoordinator()
        assert not coordinator.is_configured()
        coordinator.register_definition(order_placed)
        coordinator.register_consumers()
        assert isinstance(coordinator.get_provider(), InProcessEventProvider)

    def test_no_definitions_leaves_provider_unset(self):
        coordinator = EventCoordinator()
        coordinator.register_consumers()
        assert coordinator.get_provider() is None

    def test_set_provider_before_registration(self, order_placed, provider):
        coordinator = EventCoordinator()
        coordinator.set_provider(provider)
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, AcceptOrder)
        coordinator.register_consumers()
        assert provider.subscribed_names == ["order.placed"]

    @pytest.mark.asyncio
    async def test_emitter_only_emit_is_accepted(self, coordinator, provider, order_shipped):
        coordinator.register_definition(order_shipped)
        await started(coordinator)
        sub = coordinator.emit(order_shipped, {"orderId": "o-1", "carrier": "ups"})
        assert await sub.wait(timeout=1) is None
        assert provider.emitted_names() == ["order.shipped"]


# ── Emission ─────────────────────────────────────────────────────────


class TestEmit:
    @pytest.mark.asyncio
    async def test_round_trip_returns_consumer_result_unchanged(self, coordinator, order_placed):
        consumer = AcceptOrder()
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)

        result = await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1)
        assert result == {"status": "accepted", "orderId": "o-1"}
        assert result is consumer.returned[0]
        assert consumer.seen[0].data == {"orderId": "o-1"}
        assert consumer.seen[0].event_name == "order.placed"

    @pytest.mark.asyncio
    async def test_emit_by_name(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, AcceptOrder)
        await started(coordinator)
        result = await coordinator.emit("order.placed", {"orderId": "o-2"}).wait(timeout=1)
        assert result["orderId"] == "o-2"

    @pytest.mark.asyncio
    async def test_invalid_payload_raises_before_provider(self, coordinator, provider, order_placed):
        consumer = AcceptOrder()
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)

        with pytest.raises(PayloadValidationError, match="payload validation failed") as exc_info:
            coordinator.emit(order_placed, {})
        assert exc_info.value.field == "orderId"
        assert provider.emitted == []
        assert consumer.seen == []

    @pytest.mark.asyncio
    async def test_unregistered_name_raises(self, coordinator):
        await started(coordinator)
        with pytest.raises(UnregisteredDefinitionError):
            coordinator.emit("order.unknown", {})

    @pytest.mark.asyncio
    async def test_not_configured(self, order_placed):
        coordinator = EventCoordinator()
        coordinator.register_definition(order_placed)
        with pytest.raises(NotConfiguredError, match="not configured"):
            coordinator.emit(order_placed, {"orderId": "o-1"})

    @pytest.mark.asyncio
    async def test_result_validation_failure(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, HookedConsumer(result=42))
        await started(coordinator)
        with pytest.raises(ResultValidationError, match="result validation failed"):
            await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1)

    @pytest.mark.asyncio
    async def test_handler_error_is_original(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, HookedConsumer(fail=ValueError("card declined")))
        await started(coordinator)
        with pytest.raises(ValueError, match="^card declined$"):
            await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1)

    @pytest.mark.asyncio
    async def test_payload_checked_again_at_delivery(self, coordinator, provider, order_placed):
        consumer = AcceptOrder()
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)
        # bypass the coordinator as a remote emitter would
        with pytest.raises(PayloadValidationError):
            await provider.emit("order.placed", {"wrong": 1}).wait(timeout=1)
        assert consumer.seen == []


# ── Correlation and causation ────────────────────────────────────────


class TestCausality:
    @pytest.mark.asyncio
    async def test_correlation_from_ambient_context(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        await started(coordinator)
        with bound_context(correlation_id="ambient-1"):
            sub = coordinator.emit(order_placed, {"orderId": "o-1"})
        assert sub.correlation_id == "ambient-1"

    @pytest.mark.asyncio
    async def test_explicit_meta_wins(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        await started(coordinator)
        with bound_context(correlation_id="ambient-1"):
            sub = coordinator.emit(order_placed, {"orderId": "o-1"}, meta={"correlation_id": "explicit"})
        assert sub.correlation_id == "explicit"

    @pytest.mark.asyncio
    async def test_fresh_correlation_per_root_emit(self, coordinator, order_placed):
        coordinator.register_definition(order_placed)
        await started(coordinator)
        first = coordinator.emit(order_placed, {"orderId": "o-1"})
        second = coordinator.emit(order_placed, {"orderId": "o-2"})
        assert first.correlation_id and second.correlation_id
        assert first.correlation_id != second.correlation_id

    @pytest.mark.asyncio
    async def test_chained_emit_from_context(self, coordinator, order_placed, order_shipped):
        children = []
        shipments = RecordShipment()

        class ShipOnPlace:
            async def on_event(self, ctx):
                children.append(ctx.emit(order_shipped, {"orderId": ctx.data["orderId"], "carrier": "ups"}))
                return {"status": "shipping"}

        coordinator.register_definition(order_placed)
        coordinator.register_definition(order_shipped)
        coordinator.add_consumer(order_placed, ShipOnPlace)
        coordinator.add_consumer(order_shipped, shipments)
        await started(coordinator)

        parent = coordinator.emit(order_placed, {"orderId": "o-1"}, meta={"correlation_id": "c1"})
        await parent.wait(timeout=1)
        await children[0].wait(timeout=1)

        child_ctx = shipments.seen[0]
        assert child_ctx.correlation_id == "c1"
        assert child_ctx.causation_id == parent.event_id

    @pytest.mark.asyncio
    async def test_nested_coordinator_emit_inherits_ambient_ids(
        self, coordinator, order_placed, order_shipped
    ):
        children = []
        shipments = RecordShipment()

        class ForwardToCoordinator:
            def __init__(self, target: EventCoordinator) -> None:
                self.target = target

            async def on_event(self, ctx):
                children.append(
                    self.target.emit(order_shipped, {"orderId": ctx.data["orderId"], "carrier": "dhl"})
                )
                return {"status": "forwarded"}

        coordinator.register_definition(order_placed)
        coordinator.register_definition(order_shipped)
        coordinator.add_consumer(order_placed, ForwardToCoordinator(coordinator))
        coordinator.add_consumer(order_shipped, shipments)
        await started(coordinator)

        parent = coordinator.emit(order_placed, {"orderId": "o-1"}, meta={"correlation_id": "c2"})
        await parent.wait(timeout=1)
        await children[0].wait(timeout=1)

        child_ctx = shipments.seen[0]
        assert child_ctx.correlation_id == "c2"
        assert child_ctx.causation_id == parent.event_id

    @pytest.mark.asyncio
    async def test_explicit_causation_option_wins(self, coordinator, provider, order_placed):
        coordinator.register_definition(order_placed)
        await started(coordinator)
        with bound_context(event_id="ambient-event"):
            coordinator.emit(order_placed, {"orderId": "o-1"}, options=EmitOptions(causation_id="evt-x"))
        assert provider.emitted[0].options.causation_id == "evt-x"

    @pytest.mark.asyncio
    async def test_root_emit_has_no_causation(self, coordinator, provider, order_placed):
        coordinator.register_definition(order_placed)
        await started(coordinator)
        coordinator.emit(order_placed, {"orderId": "o-1"})
        assert provider.emitted[0].options.causation_id is None


# ── Lifecycle hooks ──────────────────────────────────────────────────


class TestLifecycleHooks:
    @pytest.mark.asyncio
    async def test_on_success_receives_result(self, coordinator, order_placed):
        consumer = HookedConsumer(result={"status": "ok"})
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)
        await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1)
        assert consumer.successes == [{"status": "ok"}]
        assert consumer.errors == []

    @pytest.mark.asyncio
    async def test_on_error_receives_original_error(self, coordinator, order_placed):
        error = ValueError("card declined")
        consumer = HookedConsumer(fail=error)
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)
        with pytest.raises(ValueError):
            await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1)
        assert consumer.errors == [error]
        assert consumer.successes == []

    @pytest.mark.asyncio
    async def test_failing_on_success_does_not_mask_result(self, coordinator, order_placed):
        consumer = HookedConsumer(result={"status": "ok"}, hook_error=RuntimeError("hook"))
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)
        assert await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1) == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_failing_on_error_does_not_mask_error(self, coordinator, order_placed):
        consumer = HookedConsumer(fail=ValueError("card declined"), hook_error=RuntimeError("hook"))
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)
        with pytest.raises(ValueError, match="card declined"):
            await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1)

    @pytest.mark.asyncio
    async def test_result_validation_failure_reaches_on_error(self, coordinator, order_placed):
        consumer = HookedConsumer(result=42)
        coordinator.register_definition(order_placed)
        coordinator.add_consumer(order_placed, consumer)
        await started(coordinator)
        with pytest.raises(ResultValidationError):
            await coordinator.emit(order_placed, {"orderId": "o-1"}).wait(timeout=1)
        assert isinstance(consumer.errors[0], ResultValidationError)


# ── Lifecycle ────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop_delegate(self, coordinator, provider, order_placed):
        coordinator.register_definition(order_placed)
        await started(coordinator)
        assert provider.started
        await coordinator.stop()
        await coordinator.stop()
        assert not provider.started

    @pytest.mark.asyncio
    async def test_start_without_provider_is_noop(self):
        coordinator = EventCoordinator()
        await coordinator.start()
        await coordinator.stop()
        assert not coordinator.is_configured()

    @pytest.mark.asyncio
    async def test_provider_start_error_propagates_unchanged(self, order_placed):
        class BrokenProvider(InProcessEventProvider):
            async def start(self) -> None:
                raise ConnectionError("redis unreachable")

        coordinator = EventCoordinator(provider=BrokenProvider())
        coordinator.register_definition(order_placed)
        coordinator.register_consumers()
        with pytest.raises(ConnectionError, match="redis unreachable"):
            await coordinator.start()

    @pytest.mark.asyncio
    async def test_shared_provider_between_emitter_and_consumer(self, order_placed):
        shared = InProcessEventProvider()
        emitter = EventCoordinator(provider=shared)
        emitter.register_definition(order_placed)
        emitter.register_consumers()

        worker = EventCoordinator(provider=shared)
        worker.register_definition(order_placed)
        worker.add_consumer(order_placed, AcceptOrder)
        worker.register_consumers()
        await shared.start()

        result = await emitter.emit(order_placed, {"orderId": "o-9"}).wait(timeout=1)
        assert result == {"status": "accepted", "orderId": "o-9"}
        assert shared.subscription_count == 1
