"""
Event coordinator: registry, lifecycle and causality for events.

Manifesto:
    Registration is a phase, not a free-for-all. Definitions and consumer
    bindings are collected during setup, ``register_consumers()`` turns the
    bindings into provider subscriptions, and after that the registries are
    read-only. Only names with a consumer are ever subscribed, so a
    distributed provider never routes work to an instance that merely
    emits.

Architecture:
    ::

        register_definition(def)        ── definitions[name]
        add_consumer(def, Cls, deps)    ── pending[name]  (not instantiated)
                │
        register_consumers()
                ├─ provider defaulted to InProcessEventProvider if unset
                └─ for each pending: container.resolve(Cls)
                     └─ provider.subscribe(name, ValidatedEventHandler)
                │
        start() / stop()                ── delegated to the provider
        emit(def, payload)              ── validate → provider.emit → EventSubscription

    Correlation: explicit meta → ambient structlog context → new uuid.
    Causation:   explicit option → id of the event currently being handled.

Examples:
    >>> coordinator = EventCoordinator()
    >>> coordinator.register_definition(ORDER_PLACED)
    >>> coordinator.add_consumer(ORDER_PLACED, SendReceipt, [Mailer])
    >>> coordinator.register_consumers()
    >>> await coordinator.start()
    >>> await coordinator.emit(ORDER_PLACED, {"order_id": "o-1", "total": 9.5}).wait()

Tags:
    causeway, events, registry, lifecycle, correlation, causation

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from causeway.container import Container, Resolver
from causeway.core.errors import (
    DuplicateRegistrationError,
    NotConfiguredError,
    RegistrationError,
    UnregisteredDefinitionError,
)
from causeway.core.logging import capture_propagation_meta, get_bound_context, get_logger
from causeway.core.schema import validate_payload
from causeway.events.adapter import ValidatedEventHandler
from causeway.events.definition import EventDefinition
from causeway.events.memory import InProcessEventProvider
from causeway.events.message import EmitOptions, new_correlation_id
from causeway.events.provider import EventProvider
from causeway.events.subscription import EventSubscription

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingConsumer:
    definition: EventDefinition[Any, Any]
    consumer: Any
    deps: tuple[type[Any], ...] = ()


@dataclass(frozen=True)
class RegisteredConsumer:
    definition: EventDefinition[Any, Any]
    instance: Any
    handler: ValidatedEventHandler
    subscription_id: str


class EventCoordinator:
    """Registry and lifecycle owner for event definitions and consumers.

    Args:
        container: Resolver used to instantiate consumer classes
        provider: Provider to use; defaults lazily in ``register_consumers``
        provider_factory: Builds the default provider when none was set
    """

    def __init__(
        self,
        container: Resolver | None = None,
        provider: EventProvider | None = None,
        *,
        provider_factory: Callable[[], EventProvider] = InProcessEventProvider,
    ) -> None:
        self._container = container or Container()
        self._provider = provider
        self._provider_factory = provider_factory
        self._definitions: dict[str, EventDefinition[Any, Any]] = {}
        self._pending: dict[str, PendingConsumer] = {}
        self._consumers: dict[str, RegisteredConsumer] = {}
        self._consumers_registered = False

    # ── Registration ─────────────────────────────────────────────

    def register_definition(self, definition: EventDefinition[Any, Any]) -> None:
        """Register an event definition.

        Raises:
            DuplicateRegistrationError: if the name is taken; the first
                definition stays registered
        """
        if definition.name in self._definitions:
            raise DuplicateRegistrationError("event", definition.name)
        self._definitions[definition.name] = definition
        logger.debug("event_definition_registered", event_name=definition.name)

    def add_consumer(
        self,
        definition: EventDefinition[Any, Any],
        consumer: Any,
        deps: Sequence[type[Any]] = (),
    ) -> None:
        """Record a pending consumer binding without instantiating it.

        ``consumer`` is a class (resolved through the container with
        ``deps``) or a ready-made instance.
        """
        name = definition.name
        registered = self._definitions.get(name)
        if registered is None:
            raise UnregisteredDefinitionError("event", name)
        if registered != definition:
            raise RegistrationError(
                f'Event "{name}" consumer was bound to a different definition than the registered one'
            )
        if name in self._pending or name in self._consumers:
            raise DuplicateRegistrationError("event consumer", name)
        self._pending[name] = PendingConsumer(definition, consumer, tuple(deps))
        logger.debug("event_consumer_added", event_name=name)

    def register_consumers(self) -> None:
        """Resolve pending consumers and subscribe them on the provider.

        Emitter-only definitions are never subscribed.
        """
        if self._provider is None and (self._definitions or self._pending):
            self._provider = self._provider_factory()
            logger.debug("event_provider_defaulted", provider=type(self._provider).__name__)

        for name, pending in list(self._pending.items()):
            instance = self._resolve(pending)
            handler = ValidatedEventHandler(pending.definition, instance, emit=self.emit)
            subscription_id = self._provider.subscribe(name, handler)
            self._consumers[name] = RegisteredConsumer(
                definition=pending.definition,
                instance=instance,
                handler=handler,
                subscription_id=subscription_id,
            )
            del self._pending[name]

        self._consumers_registered = True
        logger.info(
            "event_consumers_registered",
            consumers=sorted(self._consumers),
            emitter_only=sorted(set(self._definitions) - set(self._consumers)),
        )

    def _resolve(self, pending: PendingConsumer) -> Any:
        if not isinstance(pending.consumer, type):
            return pending.consumer
        self._container.register(pending.consumer, pending.deps)
        return self._container.resolve(pending.consumer)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._provider is None:
            logger.debug("event_coordinator_start_skipped", reason="no_provider")
            return
        await self._provider.start()

    async def stop(self) -> None:
        if self._provider is None:
            return
        await self._provider.stop()

    # ── Emission ─────────────────────────────────────────────────

    def emit(
        self,
        event: str | EventDefinition[Any, Any],
        payload: Any,
        meta: dict[str, Any] | None = None,
        options: EmitOptions | None = None,
    ) -> EventSubscription[Any]:
        """Validate and hand an event to the provider.

        Raises:
            UnregisteredDefinitionError: unknown event name
            PayloadValidationError: payload rejected before anything is sent
            NotConfiguredError: no provider yet
        """
        definition = self._lookup(event)
        data = validate_payload("event", definition.name, definition.data_schema, payload)
        if self._provider is None:
            raise NotConfiguredError("Event provider")

        merged_meta = {**capture_propagation_meta(), **(meta or {})}
        merged_meta["correlation_id"] = merged_meta.get("correlation_id") or new_correlation_id()

        options = options or EmitOptions()
        if options.causation_id is None:
            current_event = get_bound_context().get("event_id")
            if current_event is not None:
                options = dataclasses.replace(options, causation_id=current_event)

        return self._provider.emit(definition.name, data, merged_meta, options)

    def _lookup(self, event: str | EventDefinition[Any, Any]) -> EventDefinition[Any, Any]:
        name = event if isinstance(event, str) else event.name
        definition = self._definitions.get(name)
        if definition is None:
            raise UnregisteredDefinitionError("event", name)
        return definition

    # ── Accessors ────────────────────────────────────────────────

    def get_definition(self, name: str) -> EventDefinition[Any, Any] | None:
        return self._definitions.get(name)

    def get_registered_names(self) -> list[str]:
        return list(self._definitions)

    def get_consumer(self, name: str) -> Any | None:
        """Resolved consumer instance, or None (pending or emitter-only)."""
        registered = self._consumers.get(name)
        return registered.instance if registered else None

    def has_consumer(self, name: str) -> bool:
        return name in self._pending or name in self._consumers

    def has_registered_consumer(self, name: str) -> bool:
        return name in self._consumers

    def is_configured(self) -> bool:
        return self._provider is not None

    def get_provider(self) -> EventProvider | None:
        return self._provider

    def set_provider(self, provider: EventProvider) -> None:
        """Replace the provider.

        Call before ``register_consumers()``: subscriptions already made stay
        on the old provider.
        """
        if self._consumers_registered:
            logger.warning(
                "provider_replaced_after_registration",
                subsystem="events",
                subscriptions_left_behind=len(self._consumers),
            )
        self._provider = provider


__all__ = ["EventCoordinator", "PendingConsumer", "RegisteredConsumer"]
