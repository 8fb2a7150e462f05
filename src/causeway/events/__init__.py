"""Events: definitions, providers and the event coordinator.

Usage::

    from causeway.events import EventCoordinator, define_event

    ORDER_PLACED = define_event("order.placed", data=OrderPlaced, result=bool)

    coordinator = EventCoordinator()
    coordinator.register_definition(ORDER_PLACED)
    coordinator.add_consumer(ORDER_PLACED, SendReceipt, [Mailer])
    coordinator.register_consumers()
    await coordinator.start()

    accepted = await coordinator.emit(ORDER_PLACED, {"order_id": "o-1", "total": 9.5}).wait()

Modules
-------
definition   EventDefinition, define_event
coordinator  EventCoordinator
memory       InProcessEventProvider -- asyncio tasks, single process
redis        RedisEventProvider -- Redis lists + pub/sub, multi-node
"""

from causeway.events.consumer import EventConsumer
from causeway.events.context import EventContext
from causeway.events.coordinator import EventCoordinator
from causeway.events.definition import EventDefinition, define_event
from causeway.events.idempotency import EventIdempotency
from causeway.events.memory import InProcessEventProvider
from causeway.events.message import EmitOptions, EventMessage
from causeway.events.provider import EventProvider
from causeway.events.subscription import EventSubscription

__all__ = [
    "EventConsumer",
    "EventContext",
    "EventCoordinator",
    "EventDefinition",
    "define_event",
    "EventIdempotency",
    "InProcessEventProvider",
    "EmitOptions",
    "EventMessage",
    "EventProvider",
    "EventSubscription",
]
