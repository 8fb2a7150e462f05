"""Context handed to event consumers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from causeway.events.definition import EventDefinition
    from causeway.events.subscription import EventSubscription

T = TypeVar("T")

ChainedEmit = Callable[..., "EventSubscription[Any]"]


@dataclass(frozen=True)
class EventContext(Generic[T]):
    """Per-delivery context.

    Attributes:
        event_id: Id of the event being handled
        event_name: Definition name
        data: Validated payload
        log: structlog logger bound with event name, id and correlation id
        correlation_id: Correlation id of the causal chain
        causation_id: Id of the event that caused this one, if any
        meta: Propagation meta carried with the message
        timestamp: Emit time
    """

    event_id: str
    event_name: str
    data: T
    log: Any
    correlation_id: str
    causation_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
    _emit: ChainedEmit | None = field(default=None, repr=False, compare=False)

    def emit(
        self,
        event: str | EventDefinition[Any, Any],
        payload: Any,
        *,
        delay: float | None = None,
    ) -> EventSubscription[Any]:
        """Emit a follow-up event in the same causal chain.

        The new event shares this event's ``correlation_id`` and its
        ``causation_id`` is this event's id.
        """
        if self._emit is None:
            raise RuntimeError("Chained emit is not available in this context")
        return self._emit(event, payload, delay=delay)


__all__ = ["EventContext"]
