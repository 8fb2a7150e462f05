"""Wire envelope for emitted events and per-emit options."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from causeway.core.schema import to_jsonable

MESSAGE_VERSION = "1"


def new_event_id() -> str:
    return str(uuid.uuid4())


def new_correlation_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class EventMessage:
    """One emitted event as it travels through a provider.

    Attributes:
        event_id: Unique id generated at emit time
        event_name: Definition name the event was emitted under
        payload: Validated payload
        meta: Propagation meta (trace ids and the like)
        correlation_id: Shared by every event in one causal chain
        causation_id: Id of the event whose handler emitted this one
        timestamp: Emit time (UTC)
    """

    event_name: str
    payload: Any
    correlation_id: str
    event_id: str = field(default_factory=new_event_id)
    causation_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    version: str = MESSAGE_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "event_id": self.event_id,
            "event_name": self.event_name,
            "payload": to_jsonable(self.payload),
            "meta": to_jsonable(self.meta),
            "correlation_id": self.correlation_id,
            "causation_id": self.causation_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventMessage:
        return cls(
            event_name=data["event_name"],
            payload=data.get("payload"),
            correlation_id=data["correlation_id"],
            event_id=data["event_id"],
            causation_id=data.get("causation_id"),
            meta=data.get("meta") or {},
            timestamp=datetime.fromisoformat(data["timestamp"]),
            version=data.get("version", MESSAGE_VERSION),
        )


@dataclass(frozen=True)
class EmitOptions:
    """Per-emit options.

    Attributes:
        delay: Seconds to wait before the event becomes deliverable
        causation_id: Explicit causation id (overrides the ambient one)
        idempotency_key: Emits sharing a key within the provider's TTL are
            delivered once; duplicates resolve ``None``
    """

    delay: float | None = None
    causation_id: str | None = None
    idempotency_key: str | None = None


__all__ = [
    "MESSAGE_VERSION",
    "EventMessage",
    "EmitOptions",
    "new_event_id",
    "new_correlation_id",
]
