"""Event definitions: immutable, named schema descriptions.

A definition carries no behaviour. Emitters and consumers in different
processes share the same definition object (usually from a shared module)
so both sides agree on the name and on what is valid.

Example::

    from pydantic import BaseModel
    from causeway.events import define_event

    class OrderPlaced(BaseModel):
        order_id: str
        total: float

    ORDER_PLACED = define_event("order.placed", data=OrderPlaced, result=bool)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from causeway.core.errors import DefinitionError

TData = TypeVar("TData")
TResult = TypeVar("TResult")


@dataclass(frozen=True)
class EventDefinition(Generic[TData, TResult]):
    """Frozen event description.

    Attributes:
        name: Globally unique event name (dot-separated by convention)
        data_schema: Schema the payload must satisfy
        result_schema: Schema the consumer's return value must satisfy;
            ``None`` means the consumer returns nothing
    """

    name: str
    data_schema: Any
    result_schema: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise DefinitionError("Event name must be a non-empty string")

    def __repr__(self) -> str:
        return f"EventDefinition({self.name!r})"


def define_event(name: str, data: Any, result: Any = None) -> EventDefinition[Any, Any]:
    """Build a frozen :class:`EventDefinition`."""
    return EventDefinition(name=name, data_schema=data, result_schema=result)


__all__ = ["EventDefinition", "define_event"]
