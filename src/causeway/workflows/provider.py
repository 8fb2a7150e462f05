"""Workflow provider protocol, flow handles and the request envelope.

Coordinators depend only on :class:`WorkflowProvider`. A provider never
knows step behaviour: consumers are registered as opaque
:data:`FlowRunnerFn` callables, so the same runner works whether the flow was
started locally or by another instance.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from causeway.core.schema import to_jsonable

if TYPE_CHECKING:
    from causeway.workflows.definition import WorkflowDefinition


class FlowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStatus.COMPLETED, FlowStatus.FAILED)


def new_flow_id() -> str:
    return f"flow-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class FlowRequest:
    """Everything a runner needs to execute one flow."""

    flow_id: str
    workflow_name: str
    data: Any
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "workflow": self.workflow_name,
            "data": to_jsonable(self.data),
            "meta": to_jsonable(self.meta),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowRequest:
        return cls(
            flow_id=data["flow_id"],
            workflow_name=data["workflow"],
            data=data.get("data"),
            meta=data.get("meta") or {},
        )


FlowRunnerFn = Callable[[FlowRequest], Awaitable[Any]]


@runtime_checkable
class FlowHandle(Protocol):
    @property
    def id(self) -> str: ...

    async def status(self) -> FlowStatus: ...

    async def result(self) -> Any: ...


class CompletedFlowHandle:
    """Handle for a flow that already finished in the caller's task."""

    def __init__(self, flow_id: str, value: Any) -> None:
        self._id = flow_id
        self._value = value

    @property
    def id(self) -> str:
        return self._id

    async def status(self) -> FlowStatus:
        return FlowStatus.COMPLETED

    async def result(self) -> Any:
        return self._value

    def __repr__(self) -> str:
        return f"CompletedFlowHandle({self._id!r})"


@runtime_checkable
class WorkflowProvider(Protocol):
    async def start(self) -> None:
        """Bring the provider up. Idempotent."""
        ...

    async def stop(self) -> None:
        """Tear the provider down. Idempotent."""
        ...

    async def execute(
        self,
        definition: WorkflowDefinition[Any, Any],
        data: Any,
        meta: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> FlowHandle:
        """Start a flow; may return before any step has run."""
        ...

    def register_consumer(self, name: str, runner: FlowRunnerFn) -> None:
        """Make this provider eligible to run ``name``."""
        ...

    def register_emitter(self, name: str) -> None:
        """Record that ``name`` is only triggered from here, never run."""
        ...

    async def get_status(self, flow_id: str) -> FlowStatus: ...


__all__ = [
    "FlowStatus",
    "FlowRequest",
    "FlowRunnerFn",
    "FlowHandle",
    "CompletedFlowHandle",
    "WorkflowProvider",
    "new_flow_id",
]
