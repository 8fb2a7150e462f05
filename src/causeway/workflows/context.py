"""Contexts handed to workflow step handlers and consumer hooks."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from causeway.core.errors import RollbackError

T = TypeVar("T")


@dataclass(frozen=True)
class StepContext(Generic[T]):
    """Context for one ``execute`` or ``rollback`` call.

    ``results`` is a read-only snapshot of the outputs recorded before this
    step started. Parallel siblings do not see each other's outputs.
    """

    flow_id: str
    workflow_name: str
    step_name: str
    data: T
    results: Mapping[str, Any]
    log: Any
    correlation_id: str
    meta: dict[str, Any] = field(default_factory=dict)
    rollback: bool = False


@dataclass(frozen=True)
class WorkflowContext(Generic[T]):
    """Context for ``on_complete`` and ``on_error``.

    Attributes:
        failed_step: Step whose ``execute`` failed, if a step failed
        rollback_errors: Rollback failures collected during compensation
    """

    flow_id: str
    workflow_name: str
    data: T
    results: Mapping[str, Any]
    log: Any
    correlation_id: str
    meta: dict[str, Any] = field(default_factory=dict)
    failed_step: str | None = None
    rollback_errors: tuple[RollbackError, ...] = ()


__all__ = ["StepContext", "WorkflowContext"]
