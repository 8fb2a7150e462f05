"""
Workflow definitions and the step builder.

Manifesto:
    Workflow *structure* lives in the definition so any instance, including
    one that only triggers the workflow, can reconstruct the step graph.
    *Behaviour* lives in the consumer. The definition is frozen once built:
    two processes holding the same definition agree on the step order.

Architecture:
    ::

        define_workflow("order.fulfil", data=Order, result=Receipt)
            .steps(lambda s: s
                .sequential(s.step("validate"))
                .parallel(s.step("reserve"), s.step("charge"))
                .sequential("notify"))

        WorkflowDefinition.step_groups
            ├─ StepGroup(SEQUENTIAL, [validate])
            ├─ StepGroup(PARALLEL,   [reserve, charge])
            └─ StepGroup(SEQUENTIAL, [notify])

Tags:
    causeway, workflows, definition, builder, immutable

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from causeway.core.errors import DefinitionError

TData = TypeVar("TData")
TResult = TypeVar("TResult")


class StepKind(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


@dataclass(frozen=True)
class StepDefinition:
    """One named step and the schema its output must satisfy."""

    name: str
    output_schema: Any = Any

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise DefinitionError("Step name must be a non-empty string")


StepLike = StepDefinition | str


def _as_step(step: StepLike) -> StepDefinition:
    return step if isinstance(step, StepDefinition) else StepDefinition(step)


@dataclass(frozen=True)
class StepGroup:
    """Sequential groups hold exactly one step, parallel groups two or more."""

    kind: StepKind
    steps: tuple[StepDefinition, ...]

    def __post_init__(self) -> None:
        if self.kind is StepKind.SEQUENTIAL and len(self.steps) != 1:
            raise DefinitionError(
                f"Sequential step group must have exactly one step, got {len(self.steps)}"
            )
        if self.kind is StepKind.PARALLEL and len(self.steps) < 2:
            raise DefinitionError(
                f"Parallel step group must have at least two steps, got {len(self.steps)}"
            )


class StepBuilder:
    """Fluent builder for step groups. Sealed once the definition is built."""

    def __init__(self) -> None:
        self._groups: list[StepGroup] = []
        self._names: set[str] = set()
        self._sealed = False

    def step(self, name: str, output: Any = Any) -> StepDefinition:
        self._check_open()
        return StepDefinition(name=name, output_schema=output)

    def sequential(self, *steps: StepLike) -> StepBuilder:
        """Append one single-step group per argument, in order."""
        self._check_open()
        if not steps:
            raise DefinitionError("sequential() needs at least one step")
        for step in steps:
            self._append(StepGroup(StepKind.SEQUENTIAL, (_as_step(step),)))
        return self

    def parallel(self, *steps: StepLike) -> StepBuilder:
        """Append one group whose steps run concurrently."""
        self._check_open()
        self._append(StepGroup(StepKind.PARALLEL, tuple(_as_step(s) for s in steps)))
        return self

    def build(self) -> tuple[StepGroup, ...]:
        self._sealed = True
        return tuple(self._groups)

    def _append(self, group: StepGroup) -> None:
        for step in group.steps:
            if step.name in self._names:
                raise DefinitionError(f'Duplicate step name "{step.name}"')
        self._names.update(step.name for step in group.steps)
        self._groups.append(group)

    def _check_open(self) -> None:
        if self._sealed:
            raise DefinitionError("Step builder is sealed; the workflow definition is frozen")


@dataclass(frozen=True)
class WorkflowDefinition(Generic[TData, TResult]):
    """Frozen workflow description.

    Attributes:
        name: Globally unique workflow name
        data_schema: Schema the input data must satisfy
        result_schema: Schema the ``on_complete`` return value must satisfy
        step_groups: Ordered step groups; empty for step-less workflows
    """

    name: str
    data_schema: Any
    result_schema: Any = None
    step_groups: tuple[StepGroup, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise DefinitionError("Workflow name must be a non-empty string")

    def steps(
        self, build: Callable[[StepBuilder], StepBuilder | None]
    ) -> WorkflowDefinition[TData, TResult]:
        """Return a new definition carrying the groups ``build`` declares."""
        if self.step_groups:
            raise DefinitionError(f'Workflow "{self.name}" already has steps')
        builder = StepBuilder()
        build(builder)
        return dataclasses.replace(self, step_groups=builder.build())

    @property
    def has_steps(self) -> bool:
        return bool(self.step_groups)

    def iter_steps(self) -> Iterator[StepDefinition]:
        for group in self.step_groups:
            yield from group.steps

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.iter_steps()]

    def get_step(self, name: str) -> StepDefinition | None:
        return next((step for step in self.iter_steps() if step.name == name), None)

    def __repr__(self) -> str:
        return f"WorkflowDefinition({self.name!r}, steps={self.step_names})"


def define_workflow(name: str, data: Any, result: Any = None) -> WorkflowDefinition[Any, Any]:
    """Build a frozen :class:`WorkflowDefinition` without steps."""
    return WorkflowDefinition(name=name, data_schema=data, result_schema=result)


__all__ = [
    "StepKind",
    "StepDefinition",
    "StepGroup",
    "StepBuilder",
    "WorkflowDefinition",
    "define_workflow",
]
