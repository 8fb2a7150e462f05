"""
Workflow coordinator: registry, lifecycle and execution entry point.

Manifesto:
    Same registration shape as events, one more topology rule. An instance
    may hold a workflow definition without its consumer ("executor-only"):
    it can trigger the workflow but the provider must never route a flow to
    it. ``get_consumer`` returning ``None`` is how the executor tells the
    two cases apart.

Architecture:
    ::

        register_definition(def) / add_consumer(def, Cls, deps)
                │
        register_consumers()
                ├─ provider defaulted to InProcessWorkflowProvider if unset
                ├─ consumer: resolve → check step handlers → FlowRunner
                │            └─ provider.register_consumer(name, runner)
                └─ definition only: provider.register_emitter(name)
                │
        create_executor().execute(def, data)
                ├─ local consumer: run FlowRunner in the caller's task,
                │                  errors raise from execute(), completed handle
                └─ no consumer:    validate data → provider.execute → handle

Tags:
    causeway, workflows, registry, lifecycle, executor

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from causeway.container import Container, Resolver
from causeway.core.errors import (
    ConsumerConfigurationError,
    DuplicateRegistrationError,
    NotConfiguredError,
    RegistrationError,
    UnregisteredDefinitionError,
)
from causeway.core.logging import capture_propagation_meta, get_bound_context, get_logger
from causeway.core.schema import validate_payload
from causeway.workflows.consumer import step_handlers
from causeway.workflows.definition import WorkflowDefinition
from causeway.workflows.engine import StepEngine
from causeway.workflows.memory import InProcessWorkflowProvider
from causeway.workflows.provider import (
    CompletedFlowHandle,
    FlowHandle,
    FlowRequest,
    FlowStatus,
    WorkflowProvider,
    new_flow_id,
)
from causeway.workflows.runner import FlowRunner

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingWorkflowConsumer:
    definition: WorkflowDefinition[Any, Any]
    consumer: Any
    deps: tuple[type[Any], ...] = ()


@dataclass(frozen=True)
class RegisteredWorkflowConsumer:
    definition: WorkflowDefinition[Any, Any]
    instance: Any
    runner: FlowRunner


class WorkflowCoordinator:
    """Registry and lifecycle owner for workflow definitions and consumers."""

    def __init__(
        self,
        container: Resolver | None = None,
        provider: WorkflowProvider | None = None,
        *,
        provider_factory: Callable[[], WorkflowProvider] = InProcessWorkflowProvider,
        engine: StepEngine | None = None,
    ) -> None:
        self._container = container or Container()
        self._provider = provider
        self._provider_factory = provider_factory
        self._engine = engine or StepEngine()
        self._definitions: dict[str, WorkflowDefinition[Any, Any]] = {}
        self._pending: dict[str, PendingWorkflowConsumer] = {}
        self._consumers: dict[str, RegisteredWorkflowConsumer] = {}
        self._emitters: set[str] = set()
        self._consumers_registered = False

    # ── Registration ─────────────────────────────────────────────

    def register_definition(self, definition: WorkflowDefinition[Any, Any]) -> None:
        if definition.name in self._definitions:
            raise DuplicateRegistrationError("workflow", definition.name)
        self._definitions[definition.name] = definition
        logger.debug("workflow.definition_registered", workflow=definition.name)

    def add_consumer(
        self,
        definition: WorkflowDefinition[Any, Any],
        consumer: Any,
        deps: Sequence[type[Any]] = (),
    ) -> None:
        name = definition.name
        registered = self._definitions.get(name)
        if registered is None:
            raise UnregisteredDefinitionError("workflow", name)
        if registered != definition:
            raise RegistrationError(
                f'Workflow "{name}" consumer was bound to a different definition than the registered one'
            )
        if name in self._pending or name in self._consumers:
            raise DuplicateRegistrationError("workflow consumer", name)
        self._pending[name] = PendingWorkflowConsumer(definition, consumer, tuple(deps))

    def register_consumers(self) -> None:
        """Resolve pending consumers and register runners on the provider.

        Raises:
            ConsumerConfigurationError: step handlers do not match the definition
        """
        if self._provider is None and (self._definitions or self._pending):
            self._provider = self._provider_factory()
            logger.debug("workflow.provider_defaulted", provider=type(self._provider).__name__)

        for name, pending in list(self._pending.items()):
            instance = self._resolve(pending)
            check_consumer(pending.definition, instance)
            runner = FlowRunner(pending.definition, instance, engine=self._engine)
            self._provider.register_consumer(name, runner)
            self._consumers[name] = RegisteredWorkflowConsumer(pending.definition, instance, runner)
            del self._pending[name]

        for name in self._definitions:
            if name not in self._consumers and name not in self._emitters:
                self._provider.register_emitter(name)
                self._emitters.add(name)

        self._consumers_registered = True
        logger.info(
            "workflow.consumers_registered",
            consumers=sorted(self._consumers),
            executor_only=sorted(self._emitters),
        )

    def _resolve(self, pending: PendingWorkflowConsumer) -> Any:
        if not isinstance(pending.consumer, type):
            return pending.consumer
        self._container.register(pending.consumer, pending.deps)
        return self._container.resolve(pending.consumer)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._provider is None:
            logger.debug("workflow.coordinator_start_skipped", reason="no_provider")
            return
        await self._provider.start()

    async def stop(self) -> None:
        if self._provider is None:
            return
        await self._provider.stop()

    def create_executor(self) -> WorkflowExecutor:
        return WorkflowExecutor(self)

    # ── Accessors ────────────────────────────────────────────────

    def get_definition(self, name: str) -> WorkflowDefinition[Any, Any] | None:
        return self._definitions.get(name)

    def get_registered_names(self) -> list[str]:
        return list(self._definitions)

    def get_consumer(self, name: str) -> RegisteredWorkflowConsumer | None:
        """Registered consumer, or None for executor-only workflows."""
        return self._consumers.get(name)

    def has_consumer(self, name: str) -> bool:
        return name in self._pending or name in self._consumers

    def is_configured(self) -> bool:
        return self._provider is not None

    def get_provider(self) -> WorkflowProvider | None:
        return self._provider

    def set_provider(self, provider: WorkflowProvider) -> None:
        """Replace the provider. Call before ``register_consumers()``."""
        if self._consumers_registered:
            logger.warning(
                "provider_replaced_after_registration",
                subsystem="workflows",
                runners_left_behind=len(self._consumers),
            )
        self._provider = provider


def check_consumer(definition: WorkflowDefinition[Any, Any], consumer: Any) -> None:
    """Verify a consumer can run ``definition``."""
    name = definition.name
    if not callable(getattr(consumer, "on_complete", None)):
        raise ConsumerConfigurationError(name, "consumer has no on_complete()")

    handlers = step_handlers(consumer)
    if definition.has_steps and not handlers:
        raise ConsumerConfigurationError(
            name, "definition declares steps but the consumer has no step handlers"
        )
    if handlers and not definition.has_steps:
        raise ConsumerConfigurationError(
            name, "consumer has step handlers but the definition declares no steps"
        )
    if not handlers:
        return

    declared = set(definition.step_names)
    missing = sorted(declared - set(handlers))
    if missing:
        raise ConsumerConfigurationError(name, f"missing step handlers: {', '.join(missing)}")
    unknown = sorted(set(handlers) - declared)
    if unknown:
        raise ConsumerConfigurationError(name, f"handlers for undeclared steps: {', '.join(unknown)}")
    for step_name, handler in handlers.items():
        if not callable(getattr(handler, "execute", None)):
            raise ConsumerConfigurationError(name, f'step "{step_name}" handler has no execute()')


class WorkflowExecutor:
    """Executor bound to one coordinator (``coordinator.create_executor()``)."""

    def __init__(self, coordinator: WorkflowCoordinator) -> None:
        self._coordinator = coordinator

    async def execute(
        self,
        workflow: str | WorkflowDefinition[Any, Any],
        data: Any,
        *,
        timeout: float | None = None,
    ) -> FlowHandle:
        """Run or enqueue a flow.

        With a local consumer the flow runs in the caller's task and any
        failure (validation, step error after rollback, result validation)
        is raised from here; ``timeout`` only applies to provider-run flows.

        Raises:
            UnregisteredDefinitionError: unknown workflow
            PayloadValidationError: data rejected before anything runs
            NotConfiguredError: no provider for an executor-only workflow
        """
        name = workflow if isinstance(workflow, str) else workflow.name
        definition = self._coordinator.get_definition(name)
        if definition is None:
            raise UnregisteredDefinitionError("workflow", name)

        meta = capture_propagation_meta()
        current_event = get_bound_context().get("event_id")
        if current_event is not None:
            meta["causation_id"] = current_event

        registered = self._coordinator.get_consumer(name)
        if registered is not None:
            flow_id = new_flow_id()
            result = await registered.runner(FlowRequest(flow_id, name, data, meta))
            return CompletedFlowHandle(flow_id, result)

        provider = self._coordinator.get_provider()
        if provider is None:
            raise NotConfiguredError("Workflow provider")
        validate_payload("workflow", name, definition.data_schema, data)
        return await provider.execute(definition, data, meta=meta, timeout=timeout)

    async def get_status(self, flow_id: str) -> FlowStatus:
        provider = self._coordinator.get_provider()
        if provider is None:
            raise NotConfiguredError("Workflow provider")
        return await provider.get_status(flow_id)


__all__ = [
    "WorkflowCoordinator",
    "WorkflowExecutor",
    "PendingWorkflowConsumer",
    "RegisteredWorkflowConsumer",
    "check_consumer",
]
