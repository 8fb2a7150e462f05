"""
Application-level runtime owning both coordinators.

:class:`Runtime` wires settings, the DI container, providers and both
coordinators together and enforces the lifecycle order: register
definitions and consumers, ``start()`` (register consumers, then start the
event provider, then the workflow provider), serve, ``stop()`` (reverse
order). Components are created lazily on first access.

Usage::

    runtime = (
        Runtime()
        .event(ORDER_PLACED, SendReceipt, [Mailer])
        .event(ORDER_SHIPPED)                      # emitter-only
        .workflow(FULFIL, FulfilOrder, [Payments])
    )
    runtime.container.register_instance(Mailer, SmtpMailer())

    async with runtime:
        runtime.emit(ORDER_PLACED, {"order_id": "o-1", "total": 9.5})
        handle = await runtime.execute(FULFIL, {"order_id": "o-1"})
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from causeway.container import Container
from causeway.core.logging import configure_logging, get_logger
from causeway.core.settings import CausewaySettings, get_settings
from causeway.events.coordinator import EventCoordinator
from causeway.events.definition import EventDefinition
from causeway.events.message import EmitOptions
from causeway.events.provider import EventProvider
from causeway.events.subscription import EventSubscription
from causeway.factory import create_event_provider, create_step_engine, create_workflow_provider
from causeway.workflows.coordinator import WorkflowCoordinator, WorkflowExecutor
from causeway.workflows.definition import WorkflowDefinition
from causeway.workflows.provider import FlowHandle, WorkflowProvider

logger = get_logger(__name__)


class Runtime:
    """Lazy container for the coordinators of one application.

    Args:
        settings: Settings to use; defaults to :func:`get_settings`
        container: DI container consumers are resolved from
        event_provider / workflow_provider: Explicit providers; otherwise
            built from settings
        configure_logs: Call :func:`configure_logging` from settings on start
    """

    def __init__(
        self,
        settings: CausewaySettings | None = None,
        container: Container | None = None,
        *,
        event_provider: EventProvider | None = None,
        workflow_provider: WorkflowProvider | None = None,
        configure_logs: bool = True,
    ) -> None:
        self._settings = settings
        self._container = container or Container()
        self._event_provider = event_provider
        self._workflow_provider = workflow_provider
        self._configure_logs = configure_logs
        self._events: EventCoordinator | None = None
        self._workflows: WorkflowCoordinator | None = None
        self._executor: WorkflowExecutor | None = None
        self._started = False

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> CausewaySettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def container(self) -> Container:
        return self._container

    @property
    def events(self) -> EventCoordinator:
        if self._events is None:
            self._events = EventCoordinator(
                self._container,
                self._event_provider,
                provider_factory=lambda: create_event_provider(self.settings),
            )
        return self._events

    @property
    def workflows(self) -> WorkflowCoordinator:
        if self._workflows is None:
            self._workflows = WorkflowCoordinator(
                self._container,
                self._workflow_provider,
                provider_factory=lambda: create_workflow_provider(self.settings),
                engine=create_step_engine(self.settings),
            )
        return self._workflows

    @property
    def started(self) -> bool:
        return self._started

    # ── Registration ─────────────────────────────────────────────

    def event(
        self,
        definition: EventDefinition[Any, Any],
        consumer: Any = None,
        deps: Sequence[type[Any]] = (),
    ) -> Runtime:
        """Register an event definition and, optionally, its consumer."""
        self.events.register_definition(definition)
        if consumer is not None:
            self.events.add_consumer(definition, consumer, deps)
        return self

    def workflow(
        self,
        definition: WorkflowDefinition[Any, Any],
        consumer: Any = None,
        deps: Sequence[type[Any]] = (),
    ) -> Runtime:
        """Register a workflow definition and, optionally, its consumer."""
        self.workflows.register_definition(definition)
        if consumer is not None:
            self.workflows.add_consumer(definition, consumer, deps)
        return self

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        if self._configure_logs:
            configure_logging(
                level=self.settings.log_level,
                json_format=self.settings.json_logs,
                service=self.settings.service_name,
            )
        self.events.register_consumers()
        self.workflows.register_consumers()
        await self.events.start()
        try:
            await self.workflows.start()
        except Exception:
            await self.events.stop()
            raise
        self._started = True
        logger.info(
            "runtime_started",
            events=self.events.get_registered_names(),
            workflows=self.workflows.get_registered_names(),
        )

    async def stop(self) -> None:
        """Stop workflows then events; both are attempted, the first error is re-raised."""
        if not self._started:
            return
        self._started = False
        first_error: Exception | None = None
        for name, coordinator in (("workflows", self.workflows), ("events", self.events)):
            try:
                await coordinator.stop()
            except Exception as exc:
                logger.error("runtime_stop_failed", subsystem=name, error=str(exc))
                if first_error is None:
                    first_error = exc
        logger.info("runtime_stopped")
        if first_error is not None:
            raise first_error

    async def __aenter__(self) -> Runtime:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

    # ── Operations ───────────────────────────────────────────────

    def emit(
        self,
        event: str | EventDefinition[Any, Any],
        payload: Any,
        meta: dict[str, Any] | None = None,
        options: EmitOptions | None = None,
    ) -> EventSubscription[Any]:
        return self.events.emit(event, payload, meta, options)

    async def execute(
        self,
        workflow: str | WorkflowDefinition[Any, Any],
        data: Any,
        *,
        timeout: float | None = None,
    ) -> FlowHandle:
        if self._executor is None:
            self._executor = self.workflows.create_executor()
        return await self._executor.execute(workflow, data, timeout=timeout)


__all__ = ["Runtime"]
