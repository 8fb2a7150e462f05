"""
In-process workflow provider.

Manifesto:
    Local execution should behave like a remote one from the caller's point
    of view: ``execute`` returns a handle immediately and the flow runs in
    its own task. Timeouts and status tracking work the same way they do
    for the Redis provider.

Behaviour:
    - ``execute`` before ``start`` raises :class:`ProviderNotStartedError`
    - a workflow without a registered runner raises :class:`NoConsumerError`
    - status: pending → running → completed | failed
    - the timeout (default 30s) marks the flow failed and rejects
      ``result()`` with :class:`WorkflowTimeoutError`; the flow task itself
      keeps running and its late outcome is discarded
    - finished flow state is purged after ``retention`` seconds
    - ``stop()`` cancels in-flight flows without rollback

Tags:
    causeway, workflows, in-memory, asyncio, single-node

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from causeway.core.errors import (
    DuplicateRegistrationError,
    NoConsumerError,
    ProviderNotStartedError,
    ProviderStoppedError,
    WorkflowTimeoutError,
)
from causeway.core.logging import get_logger
from causeway.workflows.definition import WorkflowDefinition
from causeway.workflows.provider import FlowRequest, FlowRunnerFn, FlowStatus, new_flow_id

__all__ = ["InProcessWorkflowProvider", "InProcessFlowHandle", "FlowState"]

logger = get_logger(__name__)


@dataclass
class FlowState:
    """Tracked state of one in-process flow."""

    flow_id: str
    workflow_name: str
    future: asyncio.Future[Any]
    status: FlowStatus = FlowStatus.PENDING
    error: BaseException | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    task: asyncio.Task[None] | None = None
    timer: asyncio.TimerHandle | None = None
    purge: asyncio.TimerHandle | None = None


class InProcessFlowHandle:
    def __init__(self, state: FlowState) -> None:
        self._state = state

    @property
    def id(self) -> str:
        return self._state.flow_id

    async def status(self) -> FlowStatus:
        return self._state.status

    async def result(self) -> Any:
        return await asyncio.shield(self._state.future)

    def __repr__(self) -> str:
        return f"InProcessFlowHandle({self.id!r}, status={self._state.status.value})"


class InProcessWorkflowProvider:
    """Runs flows as asyncio tasks in the current event loop.

    Args:
        default_timeout: Seconds before a flow is failed; ``None`` disables
        retention: Seconds finished flow state stays queryable
    """

    def __init__(
        self,
        *,
        default_timeout: float | None = 30.0,
        retention: float = 300.0,
    ) -> None:
        self.default_timeout = default_timeout
        self.retention = retention
        self._runners: dict[str, FlowRunnerFn] = {}
        self._emitters: set[str] = set()
        self._flows: dict[str, FlowState] = {}
        self._started = False

    # ── Registration ─────────────────────────────────────────────

    def register_consumer(self, name: str, runner: FlowRunnerFn) -> None:
        if name in self._runners:
            raise DuplicateRegistrationError("workflow consumer", name)
        self._runners[name] = runner
        logger.debug("workflow.provider.consumer_registered", workflow=name)

    def register_emitter(self, name: str) -> None:
        self._emitters.add(name)

    @property
    def consumer_names(self) -> list[str]:
        return sorted(self._runners)

    @property
    def emitter_names(self) -> list[str]:
        return sorted(self._emitters)

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        tasks = []
        for state in self._flows.values():
            for handle in (state.timer, state.purge):
                if handle is not None:
                    handle.cancel()
            if state.task is not None and not state.task.done():
                state.task.cancel()
                tasks.append(state.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._flows.clear()
        logger.debug("workflow.provider.stopped", cancelled=len(tasks))

    # ── Execution ────────────────────────────────────────────────

    async def execute(
        self,
        definition: WorkflowDefinition[Any, Any],
        data: Any,
        meta: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> InProcessFlowHandle:
        if not self._started:
            raise ProviderNotStartedError("InProcessWorkflowProvider")
        runner = self._runners.get(definition.name)
        if runner is None:
            raise NoConsumerError(definition.name)

        loop = asyncio.get_running_loop()
        state = FlowState(
            flow_id=new_flow_id(),
            workflow_name=definition.name,
            future=loop.create_future(),
        )
        state.future.add_done_callback(_consume_exception)
        self._flows[state.flow_id] = state

        request = FlowRequest(state.flow_id, definition.name, data, dict(meta or {}))
        state.task = loop.create_task(self._run(state, runner, request))
        effective = self.default_timeout if timeout is None else timeout
        if effective:
            state.timer = loop.call_later(effective, self._expire, state, effective)
        logger.debug("workflow.provider.submitted", workflow=definition.name, flow_id=state.flow_id)
        return InProcessFlowHandle(state)

    async def _run(self, state: FlowState, runner: FlowRunnerFn, request: FlowRequest) -> None:
        state.status = FlowStatus.RUNNING
        try:
            result = await runner(request)
        except asyncio.CancelledError:
            self._finish(state, error=ProviderStoppedError(f'Flow "{state.flow_id}" cancelled by stop()'))
            raise
        except Exception as exc:
            self._finish(state, error=exc)
        else:
            self._finish(state, result=result)

    def _finish(self, state: FlowState, *, result: Any = None, error: BaseException | None = None) -> None:
        if state.status.is_terminal:
            logger.debug("workflow.provider.late_outcome_discarded", flow_id=state.flow_id)
            return
        if state.timer is not None:
            state.timer.cancel()
        state.finished_at = datetime.now(UTC)
        if error is None:
            state.status = FlowStatus.COMPLETED
            state.future.set_result(result)
        else:
            state.status = FlowStatus.FAILED
            state.error = error
            state.future.set_exception(error)
        self._schedule_purge(state)

    def _expire(self, state: FlowState, timeout: float) -> None:
        if state.status.is_terminal:
            return
        logger.warning("workflow.provider.timeout", flow_id=state.flow_id, timeout=timeout)
        state.status = FlowStatus.FAILED
        state.finished_at = datetime.now(UTC)
        state.error = WorkflowTimeoutError(state.flow_id, timeout)
        state.future.set_exception(state.error)
        self._schedule_purge(state)

    def _schedule_purge(self, state: FlowState) -> None:
        if not self._started:
            return
        state.purge = asyncio.get_running_loop().call_later(
            self.retention, self._flows.pop, state.flow_id, None
        )

    async def get_status(self, flow_id: str) -> FlowStatus:
        """Current status; unknown or purged flows report ``PENDING``."""
        state = self._flows.get(flow_id)
        return state.status if state else FlowStatus.PENDING

    def get_flow(self, flow_id: str) -> FlowState | None:
        return self._flows.get(flow_id)


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
