"""
Redis-backed workflow provider.

Manifesto:
    A workflow started on one instance may run on another. The job carries
    only the workflow name, data and propagation meta; the step graph comes
    from the shared definition and the step behaviour from whichever
    instance holds the consumer. Instances that only trigger a workflow
    never start a worker for it.

Architecture:
    ::

        execute() ─► HSET   {prefix}:flow:{id}  status=pending
                  └► RPUSH  {prefix}:workflows:{name}  {flow_id, workflow, data, meta}

        worker (one per consumer-registered workflow only)
              BLPOP {prefix}:workflows:{name} → FlowRunner
              ├─► HSET {prefix}:flow:{id} status=running → completed|failed
              └─► PUBLISH {prefix}:workflows:completed {flow_id, status, result|error}

        listener (every instance)
              SUBSCRIBE {prefix}:workflows:completed → settle local handle

        get_handle(flow_id) on any instance polls the flow hash.

    Delivery is at-most-once: BLPOP removes the job before it runs, so a
    worker that dies mid-flow drops it and the flow hash stays "running"
    until its TTL expires.

Requires: ``pip install redis`` or ``causeway[redis]``

Tags:
    causeway, workflows, redis, queues, multi-node, import-guarded

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any

from causeway.core.errors import (
    DuplicateRegistrationError,
    ErrorContext,
    ProviderError,
    ProviderNotStartedError,
    ProviderStoppedError,
    RemoteExecutionError,
    WorkflowTimeoutError,
)
from causeway.core.logging import get_logger
from causeway.core.schema import to_jsonable
from causeway.workflows.definition import WorkflowDefinition
from causeway.workflows.provider import FlowRequest, FlowRunnerFn, FlowStatus, new_flow_id

__all__ = ["RedisWorkflowProvider", "RedisFlowHandle"]

logger = get_logger(__name__)


class RedisFlowHandle:
    """Handle for a Redis flow.

    Settled from the completion channel when this instance started the flow,
    otherwise by polling the flow hash. A timeout bounds the wait only; the
    flow keeps running wherever it was picked up.
    """

    def __init__(
        self,
        provider: RedisWorkflowProvider,
        flow_id: str,
        future: asyncio.Future[Any] | None = None,
        timeout: float | None = None,
    ) -> None:
        self._provider = provider
        self._id = flow_id
        self._future = future
        self._timeout = timeout

    @property
    def id(self) -> str:
        return self._id

    async def status(self) -> FlowStatus:
        return await self._provider.get_status(self._id)

    async def result(self) -> Any:
        if self._future is None:
            return await self._provider.wait_for_result(self._id, self._timeout)
        try:
            if self._timeout is None:
                return await asyncio.shield(self._future)
            return await asyncio.wait_for(asyncio.shield(self._future), self._timeout)
        except TimeoutError:
            # later calls poll the flow hash
            self._provider._forget(self._id)
            self._future = None
            raise WorkflowTimeoutError(self._id, self._timeout) from None

    def __repr__(self) -> str:
        return f"RedisFlowHandle({self._id!r})"


class RedisWorkflowProvider:
    """Redis list/hash/pub-sub provider for distributed workflows.

    Example::

        provider = RedisWorkflowProvider("redis://localhost:6379/0", prefix="orders")
        coordinator.set_provider(provider)
        coordinator.register_consumers()
        await coordinator.start()
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "causeway",
        default_timeout: float | None = 30.0,
        block_timeout: float = 1.0,
        poll_interval: float = 0.5,
        retention: float = 86400.0,
        client: Any = None,
    ) -> None:
        self._redis_url = redis_url
        self._prefix = prefix
        self.default_timeout = default_timeout
        self._block_timeout = block_timeout
        self._poll_interval = poll_interval
        self.retention = retention
        self._redis: Any = client
        self._owns_client = client is None
        self._pubsub: Any = None
        self._runners: dict[str, FlowRunnerFn] = {}
        self._emitters: set[str] = set()
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._listener: asyncio.Task[None] | None = None
        self._started = False

    # ── Keys ─────────────────────────────────────────────────────

    def queue_key(self, name: str) -> str:
        return f"{self._prefix}:workflows:{name}"

    def flow_key(self, flow_id: str) -> str:
        return f"{self._prefix}:flow:{flow_id}"

    @property
    def completion_channel(self) -> str:
        return f"{self._prefix}:workflows:completed"

    # ── Registration ─────────────────────────────────────────────

    def register_consumer(self, name: str, runner: FlowRunnerFn) -> None:
        if name in self._runners:
            raise DuplicateRegistrationError("workflow consumer", name)
        self._runners[name] = runner
        if self._started:
            self._ensure_worker(name)

    def register_emitter(self, name: str) -> None:
        self._emitters.add(name)

    @property
    def worker_names(self) -> list[str]:
        return sorted(self._workers)

    def _ensure_worker(self, name: str) -> None:
        if name not in self._workers:
            self._workers[name] = asyncio.create_task(self._work(name))

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        if self._redis is None:
            try:
                import redis.asyncio as aioredis
            except ImportError as e:
                raise ImportError(
                    "redis package required for RedisWorkflowProvider. "
                    "Install with: pip install causeway[redis]"
                ) from e
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)

        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.completion_channel)
        self._started = True
        self._listener = asyncio.create_task(self._listen())
        for name in self._runners:
            self._ensure_worker(name)
        logger.info(
            "workflow.provider.started",
            provider="redis",
            workers=sorted(self._workers),
            emitter_only=sorted(self._emitters),
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        tasks = list(self._workers.values())
        if self._listener is not None:
            tasks.append(self._listener)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._listener = None

        for flow_id, future in self._pending.items():
            if not future.done():
                future.set_exception(
                    ProviderStoppedError(f'Provider stopped before flow "{flow_id}" completed')
                )
        self._pending.clear()

        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        if self._owns_client and self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.info("workflow.provider.stopped", provider="redis")

    # ── Execution ────────────────────────────────────────────────

    async def execute(
        self,
        definition: WorkflowDefinition[Any, Any],
        data: Any,
        meta: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> RedisFlowHandle:
        if not self._started:
            raise ProviderNotStartedError("RedisWorkflowProvider")
        request = FlowRequest(new_flow_id(), definition.name, data, dict(meta or {}))
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._pending[request.flow_id] = future

        key = self.flow_key(request.flow_id)
        try:
            await self._redis.hset(
                key,
                mapping={
                    "status": FlowStatus.PENDING.value,
                    "workflow": definition.name,
                    "created_at": datetime.now(UTC).isoformat(),
                },
            )
            await self._redis.expire(key, int(self.retention))
            await self._redis.rpush(self.queue_key(definition.name), json.dumps(request.to_dict()))
        except Exception as exc:
            self._pending.pop(request.flow_id, None)
            raise ProviderError(
                f'Failed to enqueue workflow "{definition.name}"',
                context=ErrorContext(definition=definition.name, flow_id=request.flow_id),
                cause=exc,
            ) from exc

        logger.debug("workflow.provider.submitted", workflow=definition.name, flow_id=request.flow_id)
        effective = self.default_timeout if timeout is None else timeout
        return RedisFlowHandle(self, request.flow_id, future, effective)

    def get_handle(self, flow_id: str, timeout: float | None = None) -> RedisFlowHandle:
        """Handle for a flow possibly started by another instance."""
        return RedisFlowHandle(self, flow_id, self._pending.get(flow_id), timeout)

    async def get_status(self, flow_id: str) -> FlowStatus:
        if self._redis is None:
            raise ProviderNotStartedError("RedisWorkflowProvider")
        status = await self._redis.hget(self.flow_key(flow_id), "status")
        return FlowStatus(status) if status else FlowStatus.PENDING

    async def wait_for_result(self, flow_id: str, timeout: float | None = None) -> Any:
        """Poll the flow hash until it is terminal."""
        if self._redis is None:
            raise ProviderNotStartedError("RedisWorkflowProvider")
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            record = await self._redis.hgetall(self.flow_key(flow_id))
            status = record.get("status") if record else None
            if status == FlowStatus.COMPLETED.value:
                return json.loads(record.get("result") or "null")
            if status == FlowStatus.FAILED.value:
                raise RemoteExecutionError(
                    record.get("error") or "Remote flow failed",
                    error_type=record.get("error_type"),
                    context=ErrorContext(flow_id=flow_id),
                )
            if deadline is not None and loop.time() >= deadline:
                raise WorkflowTimeoutError(flow_id, timeout)
            await asyncio.sleep(self._poll_interval)

    # ── Workers ──────────────────────────────────────────────────

    async def _work(self, name: str) -> None:
        queue = self.queue_key(name)
        while True:
            try:
                item = await self._redis.blpop([queue], timeout=self._block_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("workflow.provider.worker_error", workflow=name, error=str(e))
                await asyncio.sleep(self._poll_interval)
                continue
            if item is None:
                continue
            _, raw = item
            try:
                await self._process(name, raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("workflow.provider.process_error", workflow=name, error=str(e))

    async def _process(self, name: str, raw: str) -> None:
        """Run one job through its runner and record the outcome."""
        try:
            request = FlowRequest.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("workflow.provider.parse_error", workflow=name, error=str(e))
            return

        key = self.flow_key(request.flow_id)
        await self._redis.hset(key, mapping={"status": FlowStatus.RUNNING.value})
        try:
            result = await self._runners[name](request)
        except Exception as exc:
            record = {
                "status": FlowStatus.FAILED.value,
                "error": str(exc),
                "error_type": type(exc).__name__,
            }
            outcome = {"flow_id": request.flow_id, **record}
        else:
            jsonable = to_jsonable(result)
            record = {"status": FlowStatus.COMPLETED.value, "result": json.dumps(jsonable)}
            outcome = {"flow_id": request.flow_id, "status": FlowStatus.COMPLETED.value, "result": jsonable}

        record["finished_at"] = datetime.now(UTC).isoformat()
        await self._redis.hset(key, mapping=record)
        await self._redis.expire(key, int(self.retention))
        await self._redis.publish(self.completion_channel, json.dumps(outcome))

    # ── Completions ──────────────────────────────────────────────

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    outcome = json.loads(message["data"])
                except ValueError as e:
                    logger.warning("workflow.provider.completion_parse_error", error=str(e))
                    continue
                self._settle(outcome)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("workflow.provider.listener_error", error=str(e))

    def _forget(self, flow_id: str) -> None:
        future = self._pending.pop(flow_id, None)
        if future is not None and not future.done():
            future.cancel()

    def _settle(self, outcome: dict[str, Any]) -> None:
        flow_id = outcome.get("flow_id")
        future = self._pending.pop(flow_id, None)
        if future is None or future.done():
            return
        if outcome.get("status") == FlowStatus.COMPLETED.value:
            future.set_result(outcome.get("result"))
        else:
            future.set_exception(
                RemoteExecutionError(
                    outcome.get("error") or "Remote flow failed",
                    error_type=outcome.get("error_type"),
                    context=ErrorContext(flow_id=flow_id),
                )
            )


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
