"""
Provider factories driven by :class:`CausewaySettings`.

Each function reads one ``*_backend`` setting and builds the matching
provider, importing backend modules lazily so the Redis provider is only
loaded when selected.

Usage::

    from causeway.core.settings import get_settings
    from causeway.factory import create_event_provider

    provider = create_event_provider(get_settings())
"""

from __future__ import annotations

from typing import Any

from causeway.core.settings import Backend, CausewaySettings
from causeway.workflows.engine import StepEngine


def create_event_provider(settings: CausewaySettings) -> Any:
    """Create an event provider based on *settings.event_backend*."""
    match settings.event_backend:
        case Backend.MEMORY:
            from causeway.events.memory import InProcessEventProvider

            return InProcessEventProvider(idempotency_ttl=settings.idempotency_ttl_seconds)
        case Backend.REDIS:
            from causeway.events.redis import RedisEventProvider

            return RedisEventProvider(
                settings.redis_url,
                prefix=settings.queue_prefix,
                block_timeout=settings.worker_block_timeout,
                idempotency_ttl=settings.idempotency_ttl_seconds,
                completion_ttl=settings.event_completion_ttl_seconds,
            )


def create_workflow_provider(settings: CausewaySettings) -> Any:
    """Create a workflow provider based on *settings.workflow_backend*."""
    match settings.workflow_backend:
        case Backend.MEMORY:
            from causeway.workflows.memory import InProcessWorkflowProvider

            return InProcessWorkflowProvider(
                default_timeout=settings.workflow_timeout_seconds,
                retention=settings.flow_retention_seconds,
            )
        case Backend.REDIS:
            from causeway.workflows.redis import RedisWorkflowProvider

            return RedisWorkflowProvider(
                settings.redis_url,
                prefix=settings.queue_prefix,
                default_timeout=settings.workflow_timeout_seconds,
                block_timeout=settings.worker_block_timeout,
            )


def create_step_engine(settings: CausewaySettings) -> StepEngine:
    return StepEngine(parallel_concurrency=settings.parallel_concurrency)


__all__ = ["create_event_provider", "create_workflow_provider", "create_step_engine"]
