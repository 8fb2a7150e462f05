"""
Structured logging and ambient propagation context.

Manifesto:
    Every emission and every flow should be traceable across processes.
    Correlation ids and the id of the event being handled live in structlog's contextvars:
    they show up in every log line automatically and double as the ambient
    source the coordinators read when a new event or flow is started.

Architecture:
    ::

        configure_logging(level, json_format, service)
            └─ structlog processors:
                 merge_contextvars → add_log_level → TimeStamper
                 → service metadata → JSON / Console renderer

        bound_context(correlation_id=..., event_id=...)
            └─ structlog.contextvars (task-local)
                 ├─ merged into every log line
                 └─ read back by capture_propagation_meta()

Examples:
    >>> configure_logging(level="DEBUG", json_format=False, service="orders")
    >>> logger = get_logger(__name__)
    >>> with bound_context(correlation_id="c1"):
    ...     capture_propagation_meta()
    {'correlation_id': 'c1'}

Tags:
    logging, structlog, correlation, tracing, causeway

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Keys carried across process boundaries in message/flow meta.
PROPAGATION_KEYS: tuple[str, ...] = (
    "correlation_id",
    "trace_id",
    "span_id",
    "parent_span_id",
)

_SERVICE_NAME = "causeway"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "causeway",
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name included in every log line
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]
    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """Scope context to a block, restoring previous values on exit.

    ``None`` values are skipped so optional ids never shadow outer ones.
    """
    values = {key: value for key, value in kwargs.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_bound_context() -> dict[str, Any]:
    """Return a copy of everything bound in this task's logging context."""
    return dict(structlog.contextvars.get_contextvars())


def capture_propagation_meta() -> dict[str, Any]:
    """Return the propagation keys currently bound in this task's context."""
    bound = structlog.contextvars.get_contextvars()
    return {key: bound[key] for key in PROPAGATION_KEYS if bound.get(key) is not None}


__all__ = [
    "PROPAGATION_KEYS",
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "bound_context",
    "get_bound_context",
    "capture_propagation_meta",
]
