"""Core primitives shared by the event and workflow subsystems."""

from causeway.core.errors import (
    CausewayError,
    ErrorCategory,
    ErrorContext,
)
from causeway.core.logging import (
    bound_context,
    capture_propagation_meta,
    configure_logging,
    get_logger,
)
from causeway.core.settings import Backend, CausewaySettings, get_settings

__all__ = [
    "CausewayError",
    "ErrorCategory",
    "ErrorContext",
    "bound_context",
    "capture_propagation_meta",
    "configure_logging",
    "get_logger",
    "Backend",
    "CausewaySettings",
    "get_settings",
]
