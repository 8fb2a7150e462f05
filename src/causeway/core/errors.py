"""
Structured error types for causeway.

Every failure raised by the coordinators, providers and the step engine is a
``CausewayError`` subclass carrying a category, structured context and an
optional chained cause. Handler errors are the exception: they are re-raised
unchanged so callers always observe the error their own code produced.

Manifesto:
    - **Typed hierarchy:** registration, validation, provider and execution
      failures are distinguishable with ``isinstance``
    - **Stable messages:** "duplicate", "not configured", "payload validation
      failed" and "result validation failed" are part of the contract
    - **Rich context:** errors carry definition, step, flow and event ids
    - **Original errors win:** rollback failures are recorded, never raised

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        CausewayError                          │
        │              (category, context, cause)                       │
        ├──────────────────────────────────────────────────────────────┤
        │  DefinitionError          RegistrationError                   │
        │  (DEFINITION)             (REGISTRATION)                      │
        │                             │                                 │
        │                           DuplicateRegistrationError          │
        │                           UnregisteredDefinitionError         │
        │                           ConsumerConfigurationError          │
        │                           NoConsumerError                     │
        │                                                               │
        │  NotConfiguredError       SchemaValidationError               │
        │  (CONFIG)                 (VALIDATION)                        │
        │                             │                                 │
        │                           PayloadValidationError              │
        │                           ResultValidationError               │
        │                             └─ StepOutputValidationError      │
        │                                                               │
        │  ProviderError            StepExecutionError  RollbackError   │
        │  (PROVIDER)               (EXECUTION)         (EXECUTION)     │
        │    │                                                          │
        │  ProviderNotStartedError  WaitTimeoutError                    │
        │  ProviderStoppedError     (TIMEOUT)                           │
        │  RemoteExecutionError       └─ WorkflowTimeoutError           │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = DuplicateRegistrationError("event", "order.placed")
    >>> str(err)
    'Duplicate event registration: "order.placed" is already registered'
    >>> err.category
    <ErrorCategory.REGISTRATION: 'REGISTRATION'>

Tags:
    error-handling, exception-hierarchy, error-context, causeway

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification and log routing."""

    DEFINITION = "DEFINITION"
    REGISTRATION = "REGISTRATION"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    PROVIDER = "PROVIDER"
    EXECUTION = "EXECUTION"
    TIMEOUT = "TIMEOUT"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured context attached to a :class:`CausewayError`.

    Attributes:
        definition: Event or workflow name involved
        step: Workflow step name, if any
        flow_id: Workflow flow identifier
        event_id: Event identifier
        correlation_id: Correlation id of the surrounding call chain
        field_name: Offending field for validation failures
        metadata: Additional key-value pairs
    """

    definition: str | None = None
    step: str | None = None
    flow_id: str | None = None
    event_id: str | None = None
    correlation_id: str | None = None
    field_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["definition", "step", "flow_id", "event_id", "correlation_id", "field_name"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CausewayError(Exception):
    """Base class for all causeway errors.

    Subclasses set ``default_category``; callers may override it per
    instance. ``cause`` is chained onto ``__cause__``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CausewayError:
        """Add context to this error (fluent API).

        Usage:
            raise ProviderError("Enqueue failed").with_context(
                definition="order.placed", event_id=event_id
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DEFINITION / REGISTRATION ERRORS
# =============================================================================


class DefinitionError(CausewayError):
    """Malformed definition or misuse of a sealed step builder."""

    default_category = ErrorCategory.DEFINITION


class RegistrationError(CausewayError):
    """Registry misuse."""

    default_category = ErrorCategory.REGISTRATION


class DuplicateRegistrationError(RegistrationError):
    """A definition or consumer name was registered twice."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(
            f'Duplicate {kind} registration: "{name}" is already registered',
            context=ErrorContext(definition=name),
        )


class UnregisteredDefinitionError(RegistrationError):
    """A name was used that no definition was registered under."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(
            f'{kind.capitalize()} "{name}" is not registered',
            context=ErrorContext(definition=name),
        )


class ConsumerConfigurationError(RegistrationError):
    """Consumer step handlers do not match the workflow definition."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(
            f'Workflow "{name}": {message}',
            context=ErrorContext(definition=name),
        )


class NoConsumerError(RegistrationError):
    """A provider was asked to run a workflow it has no consumer for."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f'Workflow "{name}" has no consumer registered on this provider',
            context=ErrorContext(definition=name),
        )


class NotConfiguredError(CausewayError):
    """An accessor was used before its provider was configured."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, system: str):
        self.system = system
        super().__init__(f"{system} not configured")


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class SchemaValidationError(CausewayError):
    """A value did not satisfy its schema."""

    default_category = ErrorCategory.VALIDATION
    phase = "schema"

    def __init__(
        self,
        kind: str,
        name: str,
        details: str,
        *,
        field: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ):
        self.kind = kind
        self.name = name
        self.field = field
        self.errors = errors or []
        subject = f'{kind.capitalize()} "{name}"'
        super().__init__(
            f"{subject} {self.phase} validation failed: {details}",
            context=ErrorContext(definition=name, field_name=field),
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.errors:
            result["errors"] = self.errors
        return result


class PayloadValidationError(SchemaValidationError):
    """Inbound data rejected before any handler ran."""

    phase = "payload"


class ResultValidationError(SchemaValidationError):
    """Handler or ``on_complete`` returned a value outside the result schema."""

    phase = "result"


class StepOutputValidationError(ResultValidationError):
    """A step's output did not satisfy its declared output schema."""

    def __init__(self, workflow: str, step: str, details: str, **kwargs: Any):
        self.step = step
        super().__init__("workflow", workflow, f"step {step!r}: {details}", **kwargs)
        self.context.step = step


# =============================================================================
# PROVIDER ERRORS
# =============================================================================


class ProviderError(CausewayError):
    """Provider transport or lifecycle failure."""

    default_category = ErrorCategory.PROVIDER


class ProviderNotStartedError(ProviderError):
    """A provider operation requiring ``start()`` was called too early."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} is not started")


class ProviderStoppedError(ProviderError):
    """Pending work was abandoned because the provider stopped."""


class RemoteExecutionError(ProviderError):
    """A handler failed in another process; only its message and type survive."""

    default_category = ErrorCategory.EXECUTION

    def __init__(self, message: str, *, error_type: str | None = None, **kwargs: Any):
        self.error_type = error_type
        super().__init__(message, **kwargs)


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class StepExecutionError(CausewayError):
    """Wraps the error a workflow step's ``execute`` raised.

    The engine raises this after rollback completes; the flow runner unwraps
    it so callers see ``cause``.
    """

    default_category = ErrorCategory.EXECUTION

    def __init__(self, step_name: str, cause: BaseException):
        self.step_name = step_name
        super().__init__(
            f'Step "{step_name}" failed: {cause}',
            context=ErrorContext(step=step_name),
            cause=cause,
        )


class RollbackError(CausewayError):
    """A rollback handler raised. Logged and collected, never raised."""

    default_category = ErrorCategory.EXECUTION

    def __init__(self, step_name: str, cause: BaseException):
        self.step_name = step_name
        super().__init__(
            f'Rollback of step "{step_name}" failed: {cause}',
            context=ErrorContext(step=step_name),
            cause=cause,
        )


class WaitTimeoutError(CausewayError):
    """Waiting on a handle exceeded its timeout."""

    default_category = ErrorCategory.TIMEOUT


class WorkflowTimeoutError(WaitTimeoutError):
    """A flow did not finish within its timeout."""

    def __init__(self, flow_id: str, timeout: float):
        self.flow_id = flow_id
        self.timeout = timeout
        super().__init__(
            f'Flow "{flow_id}" timed out after {timeout}s',
            context=ErrorContext(flow_id=flow_id),
        )


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CausewayError",
    "DefinitionError",
    "RegistrationError",
    "DuplicateRegistrationError",
    "UnregisteredDefinitionError",
    "ConsumerConfigurationError",
    "NoConsumerError",
    "NotConfiguredError",
    "SchemaValidationError",
    "PayloadValidationError",
    "ResultValidationError",
    "StepOutputValidationError",
    "ProviderError",
    "ProviderNotStartedError",
    "ProviderStoppedError",
    "RemoteExecutionError",
    "StepExecutionError",
    "RollbackError",
    "WaitTimeoutError",
    "WorkflowTimeoutError",
]
