"""causeway: event and workflow coordination with saga-style rollback.

Definitions describe *what* (names and schemas, plus step structure for
workflows); consumers implement *how*; providers decide *where* it runs
(in-process or across processes through Redis).
"""

from causeway.container import Container, Resolver
from causeway.core.errors import (
    CausewayError,
    ConsumerConfigurationError,
    DefinitionError,
    DuplicateRegistrationError,
    NotConfiguredError,
    PayloadValidationError,
    RemoteExecutionError,
    ResultValidationError,
    RollbackError,
    StepExecutionError,
    UnregisteredDefinitionError,
    WorkflowTimeoutError,
)
from causeway.core.settings import CausewaySettings, get_settings
from causeway.events import (
    EmitOptions,
    EventContext,
    EventCoordinator,
    EventDefinition,
    EventSubscription,
    InProcessEventProvider,
    define_event,
)
from causeway.runtime import Runtime
from causeway.workflows import (
    FlowStatus,
    InProcessWorkflowProvider,
    StepContext,
    StepHandler,
    WorkflowContext,
    WorkflowCoordinator,
    WorkflowDefinition,
    define_workflow,
)

__version__ = "0.1.0"

__all__ = [
    "Container",
    "Resolver",
    "CausewayError",
    "ConsumerConfigurationError",
    "DefinitionError",
    "DuplicateRegistrationError",
    "NotConfiguredError",
    "PayloadValidationError",
    "RemoteExecutionError",
    "ResultValidationError",
    "RollbackError",
    "StepExecutionError",
    "UnregisteredDefinitionError",
    "WorkflowTimeoutError",
    "CausewaySettings",
    "get_settings",
    "EmitOptions",
    "EventContext",
    "EventCoordinator",
    "EventDefinition",
    "EventSubscription",
    "InProcessEventProvider",
    "define_event",
    "Runtime",
    "FlowStatus",
    "InProcessWorkflowProvider",
    "StepContext",
    "StepHandler",
    "WorkflowContext",
    "WorkflowCoordinator",
    "WorkflowDefinition",
    "define_workflow",
]
