"""Workflows: definitions, the step/rollback engine, providers and the coordinator.

Usage::

    from causeway.workflows import StepHandler, WorkflowCoordinator, define_workflow

    FULFIL = define_workflow("order.fulfil", data=Order, result=Receipt).steps(
        lambda s: s.sequential("validate", "charge", "notify")
    )

    coordinator = WorkflowCoordinator()
    coordinator.register_definition(FULFIL)
    coordinator.add_consumer(FULFIL, FulfilOrder, [Payments])
    coordinator.register_consumers()
    await coordinator.start()

    handle = await coordinator.create_executor().execute(FULFIL, {"order_id": "o-1"})
    receipt = await handle.result()

Modules
-------
definition   define_workflow, StepBuilder, StepGroup
engine       StepEngine -- sequential/parallel groups, reverse-order rollback
coordinator  WorkflowCoordinator, WorkflowExecutor
memory       InProcessWorkflowProvider
redis        RedisWorkflowProvider
"""

from causeway.workflows.consumer import StepHandler, WorkflowConsumer
from causeway.workflows.context import StepContext, WorkflowContext
from causeway.workflows.coordinator import WorkflowCoordinator, WorkflowExecutor
from causeway.workflows.definition import (
    StepBuilder,
    StepDefinition,
    StepGroup,
    StepKind,
    WorkflowDefinition,
    define_workflow,
)
from causeway.workflows.engine import FlowRun, StepEngine
from causeway.workflows.memory import InProcessWorkflowProvider
from causeway.workflows.provider import (
    CompletedFlowHandle,
    FlowHandle,
    FlowRequest,
    FlowStatus,
    WorkflowProvider,
)
from causeway.workflows.runner import FlowRunner

__all__ = [
    "StepHandler",
    "WorkflowConsumer",
    "StepContext",
    "WorkflowContext",
    "WorkflowCoordinator",
    "WorkflowExecutor",
    "StepBuilder",
    "StepDefinition",
    "StepGroup",
    "StepKind",
    "WorkflowDefinition",
    "define_workflow",
    "FlowRun",
    "StepEngine",
    "InProcessWorkflowProvider",
    "CompletedFlowHandle",
    "FlowHandle",
    "FlowRequest",
    "FlowStatus",
    "WorkflowProvider",
    "FlowRunner",
]
