"""Workflow orchestration: pipeline, callback bridge and reconciliation."""

from inkstream.orchestration.callback import CallbackBridge
from inkstream.orchestration.engine import WorkflowOrchestrator
from inkstream.orchestration.executions import ExecutionRegistry
from inkstream.orchestration.handlers import StepHandlers, artifact_key
from inkstream.orchestration.reconciler import TerminalEventReconciler
from inkstream.orchestration.steps import (
    PIPELINE,
    Continue,
    Fail,
    StepDefinition,
    StepName,
    StepOutcome,
    Suspend,
    WorkflowContext,
    remaining_steps,
)

__all__ = [
    "WorkflowOrchestrator",
    "CallbackBridge",
    "ExecutionRegistry",
    "TerminalEventReconciler",
    "StepHandlers",
    "artifact_key",
    "PIPELINE",
    "StepDefinition",
    "StepName",
    "StepOutcome",
    "Continue",
    "Suspend",
    "Fail",
    "WorkflowContext",
    "remaining_steps",
]
