"""Workflow definitions: actions, retry policy, dependency graph and decisions."""

from workflow_decider.workflow.actions import (
    Action,
    ActionResult,
    ActivityAction,
    CancelExternalWorkflowAction,
    ChildWorkflowAction,
    ContinueAsNewAction,
    MarkerAction,
    OutputNotAvailableError,
    SignalAction,
    TimerAction,
)
from workflow_decider.workflow.decisions import ChildPolicy, Decision, DecisionType
from workflow_decider.workflow.definition import Workflow
from workflow_decider.workflow.graph import DependencyGraph, GraphBuilder, GraphDefinitionError
from workflow_decider.workflow.policy import RetryPolicy
from workflow_decider.workflow.state_machine import ActionState, IllegalTransitionError

__all__ = [
    "Action",
    "ActionResult",
    "ActionState",
    "ActivityAction",
    "CancelExternalWorkflowAction",
    "ChildPolicy",
    "ChildWorkflowAction",
    "ContinueAsNewAction",
    "Decision",
    "DecisionType",
    "DependencyGraph",
    "GraphBuilder",
    "GraphDefinitionError",
    "IllegalTransitionError",
    "MarkerAction",
    "OutputNotAvailableError",
    "RetryPolicy",
    "SignalAction",
    "TimerAction",
    "Workflow",
]
