"""Coordination service boundary and the decision poller."""

from workflow_decider.service.client import DecisionTaskPage, WorkflowService
from workflow_decider.service.poller import DecisionPoller, PollResult

__all__ = ["DecisionPoller", "DecisionTaskPage", "PollResult", "WorkflowService"]
