"""Boundary to the remote workflow coordination service.

Transport is out of scope here: anything implementing `WorkflowService`
(an HTTP client, an SDK wrapper, a test fake) can drive a `DecisionPoller`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class DecisionTaskPage:
    """One page of a decision task's history, newest events first."""

    task_token: str
    workflow_id: str
    run_id: str
    workflow_name: str
    workflow_version: str
    events: Sequence[Mapping[str, Any]]
    next_page_token: str | None = None

    @property
    def workflow_key(self) -> tuple[str, str]:
        return (self.workflow_name, self.workflow_version)

    @staticmethod
    def from_response(response: Mapping[str, Any]) -> DecisionTaskPage | None:
        """Build a page from a poll-for-decision-task response body.

        Returns None when the long poll ended without a task (empty token).
        """

        token = response.get("taskToken")
        if not token:
            return None
        execution = response.get("workflowExecution") or {}
        workflow_type = response.get("workflowType") or {}
        return DecisionTaskPage(
            task_token=token,
            workflow_id=str(execution.get("workflowId", "")),
            run_id=str(execution.get("runId", "")),
            workflow_name=str(workflow_type.get("name", "")),
            workflow_version=str(workflow_type.get("version", "")),
            events=tuple(response.get("events") or ()),
            next_page_token=response.get("nextPageToken") or None,
        )


class WorkflowService(Protocol):
    """Calls the decider needs from the coordination service."""

    def poll_for_decision_task(
        self,
        *,
        domain: str,
        task_list: str,
        identity: str,
        next_page_token: str | None,
        maximum_page_size: int,
        reverse_order: bool,
    ) -> DecisionTaskPage | None: ...

    def respond_decision_task_completed(
        self, *, task_token: str, decisions: list[dict[str, Any]]
    ) -> None: ...
