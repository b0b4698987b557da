"""Per-run decider: replays one workflow run's history and decides its next step."""

from __future__ import annotations

import logging
import traceback
from collections.abc import Iterable, Mapping
from itertools import chain
from typing import Any

from workflow_decider.history.events import NormalizedEvent, RawHistoryEvent, normalize
from workflow_decider.history.store import HistoryStore
from workflow_decider.workflow.actions import Action
from workflow_decider.workflow.decisions import Decision, fail_workflow, finalize
from workflow_decider.workflow.definition import Workflow
from workflow_decider.workflow.graph import parse_checkpoint

logger = logging.getLogger(__name__)

CRITICAL_FAILURE_REASON = "One or more decisions were rejected by the service"


class UnregisteredActionError(LookupError):
    pass


def _describe(event: NormalizedEvent) -> str:
    text = f"{event.kind} (event {event.sequence_id})"
    if event.unit_id:
        text = f"{text} {event.unit_id}"
    if event.reason:
        text = f"{text}: {event.reason}"
    return text


class Decider:
    """Decision logic for one workflow run at a time.

    The decider owns a `HistoryStore`. A poller feeds it history pages with
    `ingest`, asks `is_more_history_required` whether to keep paging, then
    calls `decide`. `reset` prepares it for an unrelated run, so one decider
    per workflow type can be pooled. Instances are not thread-safe.

    `decide` never raises: critical service errors and exceptions from
    decision logic both become a single workflow-failure decision.
    """

    def __init__(self, workflow: Workflow) -> None:
        self.workflow = workflow
        self.history = HistoryStore()
        self.workflow_id: str | None = None
        self.run_id: str | None = None

    @property
    def task_list(self) -> str | None:
        return self.workflow.task_list

    def bind(self, *, workflow_id: str, run_id: str) -> None:
        """Record the identifiers of the run being decided."""

        self.workflow_id = workflow_id
        self.run_id = run_id

    def reset(self) -> None:
        self.history.reset()
        self.workflow_id = None
        self.run_id = None

    def _log_context(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow.name,
            "workflow_id": self.workflow_id,
            "run_id": self.run_id,
        }

    def action(self, action_id: str) -> Action:
        """Look up one of the workflow's actions by id."""

        action = self.workflow.graph.get(action_id)
        if action is None:
            raise UnregisteredActionError(
                f"Action {action_id!r} is not part of workflow {self.workflow!r}"
            )
        return action

    def require_registered(self, action: Action) -> None:
        if action.action_id not in self.workflow.graph:
            raise UnregisteredActionError(
                f"Action {action.action_id!r} is not part of workflow {self.workflow!r}"
            )

    def ingest(self, raw_events: Iterable[RawHistoryEvent | Mapping[str, Any]]) -> int:
        """Normalize raw history records and add them to the history.

        Returns:
            Number of events not seen before.

        Raises:
            pydantic.ValidationError: if a record is malformed.
        """

        added = self.history.append(normalize(raw) for raw in raw_events)
        logger.debug(
            f"Ingested {added} new events ({len(self.history)} total)",
            extra=self._log_context(),
        )
        return added

    @property
    def recorded_checkpoints(self) -> frozenset[int]:
        """Checkpoints recorded (marker) or received (signal) in the loaded history."""

        names = chain(self.history.markers(), self.history.signals())
        return frozenset(n for n in map(parse_checkpoint, names) if n is not None)

    @property
    def current_checkpoint(self) -> int:
        """Highest recorded checkpoint, 0 if none."""

        return max(self.recorded_checkpoints, default=0)

    @property
    def skipped_groups(self) -> frozenset[int]:
        """Groups the recorded checkpoints have already moved past."""

        return self.workflow.graph.superseded_groups(self.recorded_checkpoints)

    def is_more_history_required(self) -> bool:
        """False once the history reaches back to the run start or to a boundary checkpoint.

        History arrives newest-first. A checkpoint that every other group
        either precedes or follows marks the oldest event still needed.
        """

        if self.history.has_run_start:
            return False
        graph = self.workflow.graph
        return not any(graph.is_history_boundary(c) for c in self.recorded_checkpoints)

    def workflow_input(self) -> str | None:
        return self.history.workflow_input()

    def decide(self) -> list[Decision]:
        critical = self.history.critical_errors(since_last_decision=True)
        if critical:
            logger.warning(
                f"Failing run after {len(critical)} critical service error(s)",
                extra=self._log_context(),
            )
            return [fail_workflow(CRITICAL_FAILURE_REASON, "\n".join(map(_describe, critical)))]

        try:
            batch = finalize(self.workflow.decide(self))
        except Exception as e:
            logger.exception("Workflow decision logic raised", extra=self._log_context())
            return [fail_workflow(f"{type(e).__name__}: {e}", traceback.format_exc())]

        logger.info(
            f"Decided {len(batch)} decision(s) at checkpoint {self.current_checkpoint}",
            extra=self._log_context(),
        )
        return batch
