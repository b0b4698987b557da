"""Decision task polling loop."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from enum import Enum

from workflow_decider.core.config import DeciderSettings
from workflow_decider.core.decider import Decider
from workflow_decider.workflow.definition import Workflow

from .client import DecisionTaskPage, WorkflowService

logger = logging.getLogger(__name__)


class PollResult(str, Enum):
    HANDLED = "handled"
    IDLE = "idle"
    SKIPPED = "skipped"
    FAILED = "failed"


class DecisionPoller:
    """Polls one task list, replays each task's history and answers it.

    Workflows are injected, keyed by name and version. One `Decider` per
    workflow type is kept and reset before each task. A poller instance is
    single-threaded; run several pollers (each with its own instance) for
    parallelism.
    """

    def __init__(
        self,
        *,
        service: WorkflowService,
        workflows: Iterable[Workflow],
        settings: DeciderSettings,
    ) -> None:
        self._service = service
        self._settings = settings
        self._workflows: dict[tuple[str, str], Workflow] = {}
        for workflow in workflows:
            if workflow.key in self._workflows:
                raise ValueError(f"Duplicate workflow registration: {workflow!r}")
            self._workflows[workflow.key] = workflow
        self._deciders: dict[tuple[str, str], Decider] = {}

    def _poll(self, next_page_token: str | None) -> DecisionTaskPage | None:
        return self._service.poll_for_decision_task(
            domain=self._settings.domain,
            task_list=self._settings.task_list,
            identity=self._settings.identity,
            next_page_token=next_page_token,
            maximum_page_size=self._settings.maximum_page_size,
            reverse_order=True,
        )

    def _decider_for(self, workflow: Workflow) -> Decider:
        decider = self._deciders.get(workflow.key)
        if decider is None:
            decider = Decider(workflow)
            self._deciders[workflow.key] = decider
        return decider

    def poll_once(self) -> PollResult:
        """Handle at most one decision task.

        Errors are logged and reported as FAILED; the task is left unanswered
        so the service times it out and hands it out again.
        """

        try:
            first = self._poll(next_page_token=None)
        except Exception:
            logger.exception("Polling for a decision task failed")
            return PollResult.FAILED
        if first is None:
            return PollResult.IDLE

        context = {"workflow_id": first.workflow_id, "run_id": first.run_id}
        workflow = self._workflows.get(first.workflow_key)
        if workflow is None:
            logger.error(
                f"No workflow registered for {first.workflow_name} {first.workflow_version}",
                extra=context,
            )
            return PollResult.SKIPPED

        decider = self._decider_for(workflow)
        decider.reset()
        decider.bind(workflow_id=first.workflow_id, run_id=first.run_id)
        try:
            decider.ingest(first.events)
            page, pages = first, 1
            while page.next_page_token and decider.is_more_history_required():
                next_page = self._poll(next_page_token=page.next_page_token)
                if next_page is None:
                    raise RuntimeError(f"History page {pages + 1} was not returned")
                page = next_page
                decider.ingest(page.events)
                pages += 1

            decisions = decider.decide()
            self._service.respond_decision_task_completed(
                task_token=first.task_token,
                decisions=[d.to_wire() for d in decisions],
            )
        except Exception:
            logger.exception("Decision task failed", extra=context)
            return PollResult.FAILED
        finally:
            # Do not hold on to a finished run's history between tasks.
            decider.reset()

        logger.info(
            f"Answered decision task with {len(decisions)} decision(s) "
            f"after {pages} history page(s)",
            extra=context,
        )
        return PollResult.HANDLED

    def run(self, stop: threading.Event) -> None:
        """Poll until `stop` is set."""

        logger.info(
            f"Decision poller started on {self._settings.domain}/{self._settings.task_list}",
            extra={"identity": self._settings.identity},
        )
        while not stop.is_set():
            if self.poll_once() is PollResult.FAILED:
                stop.wait(self._settings.error_backoff_seconds)
        logger.info("Decision poller stopped")
