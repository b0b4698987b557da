"""Per-run replay context holding the normalized history of one workflow run."""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from collections.abc import Iterable
from itertools import chain

from .events import EventKind, LifecycleState, NormalizedEvent

logger = logging.getLogger(__name__)


class HistoryStore:
    """Accumulated history of a single workflow run, oldest event first.

    The service delivers history newest-first and may re-deliver a page, so
    `append` sorts on insert and ignores sequence ids it has already seen.

    A store belongs to exactly one run at a time and is not thread-safe; call
    `reset()` before reusing it for an unrelated run.
    """

    def __init__(self) -> None:
        self._events: list[NormalizedEvent] = []
        self._seen: set[int] = set()
        self._by_correlation: dict[int, list[NormalizedEvent]] = defaultdict(list)
        self._initiators: dict[str, set[int]] = defaultdict(set)

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> tuple[NormalizedEvent, ...]:
        return tuple(self._events)

    def append(self, events: Iterable[NormalizedEvent]) -> int:
        """Add events, skipping any sequence id already stored.

        Returns:
            Number of events actually added.
        """

        added = 0
        for event in events:
            if event.sequence_id in self._seen:
                continue
            self._seen.add(event.sequence_id)
            bisect.insort(self._events, event)
            bisect.insort(self._by_correlation[event.correlation_id], event)
            if event.is_initiator and event.unit_id is not None:
                self._initiators[event.unit_id].add(event.sequence_id)
            added += 1
        if added:
            logger.debug(f"Appended {added} events, {len(self._events)} total")
        return added

    def events_for(self, unit_id: str) -> list[NormalizedEvent]:
        """Return every event belonging to `unit_id`, oldest first.

        A unit may have been initiated several times (retries, retry timers);
        events correlated to any of its initiators are included.
        """

        initiator_ids = self._initiators.get(unit_id, ())
        return sorted(
            chain.from_iterable(self._by_correlation.get(i, ()) for i in initiator_ids)
        )

    @property
    def last_decision_id(self) -> int:
        """Sequence id of the most recent completed decision task, or 0."""

        for event in reversed(self._events):
            if event.kind == EventKind.DECISION_TASK_COMPLETED:
                return event.sequence_id
        return 0

    def since_last_decision(self) -> list[NormalizedEvent]:
        boundary = self.last_decision_id
        return [e for e in self._events if e.sequence_id > boundary]

    def markers(self) -> dict[str, str]:
        """Latest recorded details per marker name."""

        return {
            e.unit_id: e.get("details") or ""
            for e in self._events
            if e.kind == EventKind.MARKER_RECORDED and e.unit_id is not None
        }

    def signals(self) -> dict[str, str]:
        """Latest received input per signal name."""

        return {
            e.unit_id: e.get("input") or ""
            for e in self._events
            if e.kind == EventKind.WORKFLOW_EXECUTION_SIGNALED and e.unit_id is not None
        }

    @property
    def has_run_start(self) -> bool:
        return bool(self._events) and self._events[0].kind == EventKind.WORKFLOW_EXECUTION_STARTED

    def workflow_input(self) -> str | None:
        """Input of the run-start event.

        None when the start event was not loaded, which is expected once the
        poller stops paging at a checkpoint.
        """

        if self.has_run_start:
            return self._events[0].get("input")
        return None

    def critical_errors(self, *, since_last_decision: bool = False) -> list[NormalizedEvent]:
        source = self.since_last_decision() if since_last_decision else self._events
        return [e for e in source if e.state is LifecycleState.CRITICAL]

    def reset(self) -> None:
        self._events.clear()
        self._seen.clear()
        self._by_correlation.clear()
        self._initiators.clear()
