"""Test configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from workflow_decider.core.config import DeciderSettings

T0 = datetime(2024, 1, 1, tzinfo=UTC)


class HistoryBuilder:
    """Builds raw history records with increasing event ids and timestamps."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)) -> None:
        self.records: list[dict[str, Any]] = []
        self.now = start
        self._step = step

    def add(self, event_type: str, *, advance: timedelta | None = None, **attributes: Any) -> int:
        self.now += self._step if advance is None else advance
        event_id = len(self.records) + 1
        key = f"{event_type[:1].lower()}{event_type[1:]}EventAttributes"
        self.records.append(
            {
                "eventId": event_id,
                "eventTimestamp": self.now.timestamp(),
                "eventType": event_type,
                key: attributes,
            }
        )
        return event_id

    def newest_first(self) -> list[dict[str, Any]]:
        return list(reversed(self.records))

    def workflow_started(self, input: str | None = None) -> int:
        return self.add(
            "WorkflowExecutionStarted",
            input=input,
            workflowType={"name": "wf", "version": "1"},
            taskList={"name": "default"},
        )

    def decision_completed(self) -> int:
        scheduled = self.add("DecisionTaskScheduled", taskList={"name": "default"})
        started = self.add("DecisionTaskStarted", scheduledEventId=scheduled)
        return self.add(
            "DecisionTaskCompleted", scheduledEventId=scheduled, startedEventId=started
        )

    def activity_scheduled(
        self, activity_id: str, *, input: str | None = None, control: str | None = None
    ) -> int:
        return self.add(
            "ActivityTaskScheduled",
            activityId=activity_id,
            activityType={"name": activity_id.upper(), "version": "1"},
            input=input,
            control=control,
        )

    def activity_started(self, scheduled_id: int) -> int:
        return self.add("ActivityTaskStarted", scheduledEventId=scheduled_id, identity="worker")

    def activity_completed(self, scheduled_id: int, result: str | None = None) -> int:
        return self.add("ActivityTaskCompleted", scheduledEventId=scheduled_id, result=result)

    def activity_failed(
        self, scheduled_id: int, reason: str | None = None, details: str | None = None
    ) -> int:
        return self.add(
            "ActivityTaskFailed", scheduledEventId=scheduled_id, reason=reason, details=details
        )

    def timer_started(self, timer_id: str, *, control: str | None = None, seconds: int = 5) -> int:
        return self.add(
            "TimerStarted", timerId=timer_id, control=control, startToFireTimeout=str(seconds)
        )

    def timer_fired(self, timer_id: str, started_id: int) -> int:
        return self.add("TimerFired", timerId=timer_id, startedEventId=started_id)

    def marker_recorded(self, name: str, details: str | None = None) -> int:
        return self.add("MarkerRecorded", markerName=name, details=details)

    def signaled(self, name: str, input: str | None = None) -> int:
        return self.add("WorkflowExecutionSignaled", signalName=name, input=input)


@pytest.fixture
def history() -> HistoryBuilder:
    """Provide an empty raw history builder."""
    return HistoryBuilder()


@pytest.fixture
def settings() -> DeciderSettings:
    """Provide test decider settings, ignoring any local .env file."""
    return DeciderSettings(
        _env_file=None,
        domain="test-domain",
        task_list="decisions",
        identity="test-decider",
        error_backoff_seconds=0.0,
    )
