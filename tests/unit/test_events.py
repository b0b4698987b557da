"""Unit tests for history event normalization."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from conftest import HistoryBuilder
from workflow_decider.history.events import (
    EventKind,
    LifecycleState,
    NormalizedEvent,
    RawHistoryEvent,
    normalize,
)


def test_every_event_kind_normalizes() -> None:
    for i, kind in enumerate(EventKind, start=1):
        event = normalize({"eventId": i, "eventTimestamp": 0, "eventType": kind.value})
        assert event.kind == kind
        assert isinstance(event.state, LifecycleState)


def test_activity_scheduled_is_an_initiator(history: HistoryBuilder) -> None:
    history.activity_scheduled("fetch", input="in", control="ctl")

    event = normalize(history.records[0])

    assert event.is_initiator
    assert event.state is LifecycleState.ACTIVE
    assert event.unit_id == "fetch"
    assert event.correlation_id == event.sequence_id == 1
    assert event.data1 == ("input", "in")
    assert event.data2 == ("control", "ctl")


def test_follow_up_events_correlate_to_their_initiator(history: HistoryBuilder) -> None:
    scheduled = history.activity_scheduled("fetch")
    history.activity_started(scheduled)
    history.activity_completed(scheduled, result="42")

    started, completed = (normalize(r) for r in history.records[1:])

    assert not started.is_initiator
    assert started.correlation_id == scheduled
    assert completed.correlation_id == scheduled
    assert completed.state is LifecycleState.SUCCESS
    assert completed.get("result") == "42"


def test_null_values_become_empty_strings(history: HistoryBuilder) -> None:
    scheduled = history.activity_scheduled("fetch")
    history.activity_failed(scheduled, reason=None, details=None)

    failed = normalize(history.records[1])

    assert failed.state is LifecycleState.ERROR
    assert failed.reason == ""
    assert failed.details == ""


def test_child_workflow_failure_keeps_reason_and_details(history: HistoryBuilder) -> None:
    initiated = history.add(
        "StartChildWorkflowExecutionInitiated",
        workflowId="child-1",
        workflowType={"name": "child", "version": "1"},
        input="x",
    )
    history.add(
        "ChildWorkflowExecutionFailed",
        initiatedEventId=initiated,
        workflowExecution={"workflowId": "child-1", "runId": "r-1"},
        reason="bad input",
        details="stack",
    )

    failed = normalize(history.records[1])

    assert failed.unit_id == "child-1"
    assert failed.correlation_id == initiated
    assert failed.reason == "bad input"
    assert failed.details == "stack"


def test_service_rejections_are_critical(history: HistoryBuilder) -> None:
    history.add(
        "ScheduleActivityTaskFailed", activityId="fetch", cause="OPEN_ACTIVITIES_LIMIT_EXCEEDED"
    )
    history.add("WorkflowExecutionCancelRequested", cause="CHILD_POLICY_APPLIED")

    rejected, cancel = (normalize(r) for r in history.records)

    assert rejected.state is LifecycleState.CRITICAL
    assert rejected.unit_id == "fetch"
    assert rejected.reason == "OPEN_ACTIVITIES_LIMIT_EXCEEDED"
    assert cancel.state is LifecycleState.CRITICAL


def test_unknown_kind_is_info_and_self_correlated() -> None:
    event = normalize({"eventId": 7, "eventTimestamp": 0, "eventType": "SomethingNew"})

    assert event.state is LifecycleState.INFO
    assert event.correlation_id == 7
    assert event.data1 is None


def test_iso_timestamps_are_parsed() -> None:
    raw = RawHistoryEvent.model_validate(
        {
            "eventId": 1,
            "eventTimestamp": "2024-01-01T00:00:05+00:00",
            "eventType": "WorkflowExecutionStarted",
            "workflowExecutionStartedEventAttributes": {"input": "hello"},
        }
    )

    event = normalize(raw)

    assert event.timestamp == datetime(2024, 1, 1, 0, 0, 5, tzinfo=UTC)
    assert event.get("input") == "hello"


def test_malformed_record_is_rejected() -> None:
    with pytest.raises(ValidationError):
        normalize({"eventType": "TimerFired"})


def test_non_numeric_linked_event_id_is_rejected(history: HistoryBuilder) -> None:
    scheduled = history.activity_scheduled("fetch")
    history.add("ActivityTaskCompleted", scheduledEventId=str(scheduled))
    history.add("ActivityTaskCompleted", scheduledEventId="first")

    assert normalize(history.records[1]).correlation_id == scheduled
    with pytest.raises(ValidationError):
        normalize(history.records[2])


def test_cancel_requests_correlate_through_control(history: HistoryBuilder) -> None:
    initiated = history.add(
        "RequestCancelExternalWorkflowExecutionInitiated",
        workflowId="other-1",
        runId="r-9",
        control="stop-other",
    )
    history.add(
        "ExternalWorkflowExecutionCancelRequested",
        initiatedEventId=initiated,
        workflowExecution={"workflowId": "other-1", "runId": "r-9"},
    )
    history.add(
        "RequestCancelExternalWorkflowExecutionFailed",
        initiatedEventId=initiated,
        workflowId="other-1",
        cause="UNKNOWN_EXTERNAL_WORKFLOW_EXECUTION",
    )

    request, accepted, failed = (normalize(r) for r in history.records)

    assert request.is_initiator
    assert request.unit_id == "stop-other"
    assert request.get("workflowId") == "other-1"
    assert accepted.state is LifecycleState.SUCCESS
    assert accepted.correlation_id == initiated
    assert failed.state is LifecycleState.ERROR
    assert failed.correlation_id == initiated
    assert failed.reason == "UNKNOWN_EXTERNAL_WORKFLOW_EXECUTION"


def test_events_compare_by_sequence_id() -> None:
    now = datetime(2024, 1, 1, tzinfo=UTC)
    a = NormalizedEvent(
        sequence_id=3,
        timestamp=now,
        kind="TimerFired",
        state=LifecycleState.SUCCESS,
        correlation_id=2,
    )
    b = NormalizedEvent(
        sequence_id=3, timestamp=now, kind="Other", state=LifecycleState.INFO, correlation_id=3
    )
    c = NormalizedEvent(
        sequence_id=1, timestamp=now, kind="Other", state=LifecycleState.INFO, correlation_id=1
    )

    assert a == b
    assert sorted([a, c]) == [c, a]


def test_initiator_must_correlate_to_itself() -> None:
    with pytest.raises(ValueError):
        NormalizedEvent(
            sequence_id=5,
            timestamp=datetime(2024, 1, 1, tzinfo=UTC),
            kind=EventKind.TIMER_STARTED.value,
            state=LifecycleState.ACTIVE,
            correlation_id=4,
            is_initiator=True,
        )
