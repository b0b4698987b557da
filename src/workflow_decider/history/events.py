"""Normalization of raw history records into uniform, immutable events.

The remote service reports history as heterogeneous records carrying one
attribute object per event kind. Decision logic only needs a handful of facts
about each record, so every kind is mapped through a single lookup table onto
`NormalizedEvent`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, TypeAdapter


class LifecycleState(str, Enum):
    """Semantic meaning of an event for the unit of work it belongs to."""

    ACTIVE = "active"
    SUCCESS = "success"
    ERROR = "error"
    CRITICAL = "critical"
    INFO = "info"


class EventKind(str, Enum):
    """Wire-level event kinds reported by the coordination service."""

    WORKFLOW_EXECUTION_STARTED = "WorkflowExecutionStarted"
    WORKFLOW_EXECUTION_CANCEL_REQUESTED = "WorkflowExecutionCancelRequested"
    WORKFLOW_EXECUTION_COMPLETED = "WorkflowExecutionCompleted"
    COMPLETE_WORKFLOW_EXECUTION_FAILED = "CompleteWorkflowExecutionFailed"
    WORKFLOW_EXECUTION_FAILED = "WorkflowExecutionFailed"
    FAIL_WORKFLOW_EXECUTION_FAILED = "FailWorkflowExecutionFailed"
    WORKFLOW_EXECUTION_TIMED_OUT = "WorkflowExecutionTimedOut"
    WORKFLOW_EXECUTION_CANCELED = "WorkflowExecutionCanceled"
    CANCEL_WORKFLOW_EXECUTION_FAILED = "CancelWorkflowExecutionFailed"
    WORKFLOW_EXECUTION_CONTINUED_AS_NEW = "WorkflowExecutionContinuedAsNew"
    CONTINUE_AS_NEW_WORKFLOW_EXECUTION_FAILED = "ContinueAsNewWorkflowExecutionFailed"
    WORKFLOW_EXECUTION_TERMINATED = "WorkflowExecutionTerminated"
    WORKFLOW_EXECUTION_SIGNALED = "WorkflowExecutionSignaled"

    DECISION_TASK_SCHEDULED = "DecisionTaskScheduled"
    DECISION_TASK_STARTED = "DecisionTaskStarted"
    DECISION_TASK_COMPLETED = "DecisionTaskCompleted"
    DECISION_TASK_TIMED_OUT = "DecisionTaskTimedOut"

    ACTIVITY_TASK_SCHEDULED = "ActivityTaskScheduled"
    SCHEDULE_ACTIVITY_TASK_FAILED = "ScheduleActivityTaskFailed"
    ACTIVITY_TASK_STARTED = "ActivityTaskStarted"
    ACTIVITY_TASK_COMPLETED = "ActivityTaskCompleted"
    ACTIVITY_TASK_FAILED = "ActivityTaskFailed"
    ACTIVITY_TASK_TIMED_OUT = "ActivityTaskTimedOut"
    ACTIVITY_TASK_CANCELED = "ActivityTaskCanceled"
    ACTIVITY_TASK_CANCEL_REQUESTED = "ActivityTaskCancelRequested"
    REQUEST_CANCEL_ACTIVITY_TASK_FAILED = "RequestCancelActivityTaskFailed"

    MARKER_RECORDED = "MarkerRecorded"
    RECORD_MARKER_FAILED = "RecordMarkerFailed"

    TIMER_STARTED = "TimerStarted"
    START_TIMER_FAILED = "StartTimerFailed"
    TIMER_FIRED = "TimerFired"
    TIMER_CANCELED = "TimerCanceled"
    CANCEL_TIMER_FAILED = "CancelTimerFailed"

    START_CHILD_WORKFLOW_EXECUTION_INITIATED = "StartChildWorkflowExecutionInitiated"
    START_CHILD_WORKFLOW_EXECUTION_FAILED = "StartChildWorkflowExecutionFailed"
    CHILD_WORKFLOW_EXECUTION_STARTED = "ChildWorkflowExecutionStarted"
    CHILD_WORKFLOW_EXECUTION_COMPLETED = "ChildWorkflowExecutionCompleted"
    CHILD_WORKFLOW_EXECUTION_FAILED = "ChildWorkflowExecutionFailed"
    CHILD_WORKFLOW_EXECUTION_TIMED_OUT = "ChildWorkflowExecutionTimedOut"
    CHILD_WORKFLOW_EXECUTION_CANCELED = "ChildWorkflowExecutionCanceled"
    CHILD_WORKFLOW_EXECUTION_TERMINATED = "ChildWorkflowExecutionTerminated"

    SIGNAL_EXTERNAL_WORKFLOW_EXECUTION_INITIATED = "SignalExternalWorkflowExecutionInitiated"
    SIGNAL_EXTERNAL_WORKFLOW_EXECUTION_FAILED = "SignalExternalWorkflowExecutionFailed"
    EXTERNAL_WORKFLOW_EXECUTION_SIGNALED = "ExternalWorkflowExecutionSignaled"

    REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION_INITIATED = (
        "RequestCancelExternalWorkflowExecutionInitiated"
    )
    REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION_FAILED = (
        "RequestCancelExternalWorkflowExecutionFailed"
    )
    EXTERNAL_WORKFLOW_EXECUTION_CANCEL_REQUESTED = "ExternalWorkflowExecutionCancelRequested"

    LAMBDA_FUNCTION_SCHEDULED = "LambdaFunctionScheduled"
    LAMBDA_FUNCTION_STARTED = "LambdaFunctionStarted"
    LAMBDA_FUNCTION_COMPLETED = "LambdaFunctionCompleted"
    LAMBDA_FUNCTION_FAILED = "LambdaFunctionFailed"
    LAMBDA_FUNCTION_TIMED_OUT = "LambdaFunctionTimedOut"
    SCHEDULE_LAMBDA_FUNCTION_FAILED = "ScheduleLambdaFunctionFailed"
    START_LAMBDA_FUNCTION_FAILED = "StartLambdaFunctionFailed"


@dataclass(frozen=True, slots=True, order=True)
class NormalizedEvent:
    """One history event reduced to the facts decision logic relies on.

    Equality, hashing and ordering use `sequence_id` only.

    `correlation_id` threads a unit's events together: initiators carry their
    own id, follow-up events carry the id of the initiator they belong to.
    """

    sequence_id: int
    timestamp: datetime = field(compare=False)
    kind: str = field(compare=False)
    state: LifecycleState = field(compare=False)
    correlation_id: int = field(compare=False)
    is_initiator: bool = field(default=False, compare=False)
    unit_id: str | None = field(default=None, compare=False)
    data1: tuple[str, str] | None = field(default=None, compare=False)
    data2: tuple[str, str] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.is_initiator and self.correlation_id != self.sequence_id:
            raise ValueError(
                f"Initiator event {self.sequence_id} must correlate to itself, "
                f"not {self.correlation_id}"
            )

    def get(self, label: str) -> str | None:
        """Return the value stored under `label`, if this kind records one."""

        for pair in (self.data1, self.data2):
            if pair is not None and pair[0] == label:
                return pair[1]
        return None

    @property
    def reason(self) -> str | None:
        for label in ("reason", "timeoutType", "cause"):
            value = self.get(label)
            if value is not None:
                return value
        return None

    @property
    def details(self) -> str | None:
        return self.get("details")


class RawHistoryEvent(BaseModel):
    """A history record as delivered by the service.

    Only the envelope is typed; the kind-specific attribute object is kept as
    an extra field named `<lowerCamelKind>EventAttributes`.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    event_id: int = Field(alias="eventId", gt=0)
    event_timestamp: datetime = Field(alias="eventTimestamp")
    event_type: str = Field(alias="eventType", min_length=1)

    @property
    def attributes(self) -> Mapping[str, Any]:
        key = f"{self.event_type[:1].lower()}{self.event_type[1:]}EventAttributes"
        value = (self.model_extra or {}).get(key)
        return value if isinstance(value, Mapping) else {}


@dataclass(frozen=True, slots=True)
class _KindRule:
    state: LifecycleState
    initiator: bool = False
    unit_field: str | None = None
    correlation_field: str | None = None
    # Dotted attribute paths; the label is the last path segment.
    data: tuple[str, ...] = ()


# Ids of linked events, e.g. scheduledEventId. Lax mode accepts numeric strings.
_EVENT_ID = TypeAdapter(PositiveInt)

_INFO = _KindRule(LifecycleState.INFO)

_ACTIVE = LifecycleState.ACTIVE
_SUCCESS = LifecycleState.SUCCESS
_ERROR = LifecycleState.ERROR
_CRITICAL = LifecycleState.CRITICAL

_RULES: dict[EventKind, _KindRule] = {
    # Run level
    EventKind.WORKFLOW_EXECUTION_STARTED: _KindRule(_SUCCESS, data=("input",)),
    EventKind.WORKFLOW_EXECUTION_SIGNALED: _KindRule(
        _SUCCESS, unit_field="signalName", data=("input",)
    ),
    EventKind.WORKFLOW_EXECUTION_CANCEL_REQUESTED: _KindRule(_CRITICAL, data=("cause",)),
    EventKind.DECISION_TASK_COMPLETED: _KindRule(LifecycleState.INFO, data=("executionContext",)),
    # Activities
    EventKind.ACTIVITY_TASK_SCHEDULED: _KindRule(
        _ACTIVE, initiator=True, unit_field="activityId", data=("input", "control")
    ),
    EventKind.ACTIVITY_TASK_STARTED: _KindRule(
        _ACTIVE, correlation_field="scheduledEventId", data=("identity",)
    ),
    EventKind.ACTIVITY_TASK_COMPLETED: _KindRule(
        _SUCCESS, correlation_field="scheduledEventId", data=("result",)
    ),
    EventKind.ACTIVITY_TASK_FAILED: _KindRule(
        _ERROR, correlation_field="scheduledEventId", data=("reason", "details")
    ),
    EventKind.ACTIVITY_TASK_TIMED_OUT: _KindRule(
        _ERROR, correlation_field="scheduledEventId", data=("timeoutType", "details")
    ),
    EventKind.ACTIVITY_TASK_CANCELED: _KindRule(
        _ERROR, correlation_field="scheduledEventId", data=("details",)
    ),
    EventKind.ACTIVITY_TASK_CANCEL_REQUESTED: _KindRule(
        LifecycleState.INFO, unit_field="activityId"
    ),
    EventKind.SCHEDULE_ACTIVITY_TASK_FAILED: _KindRule(
        _CRITICAL, unit_field="activityId", data=("cause",)
    ),
    # Timers
    EventKind.TIMER_STARTED: _KindRule(
        _ACTIVE, initiator=True, unit_field="timerId", data=("control", "startToFireTimeout")
    ),
    EventKind.TIMER_FIRED: _KindRule(
        _SUCCESS, unit_field="timerId", correlation_field="startedEventId"
    ),
    EventKind.TIMER_CANCELED: _KindRule(
        _SUCCESS, unit_field="timerId", correlation_field="startedEventId"
    ),
    EventKind.START_TIMER_FAILED: _KindRule(_CRITICAL, unit_field="timerId", data=("cause",)),
    EventKind.CANCEL_TIMER_FAILED: _KindRule(
        LifecycleState.INFO, unit_field="timerId", data=("cause",)
    ),
    # Child workflows
    EventKind.START_CHILD_WORKFLOW_EXECUTION_INITIATED: _KindRule(
        _ACTIVE, initiator=True, unit_field="workflowId", data=("input", "control")
    ),
    EventKind.START_CHILD_WORKFLOW_EXECUTION_FAILED: _KindRule(
        _CRITICAL,
        unit_field="workflowId",
        correlation_field="initiatedEventId",
        data=("cause", "control"),
    ),
    EventKind.CHILD_WORKFLOW_EXECUTION_STARTED: _KindRule(
        _ACTIVE,
        unit_field="workflowExecution.workflowId",
        correlation_field="initiatedEventId",
        data=("workflowExecution.runId",),
    ),
    EventKind.CHILD_WORKFLOW_EXECUTION_COMPLETED: _KindRule(
        _SUCCESS,
        unit_field="workflowExecution.workflowId",
        correlation_field="initiatedEventId",
        data=("result",),
    ),
    EventKind.CHILD_WORKFLOW_EXECUTION_FAILED: _KindRule(
        _ERROR,
        unit_field="workflowExecution.workflowId",
        correlation_field="initiatedEventId",
        data=("reason", "details"),
    ),
    EventKind.CHILD_WORKFLOW_EXECUTION_TIMED_OUT: _KindRule(
        _ERROR,
        unit_field="workflowExecution.workflowId",
        correlation_field="initiatedEventId",
        data=("timeoutType",),
    ),
    EventKind.CHILD_WORKFLOW_EXECUTION_CANCELED: _KindRule(
        _ERROR,
        unit_field="workflowExecution.workflowId",
        correlation_field="initiatedEventId",
        data=("details",),
    ),
    EventKind.CHILD_WORKFLOW_EXECUTION_TERMINATED: _KindRule(
        _ERROR,
        unit_field="workflowExecution.workflowId",
        correlation_field="initiatedEventId",
    ),
    # Outgoing signals
    EventKind.SIGNAL_EXTERNAL_WORKFLOW_EXECUTION_INITIATED: _KindRule(
        _ACTIVE, initiator=True, unit_field="signalName", data=("input", "control")
    ),
    EventKind.EXTERNAL_WORKFLOW_EXECUTION_SIGNALED: _KindRule(
        _SUCCESS, correlation_field="initiatedEventId"
    ),
    EventKind.SIGNAL_EXTERNAL_WORKFLOW_EXECUTION_FAILED: _KindRule(
        _CRITICAL, correlation_field="initiatedEventId", data=("cause", "control")
    ),
    # Markers
    EventKind.MARKER_RECORDED: _KindRule(
        _SUCCESS, initiator=True, unit_field="markerName", data=("details",)
    ),
    EventKind.RECORD_MARKER_FAILED: _KindRule(_CRITICAL, unit_field="markerName", data=("cause",)),
    # Cancel requests; the unit id travels in the control value
    EventKind.REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION_INITIATED: _KindRule(
        _ACTIVE, initiator=True, unit_field="control", data=("workflowId", "runId")
    ),
    EventKind.EXTERNAL_WORKFLOW_EXECUTION_CANCEL_REQUESTED: _KindRule(
        _SUCCESS, correlation_field="initiatedEventId", data=("workflowExecution.workflowId",)
    ),
    EventKind.REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION_FAILED: _KindRule(
        _ERROR, correlation_field="initiatedEventId", data=("cause", "workflowId")
    ),
    # Not relevant to decision logic
    **{
        kind: _INFO
        for kind in (
            EventKind.WORKFLOW_EXECUTION_COMPLETED,
            EventKind.COMPLETE_WORKFLOW_EXECUTION_FAILED,
            EventKind.WORKFLOW_EXECUTION_FAILED,
            EventKind.FAIL_WORKFLOW_EXECUTION_FAILED,
            EventKind.WORKFLOW_EXECUTION_TIMED_OUT,
            EventKind.WORKFLOW_EXECUTION_CANCELED,
            EventKind.CANCEL_WORKFLOW_EXECUTION_FAILED,
            EventKind.WORKFLOW_EXECUTION_CONTINUED_AS_NEW,
            EventKind.CONTINUE_AS_NEW_WORKFLOW_EXECUTION_FAILED,
            EventKind.WORKFLOW_EXECUTION_TERMINATED,
            EventKind.DECISION_TASK_SCHEDULED,
            EventKind.DECISION_TASK_STARTED,
            EventKind.DECISION_TASK_TIMED_OUT,
            EventKind.REQUEST_CANCEL_ACTIVITY_TASK_FAILED,
            EventKind.LAMBDA_FUNCTION_SCHEDULED,
            EventKind.LAMBDA_FUNCTION_STARTED,
            EventKind.LAMBDA_FUNCTION_COMPLETED,
            EventKind.LAMBDA_FUNCTION_FAILED,
            EventKind.LAMBDA_FUNCTION_TIMED_OUT,
            EventKind.SCHEDULE_LAMBDA_FUNCTION_FAILED,
            EventKind.START_LAMBDA_FUNCTION_FAILED,
        )
    },
}

_UNMAPPED = set(EventKind) - _RULES.keys()
if _UNMAPPED:
    raise RuntimeError(f"Event kinds without a normalization rule: {sorted(_UNMAPPED)}")


def _lookup(attributes: Mapping[str, Any], path: str) -> Any:
    value: Any = attributes
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def normalize(raw: RawHistoryEvent | Mapping[str, Any]) -> NormalizedEvent:
    """Convert one raw history record into a `NormalizedEvent`.

    Kinds without a rule normalize to INFO and correlate to themselves.

    Raises:
        pydantic.ValidationError: if the record envelope is malformed or a linked
            event id is not a positive integer.
    """

    record = raw if isinstance(raw, RawHistoryEvent) else RawHistoryEvent.model_validate(raw)
    rule = _RULES.get(record.event_type, _INFO)  # type: ignore[call-overload]
    attributes = record.attributes

    correlation_id = record.event_id
    if rule.correlation_field is not None:
        linked = _lookup(attributes, rule.correlation_field)
        if linked is not None:
            correlation_id = _EVENT_ID.validate_python(linked)

    unit_id = None
    if rule.unit_field is not None:
        found = _lookup(attributes, rule.unit_field)
        unit_id = None if found is None else _text(found)

    pairs = [(path.rsplit(".", 1)[-1], _text(_lookup(attributes, path))) for path in rule.data]

    return NormalizedEvent(
        sequence_id=record.event_id,
        timestamp=record.event_timestamp,
        kind=record.event_type,
        state=rule.state,
        correlation_id=correlation_id,
        is_initiator=rule.initiator,
        unit_id=unit_id,
        data1=pairs[0] if pairs else None,
        data2=pairs[1] if len(pairs) > 1 else None,
    )
