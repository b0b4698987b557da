"""Decisions returned to the coordination service at the end of a decision task.

Each decision type has a typed, immutable attribute model. `Decision.to_wire()`
renders the JSON shape the service accepts.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

REASON_MAX_LENGTH = 256
DETAILS_MAX_LENGTH = 32768
RESULT_MAX_LENGTH = 32768
PAYLOAD_MAX_LENGTH = 32768
ID_MAX_LENGTH = 256
MAX_TAGS = 5

# Renders as "NONE": no timeout at all, as opposed to the registered default.
UNBOUNDED = timedelta.max


def truncate(value: str | None, limit: int) -> str | None:
    if value is None or len(value) <= limit:
        return value
    return value[:limit]


def format_timeout(value: timedelta | None) -> str | None:
    if value is None:
        return None
    if value == UNBOUNDED:
        return "NONE"
    return str(int(value.total_seconds()))


class DecisionType(str, Enum):
    SCHEDULE_ACTIVITY_TASK = "ScheduleActivityTask"
    START_TIMER = "StartTimer"
    SIGNAL_EXTERNAL_WORKFLOW_EXECUTION = "SignalExternalWorkflowExecution"
    START_CHILD_WORKFLOW_EXECUTION = "StartChildWorkflowExecution"
    RECORD_MARKER = "RecordMarker"
    REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION = "RequestCancelExternalWorkflowExecution"
    COMPLETE_WORKFLOW_EXECUTION = "CompleteWorkflowExecution"
    FAIL_WORKFLOW_EXECUTION = "FailWorkflowExecution"
    CONTINUE_AS_NEW_WORKFLOW_EXECUTION = "ContinueAsNewWorkflowExecution"


CLOSE_DECISION_TYPES = frozenset(
    {
        DecisionType.COMPLETE_WORKFLOW_EXECUTION,
        DecisionType.FAIL_WORKFLOW_EXECUTION,
        DecisionType.CONTINUE_AS_NEW_WORKFLOW_EXECUTION,
    }
)


class ChildPolicy(str, Enum):
    TERMINATE = "TERMINATE"
    REQUEST_CANCEL = "REQUEST_CANCEL"
    ABANDON = "ABANDON"


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ActivityType(_WireModel):
    name: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    version: str = Field(min_length=1, max_length=64)


class WorkflowType(_WireModel):
    name: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    version: str = Field(min_length=1, max_length=64)


class TaskList(_WireModel):
    name: str = Field(min_length=1, max_length=ID_MAX_LENGTH)


class ScheduleActivityTaskAttributes(_WireModel):
    activity_type: ActivityType
    activity_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    task_list: TaskList | None = None
    input: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)
    control: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)
    heartbeat_timeout: str | None = None
    schedule_to_close_timeout: str | None = None
    schedule_to_start_timeout: str | None = None
    start_to_close_timeout: str | None = None


class StartTimerAttributes(_WireModel):
    timer_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    start_to_fire_timeout: str
    control: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)


class SignalExternalWorkflowExecutionAttributes(_WireModel):
    workflow_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    run_id: str | None = None
    signal_name: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    input: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)
    control: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)


class StartChildWorkflowExecutionAttributes(_WireModel):
    workflow_type: WorkflowType
    workflow_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    task_list: TaskList | None = None
    input: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)
    control: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)
    execution_start_to_close_timeout: str | None = None
    task_start_to_close_timeout: str | None = None
    child_policy: ChildPolicy = ChildPolicy.TERMINATE
    tag_list: tuple[str, ...] | None = Field(default=None, max_length=MAX_TAGS)


class RecordMarkerAttributes(_WireModel):
    marker_name: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    details: str | None = None

    @field_validator("details")
    @classmethod
    def _trim_details(cls, value: str | None) -> str | None:
        return truncate(value, DETAILS_MAX_LENGTH)


class RequestCancelExternalWorkflowExecutionAttributes(_WireModel):
    workflow_id: str = Field(min_length=1, max_length=ID_MAX_LENGTH)
    run_id: str | None = None
    control: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)


class CompleteWorkflowExecutionAttributes(_WireModel):
    result: str | None = None

    @field_validator("result")
    @classmethod
    def _trim_result(cls, value: str | None) -> str | None:
        return truncate(value, RESULT_MAX_LENGTH)


class FailWorkflowExecutionAttributes(_WireModel):
    reason: str | None = None
    details: str | None = None

    @field_validator("reason")
    @classmethod
    def _trim_reason(cls, value: str | None) -> str | None:
        return truncate(value, REASON_MAX_LENGTH)

    @field_validator("details")
    @classmethod
    def _trim_details(cls, value: str | None) -> str | None:
        return truncate(value, DETAILS_MAX_LENGTH)


class ContinueAsNewWorkflowExecutionAttributes(_WireModel):
    input: str | None = Field(default=None, max_length=PAYLOAD_MAX_LENGTH)
    workflow_type_version: str | None = None
    task_list: TaskList | None = None
    execution_start_to_close_timeout: str | None = None
    task_start_to_close_timeout: str | None = None
    child_policy: ChildPolicy | None = None
    tag_list: tuple[str, ...] | None = Field(default=None, max_length=MAX_TAGS)


DecisionAttributes = (
    ScheduleActivityTaskAttributes
    | StartTimerAttributes
    | SignalExternalWorkflowExecutionAttributes
    | StartChildWorkflowExecutionAttributes
    | RecordMarkerAttributes
    | RequestCancelExternalWorkflowExecutionAttributes
    | CompleteWorkflowExecutionAttributes
    | FailWorkflowExecutionAttributes
    | ContinueAsNewWorkflowExecutionAttributes
)

_ATTRIBUTE_TYPES: dict[DecisionType, type[_WireModel]] = {
    DecisionType.SCHEDULE_ACTIVITY_TASK: ScheduleActivityTaskAttributes,
    DecisionType.START_TIMER: StartTimerAttributes,
    DecisionType.SIGNAL_EXTERNAL_WORKFLOW_EXECUTION: SignalExternalWorkflowExecutionAttributes,
    DecisionType.START_CHILD_WORKFLOW_EXECUTION: StartChildWorkflowExecutionAttributes,
    DecisionType.RECORD_MARKER: RecordMarkerAttributes,
    DecisionType.REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION: (
        RequestCancelExternalWorkflowExecutionAttributes
    ),
    DecisionType.COMPLETE_WORKFLOW_EXECUTION: CompleteWorkflowExecutionAttributes,
    DecisionType.FAIL_WORKFLOW_EXECUTION: FailWorkflowExecutionAttributes,
    DecisionType.CONTINUE_AS_NEW_WORKFLOW_EXECUTION: ContinueAsNewWorkflowExecutionAttributes,
}


class Decision(BaseModel):
    """One command for the coordination service."""

    model_config = ConfigDict(frozen=True)

    decision_type: DecisionType
    attributes: DecisionAttributes

    @model_validator(mode="after")
    def _check_attributes(self) -> Decision:
        expected = _ATTRIBUTE_TYPES[self.decision_type]
        if not isinstance(self.attributes, expected):
            raise ValueError(
                f"{self.decision_type.value} requires {expected.__name__}, "
                f"got {type(self.attributes).__name__}"
            )
        return self

    @property
    def is_close(self) -> bool:
        return self.decision_type in CLOSE_DECISION_TYPES

    def to_wire(self) -> dict[str, Any]:
        name = self.decision_type.value
        return {
            "decisionType": name,
            f"{name[:1].lower()}{name[1:]}DecisionAttributes": self.attributes.model_dump(
                mode="json", by_alias=True, exclude_none=True
            ),
        }


def start_timer(timer_id: str, delay_seconds: int, *, control: str | None = None) -> Decision:
    return Decision(
        decision_type=DecisionType.START_TIMER,
        attributes=StartTimerAttributes(
            timer_id=timer_id, start_to_fire_timeout=str(delay_seconds), control=control
        ),
    )


def record_marker(name: str, details: str | None = None) -> Decision:
    return Decision(
        decision_type=DecisionType.RECORD_MARKER,
        attributes=RecordMarkerAttributes(marker_name=name, details=details),
    )


def request_cancel_external_workflow(
    workflow_id: str, *, run_id: str | None = None, control: str | None = None
) -> Decision:
    return Decision(
        decision_type=DecisionType.REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION,
        attributes=RequestCancelExternalWorkflowExecutionAttributes(
            workflow_id=workflow_id, run_id=run_id, control=control
        ),
    )


def complete_workflow(result: str | None = None) -> Decision:
    return Decision(
        decision_type=DecisionType.COMPLETE_WORKFLOW_EXECUTION,
        attributes=CompleteWorkflowExecutionAttributes(result=result),
    )


def fail_workflow(reason: str, details: str | None = None) -> Decision:
    """Workflow-failure decision; reason and details are truncated to service limits."""

    return Decision(
        decision_type=DecisionType.FAIL_WORKFLOW_EXECUTION,
        attributes=FailWorkflowExecutionAttributes(reason=reason, details=details),
    )


def continue_as_new(
    *,
    input: str | None = None,
    workflow_type_version: str | None = None,
    task_list: str | None = None,
    execution_start_to_close_timeout: timedelta | None = None,
    task_start_to_close_timeout: timedelta | None = None,
    child_policy: ChildPolicy | None = None,
    tags: Sequence[str] | None = None,
) -> Decision:
    """Close this run and start a fresh one with an empty history."""

    return Decision(
        decision_type=DecisionType.CONTINUE_AS_NEW_WORKFLOW_EXECUTION,
        attributes=ContinueAsNewWorkflowExecutionAttributes(
            input=input,
            workflow_type_version=workflow_type_version,
            task_list=TaskList(name=task_list) if task_list else None,
            execution_start_to_close_timeout=format_timeout(execution_start_to_close_timeout),
            task_start_to_close_timeout=format_timeout(task_start_to_close_timeout),
            child_policy=child_policy,
            tag_list=tuple(tags) if tags is not None else None,
        ),
    )


def finalize(decisions: Sequence[Decision]) -> list[Decision]:
    """Apply the close-decision rules to one batch.

    A failure decision replaces the whole batch. Otherwise the first
    completion or continue-as-new is kept and moved after the other decisions.
    """

    for decision in decisions:
        if decision.decision_type is DecisionType.FAIL_WORKFLOW_EXECUTION:
            return [decision]
    ordinary = [d for d in decisions if not d.is_close]
    closing = next((d for d in decisions if d.is_close), None)
    return ordinary if closing is None else [*ordinary, closing]
