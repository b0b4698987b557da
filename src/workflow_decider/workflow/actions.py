"""Units of work and the decisions they emit on each decision cycle.

Actions are immutable definitions shared by every run of a workflow. They hold
no run state: each call derives the current state from the history of the run
passed in as `run`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import KW_ONLY, dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, TypeAlias

from workflow_decider.history.events import EventKind, LifecycleState, NormalizedEvent

from . import decisions
from .decisions import (
    ID_MAX_LENGTH,
    ActivityType,
    ChildPolicy,
    Decision,
    DecisionType,
    ScheduleActivityTaskAttributes,
    SignalExternalWorkflowExecutionAttributes,
    StartChildWorkflowExecutionAttributes,
    TaskList,
    WorkflowType,
    format_timeout,
)
from .policy import RETRY_CONTROL_VALUE, RetryPolicy, retry_timers
from .state_machine import ActionState, replay

if TYPE_CHECKING:
    from workflow_decider.core.decider import Decider

logger = logging.getLogger(__name__)

# A payload known up front, or computed from the run when the action starts.
Payload: TypeAlias = "str | Callable[[Decider], str | None] | None"


class OutputNotAvailableError(RuntimeError):
    pass


def _resolve(value: Payload, run: Decider) -> str | None:
    if callable(value):
        return value(run)
    return value


def _last_error(events: Sequence[NormalizedEvent]) -> NormalizedEvent | None:
    for event in reversed(events):
        if event.state in (LifecycleState.ERROR, LifecycleState.CRITICAL):
            return event
    return None


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of probing an action, for branching without exceptions."""

    state: ActionState
    output: str | None = None
    reason: str | None = None
    details: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is ActionState.SUCCESS


@dataclass(frozen=True, slots=True)
class Action:
    """Base class for a unit of work.

    Subclasses implement `initiate_decision` and may override `_output`.
    """

    action_id: str
    _: KW_ONLY
    retry_policy: RetryPolicy | None = None
    fail_workflow_on_error: bool = True
    complete_workflow_on_success: bool = False

    def __post_init__(self) -> None:
        if not self.action_id or len(self.action_id) > ID_MAX_LENGTH:
            raise ValueError(
                f"action_id must be 1..{ID_MAX_LENGTH} characters, got {self.action_id!r}"
            )

    def initiate_decision(self, run: Decider) -> Decision:
        raise NotImplementedError

    def _output(self, events: Sequence[NormalizedEvent]) -> str:
        return events[-1].get("result") or ""

    def events(self, run: Decider) -> list[NormalizedEvent]:
        run.require_registered(self)
        return run.history.events_for(self.action_id)

    def state(self, run: Decider) -> ActionState:
        return replay(self.events(run))

    def result(self, run: Decider) -> ActionResult:
        events = self.events(run)
        state = replay(events)
        if state is ActionState.SUCCESS:
            return ActionResult(state=state, output=self._output(events))
        if state is ActionState.ERROR:
            error = _last_error(events)
            if error is not None:
                return ActionResult(state=state, reason=error.reason, details=error.details)
        return ActionResult(state=state)

    def output(self, run: Decider) -> str:
        """Output of a successful action.

        Raises:
            OutputNotAvailableError: if the action has not succeeded.
        """

        result = self.result(run)
        if not result.ok:
            raise OutputNotAvailableError(
                f"Output of {self.action_id!r} is not available in state {result.state.value}"
            )
        return result.output or ""

    def retry_delay(self, events: Sequence[NormalizedEvent]) -> int | None:
        """Seconds until the next retry of a failed action, or None if no retry is due."""

        if self.retry_policy is None:
            return None
        error = _last_error(events)
        if error is None or self.retry_policy.stops_on(error):
            return None
        return self.retry_policy.next_delay(retry_timers(events), error.timestamp)

    def is_finished(self, run: Decider) -> bool:
        """True once dependents may proceed.

        That is SUCCESS, or an ERROR that is tolerated and will not be retried.
        """

        events = self.events(run)
        state = replay(events)
        if state is ActionState.SUCCESS:
            return True
        return (
            state is ActionState.ERROR
            and not self.fail_workflow_on_error
            and self.retry_delay(events) is None
        )

    def decide(self, run: Decider) -> list[Decision]:
        events = self.events(run)
        state = replay(events)

        if state in (ActionState.INITIAL, ActionState.RETRY):
            return [self.initiate_decision(run)]
        if state is ActionState.ACTIVE:
            return []
        if state is ActionState.SUCCESS:
            if self.complete_workflow_on_success:
                return [decisions.complete_workflow(self._output(events))]
            return []

        delay = self.retry_delay(events)
        if delay is not None:
            logger.info(
                f"Scheduling retry of {self.action_id} in {delay}s",
                extra={"action_id": self.action_id, "attempt": len(retry_timers(events)) + 1},
            )
            return [decisions.start_timer(self.action_id, delay, control=RETRY_CONTROL_VALUE)]

        if not self.fail_workflow_on_error:
            return []
        error = _last_error(events)
        reason = self.action_id
        details = None
        if error is not None:
            reason = f"{self.action_id} {error.kind}"
            if error.reason:
                reason = f"{reason}: {error.reason}"
            details = error.details
        return [decisions.fail_workflow(reason, details)]


@dataclass(frozen=True, slots=True)
class ActivityAction(Action):
    """Schedules an activity task. The action id is the activity id."""

    name: str
    version: str
    input: Payload = None
    control: Payload = None
    task_list: str | None = None
    heartbeat_timeout: timedelta | None = None
    schedule_to_close_timeout: timedelta | None = None
    schedule_to_start_timeout: timedelta | None = None
    start_to_close_timeout: timedelta | None = None

    def initiate_decision(self, run: Decider) -> Decision:
        task_list = self.task_list or run.task_list
        return Decision(
            decision_type=DecisionType.SCHEDULE_ACTIVITY_TASK,
            attributes=ScheduleActivityTaskAttributes(
                activity_type=ActivityType(name=self.name, version=self.version),
                activity_id=self.action_id,
                task_list=TaskList(name=task_list) if task_list else None,
                input=_resolve(self.input, run),
                control=_resolve(self.control, run),
                heartbeat_timeout=format_timeout(self.heartbeat_timeout),
                schedule_to_close_timeout=format_timeout(self.schedule_to_close_timeout),
                schedule_to_start_timeout=format_timeout(self.schedule_to_start_timeout),
                start_to_close_timeout=format_timeout(self.start_to_close_timeout),
            ),
        )


@dataclass(frozen=True, slots=True)
class TimerAction(Action):
    """Waits for `delay`. The action id is the timer id; output is the control value."""

    delay: timedelta
    control: str | None = None

    def __post_init__(self) -> None:
        Action.__post_init__(self)
        if self.control == RETRY_CONTROL_VALUE:
            raise ValueError("Timer control value is reserved for retry timers")
        if self.delay < timedelta(0):
            raise ValueError(f"Timer delay must not be negative, got {self.delay}")

    def initiate_decision(self, run: Decider) -> Decision:
        return decisions.start_timer(
            self.action_id, int(self.delay.total_seconds()), control=self.control
        )

    def _output(self, events: Sequence[NormalizedEvent]) -> str:
        for event in reversed(events):
            if event.kind == EventKind.TIMER_STARTED:
                return event.get("control") or ""
        return ""


@dataclass(frozen=True, slots=True)
class SignalAction(Action):
    """Sends a signal named after the action id to another workflow run.

    Without a `workflow_id` the signal goes to the current run.
    """

    workflow_id: str | None = None
    run_id: str | None = None
    input: Payload = None
    control: Payload = None

    def initiate_decision(self, run: Decider) -> Decision:
        if self.workflow_id is None:
            workflow_id, run_id = run.workflow_id, run.run_id
        else:
            workflow_id, run_id = self.workflow_id, self.run_id
        if not workflow_id:
            raise ValueError(f"Signal {self.action_id!r} has no target workflow id")
        return Decision(
            decision_type=DecisionType.SIGNAL_EXTERNAL_WORKFLOW_EXECUTION,
            attributes=SignalExternalWorkflowExecutionAttributes(
                workflow_id=workflow_id,
                run_id=run_id,
                signal_name=self.action_id,
                input=_resolve(self.input, run),
                control=_resolve(self.control, run),
            ),
        )

    def _output(self, events: Sequence[NormalizedEvent]) -> str:
        for event in reversed(events):
            if event.is_initiator:
                return event.get("input") or ""
        return ""


@dataclass(frozen=True, slots=True)
class ChildWorkflowAction(Action):
    """Starts a child workflow. The action id is the child's workflow id."""

    name: str
    version: str
    input: Payload = None
    control: Payload = None
    task_list: str | None = None
    execution_start_to_close_timeout: timedelta | None = None
    task_start_to_close_timeout: timedelta | None = None
    child_policy: ChildPolicy = ChildPolicy.TERMINATE
    tags: tuple[str, ...] = ()

    def initiate_decision(self, run: Decider) -> Decision:
        return Decision(
            decision_type=DecisionType.START_CHILD_WORKFLOW_EXECUTION,
            attributes=StartChildWorkflowExecutionAttributes(
                workflow_type=WorkflowType(name=self.name, version=self.version),
                workflow_id=self.action_id,
                task_list=TaskList(name=self.task_list) if self.task_list else None,
                input=_resolve(self.input, run),
                control=_resolve(self.control, run),
                execution_start_to_close_timeout=format_timeout(
                    self.execution_start_to_close_timeout
                ),
                task_start_to_close_timeout=format_timeout(self.task_start_to_close_timeout),
                child_policy=self.child_policy,
                tag_list=self.tags or None,
            ),
        )


@dataclass(frozen=True, slots=True)
class MarkerAction(Action):
    """Records a marker named after the action id; output is the marker details."""

    details: Payload = None

    def initiate_decision(self, run: Decider) -> Decision:
        return decisions.record_marker(self.action_id, _resolve(self.details, run))

    def _output(self, events: Sequence[NormalizedEvent]) -> str:
        for event in reversed(events):
            if event.kind == EventKind.MARKER_RECORDED:
                return event.get("details") or ""
        return ""


@dataclass(frozen=True, slots=True)
class CancelExternalWorkflowAction(Action):
    """Requests cancellation of another workflow run.

    The request's control value is the action id; the service echoes it on the
    initiated event, which ties the follow-up events back to this action.
    """

    workflow_id: str
    run_id: str | None = None

    def initiate_decision(self, run: Decider) -> Decision:
        return decisions.request_cancel_external_workflow(
            self.workflow_id, run_id=self.run_id, control=self.action_id
        )


@dataclass(frozen=True, slots=True)
class ContinueAsNewAction(Action):
    """Closes the run and starts a fresh one with the same workflow id.

    For recurring workflows whose history would otherwise outgrow the service
    limit. Input defaults to the current run's input, the task list to the
    workflow's, and the type version to the running definition's.
    """

    input: Payload = None
    task_list: str | None = None
    execution_start_to_close_timeout: timedelta | None = None
    task_start_to_close_timeout: timedelta | None = None
    child_policy: ChildPolicy | None = None
    tags: tuple[str, ...] = ()

    def initiate_decision(self, run: Decider) -> Decision:
        payload = _resolve(self.input, run)
        return decisions.continue_as_new(
            input=run.workflow_input() if payload is None else payload,
            workflow_type_version=run.workflow.version,
            task_list=self.task_list or run.task_list,
            execution_start_to_close_timeout=self.execution_start_to_close_timeout,
            task_start_to_close_timeout=self.task_start_to_close_timeout,
            child_policy=self.child_policy,
            tags=self.tags or None,
        )
