from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from workflow_decider.history.events import LifecycleState, NormalizedEvent

from .policy import is_retry_event, retry_timers


class ActionState(str, Enum):
    INITIAL = "initial"
    ACTIVE = "active"
    RETRY = "retry"
    SUCCESS = "success"
    ERROR = "error"


# ACTIVE and SUCCESS are reachable from terminal states because a unit can be
# initiated again (retry re-issue, repeated marker).
ALLOWED_TRANSITIONS: dict[ActionState, set[ActionState]] = {
    ActionState.INITIAL: {ActionState.ACTIVE, ActionState.SUCCESS},
    ActionState.ACTIVE: {
        ActionState.ACTIVE,
        ActionState.RETRY,
        ActionState.SUCCESS,
        ActionState.ERROR,
    },
    ActionState.RETRY: {ActionState.ACTIVE, ActionState.SUCCESS},
    ActionState.SUCCESS: {ActionState.ACTIVE, ActionState.SUCCESS},
    ActionState.ERROR: {ActionState.ACTIVE, ActionState.SUCCESS, ActionState.ERROR},
}

_FROM_LIFECYCLE: dict[LifecycleState, ActionState] = {
    LifecycleState.ACTIVE: ActionState.ACTIVE,
    LifecycleState.SUCCESS: ActionState.SUCCESS,
    LifecycleState.ERROR: ActionState.ERROR,
    LifecycleState.CRITICAL: ActionState.ERROR,
}


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: ActionState, to: ActionState) -> ActionState:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


def state_for_event(
    event: NormalizedEvent, started_retry_timers: Sequence[NormalizedEvent]
) -> ActionState | None:
    """State a unit enters when `event` is its most recent event.

    Returns None for INFO events, which leave the state unchanged.
    """

    if is_retry_event(event, started_retry_timers):
        return ActionState.RETRY
    return _FROM_LIFECYCLE.get(event.state)


def replay(events: Sequence[NormalizedEvent]) -> ActionState:
    """Fold a unit's events, oldest first, through the transition table.

    Raises:
        IllegalTransitionError: if the history contains an impossible sequence.
    """

    timers = retry_timers(events)
    state = ActionState.INITIAL
    for event in events:
        to = state_for_event(event, timers)
        if to is not None:
            state = transition(current=state, to=to)
    return state
