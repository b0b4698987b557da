"""Unit tests for the retry policy."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from conftest import T0
from workflow_decider.history.events import EventKind, LifecycleState, NormalizedEvent
from workflow_decider.workflow.policy import (
    RETRY_CONTROL_VALUE,
    RetryPolicy,
    is_retry_event,
    retry_timers,
)


def _timer(
    sequence_id: int, at: datetime, control: str | None = RETRY_CONTROL_VALUE
) -> NormalizedEvent:
    return NormalizedEvent(
        sequence_id=sequence_id,
        timestamp=at,
        kind=EventKind.TIMER_STARTED.value,
        state=LifecycleState.ACTIVE,
        correlation_id=sequence_id,
        is_initiator=True,
        unit_id="fetch",
        data1=("control", control or ""),
        data2=("startToFireTimeout", "5"),
    )


def _fired(sequence_id: int, started_id: int) -> NormalizedEvent:
    return NormalizedEvent(
        sequence_id=sequence_id,
        timestamp=T0,
        kind=EventKind.TIMER_FIRED.value,
        state=LifecycleState.SUCCESS,
        correlation_id=started_id,
        unit_id="fetch",
    )


def _error(reason: str, details: str = "") -> NormalizedEvent:
    return NormalizedEvent(
        sequence_id=99,
        timestamp=T0,
        kind=EventKind.ACTIVITY_TASK_FAILED.value,
        state=LifecycleState.ERROR,
        correlation_id=1,
        data1=("reason", reason),
        data2=("details", details),
    )


def test_backoff_grows_and_is_capped() -> None:
    policy = RetryPolicy(
        initial_interval=timedelta(seconds=5),
        backoff_coefficient=2.0,
        maximum_interval=timedelta(seconds=60),
    )

    delays = [
        policy.next_delay([_timer(i, T0) for i in range(1, n + 1)], T0) for n in range(5)
    ]

    assert delays == [5, 10, 20, 40, 60]


def test_first_attempt_uses_initial_interval() -> None:
    policy = RetryPolicy(initial_interval=timedelta(seconds=7), maximum_attempts=1)

    assert policy.next_delay([], T0) == 7


def test_defaults() -> None:
    policy = RetryPolicy()

    assert policy.initial_interval == timedelta(seconds=5)
    assert policy.backoff_coefficient == 2.0
    assert policy.maximum_interval is None
    assert policy.expiration_interval is None
    assert policy.maximum_attempts is None
    assert policy.next_delay([_timer(1, T0), _timer(2, T0)], T0) == 20


def test_expiration_stops_retries_before_attempts_run_out() -> None:
    timers = [_timer(1, T0 - timedelta(seconds=20)), _timer(2, T0 - timedelta(seconds=10))]
    within = RetryPolicy(
        initial_interval=timedelta(seconds=5),
        expiration_interval=timedelta(seconds=40),
        maximum_attempts=10,
    )
    expired = RetryPolicy(
        initial_interval=timedelta(seconds=5),
        expiration_interval=timedelta(seconds=39),
        maximum_attempts=10,
    )

    # 20s elapsed since the first retry timer plus a 20s interval.
    assert within.next_delay(timers, T0) == 20
    assert expired.next_delay(timers, T0) is None
    assert within.next_delay(timers, T0 + timedelta(seconds=1)) is None


def test_maximum_attempts() -> None:
    policy = RetryPolicy(initial_interval=timedelta(seconds=1), maximum_attempts=2)

    assert policy.next_delay([], T0) == 1
    assert policy.next_delay([_timer(1, T0)], T0) == 2
    assert policy.next_delay([_timer(1, T0), _timer(2, T0)], T0) == 4
    # Three retry timers in all: the first retry plus `maximum_attempts` more.
    assert policy.next_delay([_timer(i, T0) for i in range(1, 4)], T0) is None


def test_huge_attempt_counts_do_not_overflow() -> None:
    policy = RetryPolicy(initial_interval=timedelta(seconds=1), backoff_coefficient=10.0)

    assert policy.next_delay([_timer(i, T0) for i in range(1, 400)], T0) is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_interval": timedelta(seconds=10), "maximum_interval": timedelta(seconds=5)},
        {"initial_interval": timedelta(seconds=10), "expiration_interval": timedelta(seconds=5)},
        {"initial_interval": timedelta(0)},
        {"maximum_attempts": 0},
        {"backoff_coefficient": 0.5},
        {"stop_if_error_matches": "("},
    ],
)
def test_invalid_policies_are_rejected(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        RetryPolicy(**kwargs)


def test_policy_is_immutable() -> None:
    policy = RetryPolicy()

    with pytest.raises(ValidationError):
        policy.maximum_attempts = 3  # type: ignore[misc]


def test_retry_timers_ignore_user_timers() -> None:
    retry = _timer(1, T0)
    user = _timer(2, T0, control="user")

    assert retry_timers([retry, user]) == [retry]
    assert is_retry_event(_fired(3, 1), [retry])
    assert not is_retry_event(_fired(4, 2), [retry])
    assert not is_retry_event(retry, [retry])


def test_stops_on_full_match_of_reason_or_details() -> None:
    policy = RetryPolicy(stop_if_error_matches="fatal.*")

    assert policy.stops_on(_error("fatal: disk full"))
    assert policy.stops_on(_error("transient", "fatal\ntrace"))
    assert not policy.stops_on(_error("not fatal"))
    assert not RetryPolicy().stops_on(_error("fatal"))
