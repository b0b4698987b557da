"""Exponential backoff retry policy for failed units of work.

The policy is a pure function of history: the number of retry timers a unit
has already started, and when the first of them started, decide whether and
when the next attempt happens.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from workflow_decider.history.events import EventKind, NormalizedEvent

# Control value tagging timers started by a retry. User timers may not use it.
RETRY_CONTROL_VALUE = "__workflow_decider.retry__"


def retry_timers(events: Iterable[NormalizedEvent]) -> list[NormalizedEvent]:
    """Select the retry timer starts among a unit's events."""

    return [
        e
        for e in events
        if e.kind == EventKind.TIMER_STARTED and e.get("control") == RETRY_CONTROL_VALUE
    ]


def is_retry_event(event: NormalizedEvent, started_retry_timers: Iterable[NormalizedEvent]) -> bool:
    """True if `event` is the firing of one of the given retry timers."""

    if event.kind != EventKind.TIMER_FIRED:
        return False
    return any(t.sequence_id == event.correlation_id for t in started_retry_timers)


class RetryPolicy(BaseModel):
    """Exponential backoff schedule.

    Unset bounds are unbounded. With `n` retry timers already started, the
    next attempt waits `initial_interval * backoff_coefficient ** n`, capped at
    `maximum_interval`.
    """

    model_config = ConfigDict(frozen=True)

    initial_interval: timedelta = Field(default=timedelta(seconds=5))
    maximum_interval: timedelta | None = None
    expiration_interval: timedelta | None = None
    maximum_attempts: int | None = Field(default=None, ge=1)
    backoff_coefficient: float = Field(default=2.0, ge=1.0)
    stop_if_error_matches: str | None = Field(
        default=None,
        description="Regular expression; a fully matching error reason or details stops retries",
    )

    @field_validator("stop_if_error_matches")
    @classmethod
    def _compile_pattern(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid stop_if_error_matches pattern: {e}") from e
        return value

    @model_validator(mode="after")
    def _check_intervals(self) -> RetryPolicy:
        if self.initial_interval <= timedelta(0):
            raise ValueError("initial_interval must be positive")
        if self.maximum_interval is not None and self.initial_interval > self.maximum_interval:
            raise ValueError(
                f"initial_interval {self.initial_interval} is greater than "
                f"maximum_interval {self.maximum_interval}"
            )
        if (
            self.expiration_interval is not None
            and self.initial_interval > self.expiration_interval
        ):
            raise ValueError(
                f"initial_interval {self.initial_interval} is greater than "
                f"expiration_interval {self.expiration_interval}"
            )
        return self

    def next_delay(
        self, retry_timers_so_far: Sequence[NormalizedEvent], current_error_timestamp: datetime
    ) -> int | None:
        """Seconds to wait before the next attempt, or None when retries are exhausted.

        The first retry is not counted against `maximum_attempts`, so a policy
        allows up to `maximum_attempts + 1` retry timers.

        Args:
            retry_timers_so_far: Retry timer starts already in the unit's history.
            current_error_timestamp: When the error being retried happened.
        """

        attempts = len(retry_timers_so_far)
        if attempts == 0:
            return int(self.initial_interval.total_seconds())

        try:
            seconds = self.initial_interval.total_seconds() * self.backoff_coefficient**attempts
        except OverflowError:
            seconds = math.inf
        if self.maximum_interval is not None:
            seconds = min(seconds, self.maximum_interval.total_seconds())

        if self.maximum_attempts is not None and attempts > self.maximum_attempts:
            return None
        if self.expiration_interval is not None:
            first = min(t.timestamp for t in retry_timers_so_far)
            elapsed = (current_error_timestamp - first).total_seconds()
            if elapsed + seconds > self.expiration_interval.total_seconds():
                return None
        if math.isinf(seconds):
            return None
        return int(seconds)

    def stops_on(self, error: NormalizedEvent) -> bool:
        """True when the error's reason or details fully match `stop_if_error_matches`."""

        if self.stop_if_error_matches is None:
            return False
        pattern = re.compile(self.stop_if_error_matches, re.DOTALL)
        return any(
            value is not None and pattern.fullmatch(value) is not None
            for value in (error.reason, error.details)
        )
