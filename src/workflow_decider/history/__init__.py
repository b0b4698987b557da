"""Replay history: event normalization and the per-run history store."""

from workflow_decider.history.events import (
    EventKind,
    LifecycleState,
    NormalizedEvent,
    RawHistoryEvent,
    normalize,
)
from workflow_decider.history.store import HistoryStore

__all__ = [
    "EventKind",
    "HistoryStore",
    "LifecycleState",
    "NormalizedEvent",
    "RawHistoryEvent",
    "normalize",
]
