"""Unit tests for structured logging."""

from __future__ import annotations

import json
import logging
import sys

from workflow_decider.core.logging import JsonFormatter, configure_logging


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "workflow_decider.core.decider", logging.INFO, __file__, 1, "Decided %d", (2,), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_promotes_run_identifiers() -> None:
    """Test that run identifiers become top-level keys."""
    line = JsonFormatter().format(
        _record(workflow="wf", workflow_id="wf-1", run_id="run-1", action_id="a")
    )

    payload = json.loads(line)

    assert payload["message"] == "Decided 2"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "workflow_decider.core.decider"
    assert payload["workflow_id"] == "wf-1"
    assert payload["run_id"] == "run-1"
    assert payload["workflow"] == "wf"
    assert payload["extra"] == {"action_id": "a"}


def test_json_formatter_includes_exceptions() -> None:
    """Test that exception tracebacks are rendered."""
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(JsonFormatter().format(record))

    assert "RuntimeError: boom" in payload["exception"]
    assert "extra" not in payload


def test_configure_logging_replaces_handlers() -> None:
    """Test that repeated configuration keeps a single handler."""
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        configure_logging("warning")
        configure_logging("debug")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(saved[0])
        root.handlers[:] = saved[1]
