"""Unit tests for configuration."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from workflow_decider.core.config import DeciderSettings


def test_settings_defaults(settings: DeciderSettings) -> None:
    """Test decider settings default values."""
    config = DeciderSettings(_env_file=None, domain="prod")

    assert config.domain == "prod"
    assert config.task_list == "default"
    assert config.identity
    assert config.maximum_page_size == 1000
    assert config.error_backoff_seconds == 1.0
    assert config.log_level == "INFO"
    assert config.log_format == "json"
    assert config.debug is False
    assert settings.task_list == "decisions"


def test_domain_is_required(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that a missing domain is a configuration error."""
    monkeypatch.delenv("DECIDER_DOMAIN", raising=False)

    with pytest.raises(ValidationError, match="DECIDER_DOMAIN is required"):
        DeciderSettings(_env_file=None)


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test loading settings from prefixed environment variables."""
    monkeypatch.setenv("DECIDER_DOMAIN", "env-domain")
    monkeypatch.setenv("DECIDER_TASK_LIST", "env-list")
    monkeypatch.setenv("DECIDER_MAXIMUM_PAGE_SIZE", "100")
    monkeypatch.setenv("DECIDER_DEBUG", "true")

    config = DeciderSettings(_env_file=None)

    assert config.domain == "env-domain"
    assert config.task_list == "env-list"
    assert config.maximum_page_size == 100
    assert config.debug is True


def test_settings_from_env_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test loading settings from a local .env file."""
    monkeypatch.delenv("DECIDER_DOMAIN", raising=False)
    monkeypatch.delenv("DECIDER_IDENTITY", raising=False)
    (tmp_path / ".env").write_text(
        "DECIDER_DOMAIN=file-domain\nDECIDER_IDENTITY=worker-7\nUNRELATED=1\n"
    )
    monkeypatch.chdir(tmp_path)

    config = DeciderSettings()

    assert config.domain == "file-domain"
    assert config.identity == "worker-7"


def test_page_size_is_bounded() -> None:
    """Test that the history page size stays within service limits."""
    with pytest.raises(ValidationError):
        DeciderSettings(_env_file=None, domain="d", maximum_page_size=1001)


def test_setup_logging_debug(settings: DeciderSettings) -> None:
    """Test that debug mode lowers the package log level."""
    package_logger = logging.getLogger("workflow_decider")
    root = logging.getLogger()
    saved = (package_logger.level, root.level, list(root.handlers))
    try:
        settings.debug = True
        settings.log_format = "text"
        settings.setup_logging()

        assert package_logger.level == logging.DEBUG
        assert root.level == logging.INFO
        assert len(root.handlers) == 1
    finally:
        package_logger.setLevel(saved[0])
        root.setLevel(saved[1])
        root.handlers[:] = saved[2]
