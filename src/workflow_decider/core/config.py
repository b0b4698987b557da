"""Configuration for decider workers.

Settings are loaded from environment variables prefixed with `DECIDER_` and
from a local `.env` file, if present. Tests can point at another env file with
`DeciderSettings(_env_file=path)`.
"""

from __future__ import annotations

import logging
import socket
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging import configure_logging


class DeciderSettings(BaseSettings):
    """Settings for a decision poller.

    Environment variables:
    - DECIDER_DOMAIN
    - DECIDER_TASK_LIST         (optional)
    - DECIDER_IDENTITY          (optional)
    - DECIDER_LOG_LEVEL         (optional)
    """

    domain: str = Field(
        default="",
        description="Coordination service domain the workflows are registered in",
    )
    task_list: str = Field(
        default="default",
        description="Decision task list to poll",
    )
    identity: str = Field(
        default_factory=socket.gethostname,
        max_length=256,
        description="Identity reported to the service when polling",
    )
    maximum_page_size: int = Field(
        default=1000,
        gt=0,
        le=1000,
        description="History events requested per page",
    )
    error_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause after a failed poll before polling again",
    )

    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Structured JSON or plain text log lines",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug logging for workflow_decider",
    )

    model_config = SettingsConfigDict(
        env_prefix="DECIDER_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_domain(self) -> DeciderSettings:
        if not self.domain.strip():
            raise ValueError("DECIDER_DOMAIN is required")
        return self

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, fmt=self.log_format)

        if self.debug:
            logging.getLogger("workflow_decider").setLevel(logging.DEBUG)
