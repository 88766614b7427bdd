"""Configuration loading for the pipeline wizard.

Reads a YAML file into pydantic models. Every field has a default, so an
empty file (or no file at all, via ``WizardConfig()``) is a valid config.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    base_url: str = "http://localhost:8080/jenkins/blue/rest"  # REST root
    organization: str = "jenkins"  # server-side organization the pipelines live in
    api_url: str = "https://api.github.com"  # source host API the server talks to
    sse_url: str = "http://localhost:8080/jenkins/sse-gateway/listen"
    request_timeout: float = 30.0

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class TimingConfig(BaseModel):
    """Delays are in seconds."""

    min_delay: float = 0.5  # latency floor for listing and lookup calls
    save_min_delay: float = 1.0  # latency floor for the create/update call
    event_timeout: float = 60.0
    pipeline_check_delay: float = 5.0
    reconnect_delay: float = 2.0
    max_reconnect_delay: float = 30.0

    @field_validator(
        "min_delay", "save_min_delay", "event_timeout", "pipeline_check_delay", "reconnect_delay"
    )
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"delay must be >= 0, got {v}")
        return v


class ListingConfig(BaseModel):
    first_page: int = 1
    page_size: int = Field(default=100, gt=0)


class WizardConfig(BaseModel):
    """Top-level wizard configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    listing: ListingConfig = Field(default_factory=ListingConfig)


def load_config(config_path: Path) -> WizardConfig:
    """Load wizard configuration from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If config validation fails.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Wizard config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = WizardConfig(**raw)

    # Environment variable overrides for deployment
    base_url = os.environ.get("PIPELINE_WIZARD_BASE_URL")
    if base_url:
        config.server.base_url = base_url.rstrip("/")

    event_timeout = os.environ.get("PIPELINE_WIZARD_EVENT_TIMEOUT")
    if event_timeout:
        config.timing.event_timeout = float(event_timeout)

    logger.info("Loaded wizard config: server=%s", config.server.base_url)
    return config
