"""Tests for wizard config loading."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from pipeline_wizard.config import TimingConfig, WizardConfig, load_config


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    config = {
        "server": {
            "base_url": "https://ci.example.com/blue/rest/",
            "organization": "jenkins",
            "sse_url": "https://ci.example.com/sse-gateway/listen",
        },
        "timing": {"min_delay": 0.1, "event_timeout": 30},
        "listing": {"page_size": 50},
    }
    path = tmp_path / "wizard.yaml"
    path.write_text(yaml.dump(config))
    return path


def test_load_config(config_file: Path):
    config = load_config(config_file)

    assert config.server.base_url == "https://ci.example.com/blue/rest"
    assert config.server.sse_url == "https://ci.example.com/sse-gateway/listen"
    assert config.timing.min_delay == 0.1
    assert config.timing.event_timeout == 30
    assert config.timing.save_min_delay == 1.0
    assert config.listing.page_size == 50
    assert config.listing.first_page == 1


def test_defaults():
    config = WizardConfig()

    assert config.timing.min_delay == 0.5
    assert config.timing.save_min_delay == 1.0
    assert config.timing.event_timeout == 60.0
    assert config.timing.pipeline_check_delay == 5.0
    assert config.listing.page_size == 100


def test_empty_file_uses_defaults(tmp_path: Path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    config = load_config(path)

    assert config.server.organization == "jenkins"


def test_missing_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_env_overrides(config_file: Path, monkeypatch):
    monkeypatch.setenv("PIPELINE_WIZARD_BASE_URL", "https://other.example.com/rest/")
    monkeypatch.setenv("PIPELINE_WIZARD_EVENT_TIMEOUT", "5")

    config = load_config(config_file)

    assert config.server.base_url == "https://other.example.com/rest"
    assert config.timing.event_timeout == 5.0


def test_negative_delay_rejected():
    with pytest.raises(ValidationError):
        TimingConfig(min_delay=-1)


def test_page_size_must_be_positive(tmp_path: Path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.dump({"listing": {"page_size": 0}}))

    with pytest.raises(ValidationError):
        load_config(path)
