"""Tests for configuration loading and status classification."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from feedaudit.config import Config, load_config
from feedaudit.errors import ConfigurationError


def test_load_config_builds_validated_config(monkeypatch):
    """Verify load_config normalizes values and reads the API token from the environment."""
    monkeypatch.setenv("APPVEYOR_API_TOKEN", " token ")

    config = load_config(
        account=" acme ",
        project="lib",
        results_dir="out",
        feed_id="lib-feed",
        max_concurrency=4,
    )

    assert config.account == "acme"
    assert config.project_slug == "lib"
    assert config.results_dir == Path("out")
    assert config.max_concurrency == 4
    assert config.api_token == "token"
    assert config.offline is False


def test_load_config_non_positive_concurrency_means_unbounded(monkeypatch):
    """Verify zero and negative throttles both become unbounded."""
    monkeypatch.delenv("APPVEYOR_API_TOKEN", raising=False)

    assert load_config("acme", "lib", "out", feed_id="f", max_concurrency=0).max_concurrency is None
    assert load_config("acme", "lib", "out", feed_id="f", max_concurrency=-3).max_concurrency is None
    assert load_config("acme", "lib", "out", feed_id="f").api_token is None


def test_load_config_online_without_feed_id_raises():
    """Verify online runs require the expected feed id."""
    with pytest.raises(ConfigurationError):
        load_config("acme", "lib", "out")


def test_load_config_offline_without_feed_id_is_allowed():
    """Verify offline runs do not need the feed id."""
    config = load_config("acme", "lib", "out", offline=True)

    assert config.offline is True
    assert config.feed_id is None


def test_load_config_missing_project_raises():
    """Verify the project coordinates are mandatory."""
    with pytest.raises(ConfigurationError):
        load_config("acme", "  ", "out", offline=True)


@pytest.mark.parametrize(
    "status, expected",
    [
        ("success", True),
        ("failed", True),
        ("Cancelled", True),
        ("running", False),
        ("queued", False),
        ("cancelling", False),
        ("", False),
    ],
)
def test_is_terminal_classifies_statuses(status, expected):
    """Verify only success, failed and cancelled are terminal."""
    config = Config(account="acme", project_slug="lib", results_dir=Path("out"))

    assert config.is_terminal(status) is expected
