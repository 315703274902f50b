"""Tests for application orchestration in the main module."""

import sys
from argparse import Namespace
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from feedaudit.config import Config
from feedaudit.correlation import CorrelationResult
from feedaudit.errors import ApiError, AuthenticationError, ConfigurationError, DataValidationError
from feedaudit.main import TqdmProgress, orchestrate_audit
from feedaudit.models import Build, Package
from feedaudit.sync import SyncResult


def _args(**overrides) -> Namespace:
    values = dict(
        account="acme",
        project="lib",
        results_dir="results",
        offline=False,
        max_concurrency=0,
        feed_id="lib-feed",
        default_branch="master",
        feed_timezone="UTC",
        progress_interval=1.0,
        verbose=False,
    )
    values.update(overrides)
    return Namespace(**values)


def _config(tmp_path, offline: bool = False) -> Config:
    return Config(account="acme", project_slug="lib", results_dir=tmp_path, feed_id="lib-feed", offline=offline)


def test_orchestrate_audit_success(tmp_path, capsys):
    """Verify orchestration returns 0 and wires components correctly on success."""
    config = _config(tmp_path)
    builds = [Build(build_id=1, build_number=1, version="0.1.0.1", status="success")]
    packages = [Package(package_id="Lib", version="0.1.0.9", updated=datetime(2026, 1, 1, tzinfo=timezone.utc))]
    synchronizer = Mock()
    synchronizer.run.return_value = SyncResult(builds=builds, packages=packages)
    correlation = CorrelationResult(analyzed_builds=[Mock()], unassigned_packages=packages)
    cache = Mock()

    with patch("feedaudit.main.parse_args", return_value=_args()) as parse_args_mock, patch(
        "feedaudit.main.configure_logging"
    ), patch("feedaudit.main.load_config", return_value=config) as load_config_mock, patch(
        "feedaudit.main.ResultsCache", return_value=cache
    ), patch(
        "feedaudit.main.AppVeyorClient"
    ) as client_ctor_mock, patch(
        "feedaudit.main.BuildSynchronizer", return_value=synchronizer
    ) as synchronizer_ctor_mock, patch(
        "feedaudit.main.correlate", return_value=correlation
    ) as correlate_mock, patch(
        "feedaudit.main.generate_report", return_value="REPORT"
    ) as report_mock:
        exit_code = orchestrate_audit()

    assert exit_code == 0
    parse_args_mock.assert_called_once_with(None)
    load_config_mock.assert_called_once_with(
        account="acme",
        project="lib",
        results_dir="results",
        offline=False,
        max_concurrency=0,
        feed_id="lib-feed",
        default_branch="master",
        feed_timezone="UTC",
        progress_interval=1.0,
    )
    client_ctor_mock.assert_called_once_with(config=config)
    assert synchronizer_ctor_mock.call_args.kwargs["client"] is client_ctor_mock.return_value
    correlate_mock.assert_called_once_with(builds, packages, default_branch="master")
    cache.save_analyzed_builds.assert_called_once_with(correlation.analyzed_builds)
    cache.save_unassigned_packages.assert_called_once_with(packages)
    report_mock.assert_called_once_with(correlation.analyzed_builds, packages)
    assert "REPORT" in capsys.readouterr().out


def test_orchestrate_audit_offline_does_not_create_client(tmp_path):
    """Verify offline runs never construct the AppVeyor client."""
    config = _config(tmp_path, offline=True)
    synchronizer = Mock()
    synchronizer.run.return_value = SyncResult(builds=[], packages=[])

    with patch("feedaudit.main.parse_args", return_value=_args(offline=True)), patch(
        "feedaudit.main.configure_logging"
    ), patch("feedaudit.main.load_config", return_value=config), patch(
        "feedaudit.main.AppVeyorClient"
    ) as client_ctor_mock, patch(
        "feedaudit.main.BuildSynchronizer", return_value=synchronizer
    ) as synchronizer_ctor_mock:
        exit_code = orchestrate_audit()

    assert exit_code == 0
    client_ctor_mock.assert_not_called()
    assert synchronizer_ctor_mock.call_args.kwargs["client"] is None
    assert (tmp_path / "analyzed_builds.csv").exists()
    assert (tmp_path / "unassigned_packages.csv").exists()


def test_orchestrate_audit_configuration_error_returns_configuration_exit_code():
    """Verify configuration failures return the configuration exit code."""
    with patch("feedaudit.main.parse_args", return_value=_args()), patch(
        "feedaudit.main.configure_logging"
    ), patch(
        "feedaudit.main.load_config",
        side_effect=ConfigurationError("Missing expected NuGet feed id."),
    ):
        exit_code = orchestrate_audit()

    assert exit_code == 2


def test_orchestrate_audit_authentication_error_returns_auth_exit_code(tmp_path):
    """Verify rejected credentials return the authentication exit code."""
    synchronizer = Mock()
    synchronizer.run.side_effect = AuthenticationError("denied")

    with patch("feedaudit.main.parse_args", return_value=_args()), patch(
        "feedaudit.main.configure_logging"
    ), patch("feedaudit.main.load_config", return_value=_config(tmp_path)), patch(
        "feedaudit.main.AppVeyorClient"
    ), patch("feedaudit.main.BuildSynchronizer", return_value=synchronizer):
        exit_code = orchestrate_audit()

    assert exit_code == 3


def test_orchestrate_audit_api_error_returns_api_exit_code(tmp_path, capsys):
    """Verify AppVeyor API failures return the API error exit code and explain themselves."""
    synchronizer = Mock()
    synchronizer.run.side_effect = ApiError("feed unavailable")

    with patch("feedaudit.main.parse_args", return_value=_args()), patch(
        "feedaudit.main.configure_logging"
    ), patch("feedaudit.main.load_config", return_value=_config(tmp_path)), patch(
        "feedaudit.main.AppVeyorClient"
    ), patch("feedaudit.main.BuildSynchronizer", return_value=synchronizer):
        exit_code = orchestrate_audit()

    assert exit_code == 4
    assert "feed unavailable" in capsys.readouterr().err


def test_orchestrate_audit_corrupt_cache_returns_data_exit_code(tmp_path):
    """Verify unreadable cache files return the data validation exit code."""
    synchronizer = Mock()
    synchronizer.run.side_effect = DataValidationError("builds.csv, line 2: bad")

    with patch("feedaudit.main.parse_args", return_value=_args()), patch(
        "feedaudit.main.configure_logging"
    ), patch("feedaudit.main.load_config", return_value=_config(tmp_path)), patch(
        "feedaudit.main.AppVeyorClient"
    ), patch("feedaudit.main.BuildSynchronizer", return_value=synchronizer):
        exit_code = orchestrate_audit()

    assert exit_code == 5


def test_orchestrate_audit_unexpected_error_returns_generic_exit_code():
    """Verify unexpected exceptions are mapped to the generic non-zero exit code."""
    with patch("feedaudit.main.parse_args", side_effect=RuntimeError("boom")):
        exit_code = orchestrate_audit()

    assert exit_code == 1


def test_tqdm_progress_opens_a_new_bar_per_phase():
    """Verify progress notifications drive one bar per phase and close it when complete."""
    bars = []

    def _bar(**kwargs):
        bar = Mock()
        bar.n = 0

        def _update(count):
            bar.n += count

        bar.update.side_effect = _update
        bar.kwargs = kwargs
        bars.append(bar)
        return bar

    progress = TqdmProgress()
    with patch("feedaudit.main.tqdm", side_effect=_bar):
        progress("Reading build history", 100, None)
        progress("Reading build history", 150, None)
        progress("Fetching build details", 1, 2)
        progress("Fetching build details", 2, 2)

    assert [bar.kwargs["desc"] for bar in bars] == ["Reading build history", "Fetching build details"]
    assert bars[0].n == 150
    bars[0].close.assert_called_once()
    bars[1].close.assert_called_once()
