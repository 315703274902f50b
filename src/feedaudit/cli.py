"""Command-line argument parsing for the AppVeyor feed audit."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence


def _concurrency(value: str) -> int:
    """Parse the concurrency throttle; non-positive values mean unbounded.

    Raises:
        argparse.ArgumentTypeError: If value is not an integer.
    """
    try:
        return int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc


def _seconds(value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be a number of seconds") from exc


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for a reconciliation run.

    Returns:
        Parsed CLI arguments: project coordinates, results directory, offline
        flag, concurrency throttle and reporting options.
    """
    parser = argparse.ArgumentParser(
        prog="appveyor-feed-audit",
        description=(
            "Reconcile AppVeyor build history with the project's NuGet feed and "
            "report builds whose packages are missing, duplicated or misattributed."
        ),
    )

    parser.add_argument(
        "--account",
        required=True,
        help="AppVeyor account name.",
    )
    parser.add_argument(
        "--project",
        required=True,
        help="AppVeyor project slug.",
    )
    parser.add_argument(
        "--results-dir",
        default="results",
        help="Directory for cached data and reports, created if absent (default: results).",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Skip all network access and recompute the analysis from cached data.",
    )
    parser.add_argument(
        "--max-concurrency",
        type=_concurrency,
        default=0,
        help="Maximum parallel build detail requests; 0 or less is unbounded (default: 0).",
    )
    parser.add_argument(
        "--feed-id",
        default=None,
        help="Expected NuGet feed id of the project (required unless --offline).",
    )
    parser.add_argument(
        "--default-branch",
        default="master",
        help="Only branch allowed to publish packages (default: master).",
    )
    parser.add_argument(
        "--feed-timezone",
        default="UTC",
        help="Time zone the feed is expected to report (default: UTC).",
    )
    parser.add_argument(
        "--progress-interval",
        type=_seconds,
        default=1.0,
        help="Minimum seconds between progress updates; 0 updates on every item (default: 1).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser.parse_args(argv)
