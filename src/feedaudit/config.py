"""Configuration parsing and validation for the AppVeyor feed audit."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Optional

from .errors import ConfigurationError

DEFAULT_API_BASE_URL = "https://ci.appveyor.com/api"
DEFAULT_FEED_URL_TEMPLATE = "https://ci.appveyor.com/nuget/{feed_id}/Packages()"
DEFAULT_TERMINAL_STATUSES: FrozenSet[str] = frozenset({"success", "failed", "cancelled"})


@dataclass(frozen=True)
class Config:
    """Validated runtime settings shared by the client, sync and correlation steps."""

    account: str
    project_slug: str
    results_dir: Path
    feed_id: Optional[str] = None
    default_branch: str = "master"
    feed_timezone: str = "UTC"
    offline: bool = False
    max_concurrency: Optional[int] = None
    progress_interval: float = 1.0
    api_token: Optional[str] = None
    api_base_url: str = DEFAULT_API_BASE_URL
    feed_url_template: str = DEFAULT_FEED_URL_TEMPLATE
    history_page_size: int = 100
    terminal_statuses: FrozenSet[str] = DEFAULT_TERMINAL_STATUSES

    def is_terminal(self, status: str) -> bool:
        """Return ``True`` when no further updates are expected for a build in ``status``."""
        return (status or "").strip().lower() in self.terminal_statuses


def load_config(
    account: str,
    project: str,
    results_dir: str,
    offline: bool = False,
    max_concurrency: int = 0,
    feed_id: Optional[str] = None,
    default_branch: str = "master",
    feed_timezone: str = "UTC",
    progress_interval: float = 1.0,
) -> Config:
    """Build and validate application configuration.

    Args:
        account: AppVeyor account name.
        project: AppVeyor project slug.
        results_dir: Directory holding cached data and reports.
        offline: Skip all network access and analyze cached data only.
        max_concurrency: Parallel detail fetches; ``<= 0`` means unbounded.
        feed_id: Expected NuGet feed identifier of the project.
        default_branch: Branch that is allowed to publish packages.
        feed_timezone: Time zone the feed is expected to report.
        progress_interval: Minimum seconds between progress notifications.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If a required value is missing or invalid.
    """
    account = (account or "").strip()
    project = (project or "").strip()
    if not account or not project:
        raise ConfigurationError("Both the AppVeyor account and project slug are required.")

    feed_id = (feed_id or "").strip() or None
    if not offline and feed_id is None:
        raise ConfigurationError(
            "Missing expected NuGet feed id. Pass --feed-id or run with --offline."
        )

    if not default_branch or not default_branch.strip():
        raise ConfigurationError("Invalid value for 'default_branch': expected a branch name.")

    api_token = os.getenv("APPVEYOR_API_TOKEN", "").strip() or None

    return Config(
        account=account,
        project_slug=project,
        results_dir=Path(results_dir),
        feed_id=feed_id,
        default_branch=default_branch.strip(),
        feed_timezone=(feed_timezone or "UTC").strip(),
        offline=offline,
        max_concurrency=max_concurrency if max_concurrency and max_concurrency > 0 else None,
        progress_interval=progress_interval,
        api_token=api_token,
    )
