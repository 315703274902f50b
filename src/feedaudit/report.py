"""Run summary for the build/package reconciliation.

This module provides utilities for:
- Computing linear-interpolation percentiles of signed lag samples.
- Formatting signed second-based durations as ``HH:MM:SS``.
- Building a human-readable summary of anomaly counts and publish lag.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Sequence

from .correlation import BUILD_ERROR_BRANCH, BUILD_ERROR_PR
from .models import AnalyzedBuild, Package


def calculate_percentile(samples: Sequence[float], p: float) -> Optional[float]:
    """Linear-interpolation percentile of signed second samples, in any order.

    Returns ``None`` for an empty sample.

    Raises:
        ValueError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise ValueError("Percentile 'p' must be in the range [0, 100].")

    ordered = sorted(samples)
    if not ordered:
        return None

    rank = (len(ordered) - 1) * p / 100.0
    below = math.floor(rank)
    above = min(below + 1, len(ordered) - 1)
    weight = rank - below
    return ordered[below] * (1 - weight) + ordered[above] * weight


def publish_lag_statistics(analyzed_builds: Sequence[AnalyzedBuild]) -> Dict[str, Optional[float]]:
    """P50/P75/P90 of the delay between build finish and package publication.

    Only builds matched to a package with a known offset contribute. The lag
    may be negative when the feed reports a package before the build ended.
    """
    samples = [
        analyzed.pkg_offset.total_seconds()
        for analyzed in analyzed_builds
        if analyzed.pkg_offset is not None
    ]
    return {
        "p50": calculate_percentile(samples, 50),
        "p75": calculate_percentile(samples, 75),
        "p90": calculate_percentile(samples, 90),
        "count": float(len(samples)),
    }


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as ``HH:MM:SS``, prefixed with ``-`` when negative."""
    if seconds is None:
        return "n/a"

    total_seconds = int(round(seconds))
    sign = "-" if total_seconds < 0 else ""
    total_seconds = abs(total_seconds)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60
    return f"{sign}{hours:02d}:{minutes:02d}:{remaining_seconds:02d}"


def generate_report(
    analyzed_builds: Sequence[AnalyzedBuild],
    unassigned_packages: Sequence[Package],
) -> str:
    """Generate the human-readable summary printed at the end of a run."""
    producing = [analyzed for analyzed in analyzed_builds if analyzed.nupkg_count > 0]
    matched = [analyzed for analyzed in analyzed_builds if analyzed.pkg_version]
    lag = publish_lag_statistics(analyzed_builds)

    counts = [
        ("Builds analyzed", len(analyzed_builds)),
        ("Package-producing builds", len(producing)),
        ("Packages matched", len(matched)),
        ("Packages not found", sum(1 for a in analyzed_builds if a.pkg_not_found)),
        ("PR builds with packages", sum(1 for a in producing if a.build_error == BUILD_ERROR_PR)),
        ("Branch builds with packages", sum(1 for a in producing if a.build_error == BUILD_ERROR_BRANCH)),
        ("Published from off-branch", sum(1 for a in matched if a.pkg_error)),
        ("Published outside build", sum(1 for a in matched if a.pkg_out_of_range)),
        ("Unassigned packages", len(unassigned_packages)),
    ]

    lines = ["Build/Package Reconciliation Report", ""]
    lines.extend(f"{label + ':':<30}{value}" for label, value in counts)
    lines += [
        "",
        "Publish lag (package updated - build finished)",
        f"   Samples: {int(lag['count'] or 0)}",
        f"   P50: {format_duration(lag['p50'])}",
        f"   P75: {format_duration(lag['p75'])}",
        f"   P90: {format_duration(lag['p90'])}",
    ]

    return "\n".join(lines)
