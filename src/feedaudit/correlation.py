"""Attribution of feed packages to the builds that produced them.

The feed has no reference to build ids, only versions whose fourth
component is the build number. Build numbers are reused by retries and
pull-request builds, so matching happens per build number:

- Builds sharing a number are ordered by ``finished``, most recent first.
- The first of them that published ``.nupkg`` artifacts is the
  ``last_nupkg`` build and takes one package with that build number.
- Older package-producing builds were superseded and get no package.
- Packages left over after all groups are processed are unassigned.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .models import MIN_TIMESTAMP, AnalyzedBuild, Build, Package

logger = logging.getLogger(__name__)

BUILD_ERROR_PR = "PR"
BUILD_ERROR_BRANCH = "Branch"


@dataclass
class CorrelationResult:
    """Per-build analysis plus the packages no build could claim."""

    analyzed_builds: List[AnalyzedBuild]
    unassigned_packages: List[Package]


def _package_sort_key(package: Package):
    return (package.updated or MIN_TIMESTAMP, package.package_id, package.version)


def index_packages(packages: Iterable[Package]) -> Dict[int, List[Package]]:
    """Group packages by the build number encoded in their version.

    Each list is ordered by ``updated`` ascending, so the most recently
    published package is last.
    """
    index: Dict[int, List[Package]] = defaultdict(list)
    for package in packages:
        index[package.build_number].append(package)
    for candidates in index.values():
        candidates.sort(key=_package_sort_key)
    return dict(index)


def build_error_for(build: Build, default_branch: str) -> str:
    """Classify a package-producing build that should not have published.

    Returns ``"PR"`` for pull-request builds, ``"Branch"`` for builds of a
    branch other than ``default_branch`` and ``""`` otherwise, including for
    builds without packages.
    """
    if build.nupkg_count <= 0:
        return ""
    if build.is_pull_request:
        return BUILD_ERROR_PR
    if build.branch != default_branch:
        return BUILD_ERROR_BRANCH
    return ""


def _is_out_of_range(
    moment: Optional[datetime],
    started: Optional[datetime],
    finished: Optional[datetime],
) -> bool:
    if moment is None:
        return False
    if started is not None and moment < started:
        return True
    if finished is not None and moment > finished:
        return True
    return False


def analyze_build(
    build: Build,
    default_branch: str,
    last_nupkg: bool = False,
    package: Optional[Package] = None,
) -> AnalyzedBuild:
    """Derive the analysis row of one build, optionally matched to ``package``."""
    build_error = build_error_for(build, default_branch)
    analyzed = AnalyzedBuild(
        build_id=build.build_id,
        build_number=build.build_number,
        version=build.version,
        status=build.status,
        branch=build.branch,
        pull_request_id=build.pull_request_id,
        started=build.started,
        finished=build.finished,
        nupkg_count=build.nupkg_count,
        last_nupkg=last_nupkg,
        build_error=build_error,
        pkg_not_found=last_nupkg and package is None,
    )
    if package is None:
        return analyzed

    offset = None
    if package.updated is not None and build.finished is not None:
        offset = package.updated - build.finished

    return replace(
        analyzed,
        pkg_id=package.package_id,
        pkg_version=package.version,
        pkg_updated=package.updated,
        pkg_offset=offset,
        pkg_out_of_range=_is_out_of_range(package.updated, build.started, build.finished),
        pkg_error=bool(build_error),
    )


def correlate(
    builds: Iterable[Build],
    packages: Iterable[Package],
    default_branch: str,
) -> CorrelationResult:
    """Match builds to feed packages and flag anomalies.

    Inputs are only read. The result lists analyzed builds by ``build_id``
    and unassigned packages by ``updated``, both ascending.
    """
    index = index_packages(packages)

    groups: Dict[int, List[Build]] = defaultdict(list)
    for build in builds:
        groups[build.build_number].append(build)

    analyzed_builds: List[AnalyzedBuild] = []
    matched = 0
    not_found = 0

    for build_number, group in groups.items():
        group.sort(key=lambda build: (build.finished or MIN_TIMESTAMP, build.build_id), reverse=True)
        found_last_nupkg = False

        for build in group:
            if build.nupkg_count > 0 and not found_last_nupkg:
                found_last_nupkg = True
                candidates = index.get(build_number)
                package = candidates.pop() if candidates else None
                if package is None:
                    not_found += 1
                else:
                    matched += 1
                analyzed_builds.append(analyze_build(build, default_branch, True, package))
            else:
                analyzed_builds.append(analyze_build(build, default_branch))

    analyzed_builds.sort(key=lambda analyzed: analyzed.build_id)
    unassigned = sorted(
        (package for candidates in index.values() for package in candidates),
        key=_package_sort_key,
    )

    logger.info(
        "Correlated builds with packages",
        extra={
            "builds": len(analyzed_builds),
            "matched": matched,
            "not_found": not_found,
            "unassigned": len(unassigned),
        },
    )
    return CorrelationResult(analyzed_builds=analyzed_builds, unassigned_packages=unassigned)
