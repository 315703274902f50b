"""Domain models for build and package feed reconciliation.

Records are immutable dataclasses. Timestamps are timezone-aware UTC
``datetime`` values, or ``None`` when the source had no value. Each record
type has an explicit row mapping used by the CSV cache; nothing here
inspects fields at runtime.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, Mapping, Optional

from .errors import DataValidationError

_FRACTION_RE = re.compile(r"\.(\d+)")

# Sort position of a missing timestamp: older than anything real.
MIN_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc)

BUILD_FIELDS = (
    "build_id",
    "build_number",
    "version",
    "status",
    "branch",
    "pull_request_id",
    "started",
    "finished",
    "created",
    "updated",
    "jobs_count",
    "artifacts_count",
    "nupkg_count",
)

PACKAGE_FIELDS = ("package_id", "version", "build_number", "updated")

ANALYZED_BUILD_FIELDS = (
    "build_id",
    "build_number",
    "version",
    "status",
    "branch",
    "pull_request_id",
    "started",
    "finished",
    "nupkg_count",
    "last_nupkg",
    "pkg_id",
    "pkg_version",
    "pkg_updated",
    "pkg_offset",
    "pkg_out_of_range",
    "build_error",
    "pkg_error",
    "pkg_not_found",
)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to UTC.

    Naive values keep their clock value and are tagged as UTC; aware values
    are converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def localize(value: Optional[datetime], zone: tzinfo) -> Optional[datetime]:
    """Interpret a naive feed-local timestamp in ``zone`` and return it in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z`` and any number of fractional second digits.
    Empty input and the ``0001-01-01T00:00:00`` sentinel yield ``None``.
    Naive input is returned as-is in the clock sense, tagged UTC.

    Raises:
        ValueError: If the text is not an ISO-8601 timestamp.
    """
    if value is None:
        return None

    text = str(value).strip()
    if not text:
        return None

    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda match: "." + (match.group(1) + "000000")[:6], text, count=1)

    parsed = datetime.fromisoformat(text)
    if parsed.replace(tzinfo=None) == datetime.min:
        return None
    return ensure_utc(parsed)


def format_timestamp(value: Optional[datetime]) -> str:
    """Format a timestamp as sortable UTC ISO-8601, or ``""`` when missing."""
    if value is None:
        return ""
    return ensure_utc(value).isoformat(timespec="microseconds")


def build_number_from_version(version: str) -> int:
    """Return the build number encoded in a package version.

    The build number is the fourth numeric component of the version core
    (``1.2.3.456-beta`` -> ``456``). Versions without one map to ``0``.
    """
    core = re.split(r"[-+]", (version or "").strip(), maxsplit=1)[0]
    parts = core.split(".")
    if len(parts) >= 4 and parts[3].isdigit():
        return int(parts[3])
    return 0


@dataclass(frozen=True, slots=True)
class Build:
    """One CI build attempt.

    ``build_id`` orders builds and is the resume cursor; ``build_number``
    is shared by retries and pull-request builds of the same version.
    ``jobs_count == 0`` on a finished build means the detail has not been
    fetched yet.
    """

    build_id: int
    build_number: int
    version: str
    status: str
    branch: str = ""
    pull_request_id: str = ""
    started: Optional[datetime] = None
    finished: Optional[datetime] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    jobs_count: int = 0
    artifacts_count: int = 0
    nupkg_count: int = 0

    @property
    def is_pull_request(self) -> bool:
        return bool(self.pull_request_id)


@dataclass(frozen=True, slots=True)
class Package:
    """One entry of the NuGet package feed."""

    package_id: str
    version: str
    updated: Optional[datetime]

    @property
    def build_number(self) -> int:
        return build_number_from_version(self.version)


@dataclass(frozen=True, slots=True)
class Artifact:
    """One file published by a build job."""

    file_name: str
    artifact_type: str = ""
    size: int = 0

    @property
    def is_nupkg(self) -> bool:
        return self.file_name.lower().endswith(".nupkg")


@dataclass(frozen=True, slots=True)
class AnalyzedBuild:
    """Per-build outcome of correlating builds with feed packages."""

    build_id: int
    build_number: int
    version: str
    status: str
    branch: str
    pull_request_id: str
    started: Optional[datetime]
    finished: Optional[datetime]
    nupkg_count: int
    last_nupkg: bool = False
    pkg_id: str = ""
    pkg_version: str = ""
    pkg_updated: Optional[datetime] = None
    pkg_offset: Optional[timedelta] = None
    pkg_out_of_range: bool = False
    build_error: str = ""
    pkg_error: bool = False
    pkg_not_found: bool = False


def _field(row: Mapping[str, Optional[str]], name: str) -> str:
    value = row.get(name)
    if value is None:
        raise DataValidationError(f"Missing column '{name}'.")
    return value


def _int_field(row: Mapping[str, Optional[str]], name: str) -> int:
    text = _field(row, name).strip()
    if not text:
        return 0
    try:
        return int(text)
    except ValueError as exc:
        raise DataValidationError(f"Invalid integer in column '{name}': {text!r}") from exc


def _timestamp_field(row: Mapping[str, Optional[str]], name: str) -> Optional[datetime]:
    text = _field(row, name)
    try:
        return parse_timestamp(text)
    except ValueError as exc:
        raise DataValidationError(f"Invalid timestamp in column '{name}': {text!r}") from exc


def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def build_to_row(build: Build) -> Dict[str, str]:
    return {
        "build_id": str(build.build_id),
        "build_number": str(build.build_number),
        "version": build.version,
        "status": build.status,
        "branch": build.branch,
        "pull_request_id": build.pull_request_id,
        "started": format_timestamp(build.started),
        "finished": format_timestamp(build.finished),
        "created": format_timestamp(build.created),
        "updated": format_timestamp(build.updated),
        "jobs_count": str(build.jobs_count),
        "artifacts_count": str(build.artifacts_count),
        "nupkg_count": str(build.nupkg_count),
    }


def build_from_row(row: Mapping[str, Optional[str]]) -> Build:
    """Create a ``Build`` from a cached CSV row.

    Raises:
        DataValidationError: If a column is missing or holds an invalid value.
    """
    return Build(
        build_id=_int_field(row, "build_id"),
        build_number=_int_field(row, "build_number"),
        version=_field(row, "version"),
        status=_field(row, "status"),
        branch=_field(row, "branch"),
        pull_request_id=_field(row, "pull_request_id"),
        started=_timestamp_field(row, "started"),
        finished=_timestamp_field(row, "finished"),
        created=_timestamp_field(row, "created"),
        updated=_timestamp_field(row, "updated"),
        jobs_count=_int_field(row, "jobs_count"),
        artifacts_count=_int_field(row, "artifacts_count"),
        nupkg_count=_int_field(row, "nupkg_count"),
    )


def package_to_row(package: Package) -> Dict[str, str]:
    return {
        "package_id": package.package_id,
        "version": package.version,
        "build_number": str(package.build_number),
        "updated": format_timestamp(package.updated),
    }


def package_from_row(row: Mapping[str, Optional[str]]) -> Package:
    """Create a ``Package`` from a cached CSV row; ``build_number`` is derived, not read."""
    return Package(
        package_id=_field(row, "package_id"),
        version=_field(row, "version"),
        updated=_timestamp_field(row, "updated"),
    )


def analyzed_build_to_row(analyzed: AnalyzedBuild) -> Dict[str, str]:
    offset = "" if analyzed.pkg_offset is None else str(analyzed.pkg_offset.total_seconds())
    return {
        "build_id": str(analyzed.build_id),
        "build_number": str(analyzed.build_number),
        "version": analyzed.version,
        "status": analyzed.status,
        "branch": analyzed.branch,
        "pull_request_id": analyzed.pull_request_id,
        "started": format_timestamp(analyzed.started),
        "finished": format_timestamp(analyzed.finished),
        "nupkg_count": str(analyzed.nupkg_count),
        "last_nupkg": _format_bool(analyzed.last_nupkg),
        "pkg_id": analyzed.pkg_id,
        "pkg_version": analyzed.pkg_version,
        "pkg_updated": format_timestamp(analyzed.pkg_updated),
        "pkg_offset": offset,
        "pkg_out_of_range": _format_bool(analyzed.pkg_out_of_range),
        "build_error": analyzed.build_error,
        "pkg_error": _format_bool(analyzed.pkg_error),
        "pkg_not_found": _format_bool(analyzed.pkg_not_found),
    }
