"""Tests for CSV persistence in the results directory."""

import csv
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from feedaudit.cache import ANALYZED_BUILDS_FILE, BUILDS_FILE, UNASSIGNED_PACKAGES_FILE, ResultsCache
from feedaudit.errors import DataValidationError
from feedaudit.models import AnalyzedBuild, Build, Package


def _utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 1, 1, hour, minute, tzinfo=timezone.utc)


def _builds():
    return [
        Build(
            build_id=100,
            build_number=7,
            version="0.1.0.7",
            status="success",
            branch="master",
            started=_utc(10),
            finished=_utc(10, 30),
            created=_utc(9, 59),
            updated=_utc(10, 30),
            jobs_count=1,
            artifacts_count=3,
            nupkg_count=2,
        ),
        Build(
            build_id=101,
            build_number=8,
            version="0.1.0.8",
            status="queued",
            branch="master",
            pull_request_id="55",
            created=_utc(11),
        ),
    ]


def test_results_cache_creates_missing_directory(tmp_path):
    """Verify the results directory is created when absent."""
    target = tmp_path / "nested" / "results"

    ResultsCache(target)

    assert target.is_dir()


def test_load_builds_without_file_returns_empty_list(tmp_path):
    """Verify a fresh results directory yields no cached builds or packages."""
    cache = ResultsCache(tmp_path)

    assert cache.load_builds() == []
    assert cache.load_packages() == []


def test_builds_round_trip_through_csv(tmp_path):
    """Verify saved builds load back field for field, missing timestamps included."""
    cache = ResultsCache(tmp_path)
    builds = _builds()

    cache.save_builds(builds)
    restored = cache.load_builds()

    assert restored == builds
    assert restored[1].finished is None
    assert restored[1].started is None


def test_packages_round_trip_through_csv(tmp_path):
    """Verify saved packages load back unchanged."""
    cache = ResultsCache(tmp_path)
    packages = [
        Package(package_id="Lib", version="0.1.0.7", updated=_utc(10, 31)),
        Package(package_id="Lib.Extra", version="0.1.0.7", updated=None),
    ]

    cache.save_packages(packages)

    assert cache.load_packages() == packages


def test_save_writes_header_and_leaves_no_temporary_files(tmp_path):
    """Verify snapshots are complete CSV files and temporary files are cleaned up."""
    cache = ResultsCache(tmp_path)

    cache.save_builds(_builds())

    with (tmp_path / BUILDS_FILE).open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0][0] == "build_id"
    assert len(rows) == 3
    assert sorted(p.name for p in tmp_path.iterdir()) == [BUILDS_FILE]


def test_load_builds_with_malformed_row_names_file_and_line(tmp_path):
    """Verify malformed cache rows raise DataValidationError with their location."""
    cache = ResultsCache(tmp_path)
    cache.save_builds(_builds())
    path = tmp_path / BUILDS_FILE
    path.write_text(path.read_text(encoding="utf-8").replace("100,7", "oops,7"), encoding="utf-8")

    with pytest.raises(DataValidationError) as excinfo:
        cache.load_builds()

    assert BUILDS_FILE in str(excinfo.value)
    assert "line 2" in str(excinfo.value)


def test_load_builds_with_invalid_utf8_raises_data_validation_error(tmp_path):
    """Verify a cache file that is not UTF-8 is reported as corrupt data."""
    cache = ResultsCache(tmp_path)
    cache.save_builds(_builds())
    path = tmp_path / BUILDS_FILE
    path.write_bytes(path.read_bytes() + b"102,9,\xff\xfe\n")

    with pytest.raises(DataValidationError) as excinfo:
        cache.load_builds()

    assert BUILDS_FILE in str(excinfo.value)


def test_save_reports_write_analysis_and_unassigned_files(tmp_path):
    """Verify analysis outputs are written as their own tables."""
    cache = ResultsCache(tmp_path)
    analyzed = AnalyzedBuild(
        build_id=100,
        build_number=7,
        version="0.1.0.7",
        status="success",
        branch="master",
        pull_request_id="",
        started=_utc(10),
        finished=_utc(10, 30),
        nupkg_count=2,
        last_nupkg=True,
        pkg_not_found=True,
    )

    cache.save_analyzed_builds([analyzed])
    cache.save_unassigned_packages([Package(package_id="Lib", version="0.1.0.9", updated=_utc(12))])

    with (tmp_path / ANALYZED_BUILDS_FILE).open(newline="", encoding="utf-8") as handle:
        analyzed_rows = list(csv.DictReader(handle))
    with (tmp_path / UNASSIGNED_PACKAGES_FILE).open(newline="", encoding="utf-8") as handle:
        unassigned_rows = list(csv.DictReader(handle))

    assert analyzed_rows[0]["pkg_not_found"] == "true"
    assert analyzed_rows[0]["pkg_version"] == ""
    assert unassigned_rows == [
        {
            "package_id": "Lib",
            "version": "0.1.0.9",
            "build_number": "9",
            "updated": "2026-01-01T12:00:00.000000+00:00",
        }
    ]
