"""CSV persistence of builds, packages and analysis reports."""

from __future__ import annotations

import csv
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from .errors import DataValidationError
from .models import (
    ANALYZED_BUILD_FIELDS,
    BUILD_FIELDS,
    PACKAGE_FIELDS,
    AnalyzedBuild,
    Build,
    Package,
    analyzed_build_to_row,
    build_from_row,
    build_to_row,
    package_from_row,
    package_to_row,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUILDS_FILE = "builds.csv"
PACKAGES_FILE = "packages.csv"
ANALYZED_BUILDS_FILE = "analyzed_builds.csv"
UNASSIGNED_PACKAGES_FILE = "unassigned_packages.csv"


class ResultsCache:
    """Reads and writes the flat files kept in the results directory.

    Every save writes a full snapshot through a temporary file that replaces
    the previous one, so an interrupted save leaves the old snapshot intact.
    """

    def __init__(self, results_dir: Path) -> None:
        self.results_dir = Path(results_dir)
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def path(self, file_name: str) -> Path:
        return self.results_dir / file_name

    def load_builds(self) -> List[Build]:
        return self._read(BUILDS_FILE, build_from_row)

    def save_builds(self, builds: Iterable[Build]) -> None:
        self._write(BUILDS_FILE, BUILD_FIELDS, (build_to_row(build) for build in builds))

    def load_packages(self) -> List[Package]:
        return self._read(PACKAGES_FILE, package_from_row)

    def save_packages(self, packages: Iterable[Package]) -> None:
        self._write(PACKAGES_FILE, PACKAGE_FIELDS, (package_to_row(package) for package in packages))

    def save_analyzed_builds(self, analyzed_builds: Iterable[AnalyzedBuild]) -> None:
        self._write(
            ANALYZED_BUILDS_FILE,
            ANALYZED_BUILD_FIELDS,
            (analyzed_build_to_row(analyzed) for analyzed in analyzed_builds),
        )

    def save_unassigned_packages(self, packages: Iterable[Package]) -> None:
        self._write(
            UNASSIGNED_PACKAGES_FILE,
            PACKAGE_FIELDS,
            (package_to_row(package) for package in packages),
        )

    def _read(self, file_name: str, from_row: Callable[[Mapping[str, Optional[str]]], T]) -> List[T]:
        """Read all rows of a cached file; a missing file is an empty collection.

        Raises:
            DataValidationError: If the file is not UTF-8 CSV or a row cannot be
                mapped onto its record type.
        """
        path = self.path(file_name)
        if not path.exists():
            logger.debug("No cached file found", extra={"path": str(path)})
            return []

        records: List[T] = []
        with path.open("r", newline="", encoding="utf-8") as handle:
            reader = csv.DictReader(handle)
            try:
                for row in reader:
                    records.append(from_row(row))
            except (DataValidationError, UnicodeDecodeError, csv.Error) as exc:
                raise DataValidationError(f"{path}, line {reader.line_num}: {exc}") from exc

        logger.debug("Loaded cached records", extra={"path": str(path), "count": len(records)})
        return records

    def _write(self, file_name: str, fields: Sequence[str], rows: Iterable[Dict[str, str]]) -> None:
        path = self.path(file_name)
        descriptor, temp_name = tempfile.mkstemp(prefix=f".{file_name}.", dir=self.results_dir)
        count = 0

        try:
            with os.fdopen(descriptor, "w", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=list(fields))
                writer.writeheader()
                for row in rows:
                    writer.writerow(row)
                    count += 1
            os.replace(temp_name, path)
        except BaseException:
            if os.path.exists(temp_name):
                os.remove(temp_name)
            raise

        logger.debug("Saved records", extra={"path": str(path), "count": count})
