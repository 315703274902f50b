"""Incremental synchronization of AppVeyor build history and the NuGet feed.

A run resumes from the cached snapshot:

1. builds cached in a non-terminal status are fetched again;
2. history is extended below the cached minimum id and above the cached
   maximum id;
3. finished builds only known from the history listing get their job and
   artifact counts;
4. the build snapshot is saved when anything changed, even if one of the
   previous steps failed;
5. the package feed is downloaded in full and replaces the cached packages.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple
from zoneinfo import ZoneInfo

import requests

from .appveyor_client import AppVeyorClient, ProjectSummary, resolve_timezone
from .cache import ResultsCache
from .config import Config
from .errors import ApiError, AuthenticationError, ConfigurationError, FeedAuditError, FeedFormatError
from .models import MIN_TIMESTAMP, Build, Package
from .progress import ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Build and package collections handed to correlation."""

    builds: List[Build]
    packages: List[Package]
    builds_changed: bool = False


class BuildSynchronizer:
    """Brings the cached build and package collections up to date."""

    def __init__(
        self,
        config: Config,
        cache: ResultsCache,
        client: Optional[AppVeyorClient] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self._config = config
        self._cache = cache
        self._client = client
        self._progress_callback = progress_callback

    def _reporter(self, phase: str, total: Optional[int]) -> ProgressReporter:
        return ProgressReporter(
            phase,
            total,
            self._progress_callback,
            min_interval=self._config.progress_interval,
        )

    def run(self) -> SyncResult:
        """Synchronize and return the resulting collections.

        Raises:
            ConfigurationError: If the project summary does not match the configuration.
            AuthenticationError: If AppVeyor rejects the credentials.
            ApiError: If the package feed cannot be downloaded completely.
        """
        builds = self._cache.load_builds()
        packages = self._cache.load_packages()
        logger.info(
            "Loaded cached data",
            extra={"builds": len(builds), "packages": len(packages)},
        )

        if self._config.offline:
            logger.info("Offline mode, analyzing cached data only")
            return SyncResult(builds=builds, packages=packages)

        if self._client is None:
            raise ConfigurationError("An AppVeyor client is required unless running offline.")

        summary = self._client.get_project_summary()
        zone = self._resolve_feed_zone(summary)

        builds_changed = self._sync_builds(builds)
        packages = self._refresh_packages(summary, zone)

        return SyncResult(builds=builds, packages=packages, builds_changed=builds_changed)

    def _resolve_feed_zone(self, summary: ProjectSummary) -> ZoneInfo:
        expected = resolve_timezone(self._config.feed_timezone)
        try:
            reported = resolve_timezone(summary.feed_timezone)
        except ConfigurationError:
            logger.warning(
                "Feed reports unknown time zone %s, using %s",
                summary.feed_timezone,
                expected.key,
                extra={"expected": expected.key, "reported": summary.feed_timezone},
            )
            return expected

        if reported.key != expected.key:
            logger.warning(
                "Feed reports time zone %s instead of %s, using the reported one",
                reported.key,
                expected.key,
                extra={"expected": expected.key, "reported": reported.key},
            )
        return reported

    def _sync_builds(self, builds: List[Build]) -> bool:
        """Update ``builds`` in place and save it if it changed."""
        snapshot = list(builds)

        try:
            self._resume_in_progress(builds)
            self._extend_history(builds)
            self._enrich_brief_builds(builds)
        finally:
            changed = builds != snapshot
            if changed:
                builds.sort(key=lambda build: build.build_id)
                self._cache.save_builds(builds)
                logger.info("Saved builds", extra={"builds": len(builds)})

        return changed

    def _resume_in_progress(self, builds: List[Build]) -> int:
        indices = [
            index for index, build in enumerate(builds) if not self._config.is_terminal(build.status)
        ]
        return self._fetch_builds(builds, indices, "Resuming in-progress builds")

    def _enrich_brief_builds(self, builds: List[Build]) -> int:
        indices = [
            index
            for index, build in enumerate(builds)
            if build.jobs_count == 0 and self._config.is_terminal(build.status)
        ]
        return self._fetch_builds(builds, indices, "Fetching build details")

    def _fetch_indexed(self, index: int, build_id: int) -> Tuple[int, Build]:
        assert self._client is not None
        return index, self._client.fetch_build(build_id)

    def _fetch_builds(self, builds: List[Build], indices: Sequence[int], phase: str) -> int:
        """Fetch details for ``builds[i]`` for each index in parallel and apply them.

        Workers only return ``(index, build)`` pairs; the list is modified on
        this thread alone. A failed fetch is logged and leaves the cached
        build as it was, to be retried by the next run.
        """
        if not indices:
            return 0

        max_workers = len(indices)
        if self._config.max_concurrency is not None:
            max_workers = min(self._config.max_concurrency, len(indices))

        reporter = self._reporter(phase, len(indices))
        updated = 0
        failed = 0

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(self._fetch_indexed, index, builds[index].build_id): index
                for index in indices
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    _, fetched = future.result()
                except AuthenticationError:
                    for pending in futures:
                        pending.cancel()
                    raise
                except (FeedAuditError, requests.RequestException) as exc:
                    failed += 1
                    logger.warning(
                        "Failed to fetch build %s, leaving it for the next run: %s",
                        builds[index].build_id,
                        exc,
                        extra={"build_id": builds[index].build_id, "error": str(exc)},
                    )
                else:
                    if fetched.build_id != builds[index].build_id:
                        failed += 1
                        logger.warning(
                            "AppVeyor returned build %s when build %s was requested",
                            fetched.build_id,
                            builds[index].build_id,
                            extra={"build_id": builds[index].build_id, "returned": fetched.build_id},
                        )
                    elif fetched != builds[index]:
                        builds[index] = fetched
                        updated += 1
                finally:
                    reporter.advance()

        reporter.finish()
        logger.info(
            phase,
            extra={"requested": len(indices), "updated": updated, "failed": failed},
        )
        return updated

    def _extend_history(self, builds: List[Build]) -> int:
        """Append builds the history listing has that the cache does not."""
        known: Set[int] = {build.build_id for build in builds}
        if not known:
            return self._walk_history_safely(builds, known, start_build_id=0, stop_build_id=None)

        lowest = min(known)
        highest = max(known)
        added = self._walk_history_safely(builds, known, start_build_id=lowest, stop_build_id=None)
        added += self._walk_history_safely(builds, known, start_build_id=0, stop_build_id=highest)
        return added

    def _walk_history_safely(
        self,
        builds: List[Build],
        known: Set[int],
        start_build_id: int,
        stop_build_id: Optional[int],
    ) -> int:
        try:
            return self._walk_history(builds, known, start_build_id, stop_build_id)
        except (ApiError, requests.RequestException) as exc:
            logger.warning(
                "History walk from build %s interrupted, continuing with the builds found so far: %s",
                start_build_id,
                exc,
                extra={"start_build_id": start_build_id, "error": str(exc)},
            )
            return 0

    def _walk_history(
        self,
        builds: List[Build],
        known: Set[int],
        start_build_id: int,
        stop_build_id: Optional[int],
    ) -> int:
        """Walk history pages downwards from ``start_build_id``.

        The walk ends on a short page, on a page that does not move the cursor,
        or on reaching ``stop_build_id`` (or any lower id). Builds already in
        ``known`` are skipped, so overlapping walks never duplicate a build.
        """
        assert self._client is not None
        page_size = self._config.history_page_size
        reporter = self._reporter("Reading build history", None)
        cursor = start_build_id
        added = 0

        while True:
            page = self._client.get_history_page(cursor)
            reached_known = False

            for build in page:
                if stop_build_id is not None and build.build_id <= stop_build_id:
                    reached_known = True
                    break
                if build.build_id in known:
                    continue
                known.add(build.build_id)
                builds.append(build)
                added += 1

            reporter.advance(len(page))
            if reached_known or len(page) < page_size:
                break

            next_cursor = page[-1].build_id
            if cursor and next_cursor >= cursor:
                break
            cursor = next_cursor

        reporter.finish()
        logger.debug(
            "History walk finished",
            extra={"start_build_id": start_build_id, "stop_build_id": stop_build_id, "added": added},
        )
        return added

    def _refresh_packages(self, summary: ProjectSummary, zone: ZoneInfo) -> List[Package]:
        """Download every feed page and replace the cached packages.

        Raises:
            FeedFormatError: If a page is malformed or the next links loop.
        """
        assert self._client is not None
        uri: Optional[str] = self._client.feed_start_uri(summary.feed_id)
        visited: Set[str] = set()
        packages: List[Package] = []
        reporter = self._reporter("Reading package feed", None)

        while uri:
            if uri in visited:
                raise FeedFormatError(f"NuGet feed next links loop back to {uri}")
            visited.add(uri)

            page, uri = self._client.get_feed_page(uri, zone)
            packages.extend(page)
            reporter.advance(len(page))

        reporter.finish()
        packages.sort(key=lambda package: (package.updated or MIN_TIMESTAMP, package.package_id, package.version))
        self._cache.save_packages(packages)
        logger.info("Saved packages", extra={"packages": len(packages), "pages": len(visited)})
        return packages
