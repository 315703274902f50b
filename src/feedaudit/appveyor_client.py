"""AppVeyor REST API and NuGet feed client for build/package reconciliation."""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from tzlocal.windows_tz import win_tz

from .config import Config
from .errors import ApiError, AuthenticationError, ConfigurationError, FeedFormatError
from .models import Artifact, Build, Package, localize, parse_timestamp

logger = logging.getLogger(__name__)

_ATOM = "{http://www.w3.org/2005/Atom}"
_DATA = "{http://schemas.microsoft.com/ado/2007/08/dataservices}"
_METADATA = "{http://schemas.microsoft.com/ado/2007/08/dataservices/metadata}"


def resolve_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA or Windows time zone id, as reported by AppVeyor.

    Raises:
        ConfigurationError: If the zone is unknown.
    """
    candidate = win_tz.get(name.strip(), name.strip())
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown feed time zone '{name}'.") from exc


@dataclass(frozen=True)
class ProjectSummary:
    """Project metadata needed before touching builds or packages."""

    feed_id: str
    feed_timezone: str


class AppVeyorClient:
    """Small, typed client for AppVeyor build history and the project NuGet feed."""

    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(self, config: Config, timeout_seconds: int = 30) -> None:
        """Initialize an AppVeyor API client.

        Args:
            config: Validated runtime configuration with project coordinates.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._config = config
        self._timeout_seconds = timeout_seconds
        self._project_path = f"projects/{config.account}/{config.project_slug}"

        self._session = requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if config.api_token:
            self._session.headers.update({"Authorization": f"Bearer {config.api_token}"})

    def _build_url(self, path: str) -> str:
        """Build a fully qualified API URL from a path below the API root."""
        return f"{self._config.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """Execute a GET request with retry logic for connection errors and 429/5xx responses.

        Raises:
            AuthenticationError: If AppVeyor answers 401 or 403.
            ApiError: If the request repeatedly fails or returns HTTP >= 400.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(
                    url, params=params, headers=headers, timeout=self._timeout_seconds
                )
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"AppVeyor request failed after retries: GET {url}") from exc
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code in (401, 403):
                raise AuthenticationError(
                    f"AppVeyor rejected the request: GET {url} returned {status_code}. "
                    "Check the 'APPVEYOR_API_TOKEN' environment variable."
                )

            if status_code >= 400:
                raise ApiError(
                    "AppVeyor API request failed: "
                    f"GET {url} returned {status_code} - {response.text}"
                )

            return response

        raise ApiError(f"AppVeyor request failed after retries: GET {url}") from last_error

    def _get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        expected_type: type = dict,
    ) -> Any:
        """GET an API path and decode the JSON payload.

        Raises:
            ApiError: If the payload is not valid JSON of ``expected_type``.
        """
        url = self._build_url(path)
        response = self._get(url, params=params)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(f"AppVeyor API returned invalid JSON: GET {url}") from exc

        if not isinstance(payload, expected_type):
            raise ApiError(f"AppVeyor API returned unexpected payload shape: GET {url}")

        return payload

    def _parse_build(self, item: Dict[str, Any]) -> Build:
        """Map an AppVeyor build payload onto ``Build``; job counts are left to the caller."""
        build_id = item.get("buildId")
        build_number = item.get("buildNumber")
        if build_id is None or build_number is None:
            raise ApiError(f"AppVeyor build payload is missing required fields: payload={item}")

        try:
            return Build(
                build_id=int(build_id),
                build_number=int(build_number),
                version=str(item.get("version") or ""),
                status=str(item.get("status") or ""),
                branch=str(item.get("branch") or ""),
                pull_request_id=str(item.get("pullRequestId") or ""),
                started=parse_timestamp(item.get("started")),
                finished=parse_timestamp(item.get("finished")),
                created=parse_timestamp(item.get("created")),
                updated=parse_timestamp(item.get("updated")),
            )
        except (TypeError, ValueError) as exc:
            raise ApiError(f"AppVeyor build payload has invalid values: payload={item}") from exc

    def get_project_summary(self) -> ProjectSummary:
        """Read the project's NuGet feed id and time zone.

        Raises:
            ConfigurationError: If the feed does not belong to the configured project.
        """
        payload = self._get_json(f"{self._project_path}/settings")
        settings = payload.get("settings") or {}
        feed = settings.get("nuGetFeed") or {}
        feed_id = str(feed.get("id") or "")
        feed_timezone = str(settings.get("timeZoneId") or "UTC")

        expected = self._config.feed_id or ""
        if feed_id.lower() != expected.lower():
            raise ConfigurationError(
                f"Project '{self._config.account}/{self._config.project_slug}' publishes to feed "
                f"'{feed_id}', expected '{expected}'."
            )

        return ProjectSummary(feed_id=feed_id, feed_timezone=feed_timezone)

    def get_history_page(self, start_build_id: int = 0) -> List[Build]:
        """Return one page of brief builds in descending ``build_id`` order.

        ``start_build_id == 0`` requests the most recent page; otherwise the
        page continues from that build id.
        """
        params: Dict[str, Any] = {"recordsNumber": self._config.history_page_size}
        if start_build_id:
            params["startBuildId"] = start_build_id

        payload = self._get_json(f"{self._project_path}/history", params=params)
        builds = [self._parse_build(item) for item in payload.get("builds") or []]
        builds.sort(key=lambda build: build.build_id, reverse=True)
        return builds

    def get_build_detail(self, build_id: int) -> Tuple[Build, List[str]]:
        """Return the detailed build and the ids of its jobs."""
        payload = self._get_json(f"{self._project_path}/builds/{build_id}")
        item = payload.get("build")
        if not isinstance(item, dict):
            raise ApiError(f"AppVeyor build detail is missing the build object: build_id={build_id}")

        try:
            job_ids = [str(job["jobId"]) for job in item.get("jobs") or [] if job.get("jobId")]
        except (TypeError, KeyError, AttributeError) as exc:
            raise ApiError(f"AppVeyor build detail has malformed jobs: payload={item}") from exc
        return self._parse_build(item), job_ids

    def get_job_artifacts(self, job_id: str) -> List[Artifact]:
        """List artifacts published by a build job."""
        payload = self._get_json(f"buildjobs/{job_id}/artifacts", expected_type=list)
        artifacts: List[Artifact] = []

        for item in payload:
            try:
                file_name = item.get("fileName")
                if not file_name:
                    continue
                artifacts.append(
                    Artifact(
                        file_name=str(file_name),
                        artifact_type=str(item.get("type") or ""),
                        size=int(item.get("size") or 0),
                    )
                )
            except (TypeError, ValueError, AttributeError) as exc:
                raise ApiError(
                    f"AppVeyor artifact payload has invalid values: job_id={job_id}, payload={item}"
                ) from exc

        return artifacts

    def fetch_build(self, build_id: int) -> Build:
        """Fetch a build with job and artifact counts.

        Artifact listings are only requested for builds in a terminal status,
        because running jobs keep adding artifacts.
        """
        build, job_ids = self.get_build_detail(build_id)
        artifacts_count = 0
        nupkg_count = 0

        if self._config.is_terminal(build.status):
            for job_id in job_ids:
                artifacts = self.get_job_artifacts(job_id)
                artifacts_count += len(artifacts)
                nupkg_count += sum(1 for artifact in artifacts if artifact.is_nupkg)

        return replace(
            build,
            jobs_count=len(job_ids),
            artifacts_count=artifacts_count,
            nupkg_count=nupkg_count,
        )

    def feed_start_uri(self, feed_id: str) -> str:
        return self._config.feed_url_template.format(feed_id=feed_id)

    def get_feed_page(self, uri: str, zone: ZoneInfo) -> Tuple[List[Package], Optional[str]]:
        """Fetch one Atom page of the NuGet feed.

        Feed timestamps are local to ``zone`` and are converted to UTC.

        Returns:
            The page's packages and the absolute uri of the next page, or
            ``None`` on the last page.

        Raises:
            FeedFormatError: If the page is not a valid feed or has several next links.
        """
        response = self._get(uri, headers={"Accept": "application/atom+xml"})

        try:
            root = ElementTree.fromstring(response.content)
        except ElementTree.ParseError as exc:
            raise FeedFormatError(f"NuGet feed returned invalid XML: GET {uri}") from exc

        packages = [self._parse_feed_entry(entry, zone, uri) for entry in root.findall(f"{_ATOM}entry")]

        next_links = [
            link.get("href")
            for link in root.findall(f"{_ATOM}link")
            if link.get("rel") == "next"
        ]
        if len(next_links) > 1:
            raise FeedFormatError(f"NuGet feed page has {len(next_links)} next links: GET {uri}")

        next_uri = urljoin(uri, next_links[0]) if next_links and next_links[0] else None
        return packages, next_uri

    def _parse_feed_entry(self, entry: ElementTree.Element, zone: ZoneInfo, uri: str) -> Package:
        properties = entry.find(f"{_METADATA}properties")
        if properties is None:
            properties = entry.find(f"{_ATOM}content/{_METADATA}properties")

        def _property(name: str) -> Optional[str]:
            if properties is None:
                return None
            element = properties.find(f"{_DATA}{name}")
            return element.text if element is not None and element.text else None

        package_id = _property("Id") or entry.findtext(f"{_ATOM}title")
        version = _property("Version")
        raw_updated = (
            _property("LastUpdated") or _property("Published") or entry.findtext(f"{_ATOM}updated")
        )
        if not package_id or not version:
            raise FeedFormatError(f"NuGet feed entry is missing id or version: GET {uri}")

        try:
            updated = self._parse_feed_timestamp(raw_updated, zone)
        except ValueError as exc:
            raise FeedFormatError(
                f"NuGet feed entry has an invalid timestamp {raw_updated!r}: GET {uri}"
            ) from exc

        return Package(package_id=package_id.strip(), version=version.strip(), updated=updated)

    def _parse_feed_timestamp(self, value: Optional[str], zone: ZoneInfo) -> Optional[datetime]:
        """Parse a feed timestamp; naive values are local to the feed time zone."""
        text = (value or "").strip()
        if not text:
            return None

        if text[-1] in "Zz" or "+" in text[10:] or "-" in text[10:]:
            return parse_timestamp(text)

        naive = parse_timestamp(text)
        if naive is None:
            return None
        return localize(naive.replace(tzinfo=None), zone)
