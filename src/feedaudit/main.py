"""Entry point orchestrating sync, correlation and reporting."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence

from tqdm import tqdm

from .appveyor_client import AppVeyorClient
from .cache import UNASSIGNED_PACKAGES_FILE, ResultsCache
from .cli import parse_args
from .config import load_config
from .correlation import correlate
from .errors import ApiError, AuthenticationError, ConfigurationError, DataValidationError
from .report import generate_report
from .sync import BuildSynchronizer

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3
EXIT_API = 4
EXIT_DATA = 5

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr, at DEBUG when ``verbose`` else INFO."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class TqdmProgress:
    """Renders progress notifications as one tqdm bar per phase."""

    def __init__(self, disable: bool = False) -> None:
        self._disable = disable
        self._bar: Optional[tqdm] = None
        self._phase: Optional[str] = None

    def __call__(self, phase: str, done: int, total: Optional[int]) -> None:
        if self._bar is None or phase != self._phase or done < self._bar.n:
            self.close()
            self._phase = phase
            self._bar = tqdm(total=total, desc=phase, unit="item", leave=False, disable=self._disable)

        self._bar.update(done - self._bar.n)
        if total is not None and done >= total:
            self.close()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
        self._bar = None
        self._phase = None


def orchestrate_audit(argv: Optional[Sequence[str]] = None) -> int:
    """Run one reconciliation and return the process exit code."""
    progress: Optional[TqdmProgress] = None

    try:
        args = parse_args(argv)
        configure_logging(args.verbose)

        config = load_config(
            account=args.account,
            project=args.project,
            results_dir=args.results_dir,
            offline=args.offline,
            max_concurrency=args.max_concurrency,
            feed_id=args.feed_id,
            default_branch=args.default_branch,
            feed_timezone=args.feed_timezone,
            progress_interval=args.progress_interval,
        )

        cache = ResultsCache(config.results_dir)
        client = None if config.offline else AppVeyorClient(config=config)
        progress = TqdmProgress()

        print(
            f"Synchronizing '{config.account}/{config.project_slug}' into '{config.results_dir}'"
            + (" (offline)..." if config.offline else "...")
        )
        sync_result = BuildSynchronizer(
            config=config,
            cache=cache,
            client=client,
            progress_callback=progress,
        ).run()
        progress.close()

        result = correlate(
            sync_result.builds,
            sync_result.packages,
            default_branch=config.default_branch,
        )
        cache.save_analyzed_builds(result.analyzed_builds)
        cache.save_unassigned_packages(result.unassigned_packages)

        if result.unassigned_packages:
            logger.warning(
                "%d feed packages could not be attributed to a build, see %s",
                len(result.unassigned_packages),
                cache.path(UNASSIGNED_PACKAGES_FILE),
            )

        print(generate_report(result.analyzed_builds, result.unassigned_packages))
        return EXIT_OK
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_AUTHENTICATION
    except ApiError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_API
    except DataValidationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_DATA
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED
    finally:
        if progress is not None:
            progress.close()


def main() -> None:
    raise SystemExit(orchestrate_audit())


if __name__ == "__main__":
    main()
