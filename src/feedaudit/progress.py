"""Throttled, count-based progress notifications."""

from __future__ import annotations

import time
from typing import Callable, Optional

ProgressCallback = Callable[[str, int, Optional[int]], None]


class ProgressReporter:
    """Counts completed work items and forwards rate-limited notifications.

    The callback receives ``(phase, done, total)``. It is invoked on the first
    item, on the last item when ``total`` is known, and otherwise at most once
    per ``min_interval`` seconds. A non-positive interval notifies on every
    call. Notifications never influence the work being reported.
    """

    def __init__(
        self,
        phase: str,
        total: Optional[int],
        callback: Optional[ProgressCallback],
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.phase = phase
        self.total = total
        self.done = 0
        self._callback = callback
        self._min_interval = min_interval
        self._clock = clock
        self._last_notified_at: Optional[float] = None
        self._last_notified_count = -1

    def advance(self, count: int = 1) -> None:
        self.done += count
        if self._callback is None:
            return

        now = self._clock()
        is_last = self.total is not None and self.done >= self.total
        throttled = (
            self._min_interval > 0
            and self._last_notified_at is not None
            and now - self._last_notified_at < self._min_interval
        )
        if throttled and not is_last:
            return
        self._notify(now)

    def finish(self) -> None:
        """Emit a final notification if the latest count was throttled away."""
        if self._callback is None or self._last_notified_count == self.done:
            return
        self._notify(self._clock())

    def _notify(self, now: float) -> None:
        self._last_notified_at = now
        self._last_notified_count = self.done
        self._callback(self.phase, self.done, self.total)
