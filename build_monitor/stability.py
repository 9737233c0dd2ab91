from __future__ import annotations

from collections import deque
from datetime import datetime

import structlog

from build_monitor.models import NO_BUILD_SIGNAL, BuildStability


logger = structlog.get_logger(__name__)


class StabilityTracker:
    """
    Sliding window of the last `window_size` build timestamps per host.

    A build is stable once the window is full and every entry equals the newest one.
    Windows are created on the first recorded build and live for the process lifetime.
    Each host's window must only be touched by that host's own poller.
    """

    def __init__(self, window_size: int = 5) -> None:
        window_size = int(window_size)
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self.window_size = window_size
        self._windows: dict[str, deque[datetime]] = {}

    def record(self, host_id: str, build_at: datetime) -> BuildStability:
        window = self._windows.get(host_id)
        if window is None:
            window = deque(maxlen=self.window_size)
            self._windows[host_id] = window
            logger.debug("Stability window created", host=host_id, window_size=self.window_size)

        # deque(maxlen=...) drops from the left once full.
        window.append(build_at)

        newest = window[-1]
        is_stable = len(window) == self.window_size and all(b == newest for b in window)
        return BuildStability(is_stable=is_stable, recent_builds=tuple(window))

    def no_signal(self, host_id: str) -> BuildStability:
        # The stored window for host_id is left untouched.
        return NO_BUILD_SIGNAL

    def window(self, host_id: str) -> tuple[datetime, ...]:
        return tuple(self._windows.get(host_id) or ())
