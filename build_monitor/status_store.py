from __future__ import annotations

import threading

from build_monitor.models import HealthStatus


class StatusStore:
    """
    Latest HealthStatus per host id.

    Writers are the pollers (one per key), readers are the dashboard. Values are
    frozen dataclasses and are swapped in under the lock, so a snapshot only ever
    holds complete records. Entries are never evicted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status: dict[str, HealthStatus] = {}

    def put(self, host_id: str, status: HealthStatus) -> None:
        if not isinstance(status, HealthStatus):
            raise TypeError(f"expected HealthStatus, got {type(status).__name__}")
        with self._lock:
            self._status[host_id] = status

    def get(self, host_id: str) -> HealthStatus | None:
        with self._lock:
            return self._status.get(host_id)

    def snapshot(self) -> dict[str, HealthStatus]:
        with self._lock:
            return dict(self._status)

    def __len__(self) -> int:
        with self._lock:
            return len(self._status)

    def __contains__(self, host_id: object) -> bool:
        with self._lock:
            return host_id in self._status
