"""Task coordination: one poller task per host plus the dashboard task."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import httpx
import structlog

from build_monitor.config import AppConfig
from build_monitor.dashboard import DashboardRenderer
from build_monitor.models import HealthStatus, Host
from build_monitor.notifier import BellSink, NotificationSink, NullSink, StateNotifier
from build_monitor.poller import HostPoller
from build_monitor.stability import StabilityTracker
from build_monitor.status_store import StatusStore


logger = structlog.get_logger(__name__)


class Monitor:
    """Owns the shared status store and runs an independent poller per host."""

    def __init__(
        self,
        *,
        interval_ms: int,
        stability_window: int = 5,
        sink: Optional[NotificationSink] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.interval_ms = int(interval_ms)
        self.timeout_seconds = float(timeout_seconds)
        self.store = StatusStore()
        self.tracker = StabilityTracker(stability_window)
        self.notifier = StateNotifier(sink)
        self.pollers: Dict[str, HostPoller] = {}
        self.tasks: Dict[str, asyncio.Task] = {}
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: AppConfig, *, client: Optional[httpx.AsyncClient] = None) -> "Monitor":
        sink: NotificationSink = BellSink() if config.enable_bell else NullSink()
        monitor = cls(
            interval_ms=config.interval,
            stability_window=config.stability_window,
            sink=sink,
            timeout_seconds=config.http_timeout_seconds,
            client=client,
        )
        for host in config.to_hosts():
            monitor.add_host(host)
        return monitor

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _current_client(self) -> httpx.AsyncClient:
        return self.client

    @property
    def hosts(self) -> List[Host]:
        return [p.host for p in self.pollers.values()]

    def add_host(self, host: Host) -> HostPoller:
        if host.id in self.pollers:
            raise ValueError(f"host already monitored: {host.id!r}")
        poller = HostPoller(
            host,
            self._current_client,
            self.tracker,
            self.notifier,
            self.store,
            interval_ms=self.interval_ms,
            timeout_seconds=self.timeout_seconds,
        )
        self.pollers[host.id] = poller
        return poller

    def start_monitoring(self, host: Host) -> asyncio.Task:
        """Register a host (if needed) and start its poller task. Requires a running loop."""
        poller = self.pollers.get(host.id) or self.add_host(host)
        task = self.tasks.get(host.id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(poller.run(), name=f"poll:{host.id}")
        self.tasks[host.id] = task
        return task

    def start_all(self) -> None:
        for poller in list(self.pollers.values()):
            self.start_monitoring(poller.host)
        logger.info("Monitoring started", hosts=len(self.tasks), interval_ms=self.interval_ms)

    def get_status(self) -> Dict[str, HealthStatus]:
        return self.store.snapshot()

    async def poll_all_once(self) -> Dict[str, HealthStatus]:
        """Run a single cycle for every host concurrently."""
        pollers = list(self.pollers.values())
        await asyncio.gather(*(p.tick() for p in pollers))
        return self.get_status()

    async def run(self, renderer: Optional[DashboardRenderer] = None) -> None:
        """Poll every host and render until cancelled."""
        self.start_all()
        render_task = None
        if renderer is not None:
            render_task = asyncio.create_task(renderer.run(), name="dashboard")
        try:
            await asyncio.gather(
                *self.tasks.values(), *([render_task] if render_task else []), return_exceptions=True
            )
        finally:
            if render_task is not None:
                render_task.cancel()
                await asyncio.gather(render_task, return_exceptions=True)
            await self.stop()

    async def stop(self) -> None:
        """Cancel every poller task. An owned client is closed and recreated on the next poll."""
        tasks = [t for t in self.tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.tasks.clear()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Monitoring stopped")
