from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from typing import Iterable, TextIO

from build_monitor.models import HealthStatus, Host, StabilityState, classify
from build_monitor.status_store import StatusStore


_STATE_COLORS = {
    StabilityState.STABLE: "\033[32m",
    StabilityState.UNSTABLE: "\033[33m",
    StabilityState.UNHEALTHY: "\033[31m",
}
_PENDING_COLOR = "\033[90m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_CLEAR_SCREEN = "\033[2J\033[H"

PENDING_LABEL = "PENDING"


def _format_build(build_at: datetime | None) -> str:
    if build_at is None:
        return "-"
    return build_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _format_age(last_check: datetime, now: datetime) -> str:
    seconds = max(0.0, (now - last_check).total_seconds())
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m{int(seconds % 60):02d}s"


def _paint(text: str, color: str, enabled: bool) -> str:
    return f"{color}{text}{_RESET}" if enabled else text


def _row(host: Host, status: HealthStatus | None, *, now: datetime, window_size: int, color: bool) -> list[str]:
    if status is None:
        return [host.id, _paint(PENDING_LABEL, _PENDING_COLOR, color), "-", "-", f"0/{window_size}", ""]

    state = classify(status)
    filled = sum(1 for b in status.build_stability.recent_builds if b == status.build_at)
    return [
        host.id,
        _paint(state.name, _STATE_COLORS[state], color),
        _format_build(status.build_at),
        _format_age(status.last_check, now),
        f"{filled}/{window_size}",
        status.error_message or "",
    ]


def render_dashboard(
    hosts: Iterable[Host],
    snapshot: dict[str, HealthStatus],
    *,
    now: datetime | None = None,
    window_size: int = 5,
    color: bool = True,
) -> str:
    """Render one dashboard frame: a row per configured host, in config order."""
    now = now or datetime.now(timezone.utc)
    header = ["HOST", "STATE", "BUILD (UTC)", "CHECKED", "WINDOW", "ERROR"]
    rows = [_row(h, snapshot.get(h.id), now=now, window_size=window_size, color=color) for h in hosts]

    # Column widths ignore ANSI escapes.
    def visible(cell: str) -> str:
        for code in (*_STATE_COLORS.values(), _PENDING_COLOR, _RESET):
            cell = cell.replace(code, "")
        return cell

    widths = [len(c) for c in header]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(visible(cell)))

    def fmt(row: list[str]) -> str:
        parts = [cell + " " * (widths[i] - len(visible(cell))) for i, cell in enumerate(row)]
        return "  ".join(parts).rstrip()

    lines = [
        _paint(fmt(header), _BOLD, color),
        *[fmt(r) for r in rows],
        "",
        f"updated {now.astimezone(timezone.utc).strftime('%H:%M:%S')} UTC  |  stable = {window_size} identical builds",
    ]
    return "\n".join(lines) + "\n"


class DashboardRenderer:
    """Redraws the dashboard on its own cadence; only ever reads store snapshots."""

    def __init__(
        self,
        store: StatusStore,
        hosts: list[Host],
        *,
        window_size: int,
        interval_ms: int = 500,
        stream: TextIO | None = None,
        clear_screen: bool = True,
    ) -> None:
        self.store = store
        self.hosts = list(hosts)
        self.window_size = int(window_size)
        self.interval_ms = int(interval_ms)
        self.stream = stream if stream is not None else sys.stdout
        self.clear_screen = clear_screen

    def frame(self, now: datetime | None = None) -> str:
        color = bool(getattr(self.stream, "isatty", lambda: False)())
        return render_dashboard(
            self.hosts,
            self.store.snapshot(),
            now=now,
            window_size=self.window_size,
            color=color,
        )

    def draw(self, now: datetime | None = None) -> None:
        text = self.frame(now)
        if self.clear_screen:
            text = _CLEAR_SCREEN + text
        self.stream.write(text)
        self.stream.flush()

    async def run(self) -> None:
        interval_seconds = self.interval_ms / 1000.0
        while True:
            self.draw()
            await asyncio.sleep(interval_seconds)
