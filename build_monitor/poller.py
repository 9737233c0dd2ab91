from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Union

import httpx
import structlog

from build_monitor.models import HealthObservation, HealthStatus, Host
from build_monitor.notifier import StateNotifier
from build_monitor.stability import StabilityTracker
from build_monitor.status_store import StatusStore


logger = structlog.get_logger(__name__)

BUILD_FIELD = "buildAt"


_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$",
    re.ASCII,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC-3339 timestamp and normalize it to UTC.

    Only the RFC-3339 profile of ISO-8601 is accepted: full date, `T` (or space),
    `HH:MM:SS`, optional fraction, and `Z` or `+HH:MM`/`-HH:MM`. Fractions finer than
    a microsecond are rejected unless the extra digits are zero, since two distinct
    builds must never compare equal.
    """
    s = (value or "").strip()
    m = _RFC3339_RE.match(s)
    if m is None:
        raise ValueError(f"not an RFC-3339 timestamp: {value!r}")
    date_part, time_part, fraction, offset = m.groups()

    if fraction:
        if len(fraction) > 6 and fraction[6:].strip("0"):
            raise ValueError(f"sub-microsecond precision in {value!r}")
        time_part += "." + fraction[:6].ljust(6, "0")
    if offset in ("Z", "z"):
        offset = "+00:00"

    dt = datetime.fromisoformat(f"{date_part}T{time_part}{offset}")
    return dt.astimezone(timezone.utc)


def parse_build_timestamp(payload: Any) -> datetime | None:
    if not isinstance(payload, dict):
        return None
    raw = payload.get(BUILD_FIELD)
    if not isinstance(raw, str):
        return None
    try:
        return parse_rfc3339(raw)
    except ValueError:
        return None


def describe_transport_error(exc: httpx.RequestError) -> str:
    text = str(exc).strip()
    if isinstance(exc, httpx.TimeoutException):
        return f"timeout: {text}" if text else "timeout"
    return text or type(exc).__name__


def _read_build_timestamp(resp: httpx.Response, url: str) -> datetime | None:
    try:
        payload = resp.json()
    except ValueError as e:
        logger.warning("Failed to parse JSON", url=url, error=str(e))
        return None

    build_at = parse_build_timestamp(payload)
    if build_at is None:
        raw = payload.get(BUILD_FIELD) if isinstance(payload, dict) else None
        logger.warning("No usable build timestamp", url=url, field=BUILD_FIELD, value=raw)
    return build_at


async def poll_once(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float = 10.0,
) -> HealthObservation:
    """Issue one GET (no retry) and classify the outcome."""
    try:
        resp = await client.get(url, follow_redirects=True, timeout=timeout_seconds)
    except httpx.RequestError as e:
        return HealthObservation(
            timestamp=_utcnow(),
            reachable=False,
            transport_error=describe_transport_error(e),
        )

    now = _utcnow()
    if not 200 <= resp.status_code < 300:
        return HealthObservation(timestamp=now, reachable=True, http_status=resp.status_code)

    return HealthObservation(
        timestamp=now,
        reachable=True,
        http_status=resp.status_code,
        build_timestamp=_read_build_timestamp(resp, url),
    )


def assemble_status(observation: HealthObservation, tracker: StabilityTracker, host_id: str) -> HealthStatus:
    build_at = observation.build_timestamp if observation.is_healthy else None
    if build_at is not None:
        stability = tracker.record(host_id, build_at)
    else:
        stability = tracker.no_signal(host_id)

    return HealthStatus(
        last_check=observation.timestamp,
        is_healthy=observation.is_healthy,
        build_at=build_at,
        error_message=observation.error_message,
        build_stability=stability,
    )


class HostPoller:
    """Polls a single host forever on a fixed interval."""

    def __init__(
        self,
        host: Host,
        client: Union[httpx.AsyncClient, Callable[[], httpx.AsyncClient]],
        tracker: StabilityTracker,
        notifier: StateNotifier,
        store: StatusStore,
        *,
        interval_ms: int,
        timeout_seconds: float = 10.0,
    ) -> None:
        if int(interval_ms) <= 0:
            raise ValueError(f"interval_ms must be > 0, got {interval_ms}")
        self.host = host
        self.client = client
        self.tracker = tracker
        self.notifier = notifier
        self.store = store
        self.interval_ms = int(interval_ms)
        self.timeout_seconds = float(timeout_seconds)
        self.cycles = 0

    def _resolve_client(self) -> httpx.AsyncClient:
        # Callables are resolved every cycle so the owner can replace a closed client.
        if isinstance(self.client, httpx.AsyncClient):
            return self.client
        return self.client()

    async def tick(self) -> HealthStatus:
        try:
            observation = await poll_once(self._resolve_client(), self.host.url, timeout_seconds=self.timeout_seconds)
        except Exception as e:
            err = f"{type(e).__name__}: {e}"
            logger.exception("Poll crashed", host=self.host.id, error=err)
            observation = HealthObservation(timestamp=_utcnow(), reachable=False, transport_error=err)

        status = assemble_status(observation, self.tracker, self.host.id)
        self.notifier.observe(self.host.id, status)
        self.store.put(self.host.id, status)
        self.cycles += 1

        logger.debug(
            "Poll complete",
            host=self.host.id,
            healthy=status.is_healthy,
            http_status=observation.http_status,
            build_at=status.build_at.isoformat() if status.build_at else None,
            stable=status.build_stability.is_stable,
            error=status.error_message,
        )
        return status

    async def run(self) -> None:
        interval_seconds = self.interval_ms / 1000.0
        logger.info("Poller started", host=self.host.id, url=self.host.url, interval_ms=self.interval_ms)
        while True:
            started = time.monotonic()
            try:
                await self.tick()
            except Exception as e:
                # Store or notifier failure; the host keeps its timer.
                logger.exception("Poll cycle failed", host=self.host.id, error=f"{type(e).__name__}: {e}")
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, interval_seconds - elapsed))
