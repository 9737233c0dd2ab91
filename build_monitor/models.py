from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class Host:
    id: str
    url: str


@dataclass(frozen=True)
class HealthObservation:
    """Outcome of a single GET against one host."""

    timestamp: datetime
    reachable: bool
    http_status: int | None = None
    build_timestamp: datetime | None = None
    transport_error: str | None = None

    @property
    def is_healthy(self) -> bool:
        if not self.reachable or self.http_status is None:
            return False
        return 200 <= self.http_status < 300

    @property
    def error_message(self) -> str | None:
        if self.transport_error is not None:
            return self.transport_error
        if self.http_status is not None and not self.is_healthy:
            return f"HTTP {self.http_status}"
        return None


@dataclass(frozen=True)
class BuildStability:
    is_stable: bool = False
    recent_builds: tuple[datetime, ...] = field(default_factory=tuple)


NO_BUILD_SIGNAL = BuildStability(is_stable=False, recent_builds=())


@dataclass(frozen=True)
class HealthStatus:
    """Latest externally visible record for one host. Replaced wholesale on every poll."""

    last_check: datetime
    is_healthy: bool
    build_at: datetime | None = None
    error_message: str | None = None
    build_stability: BuildStability = NO_BUILD_SIGNAL


class StabilityState(str, Enum):
    UNHEALTHY = "unhealthy"
    UNSTABLE = "unstable"
    STABLE = "stable"


def classify(status: HealthStatus) -> StabilityState:
    if not status.is_healthy:
        return StabilityState.UNHEALTHY
    if status.build_stability.is_stable:
        return StabilityState.STABLE
    return StabilityState.UNSTABLE
