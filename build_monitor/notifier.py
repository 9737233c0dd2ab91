from __future__ import annotations

import sys
from typing import Callable, TextIO

import structlog

from build_monitor.models import HealthStatus, StabilityState, classify


logger = structlog.get_logger(__name__)

NotificationSink = Callable[[], None]

BELL = "\a"


class BellSink:
    """Rings the terminal bell."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    def __call__(self) -> None:
        stream = self.stream if self.stream is not None else sys.stdout
        stream.write(BELL)
        stream.flush()


class NullSink:
    def __call__(self) -> None:
        return None


class StateNotifier:
    """
    Tracks the previous StabilityState per host and pulses the sink whenever
    a host enters or leaves STABLE. Hosts without a recorded state count as UNHEALTHY.
    """

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self.sink: NotificationSink = sink if sink is not None else NullSink()
        self._last_state: dict[str, StabilityState] = {}

    def state_of(self, host_id: str) -> StabilityState:
        return self._last_state.get(host_id, StabilityState.UNHEALTHY)

    def observe(self, host_id: str, status: HealthStatus) -> bool:
        old_state = self.state_of(host_id)
        new_state = classify(status)
        self._last_state[host_id] = new_state

        if not _should_notify(old_state, new_state):
            if old_state != new_state:
                logger.info("Host state changed", host=host_id, old=old_state.value, new=new_state.value)
            return False

        logger.info(
            "Build stability changed",
            host=host_id,
            old=old_state.value,
            new=new_state.value,
            build_at=status.build_at.isoformat() if status.build_at else None,
        )
        self._pulse(host_id)
        return True

    def _pulse(self, host_id: str) -> None:
        try:
            self.sink()
        except Exception as e:
            # The transition itself is already recorded.
            logger.warning("Notification sink failed", host=host_id, error=f"{type(e).__name__}: {e}")


def _should_notify(old_state: StabilityState, new_state: StabilityState) -> bool:
    if old_state == new_state:
        return False
    return StabilityState.STABLE in (old_state, new_state)
