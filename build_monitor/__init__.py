"""Concurrent build health monitor with a live terminal dashboard."""

from .models import BuildStability, HealthObservation, HealthStatus, Host, StabilityState, classify
from .monitor import Monitor
from .notifier import BellSink, NullSink, StateNotifier
from .stability import StabilityTracker
from .status_store import StatusStore

__all__ = [
    "BellSink",
    "BuildStability",
    "HealthObservation",
    "HealthStatus",
    "Host",
    "Monitor",
    "NullSink",
    "StabilityState",
    "StabilityTracker",
    "StateNotifier",
    "StatusStore",
    "classify",
]
