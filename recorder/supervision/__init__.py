"""
Session supervision for recorder-sentinel.

This package keeps the recorder payload alive in supervised browser tabs
across navigations, DOM rebuilds and framework route changes.

Main Components:
- SessionSupervisor: Session lifecycle, reinstallation and navigation handling
- HealthCheckScheduler: Periodic liveness, presence and URL checks
- IframePropagator: Reduced payload installation into same-origin iframes
- SignalBridge: Delivery of page signals by host binding or queue draining
- SessionLockManager: Per-session serialization of browser command sequences
"""

from .locks import LockInfo, SessionLockError, SessionLockManager, SessionLockTimeoutError
from .signals import DRAIN_SCRIPT, SignalBridge, parse_signal
from .iframes import IframeOutcome, IframePropagator, IframeStats
from .supervisor import (
    SessionNotFoundError,
    SessionRuntime,
    SessionStateError,
    SessionSupervisor,
    SupervisorConfig,
    SupervisorError,
    extract_domain,
)
from .scheduler import HealthCheckScheduler, SchedulerConfig, SchedulerStats

__all__ = [
    # Supervisor
    "SessionSupervisor",
    "SupervisorConfig",
    "SessionRuntime",
    "SupervisorError",
    "SessionNotFoundError",
    "SessionStateError",
    "extract_domain",

    # Scheduler
    "HealthCheckScheduler",
    "SchedulerConfig",
    "SchedulerStats",

    # Iframes
    "IframePropagator",
    "IframeOutcome",
    "IframeStats",

    # Signals
    "SignalBridge",
    "parse_signal",
    "DRAIN_SCRIPT",

    # Locks
    "SessionLockManager",
    "SessionLockError",
    "SessionLockTimeoutError",
    "LockInfo",
]
