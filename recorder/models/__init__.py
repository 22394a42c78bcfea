"""Data models for recording sessions and captured events."""

from .session import (
    BrowserKind,
    SessionStatus,
    InjectionOutcome,
    NavigationTrigger,
    SignalType,
    RecordingConfig,
    Session,
    ObserverStatus,
    InjectionAttempt,
    InjectionResult,
    NavigationSignal,
    PageSignal,
    utcnow,
)
from .events import EventType, RecordedEvent

__all__ = [
    # Session models
    "BrowserKind",
    "SessionStatus",
    "InjectionOutcome",
    "NavigationTrigger",
    "SignalType",
    "RecordingConfig",
    "Session",
    "ObserverStatus",
    "InjectionAttempt",
    "InjectionResult",
    "NavigationSignal",
    "PageSignal",
    "utcnow",

    # Event models
    "EventType",
    "RecordedEvent",
]
