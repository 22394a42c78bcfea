"""Service layer for the recorder API."""

from .event_store import EventStore
from .recorder_service import (
    PING_PATH,
    RecorderService,
    build_injection_chain,
    get_recorder_service,
    set_recorder_service,
    shutdown_recorder_service,
)

__all__ = [
    "EventStore",
    "PING_PATH",
    "RecorderService",
    "build_injection_chain",
    "get_recorder_service",
    "set_recorder_service",
    "shutdown_recorder_service",
]
