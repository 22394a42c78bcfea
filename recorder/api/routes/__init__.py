"""API routes for the recorder REST API."""

from .sessions import router as sessions_router
from .events import router as events_router

__all__ = [
    "sessions_router",
    "events_router",
]
