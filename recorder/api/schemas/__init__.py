"""API schemas for the recorder control surface.

This module exports all Pydantic models used for API request/response validation.
"""

# Request schemas
from .requests import (
    StartSessionRequest,
    StopSessionRequest,
    NavigateRequest,
)

# Response schemas
from .responses import (
    SessionDetail,
    SessionList,
    ReinjectResponse,
    NavigateResponse,
    EventsAccepted,
    EventList,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    # Request schemas
    "StartSessionRequest",
    "StopSessionRequest",
    "NavigateRequest",

    # Response schemas
    "SessionDetail",
    "SessionList",
    "ReinjectResponse",
    "NavigateResponse",
    "EventsAccepted",
    "EventList",
    "ErrorResponse",
    "HealthResponse",
]
