"""API response schemas for the recorder control surface.

This module defines Pydantic models for session, status, event and error
responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from recorder.models import InjectionResult, ObserverStatus, RecordedEvent, Session


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionDetail(BaseModel):
    """A session together with its payload status."""

    session: Session = Field(..., description="Session record")
    status: Optional[ObserverStatus] = Field(
        default=None,
        description="Payload status, absent once the session has stopped"
    )


class SessionList(BaseModel):
    """List of supervised sessions."""

    sessions: List[Session] = Field(default_factory=list, description="Sessions")
    total_count: int = Field(..., ge=0, description="Number of sessions")


class ReinjectResponse(BaseModel):
    """Result of a forced reinjection."""

    session_id: str = Field(..., description="Session that was reinjected")
    result: InjectionResult = Field(..., description="Injection chain result")
    status: Optional[ObserverStatus] = Field(default=None, description="Payload status afterwards")


class NavigateResponse(BaseModel):
    """Result of navigating a session's tab."""

    navigated: bool = Field(..., description="Whether the browser reported the navigation as loaded")
    session: Session = Field(..., description="Session record after the navigation")
    status: Optional[ObserverStatus] = Field(default=None, description="Payload status afterwards")


class EventsAccepted(BaseModel):
    """Acknowledgement returned to the in-page payload."""

    accepted: int = Field(..., ge=0, description="Number of events stored")


class EventList(BaseModel):
    """Events stored for a session."""

    session_id: str = Field(..., description="Session identifier")
    events: List[RecordedEvent] = Field(default_factory=list, description="Stored events")
    total_count: int = Field(..., ge=0, description="Events stored for the session")


class ErrorResponse(BaseModel):
    """Standard error response schema.

    This schema provides consistent error information across
    all API endpoints, including error codes, messages, and debugging details.
    """

    error: str = Field(
        ...,
        description="Error code or type"
    )

    message: str = Field(
        ...,
        description="Human-readable error message"
    )

    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details for debugging"
    )

    request_id: Optional[str] = Field(
        default=None,
        description="Unique request identifier for tracking"
    )

    timestamp: datetime = Field(
        default_factory=_now,
        description="When the error occurred"
    )


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal['healthy', 'degraded', 'unhealthy'] = Field(
        ...,
        description="Overall system health status"
    )

    version: str = Field(..., description="API version")

    timestamp: datetime = Field(default_factory=_now, description="Health check timestamp")

    services: Dict[str, str] = Field(
        default_factory=dict,
        description="Health of individual components"
    )

    active_sessions: int = Field(default=0, ge=0, description="Sessions not yet stopped")

    uptime_seconds: float = Field(..., ge=0, description="Seconds since the API started")
