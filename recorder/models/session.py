"""Pydantic models for recording sessions and their observer bookkeeping.

This module defines the data model the supervisory layer works with: the
recording session itself, the per-session observer status record, the
ephemeral injection attempt log entries, and the signals raised by the
in-page monitor.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time used for all session timestamps."""
    return datetime.now(timezone.utc)


class BrowserKind(str, Enum):
    """Browser engines a recording can run in."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class SessionStatus(str, Enum):
    """Lifecycle state of a recording session."""
    STARTING = "starting"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class InjectionOutcome(str, Enum):
    """Result of a single injection strategy attempt."""
    SUCCESS = "success"
    PARTIAL = "partial"
    VERIFY_FAILED = "verify_failed"
    ERROR = "error"
    ALREADY_INSTALLED = "already_installed"


class NavigationTrigger(str, Enum):
    """What caused a navigation signal to be raised."""
    PUSH_STATE = "pushState"
    REPLACE_STATE = "replaceState"
    POPSTATE = "popstate"
    HASHCHANGE = "hashchange"
    MUTATION = "mutation"
    FRAMEWORK = "framework"
    SCHEDULER_POLL = "scheduler_poll"
    NAVIGATE = "navigate"
    UNKNOWN = "unknown"


class SignalType(str, Enum):
    """Signals the in-page monitor raises towards the host."""
    NAVIGATION = "navigation"
    REINSTALL_NEEDED = "reinstall_needed"
    UI_NEEDED = "ui_needed"
    IFRAME_NEEDS_INSTRUMENTATION = "iframe_needs_instrumentation"
    IFRAME_DETECTED = "iframe_detected"


class RecordingConfig(BaseModel):
    """Immutable configuration of a single recording."""

    model_config = ConfigDict(frozen=True)

    start_url: Optional[str] = Field(
        default=None,
        description="URL to open when the session starts"
    )
    browser_kind: BrowserKind = Field(
        default=BrowserKind.CHROMIUM,
        description="Browser engine used for the recording"
    )
    server_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the event ingestion server"
    )
    headless: bool = Field(default=False, description="Run the browser headless")
    capture_clicks: bool = Field(default=True, description="Record click events")
    capture_inputs: bool = Field(default=True, description="Record input events")
    capture_forms: bool = Field(default=True, description="Record form submissions")
    capture_navigation: bool = Field(default=True, description="Record navigation events")
    mask_passwords: bool = Field(default=True, description="Mask password field values")
    show_indicator: bool = Field(default=True, description="Show the in-page recorder indicator")
    framework_hints: List[str] = Field(
        default_factory=list,
        description="Framework tags to assume present even if probes miss them"
    )

    @field_validator('start_url')
    @classmethod
    def validate_start_url(cls, v):
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ('http', 'https', 'file', 'about', 'data'):
            raise ValueError(f"Unsupported URL scheme: {parsed.scheme or '(none)'}")
        return v

    @field_validator('server_url')
    @classmethod
    def validate_server_url(cls, v):
        parsed = urlparse(v)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError("Server URL must be an absolute http(s) URL")
        return v.rstrip('/')


class Session(BaseModel):
    """One logical recording attached to one browser tab."""

    session_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Opaque session identifier"
    )
    browser_kind: BrowserKind = Field(description="Browser engine of the session")
    config: RecordingConfig = Field(description="Recording configuration")
    status: SessionStatus = Field(
        default=SessionStatus.STARTING,
        description="Current lifecycle status"
    )
    last_url: Optional[str] = Field(default=None, description="Last known page URL")
    last_title: Optional[str] = Field(default=None, description="Last known page title")
    created_at: datetime = Field(default_factory=utcnow, description="Creation time")
    stopped_at: Optional[datetime] = Field(default=None, description="Time the session stopped")
    stop_reason: Optional[str] = Field(default=None, description="Why the session stopped")

    @property
    def is_stopped(self) -> bool:
        return self.status == SessionStatus.STOPPED


class ObserverStatus(BaseModel):
    """Per-session payload bookkeeping owned by the supervisory layer."""

    installed: bool = Field(default=False, description="Result of the latest verification")
    ui_present: bool = Field(default=False, description="Whether the marker element was found")
    last_checked_at: Optional[datetime] = Field(default=None, description="Last health check time")
    installed_at: Optional[datetime] = Field(default=None, description="Last successful install time")
    retry_count: int = Field(default=0, ge=0, description="Failed automatic reinstall attempts")
    abandoned: bool = Field(
        default=False,
        description="Automatic reinstallation stopped after reaching the retry cap"
    )
    current_url: Optional[str] = Field(default=None, description="URL the payload was installed on")
    last_strategy: Optional[str] = Field(default=None, description="Strategy of the last install")
    last_error: Optional[str] = Field(default=None, description="Last injection error")

    def is_stale(self, max_age_seconds: float, now: Optional[datetime] = None) -> bool:
        """Whether the install is older than the freshness threshold."""
        if self.installed_at is None:
            return True
        now = now or utcnow()
        return (now - self.installed_at).total_seconds() > max_age_seconds

    def checked_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """Whether a health check ran in the last ``seconds`` seconds."""
        if self.last_checked_at is None:
            return False
        now = now or utcnow()
        return (now - self.last_checked_at).total_seconds() < seconds


class InjectionAttempt(BaseModel):
    """Log entry for one strategy attempt. Never persisted."""

    strategy_name: str = Field(description="Name of the strategy tried")
    payload_size: int = Field(ge=0, description="Payload length in characters")
    outcome: InjectionOutcome = Field(description="Attempt outcome")
    error: Optional[str] = Field(default=None, description="Error raised by the driver")
    duration_ms: float = Field(default=0.0, description="Time spent on the attempt")

    @property
    def succeeded(self) -> bool:
        return self.outcome in (
            InjectionOutcome.SUCCESS,
            InjectionOutcome.PARTIAL,
            InjectionOutcome.ALREADY_INSTALLED,
        )


class InjectionResult(BaseModel):
    """Overall result of running the injection strategy chain."""

    success: bool = Field(description="Whether any strategy verifiably installed the payload")
    already_installed: bool = Field(default=False, description="Page was instrumented beforehand")
    strategy: Optional[str] = Field(default=None, description="Strategy that succeeded")
    installed: bool = Field(default=False, description="Marker flag probe result")
    ui_present: bool = Field(default=False, description="Marker element probe result")
    attempts: List[InjectionAttempt] = Field(default_factory=list, description="Attempts made")

    @property
    def last_error(self) -> Optional[str]:
        for attempt in reversed(self.attempts):
            if attempt.error:
                return attempt.error
        return None


class NavigationSignal(BaseModel):
    """URL change reported by the in-page monitor or detected by polling."""

    previous_url: Optional[str] = Field(default=None, description="URL before the change")
    new_url: str = Field(description="URL after the change")
    title: Optional[str] = Field(default=None, description="Document title after the change")
    timestamp: datetime = Field(default_factory=utcnow, description="When the change was seen")
    trigger: NavigationTrigger = Field(
        default=NavigationTrigger.UNKNOWN,
        description="What caused the change"
    )

    @field_validator('trigger', mode='before')
    @classmethod
    def coerce_trigger(cls, v):
        if isinstance(v, str) and v not in NavigationTrigger._value2member_map_:
            return NavigationTrigger.UNKNOWN
        return v

    @property
    def url_changed(self) -> bool:
        return self.previous_url != self.new_url


class PageSignal(BaseModel):
    """Raw signal drained from the page or pushed through the host binding."""

    type: SignalType = Field(description="Signal type")
    detail: Dict[str, Any] = Field(default_factory=dict, description="Signal payload")
    timestamp: datetime = Field(default_factory=utcnow, description="When the signal was raised")

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_epoch_millis(cls, v):
        # In-page timestamps are Date.now() millis
        if isinstance(v, (int, float)):
            return datetime.fromtimestamp(v / 1000.0, tz=timezone.utc)
        return v

    def to_navigation_signal(self) -> NavigationSignal:
        """Build the navigation signal carried by a NAVIGATION page signal."""
        return NavigationSignal(
            previous_url=self.detail.get('prevUrl') or self.detail.get('previousUrl'),
            new_url=self.detail.get('newUrl') or self.detail.get('url') or '',
            title=self.detail.get('title'),
            timestamp=self.timestamp,
            trigger=self.detail.get('trigger', NavigationTrigger.UNKNOWN),
        )
