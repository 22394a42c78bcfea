"""API request schemas for the recorder control surface."""

from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from recorder.models import BrowserKind, RecordingConfig


class StartSessionRequest(BaseModel):
    """Request schema for starting a recording session."""

    start_url: Optional[str] = Field(
        default=None,
        description="URL to open before installing the recorder",
        examples=["https://example.com"]
    )

    browser_kind: BrowserKind = Field(
        default=BrowserKind.CHROMIUM,
        description="Browser engine to record with"
    )

    server_url: Optional[str] = Field(
        default=None,
        description="Base URL events are posted to. Defaults to this server"
    )

    headless: bool = Field(default=False, description="Run the browser without a window")
    capture_clicks: bool = Field(default=True, description="Record click events")
    capture_inputs: bool = Field(default=True, description="Record input events")
    capture_forms: bool = Field(default=True, description="Record form submissions")
    capture_navigation: bool = Field(default=True, description="Record navigation events")
    mask_passwords: bool = Field(default=True, description="Mask password field values")
    show_indicator: bool = Field(default=True, description="Show the in-page recording indicator")

    framework_hints: List[str] = Field(
        default_factory=list,
        description="Framework tags to assume present, e.g. 'react'"
    )

    @field_validator('framework_hints')
    @classmethod
    def normalize_hints(cls, v):
        return [hint.strip().lower() for hint in v if hint and hint.strip()]

    def to_recording_config(self, default_server_url: str) -> RecordingConfig:
        """Build the recording configuration, filling in the server URL."""
        return RecordingConfig(
            start_url=self.start_url,
            browser_kind=self.browser_kind,
            server_url=self.server_url or default_server_url,
            headless=self.headless,
            capture_clicks=self.capture_clicks,
            capture_inputs=self.capture_inputs,
            capture_forms=self.capture_forms,
            capture_navigation=self.capture_navigation,
            mask_passwords=self.mask_passwords,
            show_indicator=self.show_indicator,
            framework_hints=self.framework_hints,
        )


class StopSessionRequest(BaseModel):
    """Optional body for stopping a session."""

    reason: str = Field(
        default="stopped",
        min_length=1,
        max_length=100,
        description="Why the session is being stopped"
    )


class NavigateRequest(BaseModel):
    """Request schema for navigating a session's tab."""

    url: str = Field(
        ...,
        description="Absolute http(s) URL to load in the session's tab",
        examples=["https://example.com/checkout"]
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        parsed = urlparse(v)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError("URL must be an absolute http(s) URL")
        return v
