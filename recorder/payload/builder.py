"""Render the recorder payloads for a session.

Usage:
    options = PayloadOptions.from_recording(session_id, recording_config)
    source = build_page_payload(options)
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from ..models import RecordingConfig
from . import markers
from .frameworks import FRAMEWORK_PROBES, FrameworkProbe, render_probes_js
from .templates import (
    COMMON_JS,
    FRAME_BODY_JS,
    FRAME_HEADER_JS,
    OPTIONS_PLACEHOLDER,
    PAGE_BODY_JS,
    PAGE_HEADER_JS,
    PROBES_PLACEHOLDER,
    wrap_iife,
)

# Container ids treated as application roots by the mutation classifier
APP_ROOT_IDS = ['app', 'root', 'main', 'content', 'page']
APP_ROOT_ATTRIBUTES = ['data-reactroot', 'ng-app', 'data-ng-app', 'ng-version', 'data-v-app', 'data-server-rendered']


@dataclass
class PayloadTiming:
    """In-page timing constants, all in milliseconds."""
    self_check_ms: int = 10000
    mutation_settle_ms: int = 200
    url_recheck_ms: int = 500
    history_check_ms: int = 100
    iframe_initial_scan_ms: int = 2000
    iframe_rescan_ms: int = 1000
    iframe_load_ms: int = 500
    iframe_retry_ms: int = 5000
    input_debounce_ms: int = 500
    retry_base_ms: int = 1000
    retry_max_ms: int = 30000
    post_timeout_ms: int = 5000
    significant_nodes: int = 3
    iframe_significant_nodes: int = 2

    def to_js(self) -> Dict[str, int]:
        return {
            'selfCheckMs': self.self_check_ms,
            'mutationSettleMs': self.mutation_settle_ms,
            'urlRecheckMs': self.url_recheck_ms,
            'historyCheckMs': self.history_check_ms,
            'iframeInitialScanMs': self.iframe_initial_scan_ms,
            'iframeRescanMs': self.iframe_rescan_ms,
            'iframeLoadMs': self.iframe_load_ms,
            'iframeRetryMs': self.iframe_retry_ms,
            'inputDebounceMs': self.input_debounce_ms,
            'retryBaseMs': self.retry_base_ms,
            'retryMaxMs': self.retry_max_ms,
            'postTimeoutMs': self.post_timeout_ms,
            'significantNodes': self.significant_nodes,
            'iframeSignificantNodes': self.iframe_significant_nodes,
        }


@dataclass
class PayloadOptions:
    """Everything the payload needs to know about its session."""
    session_id: str
    server_url: str = "http://localhost:8000"
    capture_clicks: bool = True
    capture_inputs: bool = True
    capture_forms: bool = True
    capture_navigation: bool = True
    mask_passwords: bool = True
    show_indicator: bool = True
    scan_iframes: bool = True
    framework_hints: List[str] = field(default_factory=list)
    timing: PayloadTiming = field(default_factory=PayloadTiming)
    max_signals: int = 100
    max_outbox: int = 500

    @classmethod
    def from_recording(
        cls,
        session_id: str,
        config: RecordingConfig,
        timing: Optional[PayloadTiming] = None,
    ) -> 'PayloadOptions':
        return cls(
            session_id=session_id,
            server_url=config.server_url,
            capture_clicks=config.capture_clicks,
            capture_inputs=config.capture_inputs,
            capture_forms=config.capture_forms,
            capture_navigation=config.capture_navigation,
            mask_passwords=config.mask_passwords,
            show_indicator=config.show_indicator,
            framework_hints=list(config.framework_hints),
            timing=timing or PayloadTiming(),
        )

    def to_js(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'serverUrl': self.server_url.rstrip('/'),
            'markers': markers.marker_map(),
            'events': markers.event_map(),
            'timing': self.timing.to_js(),
            'capture': {
                'clicks': self.capture_clicks,
                'inputs': self.capture_inputs,
                'forms': self.capture_forms,
                'navigation': self.capture_navigation,
            },
            'maskPasswords': self.mask_passwords,
            'showIndicator': self.show_indicator,
            'scanIframes': self.scan_iframes,
            'frameworkHints': list(self.framework_hints),
            'appRootIds': APP_ROOT_IDS,
            'appRootAttributes': APP_ROOT_ATTRIBUTES,
            'maxSignals': self.max_signals,
            'maxOutbox': self.max_outbox,
        }


def js_literal(value: Any) -> str:
    """Serialize a value as a JS literal that is safe inside a script element."""
    text = json.dumps(value, separators=(',', ':'))
    return (
        text.replace('</', '<\\/')
        .replace('\u2028', '\\u2028')
        .replace('\u2029', '\\u2029')
    )


def build_page_payload(
    options: PayloadOptions,
    probes: Optional[List[FrameworkProbe]] = None,
) -> str:
    """Render the full recorder and monitor payload for a top-level document."""
    source = wrap_iife(PAGE_HEADER_JS, COMMON_JS, PAGE_BODY_JS)
    source = source.replace(PROBES_PLACEHOLDER, render_probes_js(probes or FRAMEWORK_PROBES))
    return source.replace(OPTIONS_PLACEHOLDER, js_literal(options.to_js()))


def build_frame_payload(options: PayloadOptions) -> str:
    """Render the reduced payload installed into same-origin iframes.

    The frame copy has no indicator, no iframe scan and no host signalling.
    It reports through the parent's ``__rsSendEvent`` when reachable and
    asks the parent for a recheck with ``postMessage`` after large DOM
    rewrites.
    """
    frame_options = replace(options, show_indicator=False, scan_iframes=False)
    source = wrap_iife(FRAME_HEADER_JS, COMMON_JS, FRAME_BODY_JS)
    return source.replace(OPTIONS_PLACEHOLDER, js_literal(frame_options.to_js()))
