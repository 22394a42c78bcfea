"""Shared test fixtures and configuration for Recorder Sentinel tests."""

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from recorder.api.services.recorder_service import PING_SCRIPT
from recorder.capture.driver import BrowserDriver, ScriptExecutionError, SessionUnreachableError
from recorder.injection.csp import ANALYZE_SCRIPT, PAGE_MITIGATION_SCRIPT
from recorder.injection.strategies import (
    CHUNK_APPEND,
    CHUNK_BEGIN,
    CHUNK_DISCARD,
    CHUNK_INVOKE,
    DEFERRED_INJECTOR,
    SCRIPT_ELEMENT_INJECTOR,
)
from recorder.injection.verification import PROBE_SCRIPT
from recorder.models import BrowserKind, RecordingConfig
from recorder.supervision.iframes import FRAME_ACCESS_SCRIPT, FRAME_INJECT_SCRIPT, FRAME_LIST_SCRIPT
from recorder.supervision.signals import DRAIN_SCRIPT
from recorder.supervision.supervisor import CLEANUP_SCRIPT, DIAGNOSTICS_SCRIPT, ENSURE_UI_SCRIPT

PAYLOAD_PREFIX = "(function () {"


class FakeDriver(BrowserDriver):
    """Scripted stand-in for a browser tab.

    Page state is reduced to what host code can observe: the active flag,
    the indicator element, the URL and title, chunk buffers, the signal
    queue and a set of iframes. Known scripts are recognized by identity
    with the module constants; anything starting like the payload is
    treated as running the payload.
    """

    def __init__(self, url: str = "about:blank", title: str = "", browser_kind: str = "chromium"):
        self.browser_kind = browser_kind
        self.url = url
        self.title = title

        # Page state
        self.flag = False
        self.ui = False
        self.chunks: Dict[str, List[str]] = {}
        self.queue: List[Dict[str, Any]] = []
        self.iframes: Dict[str, Dict[str, Any]] = {}
        self.csp_guard = False

        # Behaviour switches
        self.reachable = True
        self.unreachable = False
        self.supports_binding = False
        self.supports_csp_bypass = True
        self.navigation_fails = False
        self.failing: Set[str] = set()
        self.ineffective: Set[str] = set()
        self.direct_size_limit: Optional[int] = None
        self.on_script: Optional[Callable[[str, Any], Any]] = None

        # Observations
        self.installs = 0
        self.payload_runs = 0
        self.assembled: List[str] = []
        self.executed: List[str] = []
        self.bindings: Dict[str, Callable] = {}
        self.navigations: List[str] = []
        self.csp_mitigations = 0
        self.csp_bypass_requests = 0
        self.cleanups = 0

    # Test helpers

    def load(self, url: str, title: str = "") -> None:
        """Simulate a full document load: new URL, markers gone."""
        self.url = url
        self.title = title
        self.flag = False
        self.ui = False
        self.queue = []
        self.csp_guard = False

    def push_state(self, url: str, title: Optional[str] = None) -> None:
        """Simulate an SPA route change: new URL, document kept."""
        self.url = url
        if title is not None:
            self.title = title

    def remove_payload(self) -> None:
        self.flag = False
        self.ui = False

    def queue_signal(self, signal_type: str, **detail) -> None:
        self.queue.append({'type': signal_type, 'detail': detail, 'timestamp': 1700000000000})

    def add_iframe(self, selector: str, cross_origin: bool = False) -> None:
        self.iframes[selector] = {'cross_origin': cross_origin, 'instrumented': False}

    def _check(self) -> None:
        if self.unreachable:
            raise SessionUnreachableError("Target page, context or browser has been closed")

    def _strategy_gate(self, name: str) -> bool:
        """Raise for failing strategies; False if the strategy should silently do nothing."""
        if name in self.failing:
            raise ScriptExecutionError(f"{name} blocked by page")
        return name not in self.ineffective

    def _run_payload(self, source: str) -> Dict[str, Any]:
        self.payload_runs += 1
        if self.flag:
            if '"showIndicator":true' in source:
                self.ui = True
            return {'status': 'already_installed'}
        self.flag = True
        self.ui = '"showIndicator":true' in source
        self.installs += 1
        return {'status': 'installed', 'frameworks': [], 'uiPresent': self.ui}

    # BrowserDriver

    async def navigate(self, url: str) -> bool:
        self._check()
        self.navigations.append(url)
        if self.navigation_fails:
            return False
        self.load(url, title=f"Title of {url}")
        return True

    async def run_script(self, script: str, arg: Any = None) -> Any:
        self._check()
        if self.on_script is not None:
            self.on_script(script, arg)

        if script is PROBE_SCRIPT:
            self.executed.append("probe")
            return {'installed': self.flag, 'uiPresent': self.ui}

        if script is SCRIPT_ELEMENT_INJECTOR:
            self.executed.append("script_element")
            if self._strategy_gate("script_element"):
                self._run_payload(arg['source'])
            return 'head'

        if script is CHUNK_BEGIN:
            self.executed.append("chunk_begin")
            self._strategy_gate("chunked")
            self.chunks[arg] = []
            return True

        if script is CHUNK_APPEND:
            self.chunks[arg['key']].append(arg['chunk'])
            return len(self.chunks[arg['key']])

        if script is CHUNK_INVOKE:
            self.executed.append("chunk_invoke")
            body = ''.join(self.chunks.pop(arg))
            self.assembled.append(body)
            if not body.startswith("return " + PAYLOAD_PREFIX) or not body.endswith(";"):
                raise ScriptExecutionError("SyntaxError: malformed setup function")
            if self._strategy_gate("chunked"):
                return self._run_payload(body[len("return "):-1])
            return None

        if script is CHUNK_DISCARD:
            self.chunks.pop(arg, None)
            return True

        if script is DRAIN_SCRIPT:
            drained, self.queue = self.queue, []
            return drained

        if script is PAGE_MITIGATION_SCRIPT:
            self.csp_mitigations += 1
            installed = not self.csp_guard
            self.csp_guard = True
            return {'removed': 0, 'inserted': installed, 'observerInstalled': installed}

        if script is ANALYZE_SCRIPT:
            return {'metaPolicies': [], 'evalAllowed': True, 'guardInstalled': self.csp_guard}

        if script is FRAME_LIST_SCRIPT:
            return list(self.iframes)

        if script is FRAME_ACCESS_SCRIPT:
            frame = self.iframes.get(arg['selector'])
            if frame is None:
                return {'found': False}
            if frame['cross_origin']:
                return {'found': True, 'accessible': False, 'src': 'https://other.example'}
            return {'found': True, 'accessible': True, 'instrumented': frame['instrumented'], 'src': '', 'url': self.url}

        if script is FRAME_INJECT_SCRIPT:
            frame = self.iframes.get(arg['selector'])
            if frame is None:
                raise ScriptExecutionError(f"iframe not found: {arg['selector']}")
            if frame['cross_origin']:
                raise ScriptExecutionError("SecurityError: Blocked a frame with origin")
            frame['instrumented'] = True
            return 'script_element'

        if script is CLEANUP_SCRIPT:
            self.cleanups += 1
            torn_down = self.flag
            self.flag = False
            self.ui = False
            self.csp_guard = False
            return torn_down

        if script is ENSURE_UI_SCRIPT:
            if self.flag:
                self.ui = True
                return True
            return False

        if script is DIAGNOSTICS_SCRIPT:
            return {
                'recorderActive': self.flag,
                'indicatorPresent': self.ui,
                'sendEventAvailable': self.flag,
                'queuedSignals': len(self.queue),
                'errors': [],
            }

        if script.startswith(PAYLOAD_PREFIX):
            self.executed.append("direct")
            if self.direct_size_limit is not None and len(script) > self.direct_size_limit:
                raise ScriptExecutionError("Protocol error: message too large")
            if self._strategy_gate("direct"):
                return self._run_payload(script)
            return None

        return None

    async def run_script_async(self, script: str, arg: Any = None) -> Any:
        self._check()
        if script is DEFERRED_INJECTOR:
            self.executed.append("deferred_timer")
            if self._strategy_gate("deferred_timer"):
                self._run_payload(arg['source'])
            return True
        if script is PING_SCRIPT:
            return {'ok': True, 'status': 200}
        return await self.run_script(script, arg)

    async def current_url(self) -> str:
        self._check()
        return self.url

    async def current_title(self) -> str:
        self._check()
        return self.title

    async def is_reachable(self) -> bool:
        return self.reachable and not self.unreachable

    async def screenshot(self) -> bytes:
        self._check()
        return b"\x89PNG\r\n\x1a\nfake"

    async def enable_csp_bypass(self) -> bool:
        self._check()
        self.csp_bypass_requests += 1
        return self.supports_csp_bypass

    async def expose_callback(self, name: str, callback) -> bool:
        if not self.supports_binding:
            return False
        self.bindings[name] = callback
        return True


@pytest.fixture
def fake_driver():
    """Blank fake tab."""
    return FakeDriver()


@pytest.fixture
def recording_config():
    """Recording configuration pointing at a test page."""
    return RecordingConfig(
        start_url="https://shop.example.com/",
        browser_kind=BrowserKind.CHROMIUM,
        server_url="http://localhost:8000",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that drive a real browser"
    )
