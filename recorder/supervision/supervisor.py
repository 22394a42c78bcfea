"""Session supervisor: owns recording sessions and drives reinstallation.

The supervisor keeps one runtime record per session (the Session model, its
ObserverStatus and the borrowed driver) and is the only code that mutates
them. Reinstallation requests from page signals, the health-check scheduler
and operators are all serialized per session, so a second request arriving
while the first is running observes the payload as already installed instead
of installing twice.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..capture.driver import BrowserDriver, DriverError, SessionUnreachableError
from ..injection import CSPMitigator, InjectionStrategyChain, PresenceProbe
from ..models import (
    InjectionResult,
    NavigationSignal,
    NavigationTrigger,
    ObserverStatus,
    PageSignal,
    RecordingConfig,
    Session,
    SessionStatus,
    SignalType,
    utcnow,
)
from ..payload import PayloadOptions, PayloadTiming, build_page_payload, markers
from .iframes import IframeOutcome, IframePropagator
from .locks import SessionLockManager, SessionLockTimeoutError
from .signals import SignalBridge

logger = logging.getLogger(__name__)


CLEANUP_SCRIPT = """
(m) => {
  var tornDown = false;
  try {
    if (typeof window[m.teardown] === 'function') { window[m.teardown](); tornDown = true; }
  } catch (err) {}
  try {
    if (window[m.selfCheck]) { clearInterval(window[m.selfCheck]); window[m.selfCheck] = null; }
  } catch (err) {}
  try {
    if (window[m.observer]) { window[m.observer].disconnect(); window[m.observer] = null; }
  } catch (err) {}
  try {
    if (window[m.cspGuard]) { window[m.cspGuard].disconnect(); window[m.cspGuard] = null; }
  } catch (err) {}
  window[m.activeFlag] = false;
  var bar = document.getElementById(m.indicatorId);
  if (bar && bar.parentNode) { bar.parentNode.removeChild(bar); }
  return tornDown;
}
"""

ENSURE_UI_SCRIPT = """
(key) => typeof window[key] === 'function' ? window[key]() === true : false
"""

DIAGNOSTICS_SCRIPT = """
(m) => ({
  recorderActive: window[m.activeFlag] === true,
  indicatorPresent: !!document.getElementById(m.indicatorId),
  sendEventAvailable: typeof window[m.sendEvent] === 'function',
  teardownAvailable: typeof window[m.teardown] === 'function',
  observerInstalled: !!window[m.observer],
  selfCheckScheduled: !!window[m.selfCheck],
  paused: !!(window[m.state] && window[m.state].paused),
  frameworks: window[m.frameworks] || [],
  queuedSignals: Array.isArray(window[m.signalQueue]) ? window[m.signalQueue].length : 0,
  errors: window[m.errors] || []
})
"""


class SupervisorError(Exception):
    """Base exception for session supervision failures."""
    pass


class SessionNotFoundError(SupervisorError):
    """No session exists with the given id."""
    pass


class SessionStateError(SupervisorError):
    """The operation is not valid in the session's current state."""
    pass


def extract_domain(url: Optional[str]) -> str:
    """Host and port of a URL, used to detect cross-domain navigation."""
    if not url:
        return ""
    if url.startswith("about:"):
        return url
    return urlparse(url).netloc.lower()


@dataclass
class SupervisorConfig:
    """Tunables of the session supervisor."""
    max_reinject_attempts: int = 5
    lock_wait_seconds: float = 30.0
    unreachable_error_threshold: int = 2
    ended_history: int = 100
    payload_timing: PayloadTiming = field(default_factory=PayloadTiming)


@dataclass
class SessionRuntime:
    """Everything the supervisor tracks for one live session."""
    session: Session
    status: ObserverStatus
    driver: BrowserDriver
    payload_options: PayloadOptions
    payload: str
    signal_push: bool = False
    unreachable_errors: int = 0
    reinstall_calls: int = 0
    navigations: int = 0
    signals_received: int = 0


class SessionSupervisor:
    """Owns sessions and keeps their recorder payload installed."""

    def __init__(
        self,
        chain: Optional[InjectionStrategyChain] = None,
        csp: Optional[CSPMitigator] = None,
        propagator: Optional[IframePropagator] = None,
        signals: Optional[SignalBridge] = None,
        locks: Optional[SessionLockManager] = None,
        config: Optional[SupervisorConfig] = None,
    ):
        """Initialize the supervisor.

        Args:
            chain: Injection strategy chain
            csp: CSP mitigation layer
            propagator: Iframe propagator
            signals: Page signal bridge
            locks: Per-session lock manager
            config: Supervisor tunables
        """
        self.config = config or SupervisorConfig()
        self.chain = chain or InjectionStrategyChain()
        self.csp = csp or CSPMitigator()
        self.propagator = propagator or IframePropagator()
        self.signals = signals or SignalBridge()
        self.locks = locks or SessionLockManager(default_wait_seconds=self.config.lock_wait_seconds)
        self.scheduler = None
        self._sessions: Dict[str, SessionRuntime] = {}
        self._ended: Dict[str, Session] = {}

    def attach_scheduler(self, scheduler) -> None:
        """Register the health-check scheduler that tracks started sessions."""
        self.scheduler = scheduler

    # Lookup

    def _runtime(self, session_id: str) -> SessionRuntime:
        runtime = self._sessions.get(session_id)
        if runtime is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return runtime

    def _live(self, session_id: str) -> Optional[SessionRuntime]:
        runtime = self._sessions.get(session_id)
        if runtime is None or runtime.session.is_stopped:
            return None
        return runtime

    def get_session(self, session_id: str) -> Optional[Session]:
        runtime = self._sessions.get(session_id)
        return runtime.session.model_copy(deep=True) if runtime else None

    def get_ended_session(self, session_id: str) -> Optional[Session]:
        """Final snapshot of a session that has stopped."""
        return self._ended.get(session_id)

    def ended_session_ids(self) -> List[str]:
        return list(self._ended)

    def get_status(self, session_id: str) -> Optional[ObserverStatus]:
        runtime = self._sessions.get(session_id)
        return runtime.status.model_copy() if runtime else None

    def get_driver(self, session_id: str) -> BrowserDriver:
        return self._runtime(session_id).driver

    def list_sessions(self) -> List[Session]:
        return [r.session.model_copy(deep=True) for r in self._sessions.values()]

    def session_ids(self) -> List[str]:
        return [sid for sid, r in self._sessions.items() if not r.session.is_stopped]

    def runtime_stats(self, session_id: str) -> Dict[str, Any]:
        runtime = self._runtime(session_id)
        return {
            'reinstall_calls': runtime.reinstall_calls,
            'navigations': runtime.navigations,
            'signals_received': runtime.signals_received,
            'signal_push': runtime.signal_push,
            'iframes': self.propagator.stats(session_id).to_dict(),
        }

    # Lifecycle

    async def start_session(
        self,
        driver: BrowserDriver,
        config: RecordingConfig,
        session_id: Optional[str] = None,
    ) -> Session:
        """Create a session on a borrowed tab and install the recorder.

        Returns:
            Snapshot of the session, ACTIVE or DEGRADED on return
        """
        session = Session(browser_kind=config.browser_kind, config=config)
        if session_id:
            session.session_id = session_id
        if session.session_id in self._sessions:
            raise SessionStateError(f"Session {session.session_id} already exists")

        options = PayloadOptions.from_recording(session.session_id, config, timing=self.config.payload_timing)
        runtime = SessionRuntime(
            session=session,
            status=ObserverStatus(),
            driver=driver,
            payload_options=options,
            payload=build_page_payload(options),
        )
        self._sessions[session.session_id] = runtime
        logger.info(f"Starting recording session {session.session_id} ({config.browser_kind.value})")

        try:
            async with self.locks.acquire(session.session_id, owner="start"):
                runtime.signal_push = await self.signals.attach(driver, session.session_id, self.handle_signal)

                if config.start_url:
                    await self.csp.prepare_navigation(driver)
                    if not await driver.navigate(config.start_url):
                        logger.warning(f"[{session.session_id}] Initial navigation to {config.start_url} failed")

                await self._install(runtime, reason="start", automatic=False)
        except SessionUnreachableError as e:
            logger.error(f"[{session.session_id}] Browser unreachable during start: {e}")
            self._terminate(runtime, "unreachable")
            return session.model_copy(deep=True)

        if self.scheduler is not None:
            self.scheduler.track(session.session_id)

        logger.info(f"Session {session.session_id} started with status {session.status.value}")
        return session.model_copy(deep=True)

    async def stop_session(self, session_id: str, reason: str = "stopped") -> Optional[Session]:
        """Stop a session, tearing down the in-page payload best-effort.

        Returns:
            Final session snapshot, or None if the session is unknown
        """
        runtime = self._sessions.get(session_id)
        if runtime is None:
            return None
        if runtime.session.is_stopped:
            return runtime.session.model_copy(deep=True)

        # Refuse new work before waiting for in-flight work
        runtime.session.status = SessionStatus.STOPPED
        if self.scheduler is not None:
            self.scheduler.untrack(session_id)

        try:
            async with self.locks.acquire(session_id, owner="stop", wait_seconds=self.config.lock_wait_seconds):
                await runtime.driver.run_script(CLEANUP_SCRIPT, markers.marker_map())
        except SessionLockTimeoutError as e:
            logger.warning(f"[{session_id}] Stopping without page cleanup: {e}")
        except DriverError as e:
            # Navigation may already have discarded the page context
            logger.debug(f"[{session_id}] Page cleanup skipped: {e}")

        self._terminate(runtime, reason)
        return runtime.session.model_copy(deep=True)

    async def stop_all(self, reason: str = "shutdown") -> None:
        for session_id in list(self._sessions):
            await self.stop_session(session_id, reason=reason)
        await self.signals.close()

    def mark_unreachable(self, session_id: str) -> None:
        """Terminate a session whose browser tab is gone."""
        runtime = self._sessions.get(session_id)
        if runtime is not None:
            logger.error(f"Session {session_id} is unreachable, dropping it")
            self._terminate(runtime, "unreachable")

    def _terminate(self, runtime: SessionRuntime, reason: str) -> None:
        session_id = runtime.session.session_id
        runtime.session.status = SessionStatus.STOPPED
        runtime.session.stopped_at = utcnow()
        runtime.session.stop_reason = reason
        runtime.status.installed = False

        if self.scheduler is not None:
            self.scheduler.untrack(session_id)
        self.signals.detach(session_id)
        self.propagator.forget(session_id)
        self.locks.discard(session_id)
        self._sessions.pop(session_id, None)

        self._ended[session_id] = runtime.session.model_copy(deep=True)
        while len(self._ended) > self.config.ended_history:
            self._ended.pop(next(iter(self._ended)))
        logger.info(f"Session {session_id} stopped ({reason})")

    async def _handle_unreachable(self, runtime: SessionRuntime, error: Exception) -> None:
        """Count an unreachable-class error and terminate once it is confirmed."""
        runtime.unreachable_errors += 1
        logger.warning(
            f"[{runtime.session.session_id}] Unreachable-session error "
            f"#{runtime.unreachable_errors}: {error}"
        )
        if runtime.unreachable_errors >= self.config.unreachable_error_threshold:
            self._terminate(runtime, "unreachable")
            return
        if not await runtime.driver.is_reachable():
            self._terminate(runtime, "unreachable")

    # Installation

    async def _refresh_location(self, runtime: SessionRuntime) -> None:
        driver = runtime.driver
        runtime.session.last_url = await driver.current_url()
        try:
            runtime.session.last_title = await driver.current_title()
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.debug(f"[{runtime.session.session_id}] Could not read title: {e}")

    async def _install(self, runtime: SessionRuntime, reason: str, automatic: bool, manual: bool = False) -> InjectionResult:
        """Mitigate CSP, run the chain and record the outcome. Caller holds the lock."""
        session_id = runtime.session.session_id
        logger.debug(f"[{session_id}] Installing recorder ({reason})")

        await self._refresh_location(runtime)
        await self.csp.mitigate_page(runtime.driver)
        result = await self.chain.inject(runtime.driver, runtime.payload, label=session_id)
        self._apply_result(runtime, result, automatic=automatic, manual=manual)

        # A fresh document may already hold iframes the page scan has not reached
        if result.success and not result.already_installed and runtime.payload_options.scan_iframes:
            outcomes = await self.propagator.scan(runtime.driver, session_id, runtime.payload_options)
            if outcomes:
                logger.debug(f"[{session_id}] Iframe scan: {', '.join(o.value for o in outcomes.values())}")
        return result

    def _apply_result(self, runtime: SessionRuntime, result: InjectionResult, automatic: bool, manual: bool) -> None:
        """Fold an injection result into the session's status record."""
        now = utcnow()
        session = runtime.session
        status = runtime.status

        status.installed = result.success
        status.ui_present = result.ui_present
        status.last_checked_at = now

        if session.is_stopped:
            return

        if result.success:
            status.installed_at = now
            status.current_url = session.last_url
            status.last_strategy = result.strategy or ("already_installed" if result.already_installed else None)
            status.last_error = None
            runtime.unreachable_errors = 0
            if manual:
                status.abandoned = False
            session.status = SessionStatus.ACTIVE
            return

        status.last_error = result.last_error or "payload verification failed"
        session.status = SessionStatus.DEGRADED

        if automatic:
            status.retry_count += 1
            if status.retry_count >= self.config.max_reinject_attempts and not status.abandoned:
                status.abandoned = True
                logger.error(
                    f"[{session.session_id}] Giving up automatic reinstallation after "
                    f"{status.retry_count} attempts; manual retry required"
                )

    async def reinstall(self, session_id: str, reason: str, manual: bool = False) -> Optional[InjectionResult]:
        """Reinstall the payload if the session is eligible.

        Args:
            session_id: Session to repair
            reason: Why reinstallation was requested, for logs
            manual: Operator-triggered retry that ignores the retry cap

        Returns:
            Injection result, or None if the attempt was skipped
        """
        runtime = self._live(session_id)
        if runtime is None:
            return None
        if runtime.status.abandoned and not manual:
            logger.debug(f"[{session_id}] Skipping reinstall ({reason}): retries exhausted")
            return None

        try:
            async with self.locks.acquire(session_id, owner=f"reinstall:{reason}"):
                # State may have changed while waiting for the lock
                if runtime.session.is_stopped or (runtime.status.abandoned and not manual):
                    return None
                runtime.reinstall_calls += 1
                result = await self._install(runtime, reason=reason, automatic=not manual, manual=manual)
        except SessionLockTimeoutError as e:
            logger.warning(f"[{session_id}] Reinstall ({reason}) skipped: {e}")
            return None
        except SessionUnreachableError as e:
            await self._handle_unreachable(runtime, e)
            return None

        if result.already_installed:
            logger.debug(f"[{session_id}] Reinstall ({reason}): already installed")
        elif result.success:
            logger.info(f"[{session_id}] Reinstalled recorder ({reason}) via {result.strategy}")
        else:
            logger.warning(
                f"[{session_id}] Reinstall ({reason}) failed "
                f"(attempt {runtime.status.retry_count}/{self.config.max_reinject_attempts})"
            )
        return result

    async def force_reinject(self, session_id: str) -> InjectionResult:
        """Operator-triggered reinstallation that bypasses the retry cap.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionStateError: If the session is stopped or busy
        """
        runtime = self._runtime(session_id)
        if runtime.session.is_stopped:
            raise SessionStateError(f"Session {session_id} is stopped")

        result = await self.reinstall(session_id, reason="manual", manual=True)
        if result is None:
            if runtime.session.is_stopped:
                raise SessionStateError(f"Session {session_id} stopped during reinjection")
            raise SessionStateError(f"Session {session_id} is busy, try again")
        return result

    async def check_presence(self, session_id: str) -> Optional[PresenceProbe]:
        """Probe the payload markers and record the result."""
        runtime = self._live(session_id)
        if runtime is None:
            return None

        try:
            async with self.locks.acquire(session_id, owner="probe"):
                presence = await self.chain.probe(runtime.driver)
        except SessionLockTimeoutError as e:
            logger.debug(f"[{session_id}] Presence probe skipped: {e}")
            return None
        except SessionUnreachableError as e:
            await self._handle_unreachable(runtime, e)
            return None
        except DriverError as e:
            logger.warning(f"[{session_id}] Presence probe failed: {e}")
            presence = PresenceProbe()

        runtime.status.installed = presence.present
        runtime.status.ui_present = presence.ui_present
        runtime.status.last_checked_at = utcnow()
        if not presence.present and runtime.session.status == SessionStatus.ACTIVE:
            runtime.session.status = SessionStatus.DEGRADED
        return presence

    def mark_checked(self, session_id: str) -> None:
        runtime = self._live(session_id)
        if runtime is not None:
            runtime.status.last_checked_at = utcnow()

    async def restore_ui(self, session_id: str) -> Optional[InjectionResult]:
        """Recreate the indicator, falling back to a full reinstall."""
        runtime = self._live(session_id)
        if runtime is None:
            return None

        try:
            async with self.locks.acquire(session_id, owner="restore_ui"):
                restored = await runtime.driver.run_script(ENSURE_UI_SCRIPT, markers.ENSURE_UI)
        except SessionLockTimeoutError:
            return None
        except SessionUnreachableError as e:
            await self._handle_unreachable(runtime, e)
            return None
        except DriverError as e:
            logger.debug(f"[{session_id}] Indicator restore failed: {e}")
            restored = False

        if restored:
            runtime.status.ui_present = True
            return None
        return await self.reinstall(session_id, reason="ui_missing")

    # Signals and navigation

    async def handle_signal(self, session_id: str, signal: PageSignal) -> None:
        """React to a signal raised by the in-page monitor."""
        runtime = self._live(session_id)
        if runtime is None:
            return
        runtime.signals_received += 1
        logger.debug(f"[{session_id}] Page signal {signal.type.value}: {signal.detail}")

        if signal.type == SignalType.NAVIGATION:
            await self.handle_navigation(session_id, signal.to_navigation_signal())
        elif signal.type == SignalType.REINSTALL_NEEDED:
            await self.reinstall(session_id, reason=f"page:{signal.detail.get('reason', 'signal')}")
        elif signal.type == SignalType.UI_NEEDED:
            await self.restore_ui(session_id)
        elif signal.type == SignalType.IFRAME_NEEDS_INSTRUMENTATION:
            selector = signal.detail.get('selector')
            if selector:
                await self.instrument_iframe(session_id, selector)
        elif signal.type == SignalType.IFRAME_DETECTED and signal.detail.get('crossOrigin'):
            logger.info(f"[{session_id}] Cross-origin iframe detected: {signal.detail.get('src')}")

    async def handle_navigation(self, session_id: str, signal: NavigationSignal) -> Optional[InjectionResult]:
        """Consume a navigation signal and reinstall if the page changed."""
        runtime = self._live(session_id)
        if runtime is None:
            return None
        session = runtime.session
        runtime.navigations += 1

        if signal.new_url == session.last_url and not signal.url_changed:
            if signal.title:
                session.last_title = signal.title
            return None

        previous_domain = extract_domain(session.last_url)
        new_domain = extract_domain(signal.new_url)
        if previous_domain and new_domain and previous_domain != new_domain:
            logger.info(f"[{session_id}] Domain changed from {previous_domain} to {new_domain}")

        logger.info(
            f"[{session_id}] Navigation ({signal.trigger.value}): "
            f"{signal.previous_url or session.last_url} -> {signal.new_url}"
        )
        session.last_url = signal.new_url
        if signal.title:
            session.last_title = signal.title

        return await self.reinstall(session_id, reason=f"navigation:{signal.trigger.value}")

    async def navigate(self, session_id: str, url: str) -> bool:
        """Navigate a session's tab and re-supervise the new document.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionStateError: If the session is stopped
        """
        runtime = self._runtime(session_id)
        if runtime.session.is_stopped:
            raise SessionStateError(f"Session {session_id} is stopped")

        try:
            async with self.locks.acquire(session_id, owner="navigate"):
                await self.csp.prepare_navigation(runtime.driver)
                if not await runtime.driver.navigate(url):
                    return False
                new_url = await runtime.driver.current_url()
                title = await runtime.driver.current_title()
        except SessionUnreachableError as e:
            await self._handle_unreachable(runtime, e)
            return False
        except DriverError as e:
            logger.warning(f"[{session_id}] Navigation to {url} failed: {e}")
            return False

        await self.handle_navigation(session_id, NavigationSignal(
            previous_url=runtime.session.last_url,
            new_url=new_url,
            title=title,
            trigger=NavigationTrigger.NAVIGATE,
        ))
        return True

    async def drain_signals(self, session_id: str) -> int:
        """Process signals queued in the page since the last drain."""
        runtime = self._live(session_id)
        if runtime is None:
            return 0

        try:
            async with self.locks.acquire(session_id, owner="drain"):
                signals = await self.signals.drain(runtime.driver)
        except SessionLockTimeoutError:
            return 0
        except SessionUnreachableError as e:
            await self._handle_unreachable(runtime, e)
            return 0

        for signal in signals:
            await self.handle_signal(session_id, signal)
        return len(signals)

    # Iframes and diagnostics

    async def instrument_iframe(self, session_id: str, selector: str) -> Optional[IframeOutcome]:
        """Install the reduced payload into a same-origin iframe."""
        runtime = self._live(session_id)
        if runtime is None:
            return None

        try:
            async with self.locks.acquire(session_id, owner="iframe"):
                return await self.propagator.instrument(
                    runtime.driver, session_id, selector, runtime.payload_options
                )
        except SessionLockTimeoutError as e:
            logger.debug(f"[{session_id}] Iframe instrumentation skipped: {e}")
            return None
        except SessionUnreachableError as e:
            await self._handle_unreachable(runtime, e)
            return None

    async def diagnostics(self, session_id: str) -> Dict[str, Any]:
        """Collect marker state, in-page errors and CSP analysis for a session."""
        runtime = self._runtime(session_id)
        driver = runtime.driver
        report: Dict[str, Any] = {
            'session_id': session_id,
            'session_status': runtime.session.status.value,
            'observer_status': runtime.status.model_dump(mode='json'),
            'browser_kind': driver.browser_kind,
            'server_url': runtime.session.config.server_url,
            'payload_size': len(runtime.payload),
            'runtime': self.runtime_stats(session_id),
        }

        try:
            report['page'] = await driver.run_script(DIAGNOSTICS_SCRIPT, markers.marker_map())
            report['current_url'] = await driver.current_url()
            report['title'] = await driver.current_title()
            report['csp'] = await self.csp.analyze(driver, runtime.session.config.server_url)
        except DriverError as e:
            report['error'] = f"Error collecting page diagnostics: {e}"

        return report
