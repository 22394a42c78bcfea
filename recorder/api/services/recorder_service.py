"""Recording service layer for the recorder API.

This module ties the browser factory, the session supervisor, the
health-check scheduler and the event store together behind the operations
the REST routes and the CLI need.
"""

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from recorder.capture import BrowserConfig, BrowserFactory, BrowserTab
from recorder.capture.driver import DriverError
from recorder.config import RecorderSettings, get_config
from recorder.injection import (
    ChunkedStrategy,
    CSPMitigator,
    DeferredTimerStrategy,
    DirectStrategy,
    InjectionStrategyChain,
    ScriptElementStrategy,
)
from recorder.models import (
    BrowserKind,
    EventType,
    InjectionResult,
    ObserverStatus,
    RecordedEvent,
    RecordingConfig,
    Session,
)
from recorder.supervision import (
    HealthCheckScheduler,
    SessionNotFoundError,
    SessionStateError,
    SessionSupervisor,
)

from .event_store import EventStore

logger = logging.getLogger(__name__)


PING_PATH = "/api/recorder/ping"

PING_SCRIPT = """
(url) => fetch(url, { method: 'HEAD', mode: 'cors', cache: 'no-store' })
  .then((response) => ({ ok: response.ok, status: response.status }))
  .catch((err) => ({ ok: false, error: String(err) }))
"""

FactoryBuilder = Callable[[BrowserConfig], BrowserFactory]


def build_injection_chain(options: Dict[str, Any]) -> InjectionStrategyChain:
    """Build the strategy chain from ``RecorderSettings.get_injection_options()``."""
    return InjectionStrategyChain(
        strategies=[
            DirectStrategy(),
            ScriptElementStrategy(),
            DeferredTimerStrategy(settle_ms=options['deferred_settle_ms']),
        ],
        chunked=ChunkedStrategy(chunk_size=options['chunk_size']),
        chunk_threshold=options['chunk_threshold'],
        verify_delay_seconds=options['verify_delay_seconds'],
    )


class RecorderService:
    """Service layer for recording session management.

    Owns one browser per (engine, headless) pair, opens one tab per session
    and hands the tab's driver to the supervisor.
    """

    def __init__(
        self,
        settings: Optional[RecorderSettings] = None,
        supervisor: Optional[SessionSupervisor] = None,
        scheduler: Optional[HealthCheckScheduler] = None,
        event_store: Optional[EventStore] = None,
        factory_builder: Optional[FactoryBuilder] = None,
    ):
        """Initialize the recorder service.

        Args:
            settings: Recorder settings (defaults to the global config)
            supervisor: Session supervisor (built from settings by default)
            scheduler: Health-check scheduler (built from settings by default)
            event_store: Event store (in-memory by default)
            factory_builder: Creates a browser factory for a browser config
        """
        self.settings = settings or get_config().config
        injection = self.settings.get_injection_options()
        server = self.settings.get_server_options()

        self.supervisor = supervisor or SessionSupervisor(
            chain=build_injection_chain(injection),
            csp=CSPMitigator(policy=injection['csp_policy'], enabled=injection['csp_mitigation']),
            config=self.settings.get_supervisor_config(),
        )
        self.scheduler = scheduler or HealthCheckScheduler(
            self.supervisor,
            self.settings.get_scheduler_config(),
        )
        self.event_store = event_store or EventStore(
            max_events_per_session=server['max_events_per_session'],
            max_sessions=server['max_event_sessions'],
        )
        self.dropped_event_count = 0
        self.default_server_url = (
            server['public_url'] or f"http://{server['host']}:{server['port']}"
        ).rstrip('/')

        self._browser_config = self.settings.get_browser_config()
        self._factory_builder = factory_builder or BrowserFactory
        self._factories: Dict[Tuple[str, bool], BrowserFactory] = {}
        self._tabs: Dict[str, Tuple[BrowserFactory, BrowserTab]] = {}

        logger.info(f"RecorderService initialized with server_url={self.default_server_url}")

    # Browser management

    async def _factory_for(self, kind: BrowserKind, headless: bool) -> BrowserFactory:
        key = (kind.value, headless)
        factory = self._factories.get(key)
        if factory is not None and factory.is_running:
            return factory

        config = copy.copy(self._browser_config)
        config.engine = kind.value
        config.headless = headless

        factory = self._factory_builder(config)
        await factory.start()
        self._factories[key] = factory
        return factory

    async def _release_tab(self, session_id: str) -> None:
        entry = self._tabs.pop(session_id, None)
        if entry is None:
            return
        factory, tab = entry
        await factory.close_tab(tab)

    async def _reap_tabs(self) -> None:
        """Close tabs whose sessions the supervisor has already dropped."""
        live = set(self.supervisor.session_ids())
        for session_id in [sid for sid in self._tabs if sid not in live]:
            logger.info(f"Closing tab of ended session {session_id}")
            await self._release_tab(session_id)
        self._prune_events()

    def _prune_events(self) -> None:
        """Forget stored events of sessions the supervisor no longer remembers."""
        known = set(self.supervisor.session_ids()) | set(self.supervisor.ended_session_ids())
        self.event_store.retain(known)

    async def start(self) -> None:
        if not self.scheduler.is_running:
            await self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop every session, the scheduler and all browsers."""
        logger.info("Shutting down recorder service")
        await self.scheduler.stop()
        await self.supervisor.stop_all(reason="shutdown")

        for session_id in list(self._tabs):
            await self._release_tab(session_id)
        for factory in list(self._factories.values()):
            await factory.stop()
        self._factories.clear()

    # Sessions

    async def start_session(self, config: RecordingConfig) -> Tuple[Session, Optional[ObserverStatus]]:
        """Open a tab and start supervising a recording in it."""
        await self._reap_tabs()
        await self.start()

        factory = await self._factory_for(config.browser_kind, config.headless)
        tab = await factory.open_tab()

        try:
            session = await self.supervisor.start_session(tab.driver, config)
        except Exception:
            await factory.close_tab(tab)
            raise

        if session.is_stopped:
            await factory.close_tab(tab)
        else:
            self._tabs[session.session_id] = (factory, tab)

        return session, self.supervisor.get_status(session.session_id)

    async def stop_session(self, session_id: str, reason: str = "stopped") -> Session:
        """Stop a session and close its tab.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = await self.supervisor.stop_session(session_id, reason=reason)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        await self._release_tab(session_id)
        self._prune_events()
        return session

    async def force_reinject(self, session_id: str) -> InjectionResult:
        return await self.supervisor.force_reinject(session_id)

    async def navigate(self, session_id: str, url: str) -> Tuple[bool, Session, Optional[ObserverStatus]]:
        """Navigate a session's tab and re-supervise the new document.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionStateError: If the session is stopped
        """
        navigated = await self.supervisor.navigate(session_id, url)
        session = self.supervisor.get_session(session_id) or self.supervisor.get_ended_session(session_id)
        return navigated, session, self.supervisor.get_status(session_id)

    def get_session(self, session_id: str) -> Tuple[Session, Optional[ObserverStatus]]:
        """Get a session and its status.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self.supervisor.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session, self.supervisor.get_status(session_id)

    def list_sessions(self) -> List[Session]:
        return self.supervisor.list_sessions()

    async def diagnostics(self, session_id: str) -> Dict[str, Any]:
        """Supervisor diagnostics plus a connectivity test from the page."""
        report = await self.supervisor.diagnostics(session_id)
        driver = self.supervisor.get_driver(session_id)
        ping_url = report['server_url'] + PING_PATH

        try:
            report['server_ping'] = await driver.run_script_async(PING_SCRIPT, ping_url)
        except DriverError as e:
            report['server_ping'] = {'ok': False, 'error': str(e)}

        report['events_received'] = self.event_store.count(session_id)
        report['scheduler'] = {
            'running': self.scheduler.is_running,
            'tracked': self.scheduler.is_tracked(session_id),
        }
        return report

    async def screenshot(self, session_id: str) -> bytes:
        """Capture the session's tab as PNG.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionStateError: If the tab cannot be captured
        """
        driver = self.supervisor.get_driver(session_id)
        try:
            return await driver.screenshot()
        except DriverError as e:
            raise SessionStateError(f"Could not capture session {session_id}: {e}")

    # Events

    async def ingest_events(self, session_id: str, raw_events: Iterable[Dict[str, Any]]) -> int:
        """Store events posted by the payload and act on recorder controls."""
        raw_events = list(raw_events)
        if self.supervisor.get_session(session_id) is None and self.supervisor.get_ended_session(session_id) is None:
            self.dropped_event_count += len(raw_events)
            logger.debug(f"Dropped {len(raw_events)} events for unknown session {session_id}")
            return 0

        stored = self.event_store.add(session_id, raw_events)

        for event in stored:
            if event.type == EventType.RECORDER_CONTROL:
                await self._handle_control(session_id, event)

        return len(stored)

    async def _handle_control(self, session_id: str, event: RecordedEvent) -> None:
        action = str(event.value or '').upper()
        logger.info(f"Session {session_id} recorder control: {action}")

        if action == 'STOP' and self.supervisor.get_session(session_id) is not None:
            await self.stop_session(session_id, reason="stopped_from_page")

    def list_events(self, session_id: str, limit: Optional[int] = None) -> List[RecordedEvent]:
        return self.event_store.list(session_id, limit=limit)


# Shared service instance to maintain state across requests
_recorder_service_instance: Optional[RecorderService] = None


def get_recorder_service() -> RecorderService:
    """Dependency to provide the recorder service instance."""
    global _recorder_service_instance
    if _recorder_service_instance is None:
        _recorder_service_instance = RecorderService()
    return _recorder_service_instance


def set_recorder_service(service: Optional[RecorderService]) -> None:
    """Replace the shared service instance, e.g. on shutdown."""
    global _recorder_service_instance
    _recorder_service_instance = service


async def shutdown_recorder_service() -> None:
    """Shut down the shared service instance if one was created."""
    global _recorder_service_instance
    if _recorder_service_instance is not None:
        await _recorder_service_instance.shutdown()
        _recorder_service_instance = None
