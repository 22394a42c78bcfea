"""Periodic health checks that keep supervised sessions instrumented.

The scheduler is the fallback for everything the in-page monitor cannot
report by itself: a page context discarded without a signal, signals left in
the page queue because no host binding exists, installs that went stale and
browser tabs that died silently.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Set

from ..capture.driver import DriverError, SessionUnreachableError
from ..models import NavigationSignal, NavigationTrigger
from .locks import SessionLockTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Timing of the health-check loop, in seconds."""
    warmup_seconds: float = 30.0
    interval_seconds: float = 15.0
    min_check_gap_seconds: float = 10.0
    stale_after_seconds: float = 300.0
    max_concurrent_checks: int = 10


@dataclass
class SchedulerStats:
    """Statistics for the health-check scheduler."""
    tracked_sessions: int = 0
    ticks: int = 0
    checks: int = 0
    skipped_recent: int = 0
    skipped_busy: int = 0
    reinstalls_requested: int = 0
    url_mismatches: int = 0
    unreachable_removed: int = 0
    signals_drained: int = 0
    errors: int = 0
    last_tick_time: Optional[datetime] = None
    average_tick_duration_ms: float = 0.0


class HealthCheckScheduler:
    """Runs a health check over every tracked session on a fixed interval."""

    def __init__(self, supervisor, config: Optional[SchedulerConfig] = None):
        """Initialize the scheduler.

        Args:
            supervisor: Session supervisor whose sessions are checked
            config: Loop timing
        """
        self.supervisor = supervisor
        self.config = config or SchedulerConfig()
        supervisor.attach_scheduler(self)

        self._tracked: Set[str] = set()

        # Loop control
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

        self._stats = SchedulerStats()
        self._tick_times: List[float] = []
        self._max_tick_samples = 100

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the health-check loop."""
        if self._running:
            logger.warning("Health-check scheduler is already running")
            return

        self._running = True
        self._shutdown_event.clear()
        self._loop_task = asyncio.create_task(self._check_loop())
        logger.info(
            f"Health-check scheduler started (warmup: {self.config.warmup_seconds}s, "
            f"interval: {self.config.interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the health-check loop."""
        if not self._running:
            return

        logger.info("Stopping health-check scheduler")
        self._running = False
        self._shutdown_event.set()

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        logger.info("Health-check scheduler stopped")

    def track(self, session_id: str) -> None:
        self._tracked.add(session_id)
        self._stats.tracked_sessions = len(self._tracked)

    def untrack(self, session_id: str) -> None:
        self._tracked.discard(session_id)
        self._stats.tracked_sessions = len(self._tracked)

    def is_tracked(self, session_id: str) -> bool:
        return session_id in self._tracked

    @property
    def tracked(self) -> List[str]:
        return sorted(self._tracked)

    def get_stats(self) -> SchedulerStats:
        """Get scheduler statistics."""
        return self._stats

    async def _wait_or_shutdown(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless shutdown is requested. Returns True on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _check_loop(self) -> None:
        """Main loop: warm up, then tick until stopped."""
        if self.config.warmup_seconds and await self._wait_or_shutdown(self.config.warmup_seconds):
            return

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in health-check loop: {e}", exc_info=True)
                self._stats.errors += 1

            if await self._wait_or_shutdown(self.config.interval_seconds):
                break

    async def run_once(self) -> None:
        """Run one tick over every tracked session."""
        tick_start = datetime.now(timezone.utc)
        session_ids = list(self._tracked)

        if session_ids:
            semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_checks))

            async def bounded(session_id: str) -> None:
                async with semaphore:
                    await self._check_session_safely(session_id)

            await asyncio.gather(*(bounded(sid) for sid in session_ids))

        tick_duration = (datetime.now(timezone.utc) - tick_start).total_seconds() * 1000
        self._tick_times.append(tick_duration)
        if len(self._tick_times) > self._max_tick_samples:
            self._tick_times.pop(0)

        self._stats.ticks += 1
        self._stats.last_tick_time = tick_start
        self._stats.average_tick_duration_ms = sum(self._tick_times) / len(self._tick_times)

    async def _check_session_safely(self, session_id: str) -> None:
        # One broken session must not stop the others being checked
        try:
            await self.check_session(session_id)
        except SessionUnreachableError:
            self._drop_unreachable(session_id)
        except Exception as e:
            logger.error(f"Health check failed for session {session_id}: {e}", exc_info=True)
            self._stats.errors += 1

    def _drop_unreachable(self, session_id: str) -> None:
        self.supervisor.mark_unreachable(session_id)
        self.untrack(session_id)
        self._stats.unreachable_removed += 1

    async def check_session(self, session_id: str) -> None:
        """Health-check one session.

        Order: drain queued page signals, confirm the tab is alive, reinstall
        when the payload is missing or stale, then compare the live URL with
        the last one the supervisor saw.
        """
        status = self.supervisor.get_status(session_id)
        if status is None:
            self.untrack(session_id)
            return

        if status.checked_within(self.config.min_check_gap_seconds):
            self._stats.skipped_recent += 1
            return

        self._stats.checks += 1
        driver = self.supervisor.get_driver(session_id)

        self._stats.signals_drained += await self.supervisor.drain_signals(session_id)
        if not self.is_tracked(session_id):
            return

        try:
            async with self.supervisor.locks.acquire(session_id, owner="health"):
                reachable = await driver.is_reachable()
        except SessionLockTimeoutError as e:
            self._stats.skipped_busy += 1
            logger.debug(f"Session {session_id} busy, health check skipped: {e}")
            return

        if not reachable:
            logger.warning(f"Session {session_id} no longer responds")
            self._drop_unreachable(session_id)
            return

        self.supervisor.mark_checked(session_id)
        status = self.supervisor.get_status(session_id)
        if status is None:
            return

        if not status.installed or status.is_stale(self.config.stale_after_seconds):
            reason = "stale" if status.installed else "not_installed"
            self._stats.reinstalls_requested += 1
            await self.supervisor.reinstall(session_id, reason=reason)
        else:
            presence = await self.supervisor.check_presence(session_id)
            if presence is not None and not presence.present:
                self._stats.reinstalls_requested += 1
                await self.supervisor.reinstall(session_id, reason="payload_missing")

        session = self.supervisor.get_session(session_id)
        if session is None or session.is_stopped:
            return

        try:
            async with self.supervisor.locks.acquire(session_id, owner="health"):
                live_url = await driver.current_url()
        except SessionUnreachableError:
            raise
        except SessionLockTimeoutError as e:
            self._stats.skipped_busy += 1
            logger.debug(f"Session {session_id} busy, URL poll skipped: {e}")
            return
        except DriverError as e:
            logger.debug(f"Session {session_id} URL poll failed: {e}")
            return

        if live_url and live_url != session.last_url:
            self._stats.url_mismatches += 1
            logger.info(f"Session {session_id} URL changed without a signal: {session.last_url} -> {live_url}")
            await self.supervisor.handle_navigation(session_id, NavigationSignal(
                previous_url=session.last_url,
                new_url=live_url,
                trigger=NavigationTrigger.SCHEDULER_POLL,
            ))
