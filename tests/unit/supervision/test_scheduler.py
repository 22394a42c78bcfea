"""Unit tests for the health-check scheduler."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from recorder.models import SessionStatus, utcnow
from recorder.supervision import (
    HealthCheckScheduler,
    SchedulerConfig,
    SessionSupervisor,
    SupervisorConfig,
)
from tests.conftest import FakeDriver


@pytest.fixture
def supervisor():
    return SessionSupervisor(config=SupervisorConfig(lock_wait_seconds=1.0))


@pytest.fixture
def scheduler(supervisor):
    # Start marks sessions as just checked, so checks must not be gap-limited here
    return HealthCheckScheduler(supervisor, SchedulerConfig(
        warmup_seconds=0,
        interval_seconds=0.01,
        min_check_gap_seconds=0,
    ))


class TestSchedulerLifecycle:
    """Test loop start/stop and session tracking."""

    @pytest.mark.asyncio
    async def test_start_stop(self, scheduler):
        await scheduler.start()
        assert scheduler.is_running is True

        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.get_stats().ticks >= 1

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, scheduler):
        await scheduler.start()
        task = scheduler._loop_task

        await scheduler.start()

        assert scheduler._loop_task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_warmup_delays_first_tick(self, supervisor):
        scheduler = HealthCheckScheduler(supervisor, SchedulerConfig(warmup_seconds=10, interval_seconds=0.01))

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.get_stats().ticks == 0

    @pytest.mark.asyncio
    async def test_started_sessions_are_tracked(self, supervisor, scheduler, recording_config):
        session = await supervisor.start_session(FakeDriver(), recording_config)

        assert scheduler.is_tracked(session.session_id)
        assert scheduler.get_stats().tracked_sessions == 1

        await supervisor.stop_session(session.session_id)
        assert scheduler.tracked == []


class TestHealthCheck:
    """Test individual health checks."""

    @pytest.mark.asyncio
    async def test_healthy_session_untouched(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)

        await scheduler.run_once()

        stats = scheduler.get_stats()
        assert stats.checks == 1
        assert stats.reinstalls_requested == 0
        assert fake_driver.installs == 1
        assert supervisor.get_session(session.session_id).status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_recent_check_skipped(self, supervisor, fake_driver, recording_config):
        scheduler = HealthCheckScheduler(supervisor, SchedulerConfig(min_check_gap_seconds=60))
        await supervisor.start_session(fake_driver, recording_config)

        await scheduler.run_once()

        assert scheduler.get_stats().skipped_recent == 1
        assert scheduler.get_stats().checks == 0

    @pytest.mark.asyncio
    async def test_missing_payload_reinstalled(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        fake_driver.remove_payload()

        await scheduler.run_once()

        assert scheduler.get_stats().reinstalls_requested == 1
        assert fake_driver.installs == 2
        assert supervisor.get_status(session.session_id).installed is True

    @pytest.mark.asyncio
    async def test_stale_install_refreshed(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        runtime = supervisor._sessions[session.session_id]
        runtime.status.installed_at = utcnow() - timedelta(seconds=600)

        await scheduler.run_once()

        assert scheduler.get_stats().reinstalls_requested == 1
        # Still present in the page, so only the install time moves
        assert fake_driver.installs == 1
        assert supervisor.get_status(session.session_id).installed_at > utcnow() - timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_unreachable_session_removed(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        fake_driver.reachable = False

        await scheduler.run_once()

        assert scheduler.get_stats().unreachable_removed == 1
        assert not scheduler.is_tracked(session.session_id)
        assert supervisor.get_ended_session(session.session_id).stop_reason == "unreachable"

    @pytest.mark.asyncio
    async def test_dead_session_does_not_block_others(self, supervisor, scheduler, recording_config):
        dead, alive = FakeDriver(), FakeDriver()
        dead_session = await supervisor.start_session(dead, recording_config)
        alive_session = await supervisor.start_session(alive, recording_config)
        dead.unreachable = True
        alive.remove_payload()

        await scheduler.run_once()

        assert supervisor.get_session(dead_session.session_id) is None
        assert alive.installs == 2
        assert scheduler.is_tracked(alive_session.session_id)

    @pytest.mark.asyncio
    async def test_unsignalled_url_change(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        # Route change the page never reported: same document, new URL
        fake_driver.push_state("https://shop.example.com/orders")

        await scheduler.run_once()

        assert scheduler.get_stats().url_mismatches == 1
        assert supervisor.get_session(session.session_id).last_url == "https://shop.example.com/orders"
        assert supervisor.get_status(session.session_id).current_url == "https://shop.example.com/orders"
        assert fake_driver.installs == 1

    @pytest.mark.asyncio
    async def test_queued_signals_drained(self, supervisor, scheduler, fake_driver, recording_config):
        await supervisor.start_session(fake_driver, recording_config)
        fake_driver.remove_payload()
        fake_driver.queue_signal("reinstall_needed", reason="flag_missing")

        await scheduler.run_once()

        assert scheduler.get_stats().signals_drained == 1
        assert fake_driver.installs == 2

    @pytest.mark.asyncio
    async def test_untracked_when_session_gone(self, supervisor, scheduler):
        scheduler.track("ghost")

        await scheduler.run_once()

        assert not scheduler.is_tracked("ghost")

    @pytest.mark.asyncio
    async def test_cross_domain_url_change_reinstalls(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        # Full load on another domain the page had no chance to report
        fake_driver.load("https://checkout.partner.example/pay")

        await scheduler.run_once()

        assert scheduler.get_stats().url_mismatches == 1
        assert supervisor.get_session(session.session_id).last_url == "https://checkout.partner.example/pay"
        assert fake_driver.installs == 2


class TestHealthCheckLocking:
    """Driver calls made by the health check hold the session lock."""

    @pytest.mark.asyncio
    async def test_driver_calls_hold_session_lock(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        owners = []

        async def reachable():
            owners.append(supervisor.locks.get_lock_info(session.session_id).owner)
            return True

        async def current_url():
            owners.append(supervisor.locks.get_lock_info(session.session_id).owner)
            return fake_driver.url

        fake_driver.is_reachable = reachable
        fake_driver.current_url = current_url

        await scheduler.run_once()

        assert owners == ["health", "health"]
        assert not supervisor.locks.is_locked(session.session_id)

    @pytest.mark.asyncio
    async def test_busy_session_skipped(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        supervisor.locks.default_wait_seconds = 0.01
        fake_driver.is_reachable = AsyncMock(return_value=True)
        fake_driver.remove_payload()

        async with supervisor.locks.acquire(session.session_id, owner="navigate"):
            await scheduler.run_once()

        fake_driver.is_reachable.assert_not_called()
        assert scheduler.get_stats().skipped_busy == 1
        assert scheduler.get_stats().reinstalls_requested == 0
        assert fake_driver.installs == 1
        assert supervisor.get_session(session.session_id) is not None

    @pytest.mark.asyncio
    async def test_busy_session_checked_on_next_tick(self, supervisor, scheduler, fake_driver, recording_config):
        session = await supervisor.start_session(fake_driver, recording_config)
        supervisor.locks.default_wait_seconds = 0.01
        fake_driver.remove_payload()

        async with supervisor.locks.acquire(session.session_id, owner="navigate"):
            await scheduler.run_once()
        await scheduler.run_once()

        assert fake_driver.installs == 2
        assert supervisor.get_status(session.session_id).installed is True
