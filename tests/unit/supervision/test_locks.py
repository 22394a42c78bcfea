"""Unit tests for per-session locks."""

import asyncio

import pytest

from recorder.supervision.locks import SessionLockManager, SessionLockTimeoutError


class TestSessionLockManager:
    """Test SessionLockManager functionality."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self):
        """Test the lock is held only inside the block."""
        locks = SessionLockManager()

        async with locks.acquire("s1", owner="scheduler", metadata={'reason': 'tick'}) as info:
            assert locks.is_locked("s1") is True
            assert info.owner == "scheduler"
            assert locks.get_lock_info("s1") is info
            assert info.to_dict()['metadata'] == {'reason': 'tick'}

        assert locks.is_locked("s1") is False
        assert locks.get_lock_info("s1") is None

    @pytest.mark.asyncio
    async def test_serializes_same_session(self):
        """Test that two holders of one session never overlap."""
        locks = SessionLockManager()
        order = []

        async def worker(name):
            async with locks.acquire("s1", owner=name):
                order.append(f"{name}:in")
                await asyncio.sleep(0.01)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (
            ["a:in", "a:out", "b:in", "b:out"],
            ["b:in", "b:out", "a:in", "a:out"],
        )

    @pytest.mark.asyncio
    async def test_sessions_do_not_contend(self):
        """Test that different sessions lock independently."""
        locks = SessionLockManager(default_wait_seconds=0.05)

        async with locks.acquire("s1"):
            async with locks.acquire("s2"):
                assert locks.is_locked("s1") and locks.is_locked("s2")

    @pytest.mark.asyncio
    async def test_timeout_names_holder(self):
        """Test acquisition timeout."""
        locks = SessionLockManager()

        async with locks.acquire("s1", owner="reinstall"):
            with pytest.raises(SessionLockTimeoutError, match="held by reinstall"):
                async with locks.acquire("s1", wait_seconds=0.01):
                    pass

    @pytest.mark.asyncio
    async def test_released_on_exception(self):
        """Test that errors inside the block release the lock."""
        locks = SessionLockManager()

        with pytest.raises(RuntimeError):
            async with locks.acquire("s1"):
                raise RuntimeError("boom")

        assert locks.is_locked("s1") is False

    @pytest.mark.asyncio
    async def test_discard(self):
        """Test forgetting a finished session's lock."""
        locks = SessionLockManager()
        async with locks.acquire("s1"):
            pass
        assert len(locks) == 1

        locks.discard("s1")

        assert len(locks) == 0
        assert locks.is_locked("s1") is False
