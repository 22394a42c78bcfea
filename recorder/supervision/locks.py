"""Per-session mutual exclusion for browser command sequences.

A browser tab is only safely driven one command sequence at a time, so the
scheduler and signal handlers serialize their install/verify sequences per
session. Different sessions never contend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Optional

logger = logging.getLogger(__name__)


class SessionLockError(Exception):
    """Exception raised when session lock operations fail."""
    pass


class SessionLockTimeoutError(SessionLockError):
    """Exception raised when lock acquisition times out."""
    pass


@dataclass
class LockInfo:
    """Information about a held session lock."""

    session_id: str
    owner: str
    acquired_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def held_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.acquired_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'owner': self.owner,
            'acquired_at': self.acquired_at.isoformat(),
            'metadata': self.metadata,
        }


class SessionLockManager:
    """Holds one asyncio lock per session."""

    def __init__(self, default_wait_seconds: float = 30.0):
        """Initialize the lock manager.

        Args:
            default_wait_seconds: How long acquire() waits before giving up
        """
        self.default_wait_seconds = default_wait_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, LockInfo] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def acquire(
        self,
        session_id: str,
        owner: str = "supervisor",
        wait_seconds: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncGenerator[LockInfo, None]:
        """Hold the session's lock for the duration of the block.

        Args:
            session_id: Session to lock
            owner: Name of the caller, kept for diagnostics
            wait_seconds: Maximum wait for the lock
            metadata: Additional lock metadata

        Yields:
            LockInfo describing the held lock

        Raises:
            SessionLockTimeoutError: If the lock could not be acquired in time
        """
        lock = self._lock_for(session_id)
        timeout = self.default_wait_seconds if wait_seconds is None else wait_seconds

        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            holder = self._holders.get(session_id)
            held_by = holder.owner if holder else "unknown"
            raise SessionLockTimeoutError(
                f"Timed out after {timeout}s waiting for session {session_id} (held by {held_by})"
            )

        info = LockInfo(
            session_id=session_id,
            owner=owner,
            acquired_at=datetime.now(timezone.utc),
            metadata=metadata or {},
        )
        self._holders[session_id] = info
        logger.debug(f"Acquired lock for session {session_id} ({owner})")

        try:
            yield info
        finally:
            if self._holders.get(session_id) is info:
                del self._holders[session_id]
            lock.release()
            logger.debug(f"Released lock for session {session_id} ({owner}, {info.held_seconds:.2f}s)")

    def is_locked(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def get_lock_info(self, session_id: str) -> Optional[LockInfo]:
        return self._holders.get(session_id)

    def discard(self, session_id: str) -> None:
        """Forget a session's lock once the session is gone.

        A holder that is still inside ``acquire()`` keeps its lock object and
        releases it normally.
        """
        self._locks.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._locks)
