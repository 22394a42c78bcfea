"""Page-to-host signal transport.

The in-page monitor raises signals as CustomEvents and either hands them to
a host binding, when the driver can expose one, or leaves them in a queue on
the page's window. The bridge wires the binding and drains the queue; the
scheduler drains on every tick so queued signals are never lost for longer
than one interval.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from ..capture.driver import BrowserDriver, DriverError, SessionUnreachableError
from ..models import PageSignal
from ..payload import markers

logger = logging.getLogger(__name__)


DRAIN_SCRIPT = """
(key) => {
  var queue = window[key];
  if (!Array.isArray(queue)) { return []; }
  return queue.splice(0, queue.length);
}
"""

SignalHandler = Callable[[str, PageSignal], Awaitable[Any]]


def parse_signal(raw: Any) -> Optional[PageSignal]:
    """Build a PageSignal from the page's JSON shape, or None if malformed."""
    if not isinstance(raw, dict):
        return None
    try:
        return PageSignal.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Dropping malformed page signal {raw!r}: {e}")
        return None


class SignalBridge:
    """Delivers page signals to the supervisor."""

    def __init__(self):
        self._handlers: Dict[str, SignalHandler] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.delivered_count = 0
        self.drained_count = 0

    async def attach(self, driver: BrowserDriver, session_id: str, handler: SignalHandler) -> bool:
        """Expose the host binding for a session's page.

        Returns:
            True if signals will be pushed, False if only polling is available
        """
        self._handlers[session_id] = handler

        async def on_signal(raw: Any) -> None:
            self._dispatch(session_id, raw)

        pushed = await driver.expose_callback(markers.HOST_BINDING, on_signal)
        if pushed:
            logger.debug(f"Signal binding attached for session {session_id}")
        else:
            logger.info(f"Session {session_id} will receive page signals by polling only")
        return pushed

    def detach(self, session_id: str) -> None:
        self._handlers.pop(session_id, None)

    def _dispatch(self, session_id: str, raw: Any) -> None:
        handler = self._handlers.get(session_id)
        signal = parse_signal(raw)
        if handler is None or signal is None:
            return

        # Return to the page promptly; the handler drives the page itself
        task = asyncio.create_task(self._run_handler(handler, session_id, signal))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.delivered_count += 1

    async def _run_handler(self, handler: SignalHandler, session_id: str, signal: PageSignal) -> None:
        try:
            await handler(session_id, signal)
        except Exception as e:
            logger.error(f"Signal handler failed for session {session_id} ({signal.type.value}): {e}", exc_info=True)

    async def drain(self, driver: BrowserDriver) -> List[PageSignal]:
        """Pull queued signals out of the page.

        Raises:
            SessionUnreachableError: If the tab is gone
        """
        try:
            raw = await driver.run_script(DRAIN_SCRIPT, markers.SIGNAL_QUEUE)
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.debug(f"Could not drain page signals: {e}")
            return []

        signals = [s for s in (parse_signal(item) for item in (raw or [])) if s is not None]
        self.drained_count += len(signals)
        return signals

    async def wait_idle(self) -> None:
        """Wait for in-flight handler tasks to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
        self._handlers.clear()
