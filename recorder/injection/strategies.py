"""Injection strategy chain for installing the recorder payload.

Strategies are tried in a fixed order until one both runs without a driver
error and passes the presence probe. Oversized payloads go through the
chunked strategy first, since a single very large script is the call most
likely to hit driver or policy limits.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

from ..capture.driver import BrowserDriver, DriverError, SessionUnreachableError
from ..models import InjectionAttempt, InjectionOutcome, InjectionResult
from ..payload import markers
from .verification import PresenceProbe, probe

logger = logging.getLogger(__name__)


DEFAULT_CHUNK_THRESHOLD = 10000
DEFAULT_CHUNK_SIZE = 2000


SCRIPT_ELEMENT_INJECTOR = """
(args) => {
  var previous = document.getElementById(args.scriptId);
  if (previous && previous.parentNode) { previous.parentNode.removeChild(previous); }
  var script = document.createElement('script');
  script.id = args.scriptId;
  script.type = 'text/javascript';
  script.text = args.source;
  var parent = document.head || document.documentElement;
  parent.appendChild(script);
  return parent === document.head ? 'head' : 'documentElement';
}
"""

DEFERRED_INJECTOR = """
(args) => new Promise((resolve, reject) => {
  setTimeout(() => {
    try {
      (new Function('return ' + args.source))();
    } catch (err) {
      reject(err);
      return;
    }
    setTimeout(() => resolve(true), args.settleMs);
  }, 0);
})
"""

CHUNK_BEGIN = """
(key) => {
  window.__rsChunks = window.__rsChunks || {};
  window.__rsChunks[key] = [];
  return true;
}
"""

CHUNK_APPEND = """
(args) => {
  var buffer = window.__rsChunks && window.__rsChunks[args.key];
  if (!buffer) { throw new Error('chunk buffer missing: ' + args.key); }
  buffer.push(args.chunk);
  return buffer.length;
}
"""

CHUNK_INVOKE = """
(key) => {
  var buffer = window.__rsChunks && window.__rsChunks[key];
  if (!buffer) { throw new Error('chunk buffer missing: ' + key); }
  delete window.__rsChunks[key];
  var setup = new Function(buffer.join(''));
  return setup();
}
"""

CHUNK_DISCARD = """
(key) => {
  if (window.__rsChunks) { delete window.__rsChunks[key]; }
  return true;
}
"""


class InjectionStrategy(ABC):
    """One technique for getting the payload to run in the page."""

    name: str = "strategy"

    @abstractmethod
    async def execute(self, driver: BrowserDriver, payload: str) -> None:
        """Run the payload.

        Raises:
            DriverError: If the driver reports a failure
        """
        pass


class DirectStrategy(InjectionStrategy):
    """Evaluate the payload directly."""

    name = "direct"

    async def execute(self, driver: BrowserDriver, payload: str) -> None:
        await driver.run_script(payload)


class ScriptElementStrategy(InjectionStrategy):
    """Append a ``<script>`` element carrying the payload as text."""

    name = "script_element"

    async def execute(self, driver: BrowserDriver, payload: str) -> None:
        parent = await driver.run_script(
            SCRIPT_ELEMENT_INJECTOR,
            {'source': payload, 'scriptId': markers.SCRIPT_ELEMENT_ID},
        )
        logger.debug(f"Payload script element attached to {parent}")


class DeferredTimerStrategy(InjectionStrategy):
    """Run the payload from a zero-delay timer and wait for it to settle."""

    name = "deferred_timer"

    def __init__(self, settle_ms: int = 100):
        self.settle_ms = settle_ms

    async def execute(self, driver: BrowserDriver, payload: str) -> None:
        await driver.run_script_async(
            DEFERRED_INJECTOR,
            {'source': payload, 'settleMs': self.settle_ms},
        )


class ChunkedStrategy(InjectionStrategy):
    """Ship the payload as a function body in small pieces and invoke it."""

    name = "chunked"

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def split(self, payload: str) -> List[str]:
        """Turn the payload expression into setup-function body chunks."""
        body = f"return {payload.strip().rstrip(';')};"
        return [body[i:i + self.chunk_size] for i in range(0, len(body), self.chunk_size)]

    async def execute(self, driver: BrowserDriver, payload: str) -> None:
        key = uuid4().hex[:12]
        chunks = self.split(payload)

        await driver.run_script(CHUNK_BEGIN, key)
        try:
            for chunk in chunks:
                await driver.run_script(CHUNK_APPEND, {'key': key, 'chunk': chunk})
            await driver.run_script(CHUNK_INVOKE, key)
        except SessionUnreachableError:
            raise
        except DriverError:
            try:
                await driver.run_script(CHUNK_DISCARD, key)
            except DriverError as e:
                logger.debug(f"Could not discard chunk buffer {key}: {e}")
            raise

        logger.debug(f"Assembled payload from {len(chunks)} chunks")


def default_strategies() -> List[InjectionStrategy]:
    return [DirectStrategy(), ScriptElementStrategy(), DeferredTimerStrategy()]


class InjectionStrategyChain:
    """Installs a payload by trying strategies until one verifiably works."""

    def __init__(
        self,
        strategies: Optional[Sequence[InjectionStrategy]] = None,
        chunked: Optional[ChunkedStrategy] = None,
        chunk_threshold: int = DEFAULT_CHUNK_THRESHOLD,
        verify_delay_seconds: float = 0.0,
    ):
        """Initialize the chain.

        Args:
            strategies: Ordered strategies for normal-sized payloads
            chunked: Strategy used first for payloads above the threshold
            chunk_threshold: Payload length above which chunking is used
            verify_delay_seconds: Pause between running a strategy and probing
        """
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.chunked = chunked or ChunkedStrategy()
        self.chunk_threshold = chunk_threshold
        self.verify_delay_seconds = verify_delay_seconds

    def plan(self, payload: str) -> List[InjectionStrategy]:
        """Strategies to try for a payload, in order."""
        if len(payload) > self.chunk_threshold:
            # Direct single-shot evaluation is what chunking replaces
            return [self.chunked] + [s for s in self.strategies if not isinstance(s, DirectStrategy)]
        return list(self.strategies)

    async def probe(self, driver: BrowserDriver) -> PresenceProbe:
        return await probe(driver)

    async def inject(self, driver: BrowserDriver, payload: str, label: str = "page") -> InjectionResult:
        """Install the payload unless it is already present.

        Args:
            driver: Driver of the target tab
            payload: Payload script source
            label: Name used in log messages, usually the session id

        Returns:
            Injection result with every attempt made

        Raises:
            SessionUnreachableError: If the tab is gone
        """
        try:
            presence = await probe(driver)
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.debug(f"[{label}] Pre-install probe failed: {e}")
            presence = PresenceProbe()

        if presence.installed:
            logger.info(f"[{label}] Recorder already installed, skipping injection")
            return InjectionResult(
                success=True,
                already_installed=True,
                installed=presence.installed,
                ui_present=presence.ui_present,
                attempts=[InjectionAttempt(
                    strategy_name="probe",
                    payload_size=len(payload),
                    outcome=InjectionOutcome.ALREADY_INSTALLED,
                )],
            )

        attempts: List[InjectionAttempt] = []
        last_presence = presence

        for strategy in self.plan(payload):
            attempt, last_presence = await self._attempt(driver, strategy, payload, label)
            attempts.append(attempt)

            if attempt.succeeded:
                return InjectionResult(
                    success=True,
                    strategy=strategy.name,
                    installed=last_presence.installed,
                    ui_present=last_presence.ui_present,
                    attempts=attempts,
                )

        logger.error(
            f"[{label}] All injection strategies failed "
            f"({', '.join(a.strategy_name + '=' + a.outcome.value for a in attempts)})"
        )
        return InjectionResult(
            success=False,
            installed=last_presence.installed,
            ui_present=last_presence.ui_present,
            attempts=attempts,
        )

    async def _attempt(
        self,
        driver: BrowserDriver,
        strategy: InjectionStrategy,
        payload: str,
        label: str,
    ) -> Tuple[InjectionAttempt, PresenceProbe]:
        """Run one strategy and verify it."""
        start = time.monotonic()

        def finish(outcome: InjectionOutcome, error: Optional[str] = None) -> InjectionAttempt:
            return InjectionAttempt(
                strategy_name=strategy.name,
                payload_size=len(payload),
                outcome=outcome,
                error=error,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )

        try:
            await strategy.execute(driver, payload)
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.warning(f"[{label}] Injection strategy '{strategy.name}' failed: {e}")
            return finish(InjectionOutcome.ERROR, str(e)), PresenceProbe()

        if self.verify_delay_seconds:
            await asyncio.sleep(self.verify_delay_seconds)

        try:
            presence = await probe(driver)
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.warning(f"[{label}] Verification after '{strategy.name}' failed: {e}")
            return finish(InjectionOutcome.VERIFY_FAILED, str(e)), PresenceProbe()

        if presence.complete:
            logger.info(f"[{label}] Recorder fully installed via '{strategy.name}'")
            return finish(InjectionOutcome.SUCCESS), presence
        if presence.present:
            logger.info(
                f"[{label}] Recorder installed via '{strategy.name}' "
                f"(flag={presence.installed}, ui={presence.ui_present})"
            )
            return finish(InjectionOutcome.PARTIAL), presence

        logger.warning(f"[{label}] Strategy '{strategy.name}' ran but verification found no markers")
        return finish(InjectionOutcome.VERIFY_FAILED), presence
