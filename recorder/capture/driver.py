"""Driver facade over a single browser tab.

The supervisory layer never talks to Playwright directly. It borrows a
``BrowserDriver`` for each session and issues every browser command through
it, so that timeouts and error classification are applied in one place and
tests can substitute a scripted fake.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)


# Error fragments that mean the tab or browser is gone for good
UNREACHABLE_MARKERS = (
    "target closed",
    "has been closed",
    "no such window",
    "window already closed",
    "invalid session",
    "chrome not reachable",
    "browser has disconnected",
)


class DriverError(Exception):
    """Base exception for driver facade failures."""
    pass


class ScriptExecutionError(DriverError):
    """A script threw inside the page. Recoverable."""
    pass


class DriverTimeoutError(DriverError):
    """A browser command did not finish within its time bound."""
    pass


class SessionUnreachableError(DriverError):
    """The browser tab or process is gone. Fatal for the session."""
    pass


def is_unreachable_message(message: str) -> bool:
    """Check whether an error message describes a dead browser session."""
    lowered = (message or "").lower()
    return any(marker in lowered for marker in UNREACHABLE_MARKERS)


def classify_error(error: Exception) -> DriverError:
    """Map a raw automation error onto the facade's error taxonomy."""
    if isinstance(error, DriverError):
        return error
    if isinstance(error, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return DriverTimeoutError(str(error) or "browser command timed out")
    if is_unreachable_message(str(error)):
        return SessionUnreachableError(str(error))
    return ScriptExecutionError(str(error))


SignalCallback = Callable[[Any], Awaitable[None]]


class BrowserDriver(ABC):
    """Capabilities the recorder core consumes from one browser tab."""

    browser_kind: str = "chromium"

    @abstractmethod
    async def navigate(self, url: str) -> bool:
        """Navigate the tab.

        Returns:
            True if the navigation committed, False otherwise

        Raises:
            SessionUnreachableError: If the tab is gone
        """
        pass

    @abstractmethod
    async def run_script(self, script: str, arg: Any = None) -> Any:
        """Evaluate a script in the page and return its JSON-able result.

        Raises:
            ScriptExecutionError: If the script threw
            DriverTimeoutError: If the call exceeded its time bound
            SessionUnreachableError: If the tab is gone
        """
        pass

    @abstractmethod
    async def run_script_async(self, script: str, arg: Any = None) -> Any:
        """Evaluate a promise-returning script and return the settled value."""
        pass

    @abstractmethod
    async def current_url(self) -> str:
        pass

    @abstractmethod
    async def current_title(self) -> str:
        pass

    @abstractmethod
    async def is_reachable(self) -> bool:
        """Cheap liveness check that never raises."""
        pass

    @abstractmethod
    async def screenshot(self) -> bytes:
        pass

    async def enable_csp_bypass(self) -> bool:
        """Ask the browser protocol to ignore page CSP. False if unsupported."""
        return False

    async def expose_callback(self, name: str, callback: SignalCallback) -> bool:
        """Expose a host callback to page script as ``window[name]``.

        Returns:
            True if the callback is reachable from page script
        """
        return False


class PlaywrightDriver(BrowserDriver):
    """Driver facade backed by a Playwright ``Page``."""

    def __init__(
        self,
        page: Page,
        browser_kind: str = "chromium",
        command_timeout_seconds: float = 10.0,
        navigation_timeout_seconds: float = 30.0,
    ):
        """Initialize the driver.

        Args:
            page: Playwright page to drive. Borrowed, never closed here.
            browser_kind: Engine name of the owning browser
            command_timeout_seconds: Bound for script and property calls
            navigation_timeout_seconds: Bound for navigations
        """
        self.page = page
        self.browser_kind = browser_kind
        self.command_timeout_seconds = command_timeout_seconds
        self.navigation_timeout_seconds = navigation_timeout_seconds
        self._csp_bypass_enabled = False
        self._exposed: set = set()

    async def _bounded(self, awaitable: Awaitable[Any], operation: str, timeout: Optional[float] = None) -> Any:
        """Await a browser call under a time bound and classify its failure."""
        if self.page.is_closed():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise SessionUnreachableError(f"{operation}: page has been closed")

        try:
            return await asyncio.wait_for(awaitable, timeout=timeout or self.command_timeout_seconds)
        except asyncio.TimeoutError:
            raise DriverTimeoutError(f"{operation} timed out after {timeout or self.command_timeout_seconds}s")
        except (PlaywrightTimeoutError, PlaywrightError) as e:
            raise classify_error(e) from e

    async def navigate(self, url: str) -> bool:
        try:
            await self._bounded(
                self.page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=self.navigation_timeout_seconds * 1000,
                ),
                "navigate",
                timeout=self.navigation_timeout_seconds + 1,
            )
            return True
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.warning(f"Navigation to {url} failed: {e}")
            return False

    async def run_script(self, script: str, arg: Any = None) -> Any:
        return await self._bounded(self.page.evaluate(script, arg), "run_script")

    async def run_script_async(self, script: str, arg: Any = None) -> Any:
        # evaluate() already awaits returned promises
        return await self._bounded(
            self.page.evaluate(script, arg),
            "run_script_async",
            timeout=self.command_timeout_seconds * 2,
        )

    async def current_url(self) -> str:
        if self.page.is_closed():
            raise SessionUnreachableError("current_url: page has been closed")
        return self.page.url

    async def current_title(self) -> str:
        return await self._bounded(self.page.title(), "current_title")

    async def is_reachable(self) -> bool:
        if self.page.is_closed():
            return False
        try:
            await self._bounded(self.page.evaluate("1"), "is_reachable")
            return True
        except SessionUnreachableError:
            return False
        except DriverError as e:
            # A busy page is still a live page
            logger.debug(f"Reachability probe inconclusive: {e}")
            return True

    async def screenshot(self) -> bytes:
        return await self._bounded(self.page.screenshot(full_page=False), "screenshot")

    async def enable_csp_bypass(self) -> bool:
        if self._csp_bypass_enabled:
            return True
        if self.browser_kind != "chromium":
            return False

        try:
            cdp = await self._bounded(self.page.context.new_cdp_session(self.page), "new_cdp_session")
            await self._bounded(cdp.send("Page.setBypassCSP", {"enabled": True}), "setBypassCSP")
            self._csp_bypass_enabled = True
            logger.debug("Enabled CSP bypass through CDP")
            return True
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.debug(f"CSP bypass unavailable: {e}")
            return False

    async def expose_callback(self, name: str, callback: SignalCallback) -> bool:
        if name in self._exposed:
            return True

        async def binding(source, payload):
            await callback(payload)

        try:
            await self._bounded(self.page.expose_binding(name, binding), "expose_binding")
            self._exposed.add(name)
            return True
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.warning(f"Could not expose callback {name}: {e}")
            return False

    def __repr__(self) -> str:
        return f"PlaywrightDriver(browser={self.browser_kind}, url={self.page.url!r})"
