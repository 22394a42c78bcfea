"""Browser factory for launching recording browsers and opening tabs.

This module provides the BrowserFactory class that handles the Playwright
lifecycle for recordings. Each recording gets its own browser context and
tab, created with CSP bypass enabled so the recorder payload and its event
delivery are not blocked by header-delivered policies.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from .driver import PlaywrightDriver

logger = logging.getLogger(__name__)


class BrowserEngineType:
    """Supported browser engine types."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class BrowserConfig:
    """Configuration for browser launch and recording context setup."""

    def __init__(
        self,
        engine: str = BrowserEngineType.CHROMIUM,
        headless: bool = False,
        slow_mo: int = 0,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: Optional[str] = None,
        ignore_https_errors: bool = True,
        bypass_csp: bool = True,
        locale: Optional[str] = None,
        command_timeout_seconds: float = 10.0,
        navigation_timeout_seconds: float = 30.0,
        **kwargs
    ):
        """Initialize browser configuration.

        Args:
            engine: Browser engine to use (chromium, firefox, webkit)
            headless: Run browser in headless mode
            slow_mo: Slow down operations by specified milliseconds
            viewport: Viewport size dict with 'width' and 'height'
            user_agent: Custom User-Agent string
            ignore_https_errors: Ignore SSL/TLS certificate errors
            bypass_csp: Ask the context to ignore page Content-Security-Policy
            locale: Locale for the browser context
            command_timeout_seconds: Time bound for driver script calls
            navigation_timeout_seconds: Time bound for driver navigations
        """
        self.engine = engine
        self.headless = headless
        self.slow_mo = slow_mo
        self.viewport = viewport or {'width': 1366, 'height': 768}
        self.user_agent = user_agent
        self.ignore_https_errors = ignore_https_errors
        self.bypass_csp = bypass_csp
        self.locale = locale
        self.command_timeout_seconds = command_timeout_seconds
        self.navigation_timeout_seconds = navigation_timeout_seconds
        self.extra_options = kwargs

    def to_browser_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        options = {
            'headless': self.headless,
            'slow_mo': self.slow_mo,
        }
        options.update(self.extra_options)
        return options

    def to_context_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser context options."""
        options: Dict[str, Any] = {'viewport': self.viewport}

        if self.user_agent:
            options['user_agent'] = self.user_agent

        if self.ignore_https_errors:
            options['ignore_https_errors'] = True

        if self.bypass_csp:
            options['bypass_csp'] = True

        if self.locale:
            options['locale'] = self.locale

        return options


@dataclass
class BrowserTab:
    """A recording tab: its private context, page and driver facade."""
    context: BrowserContext
    page: Page
    driver: PlaywrightDriver


class BrowserFactory:
    """Factory for launching a browser and opening recording tabs."""

    def __init__(self, config: BrowserConfig):
        """Initialize browser factory with configuration.

        Args:
            config: Browser configuration object
        """
        self.config = config
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._tabs: List[BrowserTab] = []

    async def start(self) -> None:
        """Start Playwright and launch browser."""
        if self.playwright is not None:
            logger.warning("Browser factory already started")
            return

        logger.info(f"Starting browser factory with engine: {self.config.engine}")

        try:
            self.playwright = await async_playwright().start()

            if self.config.engine == BrowserEngineType.FIREFOX:
                browser_type = self.playwright.firefox
            elif self.config.engine == BrowserEngineType.WEBKIT:
                browser_type = self.playwright.webkit
            else:
                browser_type = self.playwright.chromium

            self.browser = await browser_type.launch(**self.config.to_browser_options())

            logger.info(f"Browser launched successfully (headless={self.config.headless})")

        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Close every open tab, the browser and Playwright."""
        logger.info("Stopping browser factory")

        try:
            for tab in list(self._tabs):
                await self.close_tab(tab)

            if self.browser:
                await self.browser.close()
                self.browser = None

            if self.playwright:
                await self.playwright.stop()
                self.playwright = None

            logger.info("Browser factory stopped successfully")

        except Exception as e:
            logger.error(f"Error stopping browser factory: {e}")

    async def open_tab(self, **context_overrides) -> BrowserTab:
        """Open a new recording tab in a fresh context.

        Args:
            **context_overrides: Override default context options

        Returns:
            The new tab with its driver facade

        Raises:
            RuntimeError: If browser factory not started
        """
        if not self.browser:
            raise RuntimeError("Browser factory not started. Call start() first.")

        context_options = self.config.to_context_options()
        context_options.update(context_overrides)

        context = await self.browser.new_context(**context_options)
        page = await context.new_page()
        driver = PlaywrightDriver(
            page,
            browser_kind=self.config.engine,
            command_timeout_seconds=self.config.command_timeout_seconds,
            navigation_timeout_seconds=self.config.navigation_timeout_seconds,
        )

        tab = BrowserTab(context=context, page=page, driver=driver)
        self._tabs.append(tab)
        logger.debug(f"Opened recording tab #{len(self._tabs)}")
        return tab

    async def close_tab(self, tab: BrowserTab) -> None:
        """Close a recording tab and its context."""
        if tab in self._tabs:
            self._tabs.remove(tab)
        try:
            await tab.context.close()
        except Exception as e:
            logger.warning(f"Error closing recording context: {e}")

    async def health_check(self) -> bool:
        """Check if the browser is still connected."""
        if not self.browser:
            return False
        return self.browser.is_connected()

    @property
    def is_running(self) -> bool:
        return self.browser is not None and self.browser.is_connected()

    @property
    def tab_count(self) -> int:
        return len(self._tabs)

    def __repr__(self) -> str:
        return (
            f"BrowserFactory(engine={self.config.engine}, "
            f"headless={self.config.headless}, "
            f"running={self.is_running}, "
            f"tabs={self.tab_count})"
        )


def create_browser_factory(
    engine: str = BrowserEngineType.CHROMIUM,
    headless: bool = False,
    **kwargs
) -> BrowserFactory:
    """Create a browser factory with simple configuration.

    Args:
        engine: Browser engine to use
        headless: Run in headless mode
        **kwargs: Additional configuration options

    Returns:
        Configured BrowserFactory instance
    """
    config = BrowserConfig(engine=engine, headless=headless, **kwargs)
    return BrowserFactory(config)
