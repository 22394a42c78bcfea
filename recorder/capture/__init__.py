"""Browser access for the recorder.

Main Components:
- BrowserDriver: Facade over one browser tab (navigate, scripts, URL/title)
- PlaywrightDriver: Facade implementation backed by a Playwright page
- BrowserFactory: Launches the browser and opens recording tabs

Usage:
    factory = create_browser_factory(engine="chromium", headless=False)
    await factory.start()
    tab = await factory.open_tab()
    await tab.driver.navigate("https://example.com")
"""

from .driver import (
    BrowserDriver,
    PlaywrightDriver,
    DriverError,
    ScriptExecutionError,
    DriverTimeoutError,
    SessionUnreachableError,
    classify_error,
    is_unreachable_message,
)
from .browser_factory import (
    BrowserEngineType,
    BrowserConfig,
    BrowserTab,
    BrowserFactory,
    create_browser_factory,
)

__all__ = [
    # Driver facade
    "BrowserDriver",
    "PlaywrightDriver",
    "DriverError",
    "ScriptExecutionError",
    "DriverTimeoutError",
    "SessionUnreachableError",
    "classify_error",
    "is_unreachable_message",

    # Browser lifecycle
    "BrowserEngineType",
    "BrowserConfig",
    "BrowserTab",
    "BrowserFactory",
    "create_browser_factory",
]
