"""Fixtures for recorder API tests."""

from typing import List

import pytest
from fastapi.testclient import TestClient

from recorder.api.main import create_app
from recorder.api.services import RecorderService, get_recorder_service
from recorder.capture.browser_factory import BrowserConfig, BrowserTab
from recorder.config import RecorderSettings
from tests.conftest import FakeDriver


class FakeBrowserFactory:
    """Browser factory whose tabs are FakeDrivers."""

    def __init__(self, config: BrowserConfig, drivers: List[FakeDriver]):
        self.config = config
        self.drivers = drivers
        self.started = False
        self.closed_tabs: List[BrowserTab] = []

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    @property
    def is_running(self) -> bool:
        return self.started

    async def open_tab(self) -> BrowserTab:
        driver = FakeDriver(browser_kind=self.config.engine)
        self.drivers.append(driver)
        return BrowserTab(context=None, page=None, driver=driver)

    async def close_tab(self, tab: BrowserTab) -> None:
        self.closed_tabs.append(tab)


@pytest.fixture
def drivers():
    """Every fake tab opened by the service, in order."""
    return []


@pytest.fixture
def factories():
    return []


@pytest.fixture
def settings():
    # Long warmup keeps the health-check loop out of request handling
    return RecorderSettings(
        environment="test",
        supervision={'warmup_seconds': 3600, 'lock_wait_seconds': 1},
        server={'host': 'localhost', 'port': 8000},
    )


@pytest.fixture
def recorder_service(settings, drivers, factories):
    def build(config):
        factory = FakeBrowserFactory(config, drivers)
        factories.append(factory)
        return factory

    return RecorderService(settings=settings, factory_builder=build)


@pytest.fixture
def client(recorder_service, settings):
    """Test client whose requests share one event loop."""
    app = create_app(settings)
    app.dependency_overrides[get_recorder_service] = lambda: recorder_service

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(recorder_service.shutdown)

    app.dependency_overrides.clear()
