"""Unit tests for payload presence probes."""

import pytest

from recorder.injection.verification import PresenceProbe, probe, probe_arguments
from recorder.payload import markers
from tests.conftest import FakeDriver


class TestPresenceProbe:
    """Test interpreting probe results."""

    def test_either_marker_is_present(self):
        assert PresenceProbe(installed=True).present is True
        assert PresenceProbe(ui_present=True).present is True
        assert PresenceProbe().present is False

    def test_complete_needs_both(self):
        assert PresenceProbe(installed=True, ui_present=True).complete is True
        assert PresenceProbe(installed=True).complete is False

    def test_from_page_tolerates_garbage(self):
        assert PresenceProbe.from_page(None) == PresenceProbe()
        assert PresenceProbe.from_page("yes") == PresenceProbe()
        assert PresenceProbe.from_page({'installed': 1, 'uiPresent': 0}) == PresenceProbe(installed=True)

    def test_probe_arguments(self):
        assert probe_arguments() == {
            'activeFlag': markers.ACTIVE_FLAG,
            'indicatorId': markers.INDICATOR_ID,
        }

    @pytest.mark.asyncio
    async def test_probe_reads_page(self):
        driver = FakeDriver()
        assert await probe(driver) == PresenceProbe()

        driver.flag = True
        driver.ui = True
        assert (await probe(driver)).complete is True
