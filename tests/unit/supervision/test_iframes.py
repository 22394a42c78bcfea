"""Unit tests for iframe propagation."""

import pytest

from recorder.capture.driver import ScriptExecutionError, SessionUnreachableError
from recorder.payload import PayloadOptions
from recorder.supervision.iframes import FRAME_INJECT_SCRIPT, IframeOutcome, IframePropagator
from tests.conftest import FakeDriver


@pytest.fixture
def options():
    return PayloadOptions(session_id="s1")


class TestIframePropagator:
    """Test same-origin instrumentation and cross-origin skipping."""

    @pytest.mark.asyncio
    async def test_same_origin_instrumented(self, options):
        driver = FakeDriver()
        driver.add_iframe("iframe#checkout")
        propagator = IframePropagator()

        outcome = await propagator.instrument(driver, "s1", "iframe#checkout", options)

        assert outcome == IframeOutcome.INSTRUMENTED
        assert driver.iframes["iframe#checkout"]['instrumented'] is True
        assert propagator.stats("s1").instrumented == 1

    @pytest.mark.asyncio
    async def test_second_attempt_is_noop(self, options):
        driver = FakeDriver()
        driver.add_iframe("iframe#checkout")
        propagator = IframePropagator()

        await propagator.instrument(driver, "s1", "iframe#checkout", options)
        outcome = await propagator.instrument(driver, "s1", "iframe#checkout", options)

        assert outcome == IframeOutcome.ALREADY_INSTRUMENTED

    @pytest.mark.asyncio
    async def test_cross_origin_is_not_a_failure(self, options):
        driver = FakeDriver()
        driver.add_iframe("iframe#ads", cross_origin=True)
        propagator = IframePropagator()

        outcome = await propagator.instrument(driver, "s1", "iframe#ads", options)

        assert outcome == IframeOutcome.CROSS_ORIGIN
        stats = propagator.stats("s1")
        assert stats.cross_origin == 1
        assert stats.failed == 0

    @pytest.mark.asyncio
    async def test_origin_change_during_injection(self, options):
        driver = FakeDriver()
        driver.add_iframe("iframe#late")

        def navigate_away(script, arg):
            if script is FRAME_INJECT_SCRIPT:
                driver.iframes["iframe#late"]['cross_origin'] = True

        driver.on_script = navigate_away

        outcome = await IframePropagator().instrument(driver, "s1", "iframe#late", options)

        assert outcome == IframeOutcome.CROSS_ORIGIN

    @pytest.mark.asyncio
    async def test_missing_frame(self, options):
        outcome = await IframePropagator().instrument(FakeDriver(), "s1", "iframe#gone", options)
        assert outcome == IframeOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_injection_error_is_failure(self, options):
        driver = FakeDriver()
        driver.add_iframe("iframe#broken")

        def explode(script, arg):
            if script is FRAME_INJECT_SCRIPT:
                raise ScriptExecutionError("TypeError: doc is null")

        driver.on_script = explode
        propagator = IframePropagator()

        outcome = await propagator.instrument(driver, "s1", "iframe#broken", options)

        assert outcome == IframeOutcome.FAILED
        assert propagator.stats("s1").failed == 1

    @pytest.mark.asyncio
    async def test_unreachable_propagates(self, options):
        driver = FakeDriver()
        driver.unreachable = True

        with pytest.raises(SessionUnreachableError):
            await IframePropagator().instrument(driver, "s1", "iframe", options)

    @pytest.mark.asyncio
    async def test_scan_all_frames(self, options):
        driver = FakeDriver()
        driver.add_iframe("iframe#a")
        driver.add_iframe("iframe#b", cross_origin=True)
        propagator = IframePropagator()

        outcomes = await propagator.scan(driver, "s1", options)

        assert outcomes == {
            "iframe#a": IframeOutcome.INSTRUMENTED,
            "iframe#b": IframeOutcome.CROSS_ORIGIN,
        }
        assert propagator.stats("s1").to_dict() == {
            'instrumented': 1,
            'already_instrumented': 0,
            'cross_origin': 1,
            'not_found': 0,
            'failed': 0,
        }

        propagator.forget("s1")
        assert propagator.stats("s1").instrumented == 0
