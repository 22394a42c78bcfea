"""Unit tests for the injection strategy chain."""

import pytest

from recorder.capture.driver import SessionUnreachableError
from recorder.injection.strategies import (
    ChunkedStrategy,
    DeferredTimerStrategy,
    DirectStrategy,
    InjectionStrategyChain,
    ScriptElementStrategy,
)
from recorder.models import InjectionOutcome
from recorder.payload.builder import PayloadOptions, build_page_payload
from tests.conftest import FakeDriver


def small_payload(indicator: bool = True) -> str:
    flag = "true" if indicator else "false"
    return "(function () {\n  'use strict';\n  var o = {\"showIndicator\":" + flag + "};\n})()"


@pytest.fixture
def chain():
    return InjectionStrategyChain()


class TestStrategyPlan:
    """Test strategy ordering."""

    def test_small_payload_order(self, chain):
        names = [s.name for s in chain.plan(small_payload())]
        assert names == ["direct", "script_element", "deferred_timer"]

    def test_oversized_payload_chunked_first(self, chain):
        names = [s.name for s in chain.plan("x" * 10001)]
        assert names == ["chunked", "script_element", "deferred_timer"]

    def test_threshold_is_exclusive(self, chain):
        assert chain.plan("x" * 10000)[0].name == "direct"

    def test_chunk_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ChunkedStrategy(chunk_size=0)


class TestChunkedStrategy:
    """Test chunk splitting and reassembly."""

    def test_split_covers_body(self):
        strategy = ChunkedStrategy(chunk_size=7)
        payload = small_payload()

        chunks = strategy.split(payload + ";")

        assert all(len(c) <= 7 for c in chunks)
        assert "".join(chunks) == f"return {payload};"

    @pytest.mark.asyncio
    async def test_reassembles_full_payload(self):
        driver = FakeDriver()
        payload = build_page_payload(PayloadOptions(session_id="s1"))
        chain = InjectionStrategyChain(chunked=ChunkedStrategy(chunk_size=1500))

        result = await chain.inject(driver, payload)

        assert result.success is True
        assert result.strategy == "chunked"
        assert driver.assembled == [f"return {payload};"]
        assert driver.installs == 1
        assert driver.chunks == {}

    @pytest.mark.asyncio
    async def test_failed_chunking_falls_back(self):
        driver = FakeDriver()
        driver.failing.add("chunked")
        payload = build_page_payload(PayloadOptions(session_id="s1"))

        result = await InjectionStrategyChain().inject(driver, payload)

        assert result.success is True
        assert result.strategy == "script_element"
        assert result.attempts[0].strategy_name == "chunked"
        assert result.attempts[0].outcome == InjectionOutcome.ERROR
        assert "direct" not in driver.executed


class TestInjectionChain:
    """Test installation, fallback and idempotence."""

    @pytest.mark.asyncio
    async def test_direct_success(self, chain):
        driver = FakeDriver()

        result = await chain.inject(driver, small_payload())

        assert result.success is True
        assert result.strategy == "direct"
        assert result.installed is True
        assert result.ui_present is True
        assert result.attempts[0].outcome == InjectionOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_already_installed_skips(self, chain):
        driver = FakeDriver()
        await chain.inject(driver, small_payload())

        result = await chain.inject(driver, small_payload())

        assert result.success is True
        assert result.already_installed is True
        assert result.attempts[0].outcome == InjectionOutcome.ALREADY_INSTALLED
        assert driver.installs == 1
        assert driver.payload_runs == 1

    @pytest.mark.asyncio
    async def test_falls_back_in_order(self, chain):
        driver = FakeDriver()
        driver.failing.add("direct")
        driver.ineffective.add("script_element")

        result = await chain.inject(driver, small_payload())

        assert result.success is True
        assert result.strategy == "deferred_timer"
        assert [a.outcome for a in result.attempts] == [
            InjectionOutcome.ERROR,
            InjectionOutcome.VERIFY_FAILED,
            InjectionOutcome.SUCCESS,
        ]
        assert result.attempts[0].error == "direct blocked by page"

    @pytest.mark.asyncio
    async def test_partial_install_counts_as_success(self, chain):
        driver = FakeDriver()

        result = await chain.inject(driver, small_payload(indicator=False))

        assert result.success is True
        assert result.attempts[0].outcome == InjectionOutcome.PARTIAL
        assert result.ui_present is False

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, chain):
        driver = FakeDriver()
        driver.failing.update({"direct", "script_element", "deferred_timer"})

        result = await chain.inject(driver, small_payload())

        assert result.success is False
        assert len(result.attempts) == 3
        assert result.last_error == "deferred_timer blocked by page"
        assert result.installed is False

    @pytest.mark.asyncio
    async def test_unreachable_propagates(self, chain):
        driver = FakeDriver()
        driver.unreachable = True

        with pytest.raises(SessionUnreachableError):
            await chain.inject(driver, small_payload())

    @pytest.mark.asyncio
    async def test_unreachable_mid_chain_propagates(self, chain):
        driver = FakeDriver()
        driver.failing.add("direct")

        def die(script, arg):
            if driver.executed and driver.executed[-1] == "direct":
                driver.unreachable = True

        driver.on_script = die

        with pytest.raises(SessionUnreachableError):
            await chain.inject(driver, small_payload())

    @pytest.mark.asyncio
    async def test_custom_strategy_list(self):
        chain = InjectionStrategyChain(strategies=[ScriptElementStrategy(), DeferredTimerStrategy(settle_ms=0)])
        driver = FakeDriver()

        result = await chain.inject(driver, small_payload())

        assert result.strategy == "script_element"
        assert "direct" not in driver.executed

    @pytest.mark.asyncio
    async def test_direct_strategy_runs_payload(self):
        driver = FakeDriver()

        await DirectStrategy().execute(driver, small_payload())

        assert driver.flag is True
