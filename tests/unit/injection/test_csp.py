"""Unit tests for CSP mitigation."""

import pytest

from recorder.capture.driver import ScriptExecutionError, SessionUnreachableError
from recorder.injection.csp import (
    ANALYZE_SCRIPT,
    PERMISSIVE_POLICY,
    CSPMitigator,
    parse_policy,
    policy_allows_connect,
)
from tests.conftest import FakeDriver


class TestPolicyParsing:
    """Test CSP string parsing and connect checks."""

    def test_parse_policy(self):
        directives = parse_policy("default-src 'self'; connect-src https://api.example.com wss:; ;")

        assert directives == {
            'default-src': ["'self'"],
            'connect-src': ["https://api.example.com", "wss:"],
        }

    def test_first_directive_wins(self):
        directives = parse_policy("script-src 'self'; SCRIPT-SRC *")
        assert directives == {'script-src': ["'self'"]}

    def test_permissive_policy_allows_everything(self):
        assert policy_allows_connect(parse_policy(PERMISSIVE_POLICY), "http://localhost:8000") is True

    def test_no_policy_allows_connect(self):
        assert policy_allows_connect({}, "http://localhost:8000") is True

    def test_connect_src_matching(self):
        directives = parse_policy("connect-src 'self' https://collector.example.com http:")

        assert policy_allows_connect(directives, "https://collector.example.com/api") is True
        assert policy_allows_connect(directives, "http://localhost:8000") is True
        assert policy_allows_connect(directives, "https://other.example.com") is False

    def test_default_src_fallback(self):
        directives = parse_policy("default-src 'self'")
        assert policy_allows_connect(directives, "http://localhost:8000") is False


class TestCSPMitigator:
    """Test the driver-side and page-side tactics."""

    @pytest.mark.asyncio
    async def test_prepare_navigation(self):
        driver = FakeDriver()

        assert await CSPMitigator().prepare_navigation(driver) is True
        assert driver.csp_bypass_requests == 1

    @pytest.mark.asyncio
    async def test_prepare_navigation_unsupported(self):
        driver = FakeDriver(browser_kind="firefox")
        driver.supports_csp_bypass = False

        assert await CSPMitigator().prepare_navigation(driver) is False

    @pytest.mark.asyncio
    async def test_disabled_does_nothing(self):
        driver = FakeDriver()
        mitigator = CSPMitigator(enabled=False)

        assert await mitigator.prepare_navigation(driver) is False
        result = await mitigator.mitigate_page(driver)

        assert result.succeeded is True
        assert driver.csp_bypass_requests == 0
        assert driver.csp_mitigations == 0

    @pytest.mark.asyncio
    async def test_mitigate_page_is_repeatable(self):
        driver = FakeDriver()
        mitigator = CSPMitigator()

        first = await mitigator.mitigate_page(driver)
        second = await mitigator.mitigate_page(driver)

        assert first.observer_installed is True
        assert first.inserted_permissive is True
        assert second.observer_installed is False
        assert driver.csp_mitigations == 2

    @pytest.mark.asyncio
    async def test_mitigation_failure_is_reported_not_raised(self):
        driver = FakeDriver()

        def block(script, arg):
            raise ScriptExecutionError("EvalError: refused")

        driver.on_script = block

        result = await CSPMitigator().mitigate_page(driver)

        assert result.succeeded is False
        assert "refused" in result.error

    @pytest.mark.asyncio
    async def test_unreachable_propagates(self):
        driver = FakeDriver()
        driver.unreachable = True

        with pytest.raises(SessionUnreachableError):
            await CSPMitigator().mitigate_page(driver)

    @pytest.mark.asyncio
    async def test_analyze_restrictive_meta(self):
        driver = FakeDriver()
        original = driver.run_script

        async def run_script(script, arg=None):
            if script is ANALYZE_SCRIPT:
                return {
                    'metaPolicies': [
                        {'content': "connect-src 'self'", 'permissive': False},
                        {'content': PERMISSIVE_POLICY, 'permissive': True},
                    ],
                    'evalAllowed': False,
                    'guardInstalled': True,
                }
            return await original(script, arg)

        driver.run_script = run_script

        analysis = await CSPMitigator().analyze(driver, server_url="http://localhost:8000")

        assert analysis['directives'] == {'connect-src': ["'self'"]}
        assert analysis['connect_allowed'] is False
        assert analysis['eval_allowed'] is False
        assert analysis['guard_installed'] is True

    @pytest.mark.asyncio
    async def test_analyze_clean_page(self):
        analysis = await CSPMitigator().analyze(FakeDriver(), server_url="http://localhost:8000")

        assert analysis['meta_policies'] == []
        assert analysis['connect_allowed'] is True
