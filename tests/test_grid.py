"""Tests for grid capabilities and the multi-browser runner."""

import json
import subprocess
from unittest.mock import Mock, patch
from urllib.parse import unquote

import pytest

from vrt.errors import ConfigurationError, UnknownBrowserError
from vrt.grid.capabilities import (
    BROWSERSTACK_CDP_URL,
    available_browsers,
    browserstack_caps,
    cdp_endpoint,
    get_browser,
    lambdatest_caps,
)
from vrt.grid.runner import browsers_to_test, run_grid_suite, suite_command
from vrt.grid.session import launch_browser
from vrt.models.config import GridSettings, HarnessConfig


class TestCapabilities:
    def test_available_browsers(self):
        assert available_browsers("browserstack") == ["chromium", "chrome", "firefox", "webkit", "edge"]
        assert set(available_browsers("lambdatest")) == set(available_browsers("browserstack"))

    def test_unknown_browser(self):
        with pytest.raises(UnknownBrowserError, match="Available: chromium"):
            get_browser("browserstack", "netscape")

    @patch("vrt.grid.capabilities.playwright_version", return_value="1.44.0")
    def test_browserstack_caps_without_tunnel(self, _version):
        caps = browserstack_caps("firefox", "user", "key")
        assert caps["browser"] == "playwright-firefox"
        assert caps["browserstack.username"] == "user"
        assert caps["client.playwrightVersion"] == "1.44.0"
        assert "browserstack.local" not in caps

    def test_browserstack_caps_with_tunnel(self):
        caps = browserstack_caps("chrome", "user", "key", local_identifier="react-app-tunnel")
        assert caps["browserstack.local"] == "true"
        assert caps["browserstack.localIdentifier"] == "react-app-tunnel"

    def test_lambdatest_caps(self):
        caps = lambdatest_caps("webkit", "user", "key")
        assert caps["browserName"] == "pw-webkit"
        assert caps["LT:Options"]["user"] == "user"
        assert "tunnel" not in caps["LT:Options"]

    def test_cdp_endpoint_round_trips_caps(self):
        caps = {"browser": "chrome", "name": "a b"}
        url = cdp_endpoint(BROWSERSTACK_CDP_URL, caps)
        base, query = url.split("?caps=")
        assert base == BROWSERSTACK_CDP_URL
        assert json.loads(unquote(query)) == caps


class TestLaunchBrowser:
    @pytest.mark.asyncio
    async def test_lambdatest_with_local_tunnel_rejected(self):
        config = HarnessConfig(grid=GridSettings(use_lambdatest=True, use_local_tunnel=True))
        playwright = Mock()

        with pytest.raises(ConfigurationError, match="USE_LOCAL_TUNNEL"):
            await launch_browser(playwright, config)
        playwright.chromium.connect.assert_not_called()


class TestSuiteCommand:
    def test_percy_wrapped_in_percy_exec(self):
        assert suite_command("selenium", "percy") == [
            "npx", "percy", "exec", "--", "pytest", "e2e/test_selenium_visual.py",
        ]

    def test_smartui_runs_pytest_directly(self):
        assert suite_command("playwright", "smartui") == ["pytest", "e2e/test_playwright_visual.py"]


class TestBrowsersToTest:
    def test_default_per_framework(self):
        assert browsers_to_test("selenium", "percy", False, {}) == ["chrome"]
        assert browsers_to_test("playwright", "smartui", False, {}) == ["chromium"]

    def test_grid_browser_env(self):
        assert browsers_to_test("playwright", "percy", False, {"GRID_BROWSER": "webkit"}) == ["webkit"]

    def test_all_browsers(self):
        assert browsers_to_test("playwright", "smartui", True, {}) == available_browsers("lambdatest")


class TestRunGridSuite:
    def test_sets_service_flags_per_browser(self):
        runner = Mock()
        results = run_grid_suite("playwright", "percy", all_browsers=True, env={}, runner=runner)

        assert [r.browser for r in results] == available_browsers("browserstack")
        assert all(r.success for r in results)
        env = runner.call_args_list[2].kwargs["env"]
        assert env["USE_BROWSERSTACK_GRID"] == "true"
        assert env["USE_PERCY"] == "true"
        assert env["GRID_BROWSER"] == "firefox"

    def test_failing_browser_does_not_stop_the_rest(self):
        def runner(command, env, cwd, check):
            if env["GRID_BROWSER"] == "chrome":
                raise subprocess.CalledProcessError(1, command)

        results = run_grid_suite("selenium", "smartui", all_browsers=True, env={}, runner=runner)

        by_browser = {r.browser: r for r in results}
        assert not by_browser["chrome"].success
        assert by_browser["chrome"].error
        assert by_browser["edge"].success
        assert len(results) == 5
