"""Cloud grid browser tables and capability builders."""

from __future__ import annotations

import json
from importlib.metadata import PackageNotFoundError, version
from urllib.parse import quote

from pydantic import BaseModel

from vrt.errors import UnknownBrowserError

BROWSERSTACK_CDP_URL = "wss://cdp.browserstack.com/playwright"
LAMBDATEST_CDP_URL = "wss://cdp.lambdatest.com/playwright"


class GridBrowser(BaseModel):
    name: str
    browser: str
    os: str = ""
    os_version: str = ""
    browser_version: str = "latest"


BROWSERSTACK_BROWSERS: dict[str, GridBrowser] = {
    "chromium": GridBrowser(name="Chromium - Visual Regression", browser="playwright-chromium", os="Windows", os_version="10"),
    "chrome": GridBrowser(name="Chrome - Visual Regression", browser="chrome", os="Windows", os_version="10"),
    "firefox": GridBrowser(name="Firefox - Visual Regression", browser="playwright-firefox", os="Windows", os_version="10"),
    "webkit": GridBrowser(name="WebKit - Visual Regression", browser="playwright-webkit", os="OS X", os_version="Ventura"),
    "edge": GridBrowser(name="Edge - Visual Regression", browser="edge", os="Windows", os_version="10"),
}

LAMBDATEST_BROWSERS: dict[str, GridBrowser] = {
    "chromium": GridBrowser(name="Chromium - Visual Regression", browser="Chrome", os="Windows 10"),
    "chrome": GridBrowser(name="Chrome - Visual Regression", browser="Chrome", os="Windows 10"),
    "firefox": GridBrowser(name="Firefox - Visual Regression", browser="pw-firefox", os="Windows 10"),
    "webkit": GridBrowser(name="WebKit - Visual Regression", browser="pw-webkit", os="MacOS Ventura"),
    "edge": GridBrowser(name="Edge - Visual Regression", browser="MicrosoftEdge", os="Windows 10"),
}

GRIDS = {
    "browserstack": BROWSERSTACK_BROWSERS,
    "lambdatest": LAMBDATEST_BROWSERS,
}


def available_browsers(grid: str) -> list[str]:
    return list(GRIDS[grid])


def get_browser(grid: str, name: str) -> GridBrowser:
    browsers = GRIDS[grid]
    if name not in browsers:
        raise UnknownBrowserError(name, list(browsers))
    return browsers[name]


def playwright_version() -> str:
    try:
        return version("playwright")
    except PackageNotFoundError:
        return "latest"


def browserstack_caps(
    browser_name: str,
    username: str,
    access_key: str,
    local_identifier: str | None = None,
    build: str = "vrt-visual-regression",
) -> dict[str, str]:
    """Capabilities for BrowserStack's Playwright CDP endpoint.

    When ``local_identifier`` is set the session routes through the
    BrowserStack Local tunnel started with the same identifier.
    """
    browser = get_browser("browserstack", browser_name)
    caps = {
        "browser": browser.browser,
        "browser_version": browser.browser_version,
        "os": browser.os,
        "os_version": browser.os_version,
        "name": browser.name,
        "build": build,
        "browserstack.username": username,
        "browserstack.accessKey": access_key,
        "client.playwrightVersion": playwright_version(),
    }
    if local_identifier:
        caps["browserstack.local"] = "true"
        caps["browserstack.localIdentifier"] = local_identifier
    return caps


def lambdatest_caps(
    browser_name: str,
    username: str,
    access_key: str,
    build: str = "vrt-visual-regression",
) -> dict:
    browser = get_browser("lambdatest", browser_name)
    options: dict = {
        "platform": browser.os,
        "build": build,
        "name": browser.name,
        "user": username,
        "accessKey": access_key,
        "playwrightClientVersion": playwright_version(),
    }
    return {
        "browserName": browser.browser,
        "browserVersion": browser.browser_version,
        "LT:Options": options,
    }


def cdp_endpoint(base_url: str, caps: dict, param: str = "caps") -> str:
    return f"{base_url}?{param}={quote(json.dumps(caps))}"
