"""Browser sessions: local Playwright/Selenium, or remote Playwright on a cloud grid."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import Browser, BrowserType, Page, Playwright, async_playwright
from selenium import webdriver
from selenium.webdriver.chrome.options import Options as ChromeOptions

from vrt.models.config import HarnessConfig
from vrt.tunnel.manager import TunnelManager, tunnel_session

from .capabilities import (
    BROWSERSTACK_CDP_URL,
    LAMBDATEST_CDP_URL,
    browserstack_caps,
    cdp_endpoint,
    lambdatest_caps,
)

logger = logging.getLogger(__name__)

MOBILE_DEVICE = "iPhone 6"
LOCAL_ENGINES = {"chromium": "chromium", "chrome": "chromium", "edge": "chromium", "firefox": "firefox", "webkit": "webkit"}


def _engine(playwright: Playwright, browser_name: str | None) -> BrowserType:
    return getattr(playwright, LOCAL_ENGINES.get(browser_name or "chromium", "chromium"))


async def launch_browser(playwright: Playwright, config: HarnessConfig, headless: bool = True) -> Browser:
    """Connect to the configured grid, or launch a local browser."""
    config.grid.check_tunnel()
    browser_name = config.grid.browser or "chromium"
    # Remote browsers always speak CDP through a Chromium client.
    if config.grid.use_browserstack:
        username, access_key = config.require_browserstack_credentials()
        identifier = config.browserstack.local_identifier if config.grid.use_local_tunnel else None
        caps = browserstack_caps(browser_name, username, access_key, local_identifier=identifier)
        logger.info("Connecting to BrowserStack (%s, tunnel=%s)", browser_name, identifier or "off")
        return await playwright.chromium.connect(cdp_endpoint(BROWSERSTACK_CDP_URL, caps))

    if config.grid.use_lambdatest:
        username, access_key = config.require_lambdatest_credentials()
        caps = lambdatest_caps(browser_name, username, access_key)
        logger.info("Connecting to LambdaTest (%s)", browser_name)
        return await playwright.chromium.connect(cdp_endpoint(LAMBDATEST_CDP_URL, caps, "capabilities"))

    logger.debug("Launching local %s", browser_name)
    return await _engine(playwright, browser_name).launch(headless=headless)


async def open_page(playwright: Playwright, browser: Browser, config: HarnessConfig, mobile: bool = False) -> Page:
    """Open the page under test and wait for the app root to render."""
    context_kwargs = dict(playwright.devices[MOBILE_DEVICE]) if mobile else {}
    context = await browser.new_context(**context_kwargs)
    page = await context.new_page()
    await page.goto(config.base_url)
    await page.wait_for_load_state("networkidle")
    await page.wait_for_selector("#root", state="visible")
    return page


async def mark_session_status(page: Page, status: str, reason: str) -> None:
    """Report pass/fail to the BrowserStack dashboard."""
    payload = {"action": "setSessionStatus", "arguments": {"status": status, "reason": reason}}
    await page.evaluate("_ => {}", f"browserstack_executor: {json.dumps(payload)}")


def create_driver(mobile: bool = False) -> webdriver.Chrome:
    """Headless local Chrome WebDriver, optionally emulating a phone."""
    options = ChromeOptions()
    for arg in ("--headless=new", "--disable-gpu", "--no-sandbox", "--disable-dev-shm-usage"):
        options.add_argument(arg)
    if mobile:
        options.add_argument("--window-size=375,667")
        options.add_experimental_option("mobileEmulation", {
            "deviceMetrics": {"width": 375, "height": 667, "pixelRatio": 2},
        })
    else:
        options.add_argument("--window-size=1280,1024")
    return webdriver.Chrome(options=options)


async def check_connectivity(playwright: Playwright, config: HarnessConfig, manager: TunnelManager) -> None:
    """Start the tunnel and load the local page from a BrowserStack browser through it."""
    username, access_key = config.require_browserstack_credentials()
    async with tunnel_session(manager) as handle:
        logger.info("Tunnel running: %s", handle.running)
        caps = browserstack_caps(
            config.grid.browser or "edge", username, access_key,
            local_identifier=handle.identifier, build="playwright-tunnel-test",
        )
        browser = await playwright.chromium.connect(cdp_endpoint(BROWSERSTACK_CDP_URL, caps))
        page = None
        try:
            page = await browser.new_page()
            await page.goto(config.base_url)
            await page.wait_for_function('document.querySelector("body")')
            await mark_session_status(page, "passed", "Local tunnel is up and running")
        except Exception:
            if page is not None:
                await mark_session_status(page, "failed", "BrowserStack Local tunnel test failed")
            raise
        finally:
            await browser.close()


@asynccontextmanager
async def page_session(config: HarnessConfig, mobile: bool = False) -> AsyncIterator[Page]:
    """Launch (or connect to) a browser, open the page under test, and clean up."""
    async with async_playwright() as playwright:
        browser = await launch_browser(playwright, config)
        try:
            yield await open_page(playwright, browser, config, mobile=mobile)
        finally:
            await browser.close()
