"""Screenshot capturer: writes actual rasters for Playwright pages and WebDriver sessions."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from playwright.async_api import Page
from selenium.common.exceptions import NoSuchElementException
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webdriver import WebDriver

from vrt.compare.store import ScreenshotStore
from vrt.errors import ElementNotFoundError
from vrt.models.artifact import ArtifactRecord, CaptureTarget, Family, file_name_for

logger = logging.getLogger(__name__)

_FREEZE_ELEMENT_SCRIPT = """
(sel) => {
    const el = document.querySelector(sel);
    if (el) {
        el.style.animation = 'none';
        el.style.transition = 'none';
        el.style.animationPlayState = 'paused';
    }
}
"""

_FREEZE_ELEMENT_WEBDRIVER = """
const el = document.querySelector(arguments[0]);
if (el) {
    el.style.animation = 'none';
    el.style.transition = 'none';
    el.style.animationPlayState = 'paused';
    el.style.transform = 'rotate(0deg)';
}
"""

Capture = tuple[ArtifactRecord, CaptureTarget]


class ScreenshotCapturer:
    """Captures full-page and element screenshots into the store's actual directory."""

    def __init__(self, store: ScreenshotStore):
        self.store = store

    def _actual_path(self, test_name: str) -> Path:
        self.store.ensure_dirs()
        return self.store.actual_path(file_name_for(test_name))

    async def freeze_page_element(self, page: Page, selector: str) -> None:
        await page.evaluate(_FREEZE_ELEMENT_SCRIPT, selector)

    async def freeze_session_element(self, driver: WebDriver, selector: str) -> None:
        await asyncio.to_thread(driver.execute_script, _FREEZE_ELEMENT_WEBDRIVER, selector)

    async def capture_page(self, page: Page, test_name: str, **options: Any) -> Capture:
        """Full-page Playwright screenshot with animations disabled."""
        path = self._actual_path(test_name)
        screenshot_options = {"full_page": True, "animations": "disabled", **options}
        await page.screenshot(path=str(path), **screenshot_options)
        logger.debug("Captured %s -> %s", test_name, path)
        return (
            ArtifactRecord.create(test_name, path),
            CaptureTarget(family=Family.PAGE, handle=page),
        )

    async def capture_element(self, page: Page, selector: str, test_name: str, **options: Any) -> Capture:
        """Screenshot clipped to one element, after freezing its animations."""
        element = await page.query_selector(selector)
        if element is None:
            raise ElementNotFoundError(selector)

        await self.freeze_page_element(page, selector)
        await element.wait_for_element_state("stable")
        box = await element.bounding_box()
        if box is None:
            raise ElementNotFoundError(f"{selector} (not visible)")

        artifact, _ = await self.capture_page(page, test_name, clip=box, full_page=False, **options)
        return (
            ArtifactRecord.create(test_name, artifact.raster_path, scope=selector),
            CaptureTarget(family=Family.PAGE, handle=page, scope=selector),
        )

    async def capture_session(self, driver: WebDriver, test_name: str) -> Capture:
        """Whole-window WebDriver screenshot."""
        path = self._actual_path(test_name)
        png = await asyncio.to_thread(driver.get_screenshot_as_png)
        path.write_bytes(png)
        logger.debug("Captured %s -> %s", test_name, path)
        return (
            ArtifactRecord.create(test_name, path),
            CaptureTarget(family=Family.SESSION, handle=driver),
        )

    async def capture_session_element(self, driver: WebDriver, selector: str, test_name: str) -> Capture:
        """WebDriver element screenshot; the element handle becomes the capture scope."""
        try:
            element = await asyncio.to_thread(driver.find_element, By.CSS_SELECTOR, selector)
        except NoSuchElementException as e:
            raise ElementNotFoundError(selector) from e

        await self.freeze_session_element(driver, selector)
        await asyncio.sleep(0.1)

        path = self._actual_path(test_name)
        png = await asyncio.to_thread(lambda: element.screenshot_as_png)
        path.write_bytes(png)
        return (
            ArtifactRecord.create(test_name, path, scope=element),
            CaptureTarget(family=Family.SESSION, handle=driver, scope=element),
        )
