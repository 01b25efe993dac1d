"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import Mock

import httpx
import numpy as np
import pytest
from PIL import Image

from vrt.compare.store import ScreenshotStore
from vrt.models.artifact import ArtifactRecord, CaptureTarget, Family, file_name_for
from vrt.models.comparison import BatchState
from vrt.models.config import HarnessConfig, PercySettings, SmartUISettings

WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)


def write_png(
    path: Path,
    size: tuple[int, int] = (50, 50),
    color: tuple[int, int, int, int] = WHITE,
    block: Optional[tuple[int, int, int, int]] = None,
    block_color: tuple[int, int, int, int] = BLACK,
) -> Path:
    """Write a solid RGBA PNG, optionally with a filled (x, y, w, h) block."""
    width, height = size
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[...] = color
    if block is not None:
        x, y, w, h = block
        pixels[y:y + h, x:x + w] = block_color
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(pixels, "RGBA").save(path)
    return path


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def local_config() -> HarnessConfig:
    """Config with no remote service enabled."""
    return HarnessConfig.from_env({})


@pytest.fixture
def percy_config() -> HarnessConfig:
    return HarnessConfig.from_env({"USE_PERCY": "true", "PERCY_TOKEN": "percy-token"})


@pytest.fixture
def smartui_config() -> HarnessConfig:
    return HarnessConfig.from_env({
        "USE_SMARTUI": "true",
        "LT_USERNAME": "lt-user",
        "LT_ACCESS_KEY": "lt-key",
    })


@pytest.fixture
def percy_settings() -> PercySettings:
    return PercySettings(enabled=True, token="percy-token")


@pytest.fixture
def smartui_settings() -> SmartUISettings:
    return SmartUISettings(enabled=True, username="lt-user", access_key="lt-key")


# ============================================================================
# Store and Artifact Fixtures
# ============================================================================


@pytest.fixture
def store(tmp_path: Path) -> ScreenshotStore:
    """A screenshot store rooted in a temp directory."""
    return ScreenshotStore(tmp_path / "screenshots")


@pytest.fixture
def make_actual(store: ScreenshotStore) -> Callable[..., ArtifactRecord]:
    """Write an actual screenshot for a test name and return its artifact record."""

    def _make(test_name: str, **png_kwargs) -> ArtifactRecord:
        path = write_png(store.actual_path(file_name_for(test_name)), **png_kwargs)
        return ArtifactRecord.create(test_name, path)

    return _make


@pytest.fixture
def make_baseline(store: ScreenshotStore) -> Callable[..., Path]:
    def _make(test_name: str, **png_kwargs) -> Path:
        return write_png(store.baseline_path(file_name_for(test_name)), **png_kwargs)

    return _make


@pytest.fixture
def batch() -> BatchState:
    return BatchState()


# ============================================================================
# Browser handle fixtures
# ============================================================================


@pytest.fixture
def session_driver() -> Mock:
    """A WebDriver-shaped mock: exposes get_screenshot_as_png."""
    driver = Mock(spec=["get_screenshot_as_png", "execute_script", "find_element", "current_url"])
    driver.get_screenshot_as_png.return_value = b"png"
    driver.current_url = "http://localhost:3000/"
    return driver


@pytest.fixture
def page_handle() -> Mock:
    """A Playwright-page-shaped mock: exposes screenshot but not get_screenshot_as_png."""
    page = Mock(spec=["screenshot", "evaluate", "query_selector", "url"])
    page.url = "http://localhost:3000/"
    return page


@pytest.fixture
def session_target(session_driver: Mock) -> CaptureTarget:
    return CaptureTarget(family=Family.SESSION, handle=session_driver)


@pytest.fixture
def page_target(page_handle: Mock) -> CaptureTarget:
    return CaptureTarget(family=Family.PAGE, handle=page_handle)


@pytest.fixture
def png_writer() -> Callable[..., Path]:
    """The write_png helper, for tests that need PNGs outside the store."""
    return write_png


# ============================================================================
# Percy CLI fixtures
# ============================================================================


class FakePercyServer:
    """An httpx handler standing in for the local server ``percy exec`` starts."""

    def __init__(self, core_version: str = "1.29.0", snapshot_response: Optional[dict] = None):
        self.core_version = core_version
        self.snapshot_response = snapshot_response or {"success": True}
        self.snapshots: list[dict] = []
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        if request.url.path == "/percy/healthcheck":
            return httpx.Response(
                200, json={"success": True, "type": "web"},
                headers={"x-percy-core-version": self.core_version},
            )
        if request.url.path == "/percy/dom.js":
            return httpx.Response(200, text="window.PercyDOM = {};")
        if request.url.path == "/percy/snapshot":
            self.snapshots.append(json.loads(request.content))
            status = 200 if self.snapshot_response.get("success") else 500
            return httpx.Response(status, json=self.snapshot_response)
        return httpx.Response(404)

    def client_factory(self, address: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=address, transport=httpx.MockTransport(self))


@pytest.fixture
def percy_server() -> FakePercyServer:
    return FakePercyServer()


@pytest.fixture
def make_percy_server() -> Callable[..., FakePercyServer]:
    """Build a server with a non-default version or snapshot response."""
    return FakePercyServer
