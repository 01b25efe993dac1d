"""pytest wiring: one router per session, finalized once when the session ends.

Load it with ``-p vrt.pytest_plugin`` or by importing its fixtures into a conftest.
"""

from __future__ import annotations

import asyncio
import math
import logging
from pathlib import Path

import pytest

from vrt.capture.capturer import ScreenshotCapturer
from vrt.compare.router import ComparisonRouter
from vrt.compare.store import ScreenshotStore
from vrt.errors import ConfigurationError
from vrt.models.comparison import ComparisonResult
from vrt.models.config import ComparisonMode, HarnessConfig

logger = logging.getLogger(__name__)


def mismatch_report(result: ComparisonResult) -> str:
    pixels = result.pixel_difference
    if pixels is not None and math.isfinite(pixels):
        pixels = int(pixels)
    lines = [
        "Screenshot does not match baseline:",
        f"  Pixel difference: {pixels} pixels ({result.pixel_percentage}%)",
    ]
    if result.mode is ComparisonMode.LOCAL:
        lines += [
            f"  Baseline: {result.baseline_path}",
            f"  Actual: {result.actual_path}",
            f"  Diff image: {result.diff_path}",
            f'  To update baseline, run: vrt baselines update "{result.test_name}"',
        ]
    else:
        lines.append(f"  {result.mode.value}: {result.message}")
    return "\n".join(lines)


def expect_match(result: ComparisonResult) -> ComparisonResult:
    """Assert a comparison passed; a freshly created baseline always passes."""
    if result.is_new_baseline:
        logger.info(result.message)
        return result
    if not result.is_match:
        raise AssertionError(mismatch_report(result))
    return result


def pytest_sessionstart(session: pytest.Session) -> None:
    # Misconfiguration aborts the run before any browser is launched.
    try:
        config = HarnessConfig.from_env()
        mode = config.resolve_mode()
        if mode is ComparisonMode.PERCY:
            config.require_percy_credentials()
        elif mode is ComparisonMode.SMARTUI:
            config.require_lambdatest_credentials()
    except (ConfigurationError, ValueError) as e:
        pytest.exit(f"Harness misconfigured: {e}", returncode=1)


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    return HarnessConfig.from_env()


@pytest.fixture(scope="session")
def screenshot_store(harness_config: HarnessConfig, pytestconfig: pytest.Config) -> ScreenshotStore:
    return ScreenshotStore.from_dirs(harness_config.screenshots, Path(pytestconfig.rootpath))


@pytest.fixture(scope="session")
def visual_router(harness_config: HarnessConfig, screenshot_store: ScreenshotStore):
    router = ComparisonRouter.from_config(harness_config, store=screenshot_store)
    if harness_config.update_screenshots:
        logger.info("Running in screenshot update mode - baselines will be updated")
    yield router

    asyncio.run(router.finalize())
    if harness_config.update_screenshots:
        screenshot_store.update_baselines()
        logger.info("Updated all baseline screenshots")


@pytest.fixture
def capturer(screenshot_store: ScreenshotStore) -> ScreenshotCapturer:
    return ScreenshotCapturer(screenshot_store)
