"""Multi-browser grid runner: runs the visual suite once per grid browser."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .capabilities import available_browsers

logger = logging.getLogger(__name__)

SERVICE_GRIDS = {
    "percy": ("browserstack", "USE_BROWSERSTACK_GRID", "USE_PERCY"),
    "smartui": ("lambdatest", "USE_LAMBDATEST_GRID", "USE_SMARTUI"),
}
DEFAULT_BROWSERS = {"selenium": "chrome", "playwright": "chromium"}


@dataclass
class BrowserRun:
    browser: str
    success: bool
    duration_seconds: float
    error: str | None = None


def suite_command(framework: str, service: str, pytest_args: Sequence[str] = ()) -> list[str]:
    test_file = f"e2e/test_{framework}_visual.py"
    command = ["pytest", test_file, *pytest_args]
    # Percy snapshots need the local Percy agent running for the whole suite.
    if service == "percy":
        return ["npx", "percy", "exec", "--", *command]
    return command


def browsers_to_test(framework: str, service: str, all_browsers: bool, env: Mapping[str, str]) -> list[str]:
    grid = SERVICE_GRIDS[service][0]
    if all_browsers:
        return available_browsers(grid)
    return [env.get("GRID_BROWSER") or DEFAULT_BROWSERS[framework]]


def run_grid_suite(
    framework: str,
    service: str,
    all_browsers: bool = False,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> list[BrowserRun]:
    """Run the suite on each selected browser; one failing browser does not stop the rest."""
    base_env = dict(os.environ if env is None else env)
    _, grid_flag, visual_flag = SERVICE_GRIDS[service]
    command = suite_command(framework, service)
    results: list[BrowserRun] = []

    for browser in browsers_to_test(framework, service, all_browsers, base_env):
        logger.info("Testing on: %s", browser)
        start = time.time()
        run_env = {**base_env, grid_flag: "true", visual_flag: "true", "GRID_BROWSER": browser}
        try:
            runner(command, env=run_env, cwd=cwd, check=True)
            results.append(BrowserRun(browser, True, round(time.time() - start, 2)))
        except (subprocess.CalledProcessError, OSError) as e:
            logger.error("%s failed: %s", browser, e)
            results.append(BrowserRun(browser, False, round(time.time() - start, 2), str(e)))

    return results
