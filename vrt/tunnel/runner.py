"""Run a test command behind the tunnel and exit only after it is torn down."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Mapping, Sequence

from vrt.errors import TunnelStartError

from .manager import TunnelHandle, TunnelManager, tunnel_session

logger = logging.getLogger(__name__)

CHILD_TERMINATE_TIMEOUT = 10.0


def tunnel_env(handle: TunnelHandle, browser: str | None = None) -> dict[str, str]:
    """Environment handed to the child test process so its grid sessions use this tunnel."""
    env = {
        "USE_BROWSERSTACK_GRID": "true",
        "USE_LOCAL_TUNNEL": "true",
        "BROWSERSTACK_LOCAL_IDENTIFIER": handle.identifier,
    }
    if browser:
        env["GRID_BROWSER"] = browser
    return env


def install_signal_cancellation(loop: asyncio.AbstractEventLoop, task: asyncio.Task) -> list[signal.Signals]:
    """Cancel ``task`` on the first SIGINT/SIGTERM; later signals are ignored."""
    fired = False

    def _on_signal(sig: signal.Signals) -> None:
        nonlocal fired
        if fired:
            logger.warning("Received %s again; teardown already in progress", sig.name)
            return
        fired = True
        logger.warning("Received %s; tearing down before exit", sig.name)
        task.cancel()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except NotImplementedError:
            logger.debug("Signal handlers not supported on this platform")
            break
        installed.append(sig)
    return installed


async def _run_child(command: Sequence[str], env: Mapping[str, str], cwd: Path | None) -> int:
    logger.info("Running: %s", " ".join(command))
    proc = await asyncio.create_subprocess_exec(*command, env=dict(env), cwd=cwd)
    try:
        return await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=CHILD_TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
        raise


async def run_guarded(
    manager: TunnelManager,
    commands: Sequence[Sequence[str]],
    env: Mapping[str, str] | None = None,
    browser: str | None = None,
    cwd: Path | None = None,
) -> int:
    """Run each command in order inside one tunnel session; stop at the first failure."""
    async with tunnel_session(manager) as handle:
        child_env = {**(os.environ if env is None else env), **tunnel_env(handle, browser)}
        for command in commands:
            returncode = await _run_child(command, child_env, cwd)
            if returncode != 0:
                logger.error("Tests failed (exit code %d)", returncode)
                return 1
        logger.info("Tests passed")
        return 0


async def _main(
    manager: TunnelManager,
    commands: Sequence[Sequence[str]],
    env: Mapping[str, str] | None,
    browser: str | None,
    cwd: Path | None,
) -> int:
    loop = asyncio.get_running_loop()
    installed = install_signal_cancellation(loop, asyncio.current_task())
    try:
        return await run_guarded(manager, commands, env=env, browser=browser, cwd=cwd)
    except asyncio.CancelledError:
        logger.warning("Run interrupted; tunnel has been stopped")
        return 1
    except TunnelStartError as e:
        logger.error("Fatal error: %s", e)
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def run_with_tunnel(
    manager: TunnelManager,
    commands: Sequence[Sequence[str]],
    env: Mapping[str, str] | None = None,
    browser: str | None = None,
    cwd: Path | None = None,
) -> int:
    """Blocking entry point: returns the process exit code (0 pass, 1 anything else)."""
    return asyncio.run(_main(manager, commands, env, browser, cwd))
