"""BrowserStack Local tunnel lifecycle: start, await readiness, guaranteed teardown."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable

from browserstack.local import Local

from vrt.errors import TunnelStartError, TunnelStopError, TunnelTimeoutError
from vrt.models.config import BrowserStackSettings

logger = logging.getLogger(__name__)


class TunnelState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class TunnelHandle:
    identifier: str
    local: Any

    @property
    def running(self) -> bool:
        return bool(self.local.isRunning())


class TunnelManager:
    """Owns at most one BrowserStack Local process.

    Remote grid sessions rendezvous with the tunnel through ``identifier``,
    which stays fixed for a deployment rather than being regenerated per run.
    """

    def __init__(
        self,
        access_key: str,
        identifier: str,
        start_timeout: float = 60.0,
        verbose: bool = True,
        local_factory: Callable[[], Any] = Local,
    ):
        self.access_key = access_key
        self.identifier = identifier
        self.start_timeout = start_timeout
        self.verbose = verbose
        self._local_factory = local_factory
        self._state = TunnelState.STOPPED
        self._handle: TunnelHandle | None = None

    @classmethod
    def from_settings(cls, settings: BrowserStackSettings, **kwargs: Any) -> "TunnelManager":
        return cls(
            access_key=settings.access_key or "",
            identifier=settings.local_identifier,
            start_timeout=settings.tunnel_start_timeout,
            **kwargs,
        )

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def handle(self) -> TunnelHandle | None:
        return self._handle

    def start_options(self) -> dict[str, str]:
        return {
            "key": self.access_key,
            "verbose": "true" if self.verbose else "false",
            "force": "true",
            "onlyAutomate": "true",
            "localIdentifier": self.identifier,
        }

    async def start(self) -> TunnelHandle:
        """Launch the tunnel binary and return once it reports ``connected``."""
        if self._state is not TunnelState.STOPPED:
            raise TunnelStartError(f"Tunnel is already {self._state.value}")

        self._state = TunnelState.STARTING
        local = self._local_factory()
        logger.info("Starting BrowserStack Local tunnel (identifier=%s)...", self.identifier)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(local.start, **self.start_options()),
                timeout=self.start_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Tunnel did not become ready within %.0fs", self.start_timeout)
            await self._kill_quietly(local)
            self._state = TunnelState.STOPPED
            raise TunnelTimeoutError(
                f"BrowserStack Local did not become ready within {self.start_timeout:.0f}s"
            ) from e
        except asyncio.CancelledError:
            logger.warning("Tunnel start cancelled; shutting down the binary")
            await self._kill_quietly(local)
            self._state = TunnelState.STOPPED
            raise
        except Exception as e:
            self._state = TunnelState.STOPPED
            raise TunnelStartError(f"BrowserStack Local failed to start: {e}") from e

        self._handle = TunnelHandle(identifier=self.identifier, local=local)
        self._state = TunnelState.RUNNING
        logger.info("BrowserStack Local tunnel started and ready")
        return self._handle

    async def stop(self, handle: TunnelHandle | None = None) -> None:
        """Stop the tunnel. Safe to call repeatedly or with no handle."""
        handle = handle or self._handle
        if handle is None or self._state in (TunnelState.STOPPED, TunnelState.STOPPING):
            return

        self._state = TunnelState.STOPPING
        logger.info("Stopping BrowserStack Local tunnel...")
        try:
            await asyncio.to_thread(handle.local.stop)
        except Exception as e:
            raise TunnelStopError(f"BrowserStack Local failed to stop cleanly: {e}") from e
        finally:
            self._handle = None
            self._state = TunnelState.STOPPED
        logger.info("Tunnel stopped")

    async def _kill_quietly(self, local: Any) -> None:
        # The start thread is still blocked on the binary; stopping it unblocks the thread.
        try:
            await asyncio.to_thread(local.stop)
        except Exception as e:
            logger.warning("Could not kill half-started tunnel: %s", e)


@asynccontextmanager
async def tunnel_session(manager: TunnelManager) -> AsyncIterator[TunnelHandle]:
    """Hold a running tunnel for the duration of the block, however it exits."""
    handle = await manager.start()
    try:
        yield handle
    finally:
        try:
            await manager.stop(handle)
        except TunnelStopError as e:
            logger.error("Error stopping tunnel: %s", e)
