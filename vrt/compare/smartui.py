"""LambdaTest SmartUI adapter: queues screenshots and batch-uploads them at suite end.

SmartUI compares uploaded screenshots against the project baseline on its own
servers. Captures are queued per test and pushed in a single
``smartui upload`` build when the run is finalized, which is far cheaper than
one build per screenshot.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Optional

from vrt.errors import MissingCredentialsError, RemoteSDKMissingError
from vrt.models.artifact import ArtifactRecord, CaptureTarget
from vrt.models.comparison import BatchState, UploadRecord, UploadResult
from vrt.models.config import SmartUISettings

from .remote import utc_timestamp

logger = logging.getLogger(__name__)

SERVICE = "smartui"
LAUNCHER = "npx"
CLI_PACKAGE = "@lambdatest/smartui-cli"


class SmartUIAdapter:
    """Queues captures for a deferred SmartUI build upload."""

    def __init__(
        self,
        settings: SmartUISettings,
        batch: BatchState,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.settings = settings
        self.batch = batch
        self._which = which

    def load_sdk(self) -> str:
        """Resolve the npx launcher used to run the SmartUI CLI, once per run."""
        if self.batch.initialized and self.batch.sdk is not None:
            return self.batch.sdk

        if not self.settings.username or not self.settings.access_key:
            raise MissingCredentialsError("LambdaTest", ["LT_USERNAME", "LT_ACCESS_KEY"])

        launcher = self._which(LAUNCHER)
        if launcher is None:
            raise RemoteSDKMissingError("SmartUI", CLI_PACKAGE)

        self.batch.sdk = launcher
        self.batch.initialized = True
        logger.info("[SmartUI] Using %s for uploads", launcher)
        return launcher

    async def upload(
        self,
        target: CaptureTarget | None,
        artifact: ArtifactRecord,
        options: dict[str, Any] | None = None,
    ) -> UploadResult:
        family = target.family.value if target is not None else None
        try:
            self.load_sdk()
        except (MissingCredentialsError, RemoteSDKMissingError) as e:
            logger.error("[SmartUI] Cannot queue %r: %s", artifact.test_name, e)
            self._record(artifact, family, False, str(e), options)
            return UploadResult(success=False, test_name=artifact.test_name, message=str(e))

        message = "Screenshot queued for SmartUI upload"
        self._record(artifact, family, True, message, options)
        return UploadResult(success=True, test_name=artifact.test_name, message=message)

    def _record(
        self,
        artifact: ArtifactRecord,
        family: str | None,
        success: bool,
        message: str,
        options: dict[str, Any] | None,
    ) -> None:
        self.batch.append(UploadRecord(
            test_name=artifact.test_name,
            service=SERVICE,
            family=family,
            success=success,
            message=message,
            timestamp=utc_timestamp(),
            raster_path=str(artifact.raster_path),
            options=dict(options or {}),
        ))

    def build_command(self, launcher: str, screenshot_dir: Path, build_name: str) -> list[str]:
        return [
            launcher, "smartui", "upload", str(screenshot_dir),
            "--buildName", build_name,
            "--userName", self.settings.username or "",
            "--accessKey", self.settings.access_key or "",
        ]

    async def commit(self, batch: BatchState) -> tuple[bool, str]:
        """Upload every queued screenshot as one SmartUI build."""
        queued = [r for r in batch.records if r.success and r.raster_path]
        if not queued:
            return True, "Nothing queued for SmartUI"

        launcher = batch.sdk or self.load_sdk()
        screenshot_dir = Path(queued[0].raster_path).parent
        build_name = f"test-run-{int(time.time() * 1000)}"
        logger.info("[SmartUI] Uploading %d screenshots to LambdaTest SmartUI...", len(queued))

        env = {
            **os.environ,
            "LT_USERNAME": self.settings.username or "",
            "LT_ACCESS_KEY": self.settings.access_key or "",
            "PROJECT_NAME": self.settings.project_name,
        }
        proc = await asyncio.create_subprocess_exec(
            *self.build_command(launcher, screenshot_dir, build_name),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.settings.upload_timeout_seconds
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            message = f"SmartUI upload timed out after {self.settings.upload_timeout_seconds:.0f}s"
            logger.error("[SmartUI] %s", message)
            return False, message

        if stdout:
            logger.info("[SmartUI] %s", stdout.decode(errors="replace").strip())
        if proc.returncode != 0:
            message = f"SmartUI upload failed (exit code {proc.returncode})"
            logger.error("[SmartUI] %s: %s", message, stderr.decode(errors="replace").strip())
            return False, message

        logger.info("[SmartUI] Upload successful! Build: %s", build_name)
        return True, f"Uploaded build {build_name}"
