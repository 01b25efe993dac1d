"""Comparison router: dispatches each capture to exactly one comparison backend."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from vrt.errors import RemoteAdapterError
from vrt.models.artifact import ArtifactRecord, CaptureTarget
from vrt.models.comparison import BatchState, BatchSummary, ComparisonResult
from vrt.models.config import ComparisonMode, HarnessConfig

from .finalize import BatchCoordinator
from .local_diff import DEFAULT_THRESHOLD, diff_local
from .percy import PercyAdapter
from .smartui import SmartUIAdapter
from .store import ScreenshotStore

logger = logging.getLogger(__name__)


class Comparator(Protocol):
    mode: ComparisonMode
    remote: bool

    async def compare(
        self, artifact: ArtifactRecord, target: CaptureTarget | None
    ) -> ComparisonResult: ...


class LocalComparator:
    mode = ComparisonMode.LOCAL
    remote = False

    def __init__(self, store: ScreenshotStore, threshold: float = DEFAULT_THRESHOLD):
        self.store = store
        self.threshold = threshold

    async def compare(self, artifact: ArtifactRecord, target: CaptureTarget | None) -> ComparisonResult:
        return diff_local(artifact, self.store, self.threshold)


class PercyComparator:
    mode = ComparisonMode.PERCY
    remote = True

    def __init__(self, adapter: PercyAdapter):
        self.adapter = adapter

    async def compare(self, artifact: ArtifactRecord, target: CaptureTarget | None) -> ComparisonResult:
        if target is None:
            raise RemoteAdapterError(
                f"Percy needs the driver or page that captured {artifact.test_name!r}"
            )
        result = await self.adapter.upload(target, artifact)
        return ComparisonResult.remote(
            artifact.test_name, self.mode, result.success, result.message, artifact.raster_path
        )


class SmartUIComparator:
    mode = ComparisonMode.SMARTUI
    remote = True

    def __init__(self, adapter: SmartUIAdapter):
        self.adapter = adapter

    async def compare(self, artifact: ArtifactRecord, target: CaptureTarget | None) -> ComparisonResult:
        result = await self.adapter.upload(target, artifact)
        return ComparisonResult.remote(
            artifact.test_name, self.mode, result.success, result.message, artifact.raster_path
        )


def select_comparator(
    config: HarnessConfig,
    store: ScreenshotStore,
    batch: BatchState,
) -> tuple[Comparator, BatchCoordinator]:
    """Choose the backend once, validating its credentials up front."""
    mode = config.resolve_mode()
    logger.info("Visual comparison mode: %s", mode.value)

    if mode is ComparisonMode.PERCY:
        config.require_percy_credentials()
        return (
            PercyComparator(PercyAdapter(config.percy, batch)),
            BatchCoordinator(batch, mode.value),
        )

    if mode is ComparisonMode.SMARTUI:
        config.require_lambdatest_credentials()
        adapter = SmartUIAdapter(config.smartui, batch)
        return SmartUIComparator(adapter), BatchCoordinator(batch, mode.value, commit=adapter.commit)

    return LocalComparator(store, config.diff_threshold), BatchCoordinator(batch, mode.value)


class ComparisonRouter:
    """Owns one run's comparison strategy and batch state."""

    def __init__(self, comparator: Comparator, coordinator: BatchCoordinator, batch: BatchState):
        self.comparator = comparator
        self.coordinator = coordinator
        self.batch = batch

    @classmethod
    def from_config(
        cls,
        config: HarnessConfig,
        store: ScreenshotStore | None = None,
        base_dir: Path | None = None,
    ) -> "ComparisonRouter":
        store = store or ScreenshotStore.from_dirs(config.screenshots, base_dir)
        batch = BatchState()
        comparator, coordinator = select_comparator(config, store, batch)
        return cls(comparator, coordinator, batch)

    @property
    def mode(self) -> ComparisonMode:
        return self.comparator.mode

    async def compare(
        self, artifact: ArtifactRecord, target: CaptureTarget | None = None
    ) -> ComparisonResult:
        logger.debug("Comparing %s via %s", artifact.test_name, self.mode.value)
        if not self.comparator.remote:
            return await self.comparator.compare(artifact, target)

        try:
            return await self.comparator.compare(artifact, target)
        except Exception as e:
            # A single failed upload must still yield a verdict the test can assert on.
            logger.error("%s comparison failed for %s: %s", self.mode.value, artifact.test_name, e)
            return ComparisonResult.remote(
                artifact.test_name, self.mode, False, str(e), artifact.raster_path
            )

    async def finalize(self) -> BatchSummary:
        return await self.coordinator.finalize()
