"""Finalization: one deferred batch action per suite run, then a clean slate."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from vrt.models.comparison import BatchState, BatchSummary

logger = logging.getLogger(__name__)

CommitFn = Callable[[BatchState], Awaitable[tuple[bool, str]]]

_LABELS = {"local": "Local", "percy": "Percy", "smartui": "SmartUI"}


class BatchCoordinator:
    """Summarizes and commits the uploads accumulated during a run.

    ``finalize`` always resets the batch state, so a second suite run in the
    same process never sees counts, cached SDK handles or the
    ``upload_executed`` flag left over from the first.
    """

    def __init__(self, batch: BatchState, service: str, commit: Optional[CommitFn] = None):
        self.batch = batch
        self.service = service
        self.commit = commit

    async def finalize(self) -> BatchSummary:
        label = _LABELS.get(self.service, self.service)
        summary = BatchSummary(service=self.service)
        try:
            records = list(self.batch.records)
            if not records:
                return summary

            if self.commit is not None and not self.batch.upload_executed:
                self.batch.upload_executed = True
                try:
                    summary.committed, summary.message = await self.commit(self.batch)
                except OSError as e:
                    logger.error("[%s] Batch upload could not start: %s", label, e)
                    summary.committed, summary.message = False, str(e)

            summary.count = len(records)
            summary.test_names = [r.test_name for r in records]
            uploaded = sum(1 for r in records if r.success)
            logger.info("[%s] Successfully uploaded %d/%d snapshots", label, uploaded, len(records))
            logger.info("[%s] Snapshots: %s", label, ", ".join(summary.test_names))
            return summary
        finally:
            self.batch.reset()
