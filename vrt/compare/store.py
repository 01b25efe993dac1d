"""Screenshot store: baseline, actual and diff directories keyed by test name."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from vrt.models.artifact import file_name_for
from vrt.models.config import ScreenshotDirs

logger = logging.getLogger(__name__)


class ScreenshotStore:
    """Manages the three sibling screenshot directories."""

    def __init__(self, root: Path, dirs: ScreenshotDirs | None = None):
        dirs = dirs or ScreenshotDirs()
        self.root = root
        self.baseline_dir = root / dirs.baseline_dir
        self.actual_dir = root / dirs.actual_dir
        self.diff_dir = root / dirs.diff_dir

    @classmethod
    def from_dirs(cls, dirs: ScreenshotDirs, base: Path | None = None) -> "ScreenshotStore":
        return cls(dirs.root(base), dirs)

    def ensure_dirs(self) -> None:
        for d in (self.baseline_dir, self.actual_dir, self.diff_dir):
            d.mkdir(parents=True, exist_ok=True)

    def baseline_path(self, file_name: str) -> Path:
        return self.baseline_dir / file_name

    def actual_path(self, file_name: str) -> Path:
        return self.actual_dir / file_name

    def diff_path(self, file_name: str) -> Path:
        return self.diff_dir / file_name

    def has_baseline(self, file_name: str) -> bool:
        return self.baseline_path(file_name).exists()

    def store_baseline(self, file_name: str, source: Path) -> Path:
        """Copy a raster byte-for-byte into the baseline directory."""
        self.ensure_dirs()
        dest = self.baseline_path(file_name)
        shutil.copyfile(source, dest)
        logger.debug("Stored baseline %s from %s", dest, source)
        return dest

    def clear_diff(self, file_name: str) -> bool:
        """Remove a stale diff image. Returns True if one was deleted."""
        path = self.diff_path(file_name)
        if path.exists():
            path.unlink()
            logger.debug("Removed stale diff %s", path)
            return True
        return False

    def update_baselines(self, test_name: str | None = None) -> list[Path]:
        """Promote actual screenshots to baselines (one test, or all of them)."""
        if not self.actual_dir.exists():
            return []
        if test_name is None:
            sources = sorted(self.actual_dir.glob("*.png"))
        else:
            source = self.actual_path(file_name_for(test_name))
            sources = [source] if source.exists() else []

        updated = [self.store_baseline(src.name, src) for src in sources]
        logger.info("Updated %d baseline screenshot(s)", len(updated))
        return updated
