"""Capture-side data structures: the artifact record and its capture target."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from vrt.errors import UnknownFrameworkError


class Family(str, Enum):
    SESSION = "session"  # WebDriver-style: whole-session get_screenshot_as_png()
    PAGE = "page"  # Playwright-style: page.screenshot()


def detect_family(handle: Any) -> Family:
    """Probe a driver/page object for the screenshot capability it exposes."""
    if callable(getattr(handle, "get_screenshot_as_png", None)):
        return Family.SESSION
    if callable(getattr(handle, "screenshot", None)):
        return Family.PAGE
    raise UnknownFrameworkError(handle)


class ArtifactRecord(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    test_name: str
    file_name: str
    raster_path: Path
    scope: Optional[Any] = Field(default=None, exclude=True)

    @classmethod
    def create(cls, test_name: str, raster_path: Path, scope: Any = None) -> "ArtifactRecord":
        return cls(
            test_name=test_name,
            file_name=file_name_for(test_name),
            raster_path=raster_path,
            scope=scope,
        )


class CaptureTarget(BaseModel):
    """The browser handle a capture came from, tagged with its framework family."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    family: Family
    handle: Any = Field(exclude=True)
    scope: Optional[Any] = Field(default=None, exclude=True)

    @classmethod
    def from_handle(cls, handle: Any, scope: Any = None) -> "CaptureTarget":
        return cls(family=detect_family(handle), handle=handle, scope=scope)


def file_name_for(test_name: str) -> str:
    return f"{test_name}.png"
