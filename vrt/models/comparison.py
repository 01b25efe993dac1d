"""Comparison result and batch state data structures."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from vrt.models.config import ComparisonMode

FAILED_PERCENTAGE = "100.00"
MATCHED_PERCENTAGE = "0.00"


def format_percentage(value: float) -> str:
    """Format a percentage to exactly two decimals, rounding halves up."""
    return str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class ComparisonResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_name: str
    mode: ComparisonMode
    is_new_baseline: bool = False
    is_match: bool
    pixel_difference: Optional[float] = None
    pixel_percentage: Optional[str] = None
    baseline_path: Optional[Path] = None
    actual_path: Optional[Path] = None
    diff_path: Optional[Path] = None
    message: str

    @classmethod
    def remote(
        cls,
        test_name: str,
        mode: ComparisonMode,
        success: bool,
        message: str,
        actual_path: Path | None = None,
    ) -> "ComparisonResult":
        """Normalize a remote upload outcome into the shared result shape."""
        return cls(
            test_name=test_name,
            mode=mode,
            is_match=success,
            pixel_difference=0 if success else math.inf,
            pixel_percentage=MATCHED_PERCENTAGE if success else FAILED_PERCENTAGE,
            actual_path=actual_path,
            message=message,
        )


class UploadResult(BaseModel):
    success: bool
    test_name: str
    message: str


class UploadRecord(BaseModel):
    test_name: str
    service: str
    family: Optional[str] = None
    success: bool
    message: str = ""
    timestamp: str  # ISO timestamp
    raster_path: Optional[str] = None
    options: dict[str, Any] = Field(default_factory=dict)


class BatchSummary(BaseModel):
    service: str
    count: int = 0
    test_names: list[str] = Field(default_factory=list)
    committed: Optional[bool] = None  # None when there was nothing to commit
    message: str = ""


@dataclass
class BatchState:
    """Per-run accumulator for remote uploads, owned by one router."""

    records: list[UploadRecord] = field(default_factory=list)
    initialized: bool = False
    upload_executed: bool = False
    sdk: Any = None

    def append(self, record: UploadRecord) -> None:
        self.records.append(record)

    def reset(self) -> None:
        self.records = []
        self.initialized = False
        self.upload_executed = False
        self.sdk = None
