"""Local diff engine: perceptual pixel comparison against on-disk baselines."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image

from vrt.errors import DimensionMismatchError
from vrt.models.artifact import ArtifactRecord
from vrt.models.comparison import ComparisonResult, format_percentage
from vrt.models.config import ComparisonMode

from .store import ScreenshotStore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.2

# Maximum possible YIQ delta between two colours (pixelmatch's constant).
MAX_YIQ_DELTA = 35215

DIFF_COLOR = (255, 0, 0)
AA_COLOR = (255, 255, 0)
GRAY_ALPHA = 0.1


def load_rgba(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGBA"), dtype=np.uint8)


def _luminance(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223


def _in_phase(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.59597799 - rgb[..., 1] * 0.27417610 - rgb[..., 2] * 0.32180189


def _quadrature(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.21147017 - rgb[..., 1] * 0.52261711 + rgb[..., 2] * 0.31114694


def _blend_on_white(img: np.ndarray) -> np.ndarray:
    """Composite RGBA pixels over white; opaque pixels are unchanged."""
    rgba = img.astype(np.float64)
    alpha = rgba[..., 3:4] / 255.0
    return 255.0 + (rgba[..., :3] - 255.0) * alpha


def _pack(img: np.ndarray) -> np.ndarray:
    """One uint32 per pixel, so exact RGBA equality is a scalar compare."""
    return np.ascontiguousarray(img).view(np.uint32)[..., 0]


# Neighbour offsets (dx, dy): x outer, y inner. On equal deltas the earlier neighbour wins.
_NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if dx or dy]


def _on_border(ys: np.ndarray, xs: np.ndarray, height: int, width: int) -> np.ndarray:
    return (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)


def _neighbours(ys: np.ndarray, xs: np.ndarray, height: int, width: int):
    """Yield (ny, nx, valid) per offset; out-of-image neighbours are clamped and marked invalid."""
    for dx, dy in _NEIGHBOURS:
        ny, nx = ys + dy, xs + dx
        valid = (ny >= 0) & (ny < height) & (nx >= 0) & (nx < width)
        yield np.clip(ny, 0, height - 1), np.clip(nx, 0, width - 1), valid


def _has_many_siblings(packed: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """Per point: more than two identical neighbours (border pixels start at one)."""
    height, width = packed.shape
    zeroes = _on_border(ys, xs, height, width).astype(np.int32)
    center = packed[ys, xs]
    for ny, nx, valid in _neighbours(ys, xs, height, width):
        zeroes += valid & (packed[ny, nx] == center)
    return zeroes > 2


def _antialiased(
    lum: np.ndarray,
    packed: np.ndarray,
    other_packed: np.ndarray,
    ys: np.ndarray,
    xs: np.ndarray,
) -> np.ndarray:
    """Per point: does it look like an anti-aliased edge (Vysniauskas 2009)."""
    height, width = lum.shape
    zeroes = _on_border(ys, xs, height, width).astype(np.int32)
    min_delta = np.zeros(len(ys))
    max_delta = np.zeros(len(ys))
    min_y, min_x = ys.copy(), xs.copy()
    max_y, max_x = ys.copy(), xs.copy()
    center = lum[ys, xs]

    for ny, nx, valid in _neighbours(ys, xs, height, width):
        delta = center - lum[ny, nx]
        zeroes += valid & (delta == 0)
        darker = valid & (delta < min_delta)
        min_delta = np.where(darker, delta, min_delta)
        min_y, min_x = np.where(darker, ny, min_y), np.where(darker, nx, min_x)
        brighter = valid & (delta > max_delta)
        max_delta = np.where(brighter, delta, max_delta)
        max_y, max_x = np.where(brighter, ny, max_y), np.where(brighter, nx, max_x)

    # more than two identical neighbours is a flat area; an edge needs a darker and a brighter one
    edge = (zeroes <= 2) & (min_delta != 0) & (max_delta != 0)
    return edge & (
        (_has_many_siblings(packed, min_y, min_x) & _has_many_siblings(other_packed, min_y, min_x))
        | (_has_many_siblings(packed, max_y, max_x) & _has_many_siblings(other_packed, max_y, max_x))
    )


def count_mismatched_pixels(
    img1: np.ndarray,
    img2: np.ndarray,
    threshold: float = DEFAULT_THRESHOLD,
    include_aa: bool = False,
) -> tuple[int, np.ndarray]:
    """Compare two equally-sized RGBA arrays.

    Returns the number of perceptually different pixels and an RGBA diff
    image: red for counted differences, yellow for ignored anti-aliasing,
    and a faded grey copy of ``img1`` everywhere else.
    """
    if img1.shape != img2.shape:
        raise ValueError(f"Image sizes do not match: {img1.shape} vs {img2.shape}")
    height, width = img1.shape[:2]

    lum_raw = _luminance(img1[..., :3].astype(np.float64))
    gray = 255.0 + (lum_raw - 255.0) * (GRAY_ALPHA * img1[..., 3] / 255.0)
    output = np.empty((height, width, 4), dtype=np.uint8)
    output[..., :3] = np.clip(gray, 0, 255).astype(np.uint8)[..., None]
    output[..., 3] = 255

    if np.array_equal(img1, img2):
        return 0, output

    rgb1 = _blend_on_white(img1)
    rgb2 = _blend_on_white(img2)
    lum1, lum2 = _luminance(rgb1), _luminance(rgb2)
    dy = lum1 - lum2
    di = _in_phase(rgb1) - _in_phase(rgb2)
    dq = _quadrature(rgb1) - _quadrature(rgb2)
    delta = 0.5053 * dy * dy + 0.299 * di * di + 0.1957 * dq * dq

    max_delta = MAX_YIQ_DELTA * threshold * threshold
    ys, xs = np.nonzero(delta > max_delta)
    if len(ys) == 0:
        return 0, output

    if include_aa:
        aa = np.zeros(len(ys), dtype=bool)
    else:
        packed1, packed2 = _pack(img1), _pack(img2)
        aa = _antialiased(lum1, packed1, packed2, ys, xs) | _antialiased(lum2, packed2, packed1, ys, xs)

    output[ys[aa], xs[aa], :3] = AA_COLOR
    output[ys[~aa], xs[~aa], :3] = DIFF_COLOR
    return int(np.count_nonzero(~aa)), output


def diff_local(
    artifact: ArtifactRecord,
    store: ScreenshotStore,
    threshold: float = DEFAULT_THRESHOLD,
) -> ComparisonResult:
    """Compare a captured raster to its baseline, bootstrapping the baseline on first run."""
    file_name = artifact.file_name
    baseline_path = store.baseline_path(file_name)
    diff_path = store.diff_path(file_name)

    if not baseline_path.exists():
        store.store_baseline(file_name, artifact.raster_path)
        logger.info("Created new baseline for %s", artifact.test_name)
        return ComparisonResult(
            test_name=artifact.test_name,
            mode=ComparisonMode.LOCAL,
            is_new_baseline=True,
            is_match=True,
            baseline_path=baseline_path,
            actual_path=artifact.raster_path,
            message=f"Created new baseline screenshot: {file_name}",
        )

    baseline = load_rgba(baseline_path)
    actual = load_rgba(artifact.raster_path)
    if baseline.shape != actual.shape:
        raise DimensionMismatchError(
            file_name,
            (baseline.shape[1], baseline.shape[0]),
            (actual.shape[1], actual.shape[0]),
        )

    height, width = baseline.shape[:2]
    pixel_difference, diff_image = count_mismatched_pixels(baseline, actual, threshold)
    total = width * height
    pixel_percentage = format_percentage(pixel_difference / total * 100 if total else 0.0)

    if pixel_difference > 0:
        store.ensure_dirs()
        Image.fromarray(diff_image).save(diff_path)
        message = (
            f"{artifact.test_name} screenshot mismatch: "
            f"{pixel_difference} pixels ({pixel_percentage}%)"
        )
        logger.warning("%s; diff written to %s", message, diff_path)
    else:
        store.clear_diff(file_name)
        message = f"Screenshot matches baseline: {file_name}"
        logger.debug(message)

    return ComparisonResult(
        test_name=artifact.test_name,
        mode=ComparisonMode.LOCAL,
        is_match=pixel_difference == 0,
        pixel_difference=pixel_difference,
        pixel_percentage=pixel_percentage,
        baseline_path=baseline_path,
        actual_path=artifact.raster_path,
        diff_path=diff_path if pixel_difference > 0 else None,
        message=message,
    )
