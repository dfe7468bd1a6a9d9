"""
Recast of corrected data into a narrower sample type.

The bounds of the linear stretch come from the per-frame pixel statistics:
the lower bound is the 5th percentile of the per-frame low-tail percentile,
the upper bound the largest per-frame maximum. The upper bound is a raw
maximum so that bright signal peaks are not clipped; setting
``Export.recastUpperPercentile`` replaces it with a percentile of the
per-frame high-tail statistic.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from pymotioncorr.errors import ConfigurationError
from pymotioncorr.stack.image_stats import ImageStats

SUPPORTED_RECAST_TYPES = (np.dtype(np.uint8),)


@dataclass(frozen=True)
class RecastBounds:
    min_value: float
    max_value: float


def needs_recast(source_dtype, output_dtype) -> bool:
    return np.dtype(source_dtype) != np.dtype(output_dtype)


def validate_output_type(output_dtype) -> np.dtype:
    """
    Raises
    ------
    ConfigurationError
        If ``output_dtype`` is not a supported recast target.
    """
    dtype = np.dtype(output_dtype)
    if dtype not in SUPPORTED_RECAST_TYPES:
        supported = ", ".join(d.name for d in SUPPORTED_RECAST_TYPES)
        raise ConfigurationError(
            f"Recasting to {dtype.name} is not supported (supported: {supported})"
        )
    return dtype


def compute_bounds(image_stats: ImageStats, plane: int = 0,
                   upper_percentile: Optional[float] = None) -> RecastBounds:
    """Recast bounds for one plane from its per-frame statistics."""
    min_value = float(np.nanpercentile(image_stats.prctile_l2[plane], 5))
    if upper_percentile is None:
        max_value = float(np.nanmax(image_stats.maximum_value[plane]))
    else:
        max_value = float(np.nanpercentile(image_stats.prctile_u2[plane], upper_percentile))
    if not max_value > min_value:
        max_value = min_value + 1.0
    return RecastBounds(min_value, max_value)


def apply(frames: np.ndarray, bounds: RecastBounds, dtype=np.uint8) -> np.ndarray:
    """
    Linearly map ``[min_value, max_value]`` to the full range of ``dtype``.

    Values at or below ``min_value`` become 0, values at or above
    ``max_value`` the largest value of ``dtype``.
    """
    dtype = np.dtype(dtype)
    top = float(np.iinfo(dtype).max)
    scale = top / (bounds.max_value - bounds.min_value)
    scaled = (np.asarray(frames, dtype=np.float64) - bounds.min_value) * scale
    np.clip(scaled, 0, top, out=scaled)
    return np.round(scaled).astype(dtype)


def _crop(array: np.ndarray, crop: int) -> np.ndarray:
    if crop <= 0:
        return array
    h, w = array.shape[:2]
    if 2 * crop >= h or 2 * crop >= w:
        return array
    return array[crop:h - crop, crop:w - crop]


def auto_bounds(values: np.ndarray, percentiles: Tuple[float, float] = (0.05, 99.95)) -> RecastBounds:
    """Bounds from the low and high percentiles of the finite ``values``."""
    values = np.asarray(values, dtype=np.float64)
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return RecastBounds(0.0, 1.0)
    low, high = np.percentile(finite, percentiles)
    if not high > low:
        high = low + 1.0
    return RecastBounds(float(low), float(high))


def make_uint8(array: np.ndarray, bounds: Optional[RecastBounds] = None, crop: int = 0) -> np.ndarray:
    """
    8-bit version of an (H,W) image or a (N,H,W) image series.

    Without ``bounds`` the limits are taken from the data, ignoring a border
    of ``crop`` pixels where translated frames carry edge artifacts. A series
    shares one set of limits.
    """
    array = np.asarray(array)
    if array.dtype == np.uint8:
        return array.copy()
    if bounds is None:
        images = array.reshape((-1,) + array.shape[-2:])
        bounds = auto_bounds(np.concatenate([_crop(img, crop).ravel() for img in images]))
    return apply(array, bounds, np.uint8)
