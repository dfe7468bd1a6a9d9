"""
Image processing utilities for motion correction.
Provides normalization, temporal smoothing and scan-line correction used by
the registration backends and the chunk pipeline.
"""

import numpy as np
from scipy.ndimage import gaussian_filter, uniform_filter1d
from typing import Optional, Tuple


def normalize(
    arr: np.ndarray,
    ref: Optional[np.ndarray] = None,
    eps: float = 1e-8
) -> np.ndarray:
    """
    Normalize array to [0,1] range.

    Args:
        arr: Array to normalize
        ref: Optional reference whose min/max define the range
        eps: Small value to avoid division by zero

    Returns:
        Normalized float32 array
    """
    src = arr if ref is None else ref
    min_val = float(np.min(src))
    max_val = float(np.max(src))
    out = (np.asarray(arr, dtype=np.float32) - min_val) / (max_val - min_val + eps)
    return out.astype(np.float32, copy=False)


def to_gray(frames: np.ndarray, n_spatial: int = 2) -> np.ndarray:
    """
    Collapse a trailing channel axis by averaging.

    Args:
        frames: (H,W), (H,W,C), (T,H,W) or (T,H,W,C) array
        n_spatial: Number of non-channel axes (2 for single images, 3 for THW)

    Returns:
        Array without channel axis, float32
    """
    arr = np.asarray(frames, dtype=np.float32)
    if arr.ndim == n_spatial + 1:
        return arr.mean(axis=-1)
    return arr


def moving_mean(arr: np.ndarray, window: int, axis: int = 0) -> np.ndarray:
    """
    Centered moving average with a shrinking window at the edges.

    At the borders only the samples inside the array are averaged.
    """
    arr = np.asarray(arr, dtype=np.float32)
    if window <= 1 or arr.shape[axis] == 0:
        return arr.copy()

    sums = uniform_filter1d(arr, size=window, axis=axis, mode="constant", cval=0.0)
    ones_shape = [1] * arr.ndim
    ones_shape[axis] = arr.shape[axis]
    counts = uniform_filter1d(
        np.ones(ones_shape, dtype=np.float32), size=window, axis=axis,
        mode="constant", cval=0.0
    )
    return sums / counts


def estimate_line_offset(image: np.ndarray, max_offset: int = 10) -> int:
    """
    Estimate the column offset between even and odd scan lines.

    Bidirectional scanning produces a horizontal shift between lines acquired
    in opposite directions. The offset is the integer lag that maximizes the
    correlation between the even-line and odd-line images.

    Args:
        image: Mean image (H,W)
        max_offset: Largest lag to test in either direction

    Returns:
        Offset in pixels to apply to the odd lines (0 if none is found)
    """
    img = np.asarray(image, dtype=np.float64)
    n_rows = img.shape[0] - (img.shape[0] % 2)
    if n_rows < 2:
        return 0

    even = img[0:n_rows:2]
    odd = img[1:n_rows:2]
    even = even - even.mean()
    odd = odd - odd.mean()

    width = img.shape[1]
    max_offset = min(max_offset, width // 4)
    best_lag, best_score = 0, -np.inf
    for lag in range(-max_offset, max_offset + 1):
        if lag >= 0:
            a, b = even[:, lag:], odd[:, : width - lag]
        else:
            a, b = even[:, : width + lag], odd[:, -lag:]
        denom = np.sqrt(np.sum(a * a) * np.sum(b * b))
        if denom == 0:
            continue
        score = np.sum(a * b) / denom
        if score > best_score:
            best_lag, best_score = lag, score
    return int(best_lag)


def correct_line_offsets(
    frames: np.ndarray,
    n_frames: int = 100,
    max_offset: int = 10
) -> Tuple[np.ndarray, int]:
    """
    Fix bidirectional scan-line offsets in a block of frames.

    Args:
        frames: (T,H,W) or (T,H,W,C) array
        n_frames: Number of leading frames used to estimate the offset
        max_offset: Largest offset considered

    Returns:
        Tuple of (corrected_frames, column_offset)
    """
    if frames.shape[0] == 0:
        return frames, 0

    mean_img = to_gray(frames[:n_frames], n_spatial=3).mean(axis=0)
    # Light smoothing along rows keeps the estimate stable on noisy frames
    mean_img = gaussian_filter(mean_img, sigma=(0, 1))
    offset = estimate_line_offset(mean_img, max_offset=max_offset)
    if offset == 0:
        return frames, 0

    corrected = frames.copy()
    corrected[:, 1::2] = np.roll(frames[:, 1::2], offset, axis=2)
    return corrected, offset


def cast_to_dtype(arr: np.ndarray, dtype) -> np.ndarray:
    """
    Cast to ``dtype``, rounding and clipping to its range for integer types.

    Args:
        arr: Input array
        dtype: Target numpy dtype

    Returns:
        Array of type ``dtype``
    """
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        out = np.clip(np.round(np.asarray(arr, dtype=np.float64)), info.min, info.max)
        return out.astype(dtype)
    return np.asarray(arr).astype(dtype, copy=False)
