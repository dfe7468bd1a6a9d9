"""
Per-frame pixel statistics of a source stack.

The statistics are computed once per session, chunk by chunk, and persisted
under ``raw_image_info/image_stats.npz``. The motion correction pipeline uses
them for baseline subtraction and for the recast bounds of 8-bit output.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import numpy as np

from pymotioncorr.stack.image_stack import ImageStack
from pymotioncorr.util.status import atomic_save_npz

# Percentile levels for the lower (L) and upper (U) tail statistics
PERCENTILE_LEVELS = {
    "prctile_l1": 0.5,
    "prctile_l2": 0.05,
    "prctile_u1": 99.5,
    "prctile_u2": 99.95,
}


@dataclass
class ImageStats:
    """Arrays of shape (n_planes, n_frames), NaN where not computed."""

    minimum_value: np.ndarray
    maximum_value: np.ndarray
    mean_value: np.ndarray
    prctile_l1: np.ndarray
    prctile_l2: np.ndarray
    prctile_u1: np.ndarray
    prctile_u2: np.ndarray

    @classmethod
    def empty(cls, n_planes: int, n_frames: int) -> "ImageStats":
        return cls(**{
            f.name: np.full((n_planes, n_frames), np.nan, dtype=np.float64)
            for f in fields(cls)
        })

    @property
    def num_frames(self) -> int:
        return self.maximum_value.shape[1]

    def is_complete(self) -> bool:
        return bool(np.all(np.isfinite(self.maximum_value)))

    def update(self, plane: int, frame_indices, frames: np.ndarray) -> None:
        """Fill statistics of ``frames`` (T, ...) for ``frame_indices``."""
        flat = np.asarray(frames, dtype=np.float64).reshape(frames.shape[0], -1)
        idx = np.asarray(frame_indices)
        self.minimum_value[plane, idx] = flat.min(axis=1)
        self.maximum_value[plane, idx] = flat.max(axis=1)
        self.mean_value[plane, idx] = flat.mean(axis=1)
        levels = list(PERCENTILE_LEVELS.values())
        prc = np.percentile(flat, levels, axis=1)
        for name, values in zip(PERCENTILE_LEVELS, prc):
            getattr(self, name)[plane, idx] = values

    def save(self, path: Path) -> None:
        atomic_save_npz(path, **{f.name: getattr(self, f.name) for f in fields(self)})

    @classmethod
    def load(cls, path: Path) -> "ImageStats":
        with np.load(str(path)) as data:
            return cls(**{f.name: data[f.name] for f in fields(cls)})


def compute_image_stats(
    stack: ImageStack,
    chunk_size: int = 500,
    file_path: Optional[Path] = None,
    verbose: bool = False,
) -> ImageStats:
    """
    Compute or load per-frame statistics for every plane of ``stack``.

    Parameters
    ----------
    stack : ImageStack
        Source stack
    chunk_size : int
        Number of frames read at once
    file_path : Path, optional
        Cache location. An existing complete file is loaded instead of
        recomputing; a freshly computed result is saved there.
    verbose : bool
        Print progress

    Returns
    -------
    ImageStats
        Statistics with one row per plane. Channels of a plane are pooled.
    """
    if file_path is not None and Path(file_path).exists():
        stats = ImageStats.load(file_path)
        if stats.num_frames == stack.num_frames and stats.is_complete():
            return stats

    n_frames = stack.num_frames
    stats = ImageStats.empty(stack.num_planes, n_frames)

    for plane in range(stack.num_planes):
        for start in range(0, n_frames, chunk_size):
            frame_indices = list(range(start, min(start + chunk_size, n_frames)))
            frames = stack.get_frames(frame_indices, plane=plane)
            stats.update(plane, frame_indices, frames)
        if verbose:
            print(f"Computed pixel statistics for plane {plane + 1}/{stack.num_planes}")

    if file_path is not None:
        stats.save(file_path)

    return stats
