"""
Chunk drift compensation.

Registration aligns each chunk to its own reference. Slow drift of that
reference is removed by aligning the mean of every registered chunk to the
session reference (the reference of the first chunk) with one rigid shift.
"""

import warnings
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from skimage.registration import phase_cross_correlation

from pymotioncorr.core.registration import shift_frames, taper
from pymotioncorr.errors import DriftRejectedWarning
from pymotioncorr.util.image_processing import to_gray


@dataclass
class DriftResult:
    """Drift-corrected frames and the applied ``(dy, dx)`` translation."""
    frames: np.ndarray
    drift: np.ndarray
    rejected: bool = False


class DriftCorrector:
    """
    Parameters
    ----------
    max_shift : float
        Drift larger than this on either axis is rejected
    upsample_factor : int
        Subpixel precision of the estimate is ``1 / upsample_factor``
    boundary : str
        ``scipy.ndimage`` fill mode; ``"nearest"`` replicates the edge so the
        translation leaves no empty border
    """

    def __init__(self, max_shift: float = 20.0, upsample_factor: int = 50,
                 boundary: str = "nearest", interpolation_order: int = 1):
        self.max_shift = float(max_shift)
        self.upsample_factor = int(upsample_factor)
        self.boundary = boundary
        self.interpolation_order = int(interpolation_order)

    def estimate_drift(self, chunk_frames: np.ndarray, session_reference: np.ndarray) -> Tuple[np.ndarray, bool]:
        """
        Shift that aligns the chunk mean to ``session_reference``.

        Returns
        -------
        drift : ndarray, shape (2,)
            ``(dy, dx)``, zero if rejected
        rejected : bool
            True if the estimate exceeded ``max_shift``
        """
        mean_img = to_gray(chunk_frames, n_spatial=3).mean(axis=0)
        ref = to_gray(session_reference, n_spatial=2)
        drift, _, _ = phase_cross_correlation(
            taper(ref), taper(mean_img), upsample_factor=self.upsample_factor
        )
        drift = np.asarray(drift, dtype=np.float64)

        if not np.all(np.isfinite(drift)) or np.any(np.abs(drift) > self.max_shift):
            warnings.warn(
                f"Drift estimate (dy={drift[0]:.2f}, dx={drift[1]:.2f}) exceeds "
                f"{self.max_shift:g} px; using zero drift for this chunk",
                DriftRejectedWarning,
                stacklevel=2,
            )
            return np.zeros(2, dtype=np.float64), True
        return drift, False

    def correct_drift(self, chunk_frames: np.ndarray, session_reference: np.ndarray) -> DriftResult:
        drift, rejected = self.estimate_drift(chunk_frames, session_reference)
        if rejected or not np.any(drift):
            return DriftResult(frames=chunk_frames, drift=drift, rejected=rejected)
        corrected = shift_frames(
            chunk_frames, drift, mode=self.boundary, order=self.interpolation_order
        )
        return DriftResult(frames=corrected, drift=drift, rejected=False)
