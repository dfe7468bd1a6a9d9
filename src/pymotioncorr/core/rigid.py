"""
Rigid translation backend based on FFT phase correlation.

Every frame is registered to the reference with scikit-image's
``phase_cross_correlation`` (subpixel refinement by upsampled DFT) on
mean-free, Hann-tapered copies; the untapered frames are then translated with
``scipy.ndimage.shift``. Native shifts are an (N, 2) array of ``(dy, dx)`` per
frame.
"""

from typing import Optional, Tuple

import numpy as np
from skimage.filters import window
from skimage.registration import phase_cross_correlation

from pymotioncorr.core.registration import ShiftSummary, iterative_template, shift_frames, taper
from pymotioncorr.errors import RegistrationFailure
from pymotioncorr.util.image_processing import to_gray


class RigidBackend:
    """
    Parameters
    ----------
    max_shift : float or None
        Largest accepted displacement per axis in pixels. Larger estimates are
        clipped. None disables the bound.
    upsample_factor : int
        Subpixel precision is ``1 / upsample_factor`` pixels
    boundary : str
        ``scipy.ndimage`` mode used to fill the border when shifting
    interpolation_order : int
        Spline order of the translation
    template_iterations : int
        Register-and-average rounds when building the initial template
    """

    def __init__(
        self,
        max_shift: Optional[float] = 50,
        upsample_factor: int = 10,
        boundary: str = "nearest",
        interpolation_order: int = 1,
        template_iterations: int = 2,
    ):
        self.max_shift = max_shift
        self.upsample_factor = int(upsample_factor)
        self.boundary = boundary
        self.interpolation_order = int(interpolation_order)
        self.template_iterations = int(template_iterations)

    def initialize_template(self, frames: np.ndarray) -> np.ndarray:
        return iterative_template(self, frames, iterations=self.template_iterations)

    def estimate_shifts(self, frames: np.ndarray, reference: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Per-frame ``(dy, dx)`` and registration error, without warping."""
        gray = to_gray(frames, n_spatial=3)
        ref = to_gray(reference, n_spatial=2)
        if not np.all(np.isfinite(ref)):
            raise RegistrationFailure("Reference image contains non-finite values")

        hann = window("hann", ref.shape).astype(np.float32)
        ref_tapered = taper(ref, hann)

        shifts = np.zeros((gray.shape[0], 2), dtype=np.float64)
        errors = np.zeros(gray.shape[0], dtype=np.float64)
        for t in range(gray.shape[0]):
            if not np.all(np.isfinite(gray[t])):
                raise RegistrationFailure(f"Frame {t} of the chunk contains non-finite values")
            shift, error, _ = phase_cross_correlation(
                ref_tapered, taper(gray[t], hann), upsample_factor=self.upsample_factor
            )
            shifts[t] = shift
            errors[t] = error

        if not np.all(np.isfinite(shifts)):
            raise RegistrationFailure("Phase correlation returned non-finite shifts")
        if self.max_shift is not None:
            np.clip(shifts, -self.max_shift, self.max_shift, out=shifts)
        return shifts, errors

    def register_frames(self, frames: np.ndarray, reference: np.ndarray) -> Tuple[np.ndarray, ShiftSummary]:
        shifts, errors = self.estimate_shifts(frames, reference)
        aligned = shift_frames(frames, shifts, mode=self.boundary, order=self.interpolation_order)
        return aligned, ShiftSummary(shifts=shifts, quality=errors)

    def add_drift_to_shifts(self, summary: ShiftSummary, drift: np.ndarray) -> ShiftSummary:
        drift = np.asarray(drift, dtype=np.float64)
        summary.shifts = self.combine_shifts(summary.shifts, drift)
        summary.drift = summary.drift + drift
        return summary

    def combine_shifts(self, shifts: np.ndarray, offset: np.ndarray) -> np.ndarray:
        return np.asarray(shifts, dtype=np.float64) + np.asarray(offset, dtype=np.float64)[None, :]

    def shifts_to_offsets(self, shifts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        shifts = np.asarray(shifts, dtype=np.float64)
        return shifts[:, 1].copy(), shifts[:, 0].copy()


def _rigid_factory(**kwargs):
    """Factory for the rigid phase-correlation backend."""
    return RigidBackend(**kwargs)
