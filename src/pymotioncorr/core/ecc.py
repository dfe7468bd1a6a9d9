"""
Translation backend based on OpenCV's enhanced correlation coefficient (ECC)
maximization. Native shifts are the (N, 2, 3) ECC warp matrices, which map
reference coordinates into the moving frame.
"""

from typing import Tuple

import cv2
import numpy as np

from pymotioncorr.core.registration import ShiftSummary, iterative_template
from pymotioncorr.errors import RegistrationFailure
from pymotioncorr.util.image_processing import normalize, to_gray


class ECCBackend:
    """
    Parameters
    ----------
    max_iters : int
        Iteration limit of ``cv2.findTransformECC``
    eps : float
        Convergence threshold
    gauss_filt_size : int
        Gaussian pre-filter size used by OpenCV (odd)
    template_iterations : int
        Register-and-average rounds when building the initial template
    """

    def __init__(self, max_iters: int = 100, eps: float = 1e-5, gauss_filt_size: int = 5,
                 template_iterations: int = 2):
        self.max_iters = int(max_iters)
        self.eps = float(eps)
        self.gauss_filt_size = int(gauss_filt_size)
        self.template_iterations = int(template_iterations)

    def initialize_template(self, frames: np.ndarray) -> np.ndarray:
        return iterative_template(self, frames, iterations=self.template_iterations)

    def _find_warp(self, ref_f: np.ndarray, mov_f: np.ndarray) -> np.ndarray:
        W = np.eye(2, 3, dtype=np.float32)
        criteria = (cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, self.max_iters, self.eps)
        try:
            _, W = cv2.findTransformECC(
                ref_f, mov_f, W, cv2.MOTION_TRANSLATION, criteria, None, self.gauss_filt_size
            )
        except cv2.error as e:
            raise RegistrationFailure(f"ECC registration failed: {e}") from e
        if not np.all(np.isfinite(W)):
            raise RegistrationFailure("ECC produced a non-finite warp matrix")
        return W

    def _warp(self, frame: np.ndarray, W: np.ndarray) -> np.ndarray:
        h, w = frame.shape[:2]
        flags = cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP
        if frame.ndim == 2:
            return cv2.warpAffine(frame, W, (w, h), flags=flags, borderMode=cv2.BORDER_REPLICATE)
        out = np.empty_like(frame)
        for c in range(frame.shape[2]):
            out[..., c] = cv2.warpAffine(
                np.ascontiguousarray(frame[..., c]), W, (w, h), flags=flags, borderMode=cv2.BORDER_REPLICATE
            )
        return out

    def register_frames(self, frames: np.ndarray, reference: np.ndarray) -> Tuple[np.ndarray, ShiftSummary]:
        frames = np.asarray(frames, dtype=np.float32)
        ref_gray = to_gray(reference, n_spatial=2)
        ref_f = normalize(ref_gray)
        gray = to_gray(frames, n_spatial=3)

        warps = np.zeros((frames.shape[0], 2, 3), dtype=np.float32)
        quality = np.zeros(frames.shape[0], dtype=np.float64)
        aligned = np.empty_like(frames)
        for t in range(frames.shape[0]):
            mov_f = normalize(gray[t], ref=ref_gray)
            W = self._find_warp(ref_f, mov_f)
            warps[t] = W
            aligned[t] = self._warp(frames[t], W)
            quality[t] = float(np.mean(np.abs(normalize(to_gray(aligned[t]), ref=ref_gray) - ref_f)))
        return aligned, ShiftSummary(shifts=warps, quality=quality)

    def add_drift_to_shifts(self, summary: ShiftSummary, drift: np.ndarray) -> ShiftSummary:
        drift = np.asarray(drift, dtype=np.float64)
        summary.shifts = self.combine_shifts(summary.shifts, drift)
        summary.drift = summary.drift + drift
        return summary

    def combine_shifts(self, shifts: np.ndarray, offset: np.ndarray) -> np.ndarray:
        # Translating the aligned frame by (dy, dx) moves the sampling point by -(dy, dx)
        dy, dx = np.asarray(offset, dtype=np.float64)
        combined = np.array(shifts, dtype=np.float32, copy=True)
        combined[:, 0, 2] -= dx
        combined[:, 1, 2] -= dy
        return combined

    def shifts_to_offsets(self, shifts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        shifts = np.asarray(shifts, dtype=np.float64)
        return -shifts[:, 0, 2], -shifts[:, 1, 2]


def _ecc_factory(**kwargs):
    """Factory for the OpenCV ECC backend."""
    return ECCBackend(**kwargs)
