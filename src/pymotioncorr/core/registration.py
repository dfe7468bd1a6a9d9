"""
Shared pieces of the registration backends.

A backend is any object with the methods of ``RegistrationBackend``. Shifts
are kept in the backend's native representation (a displacement vector per
frame, a warp matrix per frame, ...) and only converted to pixel offsets
through ``shifts_to_offsets``. Offsets follow the ``(dy, dx)`` convention of
``scipy.ndimage.shift``: the translation that moves a frame onto the
reference.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple, runtime_checkable

import numpy as np
from scipy.ndimage import shift as nd_shift
from skimage.filters import window

from pymotioncorr.util.image_processing import to_gray


@dataclass
class ShiftSummary:
    """
    Per-chunk registration result.

    Attributes
    ----------
    shifts : ndarray
        Native per-frame shifts of the backend, first axis is time
    quality : ndarray, optional
        Per-frame registration error reported by the backend
    drift : ndarray
        Chunk drift ``(dy, dx)`` already folded into ``shifts``
    """
    shifts: np.ndarray
    quality: Optional[np.ndarray] = None
    drift: np.ndarray = field(default_factory=lambda: np.zeros(2, dtype=np.float64))

    @property
    def num_frames(self) -> int:
        return int(self.shifts.shape[0])


@runtime_checkable
class RegistrationBackend(Protocol):
    def initialize_template(self, frames: np.ndarray) -> np.ndarray: ...

    def register_frames(self, frames: np.ndarray, reference: np.ndarray) -> Tuple[np.ndarray, ShiftSummary]: ...

    def add_drift_to_shifts(self, summary: ShiftSummary, drift: np.ndarray) -> ShiftSummary: ...

    def combine_shifts(self, shifts: np.ndarray, offset: np.ndarray) -> np.ndarray: ...

    def shifts_to_offsets(self, shifts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]: ...


def taper(image: np.ndarray, hann: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Mean-free, Hann-windowed copy of an (H,W) image for phase correlation.

    Without the taper the jump at the image borders dominates the cross-power
    spectrum of non-periodic images and pins the correlation peak near zero.
    """
    image = np.asarray(image, dtype=np.float32)
    if hann is None:
        hann = window("hann", image.shape).astype(np.float32)
    return (image - image.mean()) * hann


def shift_image(image: np.ndarray, dy: float, dx: float, mode: str = "nearest", order: int = 1) -> np.ndarray:
    """Translate an (H,W) or (H,W,C) image by ``(dy, dx)``."""
    offset = (dy, dx) if image.ndim == 2 else (dy, dx) + (0,) * (image.ndim - 2)
    return nd_shift(image, offset, order=order, mode=mode)


def shift_frames(frames: np.ndarray, shifts: np.ndarray, mode: str = "nearest", order: int = 1) -> np.ndarray:
    """
    Translate each frame of a (T,H,W) or (T,H,W,C) block.

    Parameters
    ----------
    frames : ndarray
        Frame block
    shifts : ndarray, shape (T, 2) or (2,)
        ``(dy, dx)`` per frame, or one vector for all frames
    """
    frames = np.asarray(frames, dtype=np.float32)
    shifts = np.asarray(shifts, dtype=np.float64)
    if shifts.ndim == 1:
        shifts = np.broadcast_to(shifts, (frames.shape[0], 2))

    out = np.empty_like(frames)
    for t in range(frames.shape[0]):
        dy, dx = shifts[t]
        if dy == 0 and dx == 0:
            out[t] = frames[t]
        else:
            out[t] = shift_image(frames[t], dy, dx, mode=mode, order=order)
    return out


def iterative_template(backend: RegistrationBackend, frames: np.ndarray, iterations: int = 2) -> np.ndarray:
    """
    Build a template from a block of frames.

    Starts from the frame that best matches the block mean, then alternates
    registration to the template and averaging of the aligned frames.
    """
    frames = np.asarray(frames, dtype=np.float32)
    gray = to_gray(frames, n_spatial=3)
    mean_img = gray.mean(axis=0)

    centered = gray - gray.mean(axis=(1, 2), keepdims=True)
    mean_centered = mean_img - mean_img.mean()
    num = np.tensordot(centered, mean_centered, axes=([1, 2], [0, 1]))
    den = np.sqrt(np.sum(centered ** 2, axis=(1, 2)) * np.sum(mean_centered ** 2)) + 1e-12
    template = frames[int(np.argmax(num / den))].copy()

    for _ in range(max(0, iterations)):
        aligned, _ = backend.register_frames(frames, template)
        template = aligned.mean(axis=0).astype(np.float32)
    return template
