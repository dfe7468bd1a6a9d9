"""
Per-frame shift bookkeeping for a motion correction run.

The ledger holds ``offset_x``, ``offset_y`` and ``rms_movement`` for every
frame of every plane and is persisted as ``correction_stats.npz``. A frame
whose offsets are finite counts as done: the pipeline persists the ledger as
the last step of each chunk, so a resumed run skips exactly the chunks whose
outputs are complete.
"""

from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from pymotioncorr.errors import ConfigurationError
from pymotioncorr.util.status import atomic_save_npz

LEDGER_FIELDS = ("offset_x", "offset_y", "rms_movement")


class ShiftLedger:
    """
    Parameters
    ----------
    file_path : Path
        Location of ``correction_stats.npz``
    num_planes : int
        Number of planes of the source stack. Channels share one row.
    """

    def __init__(self, file_path: Union[str, Path], num_planes: int = 1):
        self.file_path = Path(file_path)
        self.num_planes = int(num_planes)
        self.offset_x: Optional[np.ndarray] = None
        self.offset_y: Optional[np.ndarray] = None
        self.rms_movement: Optional[np.ndarray] = None

    @property
    def num_frames(self) -> int:
        return 0 if self.offset_x is None else int(self.offset_x.shape[1])

    def initialize(self, num_frames: int) -> bool:
        """
        Load the persisted ledger or allocate and persist a new one.

        Returns
        -------
        bool
            True if an existing ledger was loaded.
        """
        shape = (self.num_planes, int(num_frames))
        if self.file_path.exists():
            with np.load(str(self.file_path)) as data:
                arrays = {name: np.array(data[name], dtype=np.float64) for name in LEDGER_FIELDS}
            if all(a.shape == shape for a in arrays.values()):
                for name, array in arrays.items():
                    setattr(self, name, array)
                return True
            raise ConfigurationError(
                f"Ledger {self.file_path} does not match the stack "
                f"(expected {shape}, found {arrays['offset_x'].shape})"
            )

        for name in LEDGER_FIELDS:
            setattr(self, name, np.full(shape, np.nan, dtype=np.float64))
        self.persist()
        return False

    def update(self, plane: int, frame_indices: Sequence[int], offset_x: np.ndarray,
               offset_y: np.ndarray, rms_movement: Optional[np.ndarray] = None) -> None:
        """Record the shifts of ``frame_indices``; rms defaults to the shift magnitude."""
        idx = np.asarray(frame_indices, dtype=np.intp)
        offset_x = np.asarray(offset_x, dtype=np.float64)
        offset_y = np.asarray(offset_y, dtype=np.float64)
        if offset_x.shape != idx.shape or offset_y.shape != idx.shape:
            raise ValueError("Offsets must have one value per frame index")
        if rms_movement is None:
            rms_movement = np.sqrt(offset_x ** 2 + offset_y ** 2)

        self.offset_x[plane, idx] = offset_x
        self.offset_y[plane, idx] = offset_y
        self.rms_movement[plane, idx] = rms_movement

    def persist(self) -> None:
        atomic_save_npz(self.file_path, **{name: getattr(self, name) for name in LEDGER_FIELDS})

    def is_completed(self, plane: int, frame_indices: Sequence[int]) -> bool:
        if self.offset_x is None:
            return False
        idx = np.asarray(frame_indices, dtype=np.intp)
        return bool(np.all(np.isfinite(self.offset_x[plane, idx])) and
                    np.all(np.isfinite(self.offset_y[plane, idx])))

    def is_plane_completed(self, plane: int) -> bool:
        return self.is_completed(plane, np.arange(self.num_frames))

    def max_abs_offset(self, plane: int) -> float:
        """Largest absolute offset along either axis over the plane (0 if none)."""
        values = np.concatenate([self.offset_x[plane], self.offset_y[plane]])
        values = values[np.isfinite(values)]
        return float(np.max(np.abs(values))) if values.size else 0.0

    def get(self, plane: int, frame_indices: Sequence[int]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        idx = np.asarray(frame_indices, dtype=np.intp)
        return self.offset_x[plane, idx], self.offset_y[plane, idx], self.rms_movement[plane, idx]
