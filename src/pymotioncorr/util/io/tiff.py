from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import tifffile

from pymotioncorr.errors import IOFailure
from pymotioncorr.stack.image_stack import assign_frames, select_frames, validate_arrangement
from pymotioncorr.util.io._base import StackWriter


class StackState(str, Enum):
    UNOPENED = "unopened"
    OPENING = "opening"
    READY = "ready"


class TiffOutputStack(StackWriter):
    """
    Pre-allocated, memory-mapped TIFF stack written one frame set at a time.

    The file is created with its final shape on first use (zero filled) and
    reopened in place if it already exists, so an interrupted run can resume
    writing into the same file. The dimension arrangement is stored as the
    ``axes`` of the shaped TIFF series.

    State machine: ``UNOPENED -> OPENING -> READY``. ``open()`` on a READY
    stack does nothing; ``close()`` returns to UNOPENED.
    """

    def __init__(self, file_path: Union[str, Path], shape: Sequence[int], dtype,
                 dimension_arrangement: str, verbose: bool = False):
        super().__init__()
        self.file_path = Path(file_path)
        self.shape = tuple(int(s) for s in shape)
        self.dtype = np.dtype(dtype)
        self.dimension_arrangement = validate_arrangement(dimension_arrangement, len(self.shape))
        self.verbose = verbose
        self.state = StackState.UNOPENED
        self.created = False
        self._data: Optional[np.memmap] = None

    @property
    def is_ready(self) -> bool:
        return self.state is StackState.READY

    def open(self) -> "TiffOutputStack":
        """Create the file or reopen an existing one. Idempotent once READY."""
        if self.state is StackState.READY:
            return self

        self.state = StackState.OPENING
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            if self.file_path.exists():
                data = tifffile.memmap(str(self.file_path), mode="r+")
                if data.size != int(np.prod(self.shape)) or data.dtype != self.dtype:
                    raise IOFailure(
                        f"Existing stack {self.file_path} has shape {data.shape} ({data.dtype}), "
                        f"expected {self.shape} ({self.dtype})"
                    )
                if data.shape != self.shape:
                    data = data.reshape(self.shape)
                self.created = False
            else:
                data = tifffile.memmap(
                    str(self.file_path),
                    shape=self.shape,
                    dtype=self.dtype,
                    photometric="minisblack",
                    metadata={"axes": self.dimension_arrangement},
                )
                self.created = True
        except IOFailure:
            self.state = StackState.UNOPENED
            raise
        except (OSError, ValueError) as e:
            self.state = StackState.UNOPENED
            raise IOFailure(f"Could not open output stack {self.file_path}: {e}") from e

        self._data = data
        self.initialized = True
        self.state = StackState.READY
        if self.verbose:
            action = "Created" if self.created else "Reopened"
            print(f"{action} output stack {self.file_path.name} {self.shape}")
        return self

    def write_frames(self, frames: np.ndarray, frame_indices=None, channels=None, plane: Optional[int] = None):
        """
        Write a frame set given in THW/THWC order and flush it to disk.

        Raises
        ------
        IOFailure
            If the data can not be written.
        """
        self.open()
        try:
            values = np.asarray(frames)
            if values.dtype != self.dtype:
                values = values.astype(self.dtype)
            assign_frames(self._data, self.dimension_arrangement, values, frame_indices, channels, plane)
            self._data.flush()
        except (OSError, ValueError) as e:
            raise IOFailure(f"Failed writing to {self.file_path}: {e}") from e

    def read_frames(self, frame_indices=None, channels=None, plane: Optional[int] = None) -> np.ndarray:
        self.open()
        return select_frames(self._data, self.dimension_arrangement, frame_indices, channels, plane)

    def close(self):
        if self._data is not None:
            self._data.flush()
            self._data = None
        self.state = StackState.UNOPENED


class TiffImageWriter(StackWriter):
    """
    Pre-allocated TIFF image without a time axis (e.g. one FOV image per
    channel and plane).
    """

    def __init__(self, file_path: Union[str, Path], shape: Sequence[int], dtype,
                 dimension_arrangement: str, verbose: bool = False):
        super().__init__()
        # Store with a leading singleton T axis to reuse the stack machinery
        self._stack = TiffOutputStack(
            file_path, (1,) + tuple(shape), dtype, "T" + dimension_arrangement, verbose=verbose
        )
        self.file_path = self._stack.file_path
        self.shape = tuple(shape)
        self.dtype = self._stack.dtype
        self.dimension_arrangement = dimension_arrangement.upper()

    @property
    def state(self) -> StackState:
        return self._stack.state

    def open(self) -> "TiffImageWriter":
        self._stack.open()
        return self

    def write_frames(self, frames: np.ndarray, frame_indices=None, channels=None, plane: Optional[int] = None):
        self._stack.write_frames(frames, 0, channels, plane)

    def read_frames(self, frame_indices=None, channels=None, plane: Optional[int] = None) -> np.ndarray:
        return self._stack.read_frames(0, channels, plane)

    def close(self):
        self._stack.close()


def write_rgb_image(file_path: Union[str, Path], rgb: np.ndarray) -> Path:
    """
    Save an (H, W, 3) or (Z, H, W, 3) uint8 array as an RGB TIFF.

    Raises
    ------
    IOFailure
        If the file can not be written.
    """
    path = Path(file_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tifffile.imwrite(str(path), np.asarray(rgb, dtype=np.uint8), photometric="rgb")
    except (OSError, ValueError) as e:
        raise IOFailure(f"Failed writing RGB image {path}: {e}") from e
    return path
