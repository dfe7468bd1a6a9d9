from abc import ABC, abstractmethod
from typing import Optional, Sequence, Union

import numpy as np


class StackWriter(ABC):
    """
    Abstract base class for output image stacks.
    Defines a common interface for writing and reading back frame sets
    addressed by frame, channel and plane.
    """
    def __init__(self):
        self.initialized = False
        self.dimension_arrangement: str = ""
        self.shape: tuple = ()
        self.dtype: Optional[np.dtype] = None

    @abstractmethod
    def open(self):
        """Creates the stack on first use or reopens an existing one."""
        pass

    @abstractmethod
    def write_frames(self, frames: np.ndarray, frame_indices: Union[int, Sequence[int], None] = None,
                     channels: Union[int, Sequence[int], None] = None, plane: Optional[int] = None):
        """Writes frames to the stack."""
        pass

    @abstractmethod
    def read_frames(self, frame_indices: Union[int, Sequence[int], None] = None,
                    channels: Union[int, Sequence[int], None] = None,
                    plane: Optional[int] = None) -> np.ndarray:
        """Reads frames back from the stack."""
        pass

    @abstractmethod
    def close(self):
        """Flushes pending data and releases the file."""
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
