"""
Sequential chunk iteration over image stacks.

``StackProcessor`` walks a stack plane by plane and, within each plane, chunk
by chunk. Subclasses implement the per-chunk work through lifecycle hooks.
All channels of a plane are processed together.
"""

from abc import ABC, abstractmethod
from math import ceil
from time import time
from typing import Any, List, Optional, Tuple

import numpy as np

from pymotioncorr.stack.image_stack import ImageStack


class StackProcessor(ABC):
    """
    Base class for processing an image stack in chunks ("parts").

    Hooks, in call order:

    - ``on_initialization()`` once before the first plane
    - ``on_plane_started()`` when ``current_plane``/``current_channel`` change
    - per chunk: ``is_part_completed(i)`` (skip if True),
      ``process_chunk(i, data)``, ``save_chunk(i, corrected)``,
      ``on_chunk_finished(i, summary)``
    - ``on_completion()`` after the last chunk of a plane

    Cancellation is cooperative: ``request_cancel()`` takes effect at the next
    chunk boundary, after ``on_chunk_finished`` has run.
    """

    def __init__(self, source_stack: ImageStack, frames_per_part: int = 500, verbose: bool = False):
        if frames_per_part < 1:
            raise ValueError("frames_per_part must be >= 1")
        self.source_stack = source_stack
        self.frames_per_part = int(frames_per_part)
        self.verbose = verbose

        self.current_part: Optional[int] = None
        self.current_plane: Optional[int] = None
        self.current_channel: Tuple[int, ...] = tuple(range(source_stack.num_channels))
        self.current_frame_indices: List[int] = []

        self.is_cancelled = False
        self._cancel_requested = False

    @property
    def num_parts(self) -> int:
        return max(1, ceil(self.source_stack.num_frames / self.frames_per_part))

    def get_frame_indices(self, part: int) -> List[int]:
        """Frame indices (0-based) belonging to chunk ``part``."""
        if part < 0 or part >= self.num_parts:
            raise IndexError(f"Part {part} out of range [0, {self.num_parts - 1}]")
        start = part * self.frames_per_part
        stop = min(start + self.frames_per_part, self.source_stack.num_frames)
        return list(range(start, stop))

    def request_cancel(self) -> None:
        """Stop after the chunk that is currently being processed."""
        self._cancel_requested = True

    def run(self) -> bool:
        """
        Process all planes and chunks.

        Returns
        -------
        bool
            True if the stack was processed to the end, False if cancelled.
        """
        start_time = time()
        self.is_cancelled = False
        self._cancel_requested = False
        self.on_initialization()

        for plane in range(self.source_stack.num_planes):
            self.current_plane = plane
            self.current_channel = tuple(range(self.source_stack.num_channels))
            self.on_plane_started()

            for part in range(self.num_parts):
                if self._cancel_requested:
                    self.is_cancelled = True
                    return False

                self.current_part = part
                self.current_frame_indices = self.get_frame_indices(part)

                if self.is_part_completed(part):
                    if self.verbose:
                        print(f"Skipping part {part + 1}/{self.num_parts} - already complete")
                    continue

                data = self.source_stack.get_frames(
                    self.current_frame_indices,
                    channels=self.source_stack.channel_index(self.current_channel),
                    plane=plane,
                )
                corrected, summary = self.process_chunk(part, data)
                self.save_chunk(part, corrected)
                self.on_chunk_finished(part, summary)

                if self.verbose:
                    print(f"Finished part {part + 1}/{self.num_parts} (plane {plane + 1})")

            if self._cancel_requested:
                self.is_cancelled = True
                return False

            self.on_completion()

        if self.verbose:
            print(f"Done after {time() - start_time:.2f} seconds")
        return True

    def on_initialization(self) -> None:
        pass

    def on_plane_started(self) -> None:
        pass

    def is_part_completed(self, part: int) -> bool:
        return False

    @abstractmethod
    def process_chunk(self, part: int, data: np.ndarray) -> Tuple[np.ndarray, Any]:
        """Process one chunk and return ``(corrected_data, summary)``."""
        pass

    def save_chunk(self, part: int, corrected: np.ndarray) -> None:
        pass

    def on_chunk_finished(self, part: int, summary: Any) -> None:
        pass

    def on_completion(self) -> None:
        pass
