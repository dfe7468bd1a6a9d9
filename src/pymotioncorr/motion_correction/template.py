"""
Reference template lifecycle of one (plane) pass.

Chunk ``k`` is registered to one reference image, which is persisted as entry
``k`` of the reference stack. Entry 0 is seeded from the first chunk and
serves as the session reference for drift correction. An entry that is still
all zeros has not been written yet.
"""

from typing import List, Optional, Union

import numpy as np

from pymotioncorr.errors import TemplateInitializationError
from pymotioncorr.util.image_processing import cast_to_dtype
from pymotioncorr.util.io.tiff import TiffOutputStack


class TemplateManager:
    """
    Parameters
    ----------
    backend : RegistrationBackend
        Provides ``initialize_template``
    reference_stack : TiffOutputStack
        Reference stack with one entry per chunk
    source_dtype : dtype
        Sample type the references are persisted in
    channels, plane :
        Location of this pass in the reference stack
    baseline : float
        Offset subtracted from the frames before registration. References
        live in the same baseline-subtracted space and are persisted with the
        baseline added back.
    """

    def __init__(self, backend, reference_stack: TiffOutputStack, source_dtype,
                 channels: Union[None, int, List[int]] = None, plane: Optional[int] = None,
                 baseline: float = 0.0, verbose: bool = False):
        self.backend = backend
        self.reference_stack = reference_stack
        self.source_dtype = np.dtype(source_dtype)
        self.channels = channels
        self.plane = plane
        self.baseline = float(baseline)
        self.verbose = verbose

        self.current_reference: Optional[np.ndarray] = None
        self._session_reference: Optional[np.ndarray] = None

    def _read_entry(self, chunk_index: int) -> Optional[np.ndarray]:
        stored = self.reference_stack.read_frames(chunk_index, self.channels, self.plane)
        if not np.any(stored):
            return None
        return np.asarray(stored, dtype=np.float32) - np.float32(self.baseline)

    def persist_reference(self, reference: np.ndarray, chunk_index: int) -> None:
        stored = cast_to_dtype(np.asarray(reference, dtype=np.float64) + self.baseline, self.source_dtype)
        self.reference_stack.write_frames(stored, chunk_index, self.channels, self.plane)

    def seed_reference(self, chunk_data: np.ndarray) -> np.ndarray:
        """
        Initial template from the frames of the first chunk.

        Raises
        ------
        TemplateInitializationError
            If the chunk is empty or the template is not finite or flat.
        """
        if chunk_data is None or chunk_data.shape[0] == 0:
            raise TemplateInitializationError("Can not build a template from an empty chunk")
        if not np.all(np.isfinite(chunk_data)) or float(np.ptp(chunk_data)) == 0.0:
            raise TemplateInitializationError("First chunk is constant or contains non-finite values")
        template = np.asarray(self.backend.initialize_template(chunk_data), dtype=np.float32)
        if template.size == 0 or not np.all(np.isfinite(template)):
            raise TemplateInitializationError("Template initialization produced non-finite values")
        if float(np.ptp(template)) == 0.0:
            raise TemplateInitializationError("Template initialization produced a constant image")
        if self.verbose:
            print("Initialized reference template from the first chunk")
        return template

    def get_or_seed_reference(self, chunk_index: int, chunk_data: np.ndarray) -> np.ndarray:
        """Reference for ``chunk_index``; persisted as entry ``chunk_index`` before returning."""
        if chunk_index == 0:
            if self.current_reference is None:
                reference = self._read_entry(0)
                self.current_reference = reference if reference is not None else self.seed_reference(chunk_data)
        elif self.current_reference is None:
            # Resumed run: continue from the last persisted reference
            reference = self._read_entry(chunk_index - 1)
            if reference is None:
                reference = self.session_reference
            self.current_reference = reference if reference is not None else self.seed_reference(chunk_data)

        self.persist_reference(self.current_reference, chunk_index)
        return self.current_reference

    def update_reference(self, new_reference: np.ndarray, chunk_index: int) -> None:
        """Replace the current reference and its persisted entry."""
        self.current_reference = np.asarray(new_reference, dtype=np.float32)
        self.persist_reference(self.current_reference, chunk_index)

    @property
    def session_reference(self) -> Optional[np.ndarray]:
        """Persisted entry 0, the alignment target for drift correction."""
        if self._session_reference is None:
            self._session_reference = self._read_entry(0)
        return self._session_reference
