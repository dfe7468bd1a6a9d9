"""
Chunked motion correction of image stacks.

``MotionCorrection`` walks the source stack plane by plane and chunk by chunk.
Per chunk the frames are preprocessed (baseline subtraction, scan-line offset
correction), registered to the current reference by the configured backend,
drift corrected against the session reference, recorded in the shift ledger,
optionally recast, and written to the output stacks. The ledger is persisted
last, so a chunk counts as done only once all of its outputs are on disk and
an interrupted run resumes at the first unfinished chunk.
"""

from pathlib import Path
from typing import Optional, Union

import numpy as np

from pymotioncorr.core import get_backend
from pymotioncorr.core.registration import ShiftSummary, shift_image
from pymotioncorr.motion_correction import recast
from pymotioncorr.motion_correction.drift import DriftCorrector
from pymotioncorr.motion_correction.ledger import ShiftLedger
from pymotioncorr.motion_correction.MC_options import MCOptions, resolve_persisted_options
from pymotioncorr.motion_correction.outputs import OutputStackSet
from pymotioncorr.motion_correction.template import TemplateManager
from pymotioncorr.stack.image_stack import DEFAULT_ARRANGEMENTS, ImageStack
from pymotioncorr.stack.image_stats import compute_image_stats
from pymotioncorr.stack.processor import StackProcessor
from pymotioncorr.util.image_processing import cast_to_dtype, correct_line_offsets
from pymotioncorr.util.status import load_or_create_status, save_status

LINE_OFFSET_FRAMES = 100


class MotionCorrection(StackProcessor):
    """
    Motion correction of one source stack.

    Parameters
    ----------
    source_stack : ImageStack
        Stack to correct
    options : MCOptions, optional
        Run options. On a rerun into the same output folder the options of the
        first run take precedence.
    backend : RegistrationBackend, optional
        Backend instance to use instead of ``Registration.toolbox``

    Examples
    --------
    >>> stack = ImageStack.from_file("recording.tif")
    >>> mc = MotionCorrection(stack, MCOptions(output_path="results"))
    >>> mc.run()
    True
    """

    def __init__(self, source_stack: ImageStack, options: Optional[MCOptions] = None, backend=None):
        self.options = options if options is not None else MCOptions()
        super().__init__(
            source_stack,
            frames_per_part=self.options.general.frames_per_part,
            verbose=self.options.verbose,
        )
        self.output_path = Path(self.options.output_path)
        self.folder = self.output_path / "motion_corrected"
        self.backend = backend

        self.image_stats = None
        self.ledger: Optional[ShiftLedger] = None
        self.outputs: Optional[OutputStackSet] = None
        self.template_manager: Optional[TemplateManager] = None
        self.drift_corrector: Optional[DriftCorrector] = None

        self.output_dtype = source_stack.dtype
        self.recast_output = False
        self.recast_bounds: Optional[recast.RecastBounds] = None
        self.baseline = 0.0
        self.line_offset = 0
        self._corrected_frames: Optional[np.ndarray] = None

    @property
    def plane_channels(self):
        """Channel index of the current pass as used for stack access."""
        return self.source_stack.channel_index(self.current_channel)

    def run(self) -> bool:
        try:
            return super().run()
        finally:
            if self.outputs is not None:
                self.outputs.close()

    def on_initialization(self) -> None:
        self.options = resolve_persisted_options(self.options, self.folder / "options.json")
        self.frames_per_part = self.options.general.frames_per_part
        general, export = self.options.general, self.options.export

        if self.backend is None:
            self.backend = get_backend(self.options.registration.toolbox, **self.options.registration.backend_params)

        source_dtype = self.source_stack.dtype
        self.output_dtype = self.options.output_dtype(source_dtype)
        self.recast_output = recast.needs_recast(source_dtype, self.output_dtype)
        if self.recast_output:
            recast.validate_output_type(self.output_dtype)

        if self.verbose:
            print(f"Motion correcting {self.source_stack} in {self.num_parts} parts "
                  f"with the '{self.options.registration.toolbox}' backend")

        self.image_stats = compute_image_stats(
            self.source_stack,
            chunk_size=self.frames_per_part,
            file_path=self.output_path / "raw_image_info" / "image_stats.npz",
            verbose=self.verbose,
        )

        self.ledger = ShiftLedger(self.folder / "correction_stats.npz", self.source_stack.num_planes)
        resumed = self.ledger.initialize(self.source_stack.num_frames)
        if resumed and self.verbose:
            print("Resuming from existing correction stats")

        self.outputs = OutputStackSet(
            self.output_path,
            self.source_stack,
            self.num_parts,
            self.output_dtype,
            save_average_projection=export.save_average_projection,
            save_maximum_projection=export.save_maximum_projection,
            verbose=self.verbose,
        )
        self.drift_corrector = DriftCorrector(
            max_shift=general.drift_max_shift,
            upsample_factor=general.drift_upsample_factor,
        )

    def on_plane_started(self) -> None:
        plane = self.current_plane
        self.baseline = float(np.nanpercentile(self.image_stats.prctile_l2[plane], 5))
        if self.recast_output:
            self.recast_bounds = recast.compute_bounds(
                self.image_stats, plane, upper_percentile=self.options.export.recast_upper_percentile
            )
        self.template_manager = TemplateManager(
            self.backend,
            self.outputs.reference_images,
            self.source_stack.dtype,
            channels=self.plane_channels,
            plane=plane,
            baseline=self.baseline,
            verbose=self.verbose,
        )

    def is_part_completed(self, part: int) -> bool:
        return self.ledger.is_completed(self.current_plane, self.current_frame_indices)

    def preprocess(self, part: int, data: np.ndarray):
        """Baseline-subtracted float32 frames and the reference for ``part``."""
        frames = np.asarray(data, dtype=np.float32) - np.float32(self.baseline)
        if self.options.general.correct_line_offsets:
            frames, self.line_offset = correct_line_offsets(frames, n_frames=LINE_OFFSET_FRAMES)
            if self.line_offset and self.verbose:
                print(f"Corrected scan line offset of {self.line_offset} px")
        reference = self.template_manager.get_or_seed_reference(part, frames)
        return frames, reference

    def postprocess(self, part: int, frames: np.ndarray, summary: ShiftSummary) -> np.ndarray:
        """Drift correction, ledger update and recast of registered frames."""
        frames = frames + np.float32(self.baseline)

        if part != 0 and self.options.general.correct_drift:
            session_reference = self.template_manager.session_reference + np.float32(self.baseline)
            result = self.drift_corrector.correct_drift(frames, session_reference)
            frames = result.frames

            if self.options.general.update_reference and np.any(result.drift):
                dy, dx = result.drift
                self.template_manager.update_reference(
                    shift_image(self.template_manager.current_reference, dy, dx), part
                )
            summary = self.backend.add_drift_to_shifts(summary, result.drift)

        offset_x, offset_y = self.backend.shifts_to_offsets(summary.shifts)
        self.ledger.update(self.current_plane, self.current_frame_indices, offset_x, offset_y)

        self._corrected_frames = frames
        if self.recast_output:
            return recast.apply(frames, self.recast_bounds, self.output_dtype)
        return cast_to_dtype(frames, self.output_dtype)

    def process_chunk(self, part: int, data: np.ndarray):
        frames, reference = self.preprocess(part, data)
        aligned, summary = self.backend.register_frames(frames, reference)
        output = self.postprocess(part, aligned, summary)
        return output, summary

    def save_chunk(self, part: int, corrected: np.ndarray) -> None:
        self.outputs.write_chunk(
            part,
            self.current_frame_indices,
            corrected,
            self._corrected_frames,
            channels=self.plane_channels,
            plane=self.current_plane,
        )
        self._corrected_frames = None

    def on_chunk_finished(self, part: int, summary: ShiftSummary) -> None:
        # Must stay last: a persisted shift marks the chunk as done
        self.ledger.persist()

    def on_completion(self) -> None:
        plane = self.current_plane
        crop = int(round(1.5 * self.ledger.max_abs_offset(plane)))
        self.outputs.finalize(crop=crop, channels=self.plane_channels, plane=plane)

        if self.source_stack.num_channels > 1 and plane == self.source_stack.num_planes - 1:
            self.outputs.write_rgb_composites()

        status = load_or_create_status(self.folder)
        status.setdefault("completed_planes", [])
        if plane not in status["completed_planes"]:
            status["completed_planes"].append(plane)
        status["completed"] = len(status["completed_planes"]) == self.source_stack.num_planes
        save_status(self.folder, status)

        if self.verbose:
            print(f"Completed plane {plane + 1}/{self.source_stack.num_planes}")


def correct_motion(
    source: Union[str, Path, np.ndarray, ImageStack],
    options: Optional[MCOptions] = None,
    dimension_arrangement: Optional[str] = None,
) -> MotionCorrection:
    """
    Run motion correction and return the finished processor.

    Parameters
    ----------
    source : path, ndarray or ImageStack
        Stack to correct. Arrays default to ``"TYX"`` / ``"TCYX"`` /
        ``"TZCYX"`` by dimensionality.
    options : MCOptions, optional
        Run options
    dimension_arrangement : str, optional
        Axis labels of ``source``
    """
    if isinstance(source, ImageStack):
        stack = source
    elif isinstance(source, (str, Path)):
        stack = ImageStack.from_file(source, dimension_arrangement)
    else:
        data = np.asarray(source)
        if dimension_arrangement is None:
            dimension_arrangement = DEFAULT_ARRANGEMENTS.get(data.ndim, "TYX")
        stack = ImageStack(data, dimension_arrangement)

    processor = MotionCorrection(stack, options)
    processor.run()
    return processor
