"""
Output streams of a motion correction run.

All streams are TIFF stacks that inherit the dimension arrangement of the
source. The corrected stack has one image per frame, the reference and
projection stacks one image per chunk. The FOV images (whole-stack average
and maximum projections) have no time axis and live in ``fov_images/``.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from pymotioncorr.motion_correction.recast import make_uint8
from pymotioncorr.stack.image_stack import ImageStack
from pymotioncorr.util.image_processing import cast_to_dtype, moving_mean
from pymotioncorr.util.io.tiff import TiffImageWriter, TiffOutputStack, write_rgb_image

MAX_PROJECTION_SMOOTHING = 3


def _per_chunk_shape(source: ImageStack, num_chunks: int) -> tuple:
    shape = list(source.shape)
    shape[source.dimension_arrangement.index("T")] = num_chunks
    return tuple(shape)


def _without_time(source: ImageStack):
    arrangement = source.dimension_arrangement
    t = arrangement.index("T")
    shape = tuple(s for i, s in enumerate(source.shape) if i != t)
    return shape, arrangement.replace("T", "")


def average_projection(frames: np.ndarray) -> np.ndarray:
    return np.asarray(frames, dtype=np.float32).mean(axis=0)


def maximum_projection(frames: np.ndarray, window: int = MAX_PROJECTION_SMOOTHING) -> np.ndarray:
    """Maximum over time of the temporally smoothed frames (suppresses shot noise)."""
    return moving_mean(frames, window, axis=0).max(axis=0)


class OutputStackSet:
    """
    Parameters
    ----------
    output_path : Path
        Root output directory. Stacks go to ``motion_corrected/``, FOV images
        to ``fov_images/``.
    source_stack : ImageStack
        Source the outputs mirror
    num_chunks : int
        Length of the time axis of the per-chunk stacks
    output_dtype : dtype
        Sample type of the corrected stack
    save_average_projection, save_maximum_projection : bool
        Which projection streams to create
    """

    def __init__(self, output_path: Union[str, Path], source_stack: ImageStack, num_chunks: int,
                 output_dtype, save_average_projection: bool = True,
                 save_maximum_projection: bool = True, verbose: bool = False):
        self.output_path = Path(output_path)
        self.folder = self.output_path / "motion_corrected"
        self.fov_folder = self.output_path / "fov_images"
        self.source_stack = source_stack
        self.num_chunks = int(num_chunks)
        self.verbose = verbose

        arrangement = source_stack.dimension_arrangement
        source_dtype = source_stack.dtype
        chunk_shape = _per_chunk_shape(source_stack, self.num_chunks)
        fov_shape, fov_arrangement = _without_time(source_stack)
        make_8bit = source_dtype != np.uint8

        def stack(name, shape, dtype):
            return TiffOutputStack(self.folder / f"{name}.tif", shape, dtype, arrangement, verbose=verbose)

        def fov(name):
            return TiffImageWriter(self.fov_folder / f"{name}.tif", fov_shape, np.uint8,
                                   fov_arrangement, verbose=verbose)

        self.corrected = stack("corrected_stack", source_stack.shape, output_dtype)
        self.reference_images = stack("reference_images", chunk_shape, source_dtype)
        self.templates_8bit = stack("templates_8bit", chunk_shape, np.uint8) if make_8bit else None

        self.projections: Dict[str, TiffOutputStack] = {}
        self.projections_8bit: Dict[str, Optional[TiffOutputStack]] = {}
        self.fov_images: Dict[str, TiffImageWriter] = {}
        for kind, enabled in (("average", save_average_projection), ("maximum", save_maximum_projection)):
            if not enabled:
                continue
            self.projections[kind] = stack(f"{kind}_projections", chunk_shape, source_dtype)
            self.projections_8bit[kind] = (
                stack(f"{kind}_projections_8bit", chunk_shape, np.uint8) if make_8bit else None
            )
            self.fov_images[kind] = fov(f"fov_{kind}_projection")

    @property
    def streams(self) -> Dict[str, object]:
        """All streams by file stem."""
        streams = [self.corrected, self.reference_images, self.templates_8bit]
        streams += list(self.projections.values()) + list(self.projections_8bit.values())
        streams += list(self.fov_images.values())
        return {s.file_path.stem: s for s in streams if s is not None}

    def close(self) -> None:
        for s in self.streams.values():
            s.close()

    def write_chunk(self, chunk_index: int, frame_indices, output_frames: np.ndarray,
                    frames: np.ndarray, channels=None, plane: Optional[int] = None) -> None:
        """
        Write the corrected frames of a chunk and its projections.

        Parameters
        ----------
        output_frames : ndarray
            Corrected frames in the output sample type
        frames : ndarray
            Corrected frames before recast, used for the projections
        """
        self.corrected.write_frames(output_frames, frame_indices, channels, plane)

        dtype = self.source_stack.dtype
        if "average" in self.projections:
            self.projections["average"].write_frames(
                cast_to_dtype(average_projection(frames), dtype), chunk_index, channels, plane
            )
        if "maximum" in self.projections:
            self.projections["maximum"].write_frames(
                cast_to_dtype(maximum_projection(frames), dtype), chunk_index, channels, plane
            )

    @staticmethod
    def _to_uint8_per_channel(images: np.ndarray, multichannel: bool, crop: int = 0) -> np.ndarray:
        """8-bit conversion with separate limits for each channel (trailing axis)."""
        if not multichannel:
            return make_uint8(images, crop=crop)
        out = np.zeros(images.shape, dtype=np.uint8)
        for c in range(images.shape[-1]):
            out[..., c] = make_uint8(images[..., c], crop=crop)
        return out

    def finalize(self, crop: int = 0, channels=None, plane: Optional[int] = None) -> None:
        """
        Derive the 8-bit stacks and the FOV images of one plane.

        ``crop`` pixels at each border are excluded when choosing the 8-bit
        limits of the projections.
        """
        multichannel = isinstance(channels, (list, tuple)) and len(channels) > 1

        if self.templates_8bit is not None:
            references = self.reference_images.read_frames(None, channels, plane)
            self.templates_8bit.write_frames(
                self._to_uint8_per_channel(references, multichannel), None, channels, plane
            )

        for kind, projection_stack in self.projections.items():
            images = np.asarray(projection_stack.read_frames(None, channels, plane), dtype=np.float32)
            if self.projections_8bit[kind] is not None:
                self.projections_8bit[kind].write_frames(
                    self._to_uint8_per_channel(images, multichannel, crop), None, channels, plane
                )

            fov_image = images.mean(axis=0) if kind == "average" else images.max(axis=0)
            self.fov_images[kind].write_frames(
                self._to_uint8_per_channel(fov_image, multichannel, crop), channels=channels, plane=plane
            )

            if self.verbose:
                print(f"Saved {kind} projection images (crop={crop})")

    def write_rgb_composites(self) -> List[Path]:
        """
        Save each FOV image of a multi-channel source as an RGB TIFF.

        The first two source channels become red and green, blue stays zero.
        """
        written = []
        for writer in self.fov_images.values():
            fov_image = writer.read_frames()
            if "C" not in writer.dimension_arrangement:
                continue
            rgb = np.zeros(fov_image.shape[:-1] + (3,), dtype=np.uint8)
            n = min(2, fov_image.shape[-1])
            rgb[..., :n] = fov_image[..., :n]
            path = writer.file_path.with_name(writer.file_path.stem + "_rgb.tif")
            written.append(write_rgb_image(path, rgb))
            if self.verbose:
                print(f"Saved RGB composite {path.name}")
        return written
