"""
Image stack access by frame, channel and plane.

A stack is an N-d array whose axes are labelled by a dimension arrangement
string over ``T`` (frames), ``Z`` (planes), ``C`` (channels), ``Y`` and ``X``.
Frame sets are exchanged in THW / THWC order regardless of the on-disk
arrangement; the helpers here translate between the two.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import tifffile

from pymotioncorr.errors import ConfigurationError

VALID_AXES = "TZCYX"
PASS_ORDER = "TZYXC"

# tifffile axis codes that stand in for time in generic multi-page files
_TIFF_AXIS_MAP = {"Q": "T", "I": "T", "S": "C"}
DEFAULT_ARRANGEMENTS = {3: "TYX", 4: "TCYX", 5: "TZCYX"}

Index = Union[None, int, Sequence[int]]


def validate_arrangement(arrangement: str, ndim: int) -> str:
    """
    Check a dimension arrangement against the array it describes.

    Raises
    ------
    ConfigurationError
        If the stack has fewer than 3 dimensions, the arrangement uses unknown
        or repeated axes, or it lacks one of T, Y, X.
    """
    if ndim < 3:
        raise ConfigurationError(
            f"Can not motion correct stack with less than 3 dimensions (got {ndim})"
        )
    arrangement = arrangement.upper()
    if len(arrangement) != ndim:
        raise ConfigurationError(
            f"Dimension arrangement '{arrangement}' does not match {ndim}-d data"
        )
    if len(set(arrangement)) != len(arrangement) or any(a not in VALID_AXES for a in arrangement):
        raise ConfigurationError(
            f"Invalid dimension arrangement '{arrangement}', use letters from {VALID_AXES}"
        )
    for required in "TYX":
        if required not in arrangement:
            raise ConfigurationError(
                f"Dimension arrangement '{arrangement}' is missing axis '{required}'"
            )
    return arrangement


def _as_index(values: Index):
    """Turn frame or channel indices into an int, a slice (contiguous) or an index array."""
    if values is None:
        return slice(None)
    if isinstance(values, slice):
        return values
    if isinstance(values, (int, np.integer)):
        return int(values)
    values = [int(v) for v in values]
    if values and values == list(range(values[0], values[-1] + 1)):
        return slice(values[0], values[-1] + 1)
    return np.asarray(values, dtype=np.intp)


def _indexers(arrangement: str, frames: Index, channels: Index, plane: Optional[int]) -> Dict[str, object]:
    indexers = {ax: slice(None) for ax in arrangement}
    indexers["T"] = _as_index(frames)
    if "C" in arrangement:
        indexers["C"] = _as_index(channels)
    if "Z" in arrangement:
        indexers["Z"] = _as_index(plane)
    return indexers


def select_frames(
    array: np.ndarray,
    arrangement: str,
    frames: Index = None,
    channels: Index = None,
    plane: Optional[int] = None,
) -> np.ndarray:
    """
    Read a frame set from ``array`` and return it in pass order (T, Z, Y, X, C).

    Axes indexed by a scalar are dropped from the result.
    """
    indexers = _indexers(arrangement, frames, channels, plane)

    basic = []
    fancy = []
    for ax in arrangement:
        idx = indexers[ax]
        if isinstance(idx, np.ndarray):
            basic.append(slice(None))
            fancy.append((ax, idx))
        else:
            basic.append(idx)

    data = array[tuple(basic)]
    kept = [ax for ax in arrangement if not isinstance(indexers[ax], int)]
    for ax, idx in fancy:
        data = np.take(data, idx, axis=kept.index(ax))

    order = [ax for ax in PASS_ORDER if ax in kept]
    return np.transpose(np.asarray(data), [kept.index(ax) for ax in order])


def assign_frames(
    array: np.ndarray,
    arrangement: str,
    values: np.ndarray,
    frames: Index = None,
    channels: Index = None,
    plane: Optional[int] = None,
) -> None:
    """Write a frame set given in pass order into ``array``."""
    channel_index = _as_index(channels) if "C" in arrangement else None
    if isinstance(channel_index, np.ndarray):
        # More than one advanced index would reorder axes, write per channel
        for i, c in enumerate(channel_index):
            assign_frames(array, arrangement, values[..., i], frames, int(c), plane)
        return

    indexers = _indexers(arrangement, frames, channels, plane)
    kept = [ax for ax in arrangement if not isinstance(indexers[ax], int)]
    order = [ax for ax in PASS_ORDER if ax in kept]

    values = np.asarray(values)
    if values.ndim != len(order):
        raise ValueError(
            f"Expected {len(order)}-d frame set ({''.join(order)}), got {values.ndim}-d"
        )
    permuted = np.transpose(values, [order.index(ax) for ax in kept])
    array[tuple(indexers[ax] for ax in arrangement)] = permuted


def _tiff_axes(path: Path) -> str:
    with tifffile.TiffFile(str(path)) as tif:
        axes = tif.series[0].axes.upper()
    mapped = ""
    for ax in axes:
        target = _TIFF_AXIS_MAP.get(ax, ax)
        if target in mapped or target not in VALID_AXES:
            target = ax
        mapped += target
    return mapped


class ImageStack:
    """
    Read access to a (possibly file-backed) image stack.

    Parameters
    ----------
    data : ndarray
        Stack data. Memory maps are indexed lazily, so only the requested
        frames are read.
    dimension_arrangement : str
        Axis labels, e.g. ``"TYX"`` or ``"TZCYX"``.
    """

    def __init__(self, data: np.ndarray, dimension_arrangement: str = "TYX", file_path: Optional[Path] = None):
        if not hasattr(data, "shape") or not hasattr(data, "dtype"):
            data = np.asarray(data)
        self.data = data
        self.dimension_arrangement = validate_arrangement(dimension_arrangement, data.ndim)
        self.file_path = Path(file_path) if file_path is not None else None

    @classmethod
    def from_file(cls, file_path: Union[str, Path], dimension_arrangement: Optional[str] = None) -> "ImageStack":
        """
        Open a stack from ``.tif``/``.tiff`` or ``.npy`` without loading it.

        The arrangement defaults to the axes stored in the tiff metadata.
        """
        path = Path(file_path)
        suffix = path.suffix.lower()

        if suffix in (".tif", ".tiff"):
            try:
                data = tifffile.memmap(str(path), mode="r")
            except ValueError:
                # Compressed or tiled files can not be memory mapped
                data = tifffile.imread(str(path))
            if dimension_arrangement is None:
                dimension_arrangement = _tiff_axes(path)
        elif suffix == ".npy":
            data = np.load(str(path), mmap_mode="r")
        else:
            raise ConfigurationError(f"Unsupported input format: {suffix}")

        if dimension_arrangement is None:
            dimension_arrangement = DEFAULT_ARRANGEMENTS.get(data.ndim, "TYX")
        return cls(data, dimension_arrangement, file_path=path)

    def size_of(self, axis: str) -> int:
        """Length of ``axis`` (1 if the stack has no such axis)."""
        if axis not in self.dimension_arrangement:
            return 1
        return int(self.data.shape[self.dimension_arrangement.index(axis)])

    @property
    def shape(self) -> tuple:
        return tuple(self.data.shape)

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.data.dtype)

    @property
    def num_frames(self) -> int:
        return self.size_of("T")

    @property
    def num_channels(self) -> int:
        return self.size_of("C")

    @property
    def num_planes(self) -> int:
        return self.size_of("Z")

    @property
    def height(self) -> int:
        return self.size_of("Y")

    @property
    def width(self) -> int:
        return self.size_of("X")

    def channel_index(self, channels: Sequence[int]) -> Union[int, List[int], None]:
        """Channel index for frame access: None without C axis, int for one channel."""
        if "C" not in self.dimension_arrangement:
            return None
        channels = list(channels)
        return channels[0] if len(channels) == 1 else channels

    def get_frames(self, frame_indices: Index, channels: Index = None, plane: Optional[int] = None) -> np.ndarray:
        """
        Read frames as THW (one channel) or THWC (several channels).

        Parameters
        ----------
        frame_indices : int or sequence of int
            Frames to read (0-based)
        channels : int or sequence of int, optional
            Channels to read. Defaults to all channels.
        plane : int, optional
            Plane to read. Defaults to 0 for stacks with a Z axis.
        """
        if "Z" in self.dimension_arrangement and plane is None:
            plane = 0
        return select_frames(self.data, self.dimension_arrangement, frame_indices, channels, plane)

    def __len__(self) -> int:
        return self.num_frames

    def __repr__(self) -> str:
        return (f"ImageStack(shape={self.shape}, dtype={self.dtype}, "
                f"arrangement='{self.dimension_arrangement}')")
