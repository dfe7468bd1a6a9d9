"""
pymotioncorr: chunked motion correction of large image stacks.

Stacks are processed in chunks of frames, each registered to an evolving
reference, drift corrected against the session reference and written to
memory-mapped TIFF outputs, so that recordings larger than memory can be
corrected and interrupted runs resumed.
"""

from pymotioncorr.motion_correction import MCOptions, MotionCorrection, correct_motion
from pymotioncorr.stack import ImageStack

__version__ = "0.1.0"

__all__ = [
    "ImageStack",
    "MCOptions",
    "MotionCorrection",
    "correct_motion",
]
