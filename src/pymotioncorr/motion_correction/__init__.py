from pymotioncorr.motion_correction.MC_options import MCOptions, resolve_persisted_options
from pymotioncorr.motion_correction.motion_correction import MotionCorrection, correct_motion

__all__ = [
    "MCOptions",
    "MotionCorrection",
    "correct_motion",
    "resolve_persisted_options",
]
