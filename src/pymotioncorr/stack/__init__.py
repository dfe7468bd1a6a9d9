"""
Source stack access, per-frame statistics and chunk iteration.
"""

from pymotioncorr.stack.image_stack import ImageStack
from pymotioncorr.stack.image_stats import ImageStats, compute_image_stats
from pymotioncorr.stack.processor import StackProcessor

__all__ = [
    "ImageStack",
    "ImageStats",
    "StackProcessor",
    "compute_image_stats",
]
