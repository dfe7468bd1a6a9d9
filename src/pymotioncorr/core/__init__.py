"""
Core Registration Module
========================

Frame-to-reference registration backends for the chunked motion correction
pipeline, selected by name through a small registry.

Available Backends
------------------
rigid : Default FFT phase-correlation backend
    Rigid per-frame translation with subpixel refinement
ecc : OpenCV ECC backend (only if OpenCV is available)
    Translation model fitted by correlation coefficient maximization

Functions
---------
register_backend
    Register new registration backend
get_backend
    Instantiate registered backend by name
list_backends
    List all available backends
is_backend_available
    Check if a specific backend is available
"""

from .backend_registry import (
    register_backend,
    get_backend,
    list_backends,
    is_backend_available,
)
from .registration import RegistrationBackend, ShiftSummary

__all__ = [
    "RegistrationBackend",
    "ShiftSummary",
    "register_backend",
    "get_backend",
    "list_backends",
    "is_backend_available",
]

# Register built-in backends
from .rigid import _rigid_factory

register_backend("rigid", _rigid_factory)

# ECC backend (only if OpenCV is available)
try:
    import cv2  # noqa: F401

    CV2_AVAILABLE = True
except ImportError:
    CV2_AVAILABLE = False

if CV2_AVAILABLE:
    from .ecc import _ecc_factory

    register_backend("ecc", _ecc_factory)
