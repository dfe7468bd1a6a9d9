"""
Registry of registration backends.

Backends are created through factories so that optional dependencies are
only touched when a backend is actually requested.
"""

from typing import Callable, Dict, List

from pymotioncorr.errors import ConfigurationError

_BACKENDS: Dict[str, Callable] = {}


def register_backend(name: str, factory: Callable) -> None:
    """
    Register a backend factory under ``name``.

    Parameters
    ----------
    name : str
        Backend name used in ``Registration.toolbox``
    factory : callable
        Called with the backend parameters, returns a backend instance
    """
    if not callable(factory):
        raise TypeError(f"Factory for backend '{name}' must be callable")
    _BACKENDS[name] = factory


def get_backend(name: str, **kwargs):
    """
    Instantiate the backend registered as ``name``.

    Raises
    ------
    ConfigurationError
        If no backend with that name is registered.
    """
    if name not in _BACKENDS:
        available = ", ".join(list_backends()) or "none"
        raise ConfigurationError(
            f"Unknown registration backend '{name}'. Available: {available}"
        )
    return _BACKENDS[name](**kwargs)


def list_backends() -> List[str]:
    return sorted(_BACKENDS)


def is_backend_available(name: str) -> bool:
    return name in _BACKENDS
