"""
Atomic persistence helpers for run state.

Resumption logic reads these files to decide what is already done, so every
write goes to a temporary file first and is then moved into place.
"""

import json
from pathlib import Path
from typing import Any, Dict

import numpy as np

from pymotioncorr.errors import IOFailure


def load_or_create_status(output_folder: Path) -> Dict[str, Any]:
    """
    Load existing status.json or create empty status dict.

    Parameters
    ----------
    output_folder : Path
        Folder to check for status.json

    Returns
    -------
    dict
        Status dictionary with completion flags
    """
    status_path = Path(output_folder) / "status.json"

    if status_path.exists():
        with open(status_path, "r", encoding="utf-8") as f:
            return json.load(f)
    return {}


def save_status(output_folder: Path, status: Dict[str, Any]) -> None:
    """
    Atomically persist ``status.json``.

    Raises
    ------
    IOFailure
        If the file can not be written.
    """
    status_path = Path(output_folder) / "status.json"
    temp_path = status_path.with_suffix(".json.tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(status, f, indent=2)
        temp_path.replace(status_path)
    except OSError as e:
        raise IOFailure(f"Failed writing {status_path}: {e}") from e


def atomic_save_npz(path: Path, **arrays: np.ndarray) -> None:
    """
    Save arrays to ``.npz`` via a temporary file and an atomic rename.

    Parameters
    ----------
    path : Path
        Target ``.npz`` file
    **arrays
        Named arrays to store

    Raises
    ------
    IOFailure
        If the file can not be written.
    """
    path = Path(path)
    temp_path = path.with_name(path.name + ".tmp")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # np.savez appends .npz to bare names, so write through a file handle
        with open(temp_path, "wb") as f:
            np.savez(f, **arrays)
        temp_path.replace(path)
    except OSError as e:
        raise IOFailure(f"Failed writing {path}: {e}") from e
