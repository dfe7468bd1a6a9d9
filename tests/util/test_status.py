"""
Tests for the atomic run-state writers.
"""

import numpy as np
import pytest

from pymotioncorr.errors import IOFailure, MotionCorrectionError
from pymotioncorr.util.status import atomic_save_npz, load_or_create_status, save_status


@pytest.fixture
def blocker(tmp_path):
    """A regular file standing where an output folder should be."""
    path = tmp_path / "blocker"
    path.write_text("x")
    return path


class TestStatus:

    def test_status_round_trip(self, tmp_path):
        assert load_or_create_status(tmp_path) == {}
        save_status(tmp_path, {"completed": True, "completed_planes": [0]})
        assert load_or_create_status(tmp_path) == {"completed": True, "completed_planes": [0]}
        assert not (tmp_path / "status.json.tmp").exists()

    def test_unwritable_status_raises_io_failure(self, blocker):
        with pytest.raises(IOFailure) as exc:
            save_status(blocker, {"completed": True})
        assert isinstance(exc.value, MotionCorrectionError)
        assert isinstance(exc.value.__cause__, OSError)


class TestAtomicSaveNpz:

    def test_writes_named_arrays(self, tmp_path):
        path = tmp_path / "nested" / "stats.npz"
        atomic_save_npz(path, a=np.arange(3), b=np.ones((2, 2)))
        with np.load(str(path)) as data:
            np.testing.assert_array_equal(data["a"], [0, 1, 2])
            assert data["b"].shape == (2, 2)
        assert not path.with_name("stats.npz.tmp").exists()

    def test_unwritable_folder_raises_io_failure(self, blocker):
        with pytest.raises(IOFailure, match="Failed writing"):
            atomic_save_npz(blocker / "stats.npz", a=np.zeros(2))
