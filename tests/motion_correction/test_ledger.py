"""
Tests for the per-frame shift ledger.
"""

import numpy as np
import pytest

from pymotioncorr.errors import ConfigurationError, IOFailure
from pymotioncorr.motion_correction.ledger import ShiftLedger


class TestShiftLedger:

    def test_new_ledger_is_nan_and_persisted(self, tmp_path):
        path = tmp_path / "correction_stats.npz"
        ledger = ShiftLedger(path, num_planes=2)
        assert ledger.initialize(10) is False
        assert path.exists()
        assert ledger.offset_x.shape == (2, 10)
        assert np.all(np.isnan(ledger.rms_movement))
        assert not ledger.is_completed(0, [0])

    def test_update_computes_rms(self, tmp_path):
        ledger = ShiftLedger(tmp_path / "stats.npz")
        ledger.initialize(4)
        ledger.update(0, [1, 2], np.array([3.0, 0.0]), np.array([4.0, -1.0]))

        offset_x, offset_y, rms = ledger.get(0, [1, 2])
        np.testing.assert_array_equal(offset_x, [3.0, 0.0])
        np.testing.assert_array_equal(offset_y, [4.0, -1.0])
        np.testing.assert_array_equal(rms, [5.0, 1.0])
        assert ledger.is_completed(0, [1, 2])
        assert not ledger.is_completed(0, [0, 1])
        assert not ledger.is_plane_completed(0)

    def test_update_length_mismatch(self, tmp_path):
        ledger = ShiftLedger(tmp_path / "stats.npz")
        ledger.initialize(4)
        with pytest.raises(ValueError):
            ledger.update(0, [0, 1], np.zeros(3), np.zeros(3))

    def test_persisted_ledger_is_reloaded(self, tmp_path):
        """Test that only persisted updates survive a restart."""
        path = tmp_path / "stats.npz"
        ledger = ShiftLedger(path)
        ledger.initialize(6)
        ledger.update(0, [0, 1, 2], np.ones(3), np.zeros(3))
        ledger.persist()
        ledger.update(0, [3, 4, 5], np.ones(3), np.zeros(3))

        reloaded = ShiftLedger(path)
        assert reloaded.initialize(6) is True
        assert reloaded.is_completed(0, [0, 1, 2])
        assert not reloaded.is_completed(0, [3, 4, 5])

    def test_mismatching_file_raises(self, tmp_path):
        path = tmp_path / "stats.npz"
        ShiftLedger(path).initialize(6)
        with pytest.raises(ConfigurationError):
            ShiftLedger(path).initialize(8)

    def test_max_abs_offset(self, tmp_path):
        ledger = ShiftLedger(tmp_path / "stats.npz")
        ledger.initialize(3)
        assert ledger.max_abs_offset(0) == 0.0
        ledger.update(0, [0, 1], np.array([1.0, -2.5]), np.array([0.5, 2.0]))
        assert ledger.max_abs_offset(0) == 2.5

    def test_unwritable_ledger_raises_io_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with pytest.raises(IOFailure):
            ShiftLedger(blocker / "correction_stats.npz").initialize(4)
