"""
Tests for the rigid phase-correlation backend.
"""

import numpy as np
import pytest
from scipy.ndimage import shift as nd_shift

from pymotioncorr.core.registration import ShiftSummary, shift_frames, taper
from pymotioncorr.core.rigid import RigidBackend
from pymotioncorr.errors import RegistrationFailure


@pytest.fixture
def base(texture):
    return texture(64, 64, sigma=2.0, seed=3).astype(np.float32)


def _interior_error(images, reference, margin=8):
    inner = (slice(margin, -margin), slice(margin, -margin))
    return np.mean(np.abs(images[(Ellipsis,) + inner] - reference[inner]))


class TestShiftEstimation:
    """Test per-frame shift estimation on crops of a non-periodic image."""

    def test_integer_shifts(self, crops):
        offsets = [(0, 0), (2, 1), (-1, -3), (-3, -3), (1, 3)]
        frames = crops(offsets, seed=3).astype(np.float32)
        estimated, errors = RigidBackend().estimate_shifts(frames, frames[0])

        # Offsets move each frame back onto the reference
        np.testing.assert_allclose(estimated, np.asarray(offsets, dtype=float), atol=0.25)
        assert errors.shape == (5,)

    def test_subpixel_shift(self, crops):
        reference = crops([(0, 0)], seed=4)[0].astype(np.float32)
        moved = nd_shift(reference, (1.5, -0.5), order=3, mode="nearest")[None]
        estimated, _ = RigidBackend(upsample_factor=20).estimate_shifts(moved, reference)
        np.testing.assert_allclose(estimated[0], [-1.5, 0.5], atol=0.25)

    def test_max_shift_clips_estimate(self, crops):
        frames = crops([(0, 0), (0, 10)], margin=12, seed=5).astype(np.float32)
        estimated, _ = RigidBackend(max_shift=4).estimate_shifts(frames[1:], frames[0])
        assert estimated[0, 1] == pytest.approx(4)

    def test_non_finite_frame_raises(self, crops):
        frames = crops([(0, 0), (1, 1)]).astype(np.float32)
        frames[1, 5, 5] = np.nan
        with pytest.raises(RegistrationFailure):
            RigidBackend().estimate_shifts(frames, frames[0])

    def test_multichannel_frames_use_channel_mean(self, crops):
        frames = crops([(0, 0), (2, -3)], seed=6).astype(np.float32)
        frames = np.stack([frames, frames * 2.0], axis=-1)
        estimated, _ = RigidBackend().estimate_shifts(frames[1:], frames[0])
        np.testing.assert_allclose(estimated[0], [2, -3], atol=0.25)

    def test_taper_is_mean_free_and_fades_at_border(self, base):
        tapered = taper(base + 100.0)
        assert tapered.shape == base.shape
        assert np.abs(tapered[0]).max() < 0.1 * np.abs(tapered).max()
        assert np.abs(tapered[:, 0]).max() < 0.1 * np.abs(tapered).max()
        assert abs(float(tapered.sum())) < abs(float((base + 100.0).sum()))


class TestRegistration:
    """Test alignment and the shift arithmetic."""

    def test_register_frames_aligns_to_reference(self, crops):
        frames = crops([(0, 0), (0, 2), (-3, 0), (3, -3)], seed=7).astype(np.float32)
        reference = frames[0]
        aligned, summary = RigidBackend().register_frames(frames[1:], reference)

        assert isinstance(summary, ShiftSummary)
        assert summary.num_frames == 3
        for t in range(3):
            assert _interior_error(aligned[t], reference) < 0.25 * _interior_error(frames[t + 1], reference)

    def test_shifts_to_offsets_order(self):
        shifts = np.array([[1.0, 2.0], [-3.0, 4.0]])
        offset_x, offset_y = RigidBackend().shifts_to_offsets(shifts)
        np.testing.assert_array_equal(offset_x, [2.0, 4.0])
        np.testing.assert_array_equal(offset_y, [1.0, -3.0])

    def test_add_drift_is_vector_sum(self):
        backend = RigidBackend()
        summary = ShiftSummary(shifts=np.array([[1.0, 2.0], [0.0, -1.0]]))
        summary = backend.add_drift_to_shifts(summary, np.array([0.5, -1.5]))

        np.testing.assert_allclose(summary.shifts, [[1.5, 0.5], [0.5, -2.5]])
        np.testing.assert_allclose(summary.drift, [0.5, -1.5])

    def test_initialize_template_matches_stack(self, crops):
        """Test that frames registered to the template keep their relative motion."""
        frames = crops([(0, t - 4) for t in range(8)], seed=8).astype(np.float32)
        backend = RigidBackend()
        template = backend.initialize_template(frames)

        assert template.shape == frames.shape[1:]
        assert np.all(np.isfinite(template))

        shifts, _ = backend.estimate_shifts(frames, template)
        np.testing.assert_allclose(np.diff(shifts[:, 1]), 1.0, atol=0.25)
        np.testing.assert_allclose(shifts[:, 0], 0.0, atol=0.25)


class TestShiftFrames:
    def test_zero_shift_returns_identical_frames(self, base):
        frames = np.stack([base, base])
        out = shift_frames(frames, np.zeros(2))
        np.testing.assert_array_equal(out, frames)

    def test_integer_shift_with_wrap_matches_roll(self, base):
        out = shift_frames(base[None], np.array([[2.0, -3.0]]), mode="grid-wrap")
        np.testing.assert_allclose(out[0], np.roll(base, (2, -3), axis=(0, 1)), atol=1e-5)
