"""
Tests for the per-frame pixel statistics pass.
"""

import numpy as np

from pymotioncorr.stack.image_stack import ImageStack
from pymotioncorr.stack.image_stats import ImageStats, compute_image_stats


class TestImageStats:

    def test_empty_is_nan(self):
        stats = ImageStats.empty(2, 5)
        assert stats.maximum_value.shape == (2, 5)
        assert np.all(np.isnan(stats.prctile_l2))
        assert not stats.is_complete()

    def test_values_match_numpy(self):
        rng = np.random.default_rng(0)
        data = rng.integers(0, 4000, (12, 16, 16)).astype(np.uint16)
        stats = compute_image_stats(ImageStack(data, "TYX"), chunk_size=5)

        flat = data.reshape(12, -1).astype(np.float64)
        np.testing.assert_allclose(stats.minimum_value[0], flat.min(axis=1))
        np.testing.assert_allclose(stats.maximum_value[0], flat.max(axis=1))
        np.testing.assert_allclose(stats.mean_value[0], flat.mean(axis=1))
        np.testing.assert_allclose(stats.prctile_l2[0], np.percentile(flat, 0.05, axis=1))
        np.testing.assert_allclose(stats.prctile_u2[0], np.percentile(flat, 99.95, axis=1))
        assert stats.is_complete()

    def test_one_row_per_plane(self):
        data = np.zeros((4, 2, 8, 8), dtype=np.float32)  # T Z Y X
        data[:, 1] = 10.0
        stats = compute_image_stats(ImageStack(data, "TZYX"))
        assert stats.maximum_value.shape == (2, 4)
        np.testing.assert_array_equal(stats.maximum_value[1], 10.0)
        np.testing.assert_array_equal(stats.maximum_value[0], 0.0)

    def test_cached_file_is_reused(self, tmp_path):
        """Test that a complete statistics file is loaded instead of recomputed."""
        path = tmp_path / "raw_image_info" / "image_stats.npz"
        first = np.ones((3, 4, 4), dtype=np.float32)
        compute_image_stats(ImageStack(first, "TYX"), file_path=path)
        assert path.exists()

        second = np.full((3, 4, 4), 5.0, dtype=np.float32)
        stats = compute_image_stats(ImageStack(second, "TYX"), file_path=path)
        np.testing.assert_array_equal(stats.maximum_value, 1.0)

    def test_cache_with_other_frame_count_is_recomputed(self, tmp_path):
        path = tmp_path / "image_stats.npz"
        compute_image_stats(ImageStack(np.ones((3, 4, 4)), "TYX"), file_path=path)
        stats = compute_image_stats(ImageStack(np.full((5, 4, 4), 2.0), "TYX"), file_path=path)
        assert stats.num_frames == 5
        np.testing.assert_array_equal(stats.maximum_value, 2.0)
