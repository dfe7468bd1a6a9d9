"""
End-to-end tests of the chunked motion correction pipeline on synthetic stacks.
"""

import json

import numpy as np
import pytest
import tifffile

from pymotioncorr.errors import ConfigurationError
from pymotioncorr.motion_correction import MCOptions, MotionCorrection, correct_motion
from pymotioncorr.stack import ImageStack


def _options(output_path, **export):
    return MCOptions(
        output_path=output_path,
        General={"framesPerPart": 10, "correctLineOffsets": False},
        Export=export,
    )


def _read(path):
    return tifffile.imread(str(path))


def _relative_spread(ledger_offsets, true_offsets):
    """Peak-to-peak of ledger minus injected offsets; the template position is a constant."""
    return float(np.ptp(np.asarray(ledger_offsets) - true_offsets))


def _temporal_spread(frames, margin=8):
    inner = frames[:, margin:-margin, margin:-margin].astype(np.float64)
    return float(inner.std(axis=0).mean())


class CountingMotionCorrection(MotionCorrection):
    """Counts processed chunks and optionally cancels after one of them."""

    def __init__(self, *args, cancel_after=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.processed = []
        self.cancel_after = cancel_after

    def process_chunk(self, part, data):
        self.processed.append(part)
        return super().process_chunk(part, data)

    def on_chunk_finished(self, part, summary):
        super().on_chunk_finished(part, summary)
        if part == self.cancel_after:
            self.request_cancel()


@pytest.fixture
def jitter(jittered_stack):
    return jittered_stack(n_frames=30)


@pytest.fixture
def frames(jitter):
    return jitter[0]


@pytest.fixture
def finished_run(tmp_path, frames):
    processor = correct_motion(frames, _options(tmp_path / "out"))
    return processor, tmp_path / "out"


class TestOutputs:
    """Test the files written by a complete run."""

    def test_run_completes(self, finished_run):
        processor, out = finished_run
        assert not processor.is_cancelled
        status = json.loads((out / "motion_corrected" / "status.json").read_text())
        assert status["completed"] is True
        assert status["completed_planes"] == [0]

    def test_stack_shapes(self, finished_run, frames):
        _, out = finished_run
        folder = out / "motion_corrected"

        corrected = _read(folder / "corrected_stack.tif")
        assert corrected.shape == (30, 64, 64)
        assert corrected.dtype == frames.dtype

        for name in ("reference_images", "average_projections", "maximum_projections"):
            stack = _read(folder / f"{name}.tif")
            assert stack.shape == (3, 64, 64)
            assert stack.dtype == np.uint16
        for name in ("templates_8bit", "average_projections_8bit", "maximum_projections_8bit"):
            assert _read(folder / f"{name}.tif").dtype == np.uint8

        for kind in ("average", "maximum"):
            fov = _read(out / "fov_images" / f"fov_{kind}_projection.tif")
            assert np.squeeze(fov).shape == (64, 64)
            assert fov.dtype == np.uint8

        assert (out / "raw_image_info" / "image_stats.npz").exists()
        assert (folder / "options.json").exists()

    def test_frames_are_aligned(self, finished_run, frames):
        _, out = finished_run
        corrected = _read(out / "motion_corrected" / "corrected_stack.tif")
        assert _temporal_spread(corrected) < 0.3 * _temporal_spread(frames)

    def test_ledger(self, finished_run, jitter):
        """Test that the ledger records the injected per-frame motion with the default backend."""
        _, out = finished_run
        _, offsets = jitter
        with np.load(str(out / "motion_corrected" / "correction_stats.npz")) as data:
            offset_x, offset_y, rms = data["offset_x"], data["offset_y"], data["rms_movement"]

        assert offset_x.shape == (1, 30)
        assert np.all(np.isfinite(offset_x)) and np.all(np.isfinite(offset_y))
        np.testing.assert_array_equal(rms, np.sqrt(offset_x ** 2 + offset_y ** 2))
        # Offsets are relative to the template, which sits at one fixed position
        assert _relative_spread(offset_x[0], offsets[:, 1]) < 0.6
        assert _relative_spread(offset_y[0], offsets[:, 0]) < 0.6

    def test_reference_entries(self, finished_run):
        _, out = finished_run
        references = _read(out / "motion_corrected" / "reference_images.tif")
        assert np.any(references[0])
        np.testing.assert_array_equal(references[1], references[0])
        np.testing.assert_array_equal(references[2], references[1])


class TestResumption:

    def test_rerun_is_idempotent(self, finished_run, frames):
        _, out = finished_run
        folder = out / "motion_corrected"
        corrected = _read(folder / "corrected_stack.tif")

        processor = CountingMotionCorrection(ImageStack(frames, "TYX"), _options(out))
        assert processor.run() is True
        assert processor.processed == []
        np.testing.assert_array_equal(_read(folder / "corrected_stack.tif"), corrected)

    def test_resume_after_cancel(self, tmp_path, frames):
        """Test that a cancelled run resumes at the first unfinished chunk."""
        out = tmp_path / "resumed"
        first = CountingMotionCorrection(ImageStack(frames, "TYX"), _options(out), cancel_after=0)
        assert first.run() is False
        assert first.is_cancelled
        assert first.processed == [0]

        with np.load(str(out / "motion_corrected" / "correction_stats.npz")) as data:
            offset_x = data["offset_x"]
        assert np.all(np.isfinite(offset_x[0, :10]))
        assert np.all(np.isnan(offset_x[0, 10:]))
        assert not (out / "motion_corrected" / "status.json").exists()

        second = CountingMotionCorrection(ImageStack(frames, "TYX"), _options(out))
        assert second.run() is True
        assert second.processed == [1, 2]

        reference_run = correct_motion(frames, _options(tmp_path / "uninterrupted"))
        np.testing.assert_allclose(second.ledger.offset_x, reference_run.ledger.offset_x, atol=0.25)
        np.testing.assert_allclose(second.ledger.offset_y, reference_run.ledger.offset_y, atol=0.25)


class TestOutputType:

    def test_unsupported_output_type(self, tmp_path, frames):
        options = _options(tmp_path, OutputDataType="float32")
        with pytest.raises(ConfigurationError):
            MotionCorrection(ImageStack(frames, "TYX"), options).run()

    def test_recast_to_uint8(self, tmp_path, frames):
        correct_motion(frames, _options(tmp_path, OutputDataType="uint8"))
        folder = tmp_path / "motion_corrected"

        corrected = _read(folder / "corrected_stack.tif")
        assert corrected.dtype == np.uint8
        assert corrected.max() >= 250
        assert corrected.min() <= 5
        # Projections keep the source sample type
        assert _read(folder / "average_projections.tif").dtype == np.uint16


class TestMultichannel:

    def test_rgb_composites(self, tmp_path, two_channel_stack):
        data, offsets = two_channel_stack(n_frames=20)
        processor = correct_motion(data, _options(tmp_path), dimension_arrangement="TCYX")
        assert not processor.is_cancelled

        assert _read(tmp_path / "motion_corrected" / "corrected_stack.tif").shape == (20, 2, 64, 64)

        for kind in ("average", "maximum"):
            fov = _read(tmp_path / "fov_images" / f"fov_{kind}_projection.tif").reshape(2, 64, 64)
            rgb = _read(tmp_path / "fov_images" / f"fov_{kind}_projection_rgb.tif")
            assert rgb.shape == (64, 64, 3)
            np.testing.assert_array_equal(rgb[..., 0], fov[0])
            np.testing.assert_array_equal(rgb[..., 1], fov[1])
            assert not np.any(rgb[..., 2])

        with np.load(str(tmp_path / "motion_corrected" / "correction_stats.npz")) as stats:
            assert stats["offset_x"].shape == (1, 20)
            assert _relative_spread(stats["offset_x"][0], offsets[:, 1]) < 0.6
            assert _relative_spread(stats["offset_y"][0], offsets[:, 0]) < 0.6


class TestReferenceUpdate:

    def test_update_reference_run(self, tmp_path, frames):
        options = _options(tmp_path).with_overrides({"General.updateReference": True})
        processor = correct_motion(frames, options)
        assert not processor.is_cancelled
        references = _read(tmp_path / "motion_corrected" / "reference_images.tif")
        assert all(np.any(ref) for ref in references)
