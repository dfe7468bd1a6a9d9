"""
Shared fixtures: synthetic image stacks with known motion.
"""

import numpy as np
import pytest
from scipy.ndimage import gaussian_filter


def smooth_texture(height=64, width=64, sigma=2.0, seed=0):
    """Periodic smooth random texture scaled to [0, 1]."""
    rng = np.random.default_rng(seed)
    texture = gaussian_filter(rng.standard_normal((height, width)), sigma, mode="wrap")
    return (texture - texture.min()) / (texture.max() - texture.min())


def crop_texture(offsets, size=64, margin=8, sigma=3.0, seed=0):
    """
    Crops of one non-periodic texture, shape (N, size, size), values in [0, 1].

    Crop ``i`` starts at ``(margin + dy, margin + dx)`` for ``offsets[i] =
    (dy, dx)``, so ``scipy.ndimage.shift(crop_i, (dy, dx))`` maps it onto the
    crop at offset (0, 0).
    """
    rng = np.random.default_rng(seed)
    full = size + 2 * margin
    texture = gaussian_filter(rng.standard_normal((full, full)), sigma, mode="reflect")
    texture = (texture - texture.min()) / (texture.max() - texture.min())
    crops = []
    for dy, dx in offsets:
        y0, x0 = margin + int(dy), margin + int(dx)
        crops.append(texture[y0:y0 + size, x0:x0 + size])
    return np.stack(crops)


def jitter_offsets(n_frames, amplitude=3, seed=0):
    """Integer (dy, dx) per frame, uniformly within +-amplitude."""
    rng = np.random.default_rng(seed)
    return rng.integers(-amplitude, amplitude + 1, size=(n_frames, 2))


def jittered_frames(n_frames=30, size=64, amplitude=3, seed=0, texture_seed=0, dtype=np.uint16):
    """(T, H, W) stack of texture crops at random integer offsets and those offsets."""
    offsets = jitter_offsets(n_frames, amplitude, seed)
    frames = 1000.0 + 3000.0 * crop_texture(offsets, size=size, margin=amplitude + 5, seed=texture_seed)
    return np.round(frames).astype(dtype), offsets


@pytest.fixture
def texture():
    return smooth_texture


@pytest.fixture
def crops():
    return crop_texture


@pytest.fixture
def jittered_stack():
    return jittered_frames


@pytest.fixture
def two_channel_stack():
    """(T, C, H, W) stack with two different textures moving together, and the offsets."""
    def make(n_frames=20, size=64, amplitude=3):
        ch0, offsets = jittered_frames(n_frames, size, amplitude, seed=5, texture_seed=1)
        ch1, _ = jittered_frames(n_frames, size, amplitude, seed=5, texture_seed=2)
        return np.stack([ch0, ch1], axis=1), offsets
    return make
