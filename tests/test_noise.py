from __future__ import annotations

import numpy as np

from tile_occupancy.noise import NoiseSuppressor


def test_keeps_shape_for_odd_sizes():
    img = np.zeros((77, 101), dtype=np.uint8)
    img[20:50, 30:70] = 255
    out = NoiseSuppressor().apply(img)
    assert out.shape == img.shape
    assert out.dtype == np.uint8


def test_isolated_speck_is_removed():
    img = np.zeros((64, 64), dtype=np.uint8)
    img[32, 32] = 255
    out = NoiseSuppressor().apply(img)
    assert int(out.max()) < 16


def test_large_region_survives():
    img = np.zeros((100, 100), dtype=np.uint8)
    img[30:70, 30:70] = 255
    out = NoiseSuppressor().apply(img)
    assert int(out[50, 50]) == 255
    assert int(out[5, 5]) == 0


def test_tiny_input_is_copied():
    img = np.full((1, 5), 9, dtype=np.uint8)
    out = NoiseSuppressor().apply(img)
    assert out.tolist() == img.tolist()
    assert out is not img
