from __future__ import annotations

import numpy as np

from tile_occupancy.pipeline import DetectionPipeline, run_pipeline
from tile_occupancy.render import DiagnosticRenderer
from tile_occupancy.settings import DiagnosticMode

from conftest import LogSink, make_depth


def test_single_dancer_on_four_by_three_field(settings, dancer_depth):
    result = run_pipeline(dancer_depth, settings)
    assert len(result.blobs) == 1
    assert result.grid.cells.shape == (3, 4)
    assert int(result.grid.cells.sum()) == 1
    assert result.grid.occupied(0, 0)
    assert result.grid.occupied_cells() == [(3, 2)]
    assert result.image is None
    assert result.settings is settings


def test_all_zero_frame_is_all_false(settings):
    result = run_pipeline(make_depth(), settings)
    assert result.grid.is_empty
    assert result.blobs == ()


def test_all_zero_frame_with_zero_threshold(settings):
    result = run_pipeline(make_depth(), settings.with_changes(min_threshold=0))
    assert result.grid.is_empty


def test_body_outside_band_is_ignored(settings):
    result = run_pipeline(make_depth([(10, 10, 30, 30, 2500)]), settings)
    assert result.grid.is_empty


def test_small_speck_is_filtered(settings):
    result = run_pipeline(make_depth([(60, 60, 10, 10, 1000)]), settings)
    assert result.blobs == ()
    assert result.grid.is_empty


def test_inverted_bands_are_all_false(settings, dancer_depth):
    assert run_pipeline(dancer_depth, settings.with_changes(min_depth=1500, max_depth=500)).grid.is_empty
    assert run_pipeline(dancer_depth, settings.with_changes(min_threshold=200, max_threshold=100)).grid.is_empty


def test_zero_sized_grid(settings, dancer_depth):
    result = run_pipeline(dancer_depth, settings.with_changes(grid_cols=0))
    assert result.grid.cells.size == 0
    assert result.grid.is_empty


def test_two_dancers(settings):
    depth = make_depth([(10, 10, 30, 30, 1000), (160, 110, 30, 30, 1200)])
    result = run_pipeline(depth, settings)
    assert len(result.blobs) == 2
    assert sorted(result.grid.occupied_cells()) == [(0, 0), (3, 2)]


def test_bodies_at_both_ends_of_the_band(settings):
    # 520 mm sits just past min_depth; it must not fade under the threshold
    depth = make_depth([(10, 10, 30, 30, 520), (160, 110, 30, 30, 1450)])
    result = run_pipeline(depth, settings)
    assert int(result.band.filtered[25, 25]) == 255
    assert int(result.band.filtered[125, 175]) == 255
    assert len(result.blobs) == 2
    assert sorted(result.grid.occupied_cells()) == [(0, 0), (3, 2)]


def test_flip_flags_follow_settings(settings, dancer_depth):
    result = run_pipeline(dancer_depth, settings.with_changes(flip_cols=False, flip_rows=False))
    assert result.grid.occupied_cells() == [(0, 0)]


def test_deterministic(settings, dancer_depth):
    s = settings.with_changes(diagnostic_mode=DiagnosticMode.BLENDED)
    a = run_pipeline(dancer_depth, s)
    b = run_pipeline(dancer_depth, s)
    assert np.array_equal(a.grid.cells, b.grid.cells)
    assert a.blobs == b.blobs
    assert a.image.data == b.image.data


def test_overlay_image_matches_frame(settings, dancer_depth):
    result = run_pipeline(dancer_depth, settings.with_changes(diagnostic_mode="overlay"))
    assert (result.image.width, result.image.height) == (200, 150)
    assert len(result.image.data) == 200 * 150 * 4


def test_color_blend_uses_color_frame(settings, dancer_depth):
    log = LogSink()
    pipe = DetectionPipeline(renderer=DiagnosticRenderer(print_fn=log))
    s = settings.with_changes(diagnostic_mode="color_blend")
    color = np.full((150, 200, 3), 255, dtype=np.uint8)
    with_color = pipe.process(dancer_depth, s, color)
    without = pipe.process(dancer_depth, s, None)
    assert with_color.image.data != without.image.data
    assert len(log.matching("no usable color frame")) == 1


def test_intermediate_stages_are_exposed(settings, dancer_depth):
    result = run_pipeline(dancer_depth, settings)
    assert result.band.filtered.shape == dancer_depth.shape
    assert result.smoothed.shape == dancer_depth.shape
    assert int(result.binary[25, 25]) == 255
    assert int(result.binary[100, 150]) == 0
