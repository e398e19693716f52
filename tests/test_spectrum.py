import numpy as np

from config import DEPTH, FREQ_BIN_COUNT, NOISE_FLOOR, POINTS_PER_SLICE
from spectrum import (
    COLOR_VALUES,
    FrequencyRowGeometry,
    active_row_count,
    color_ramp,
    color_ramp_array,
    default_row_geometry,
    normalize_slice,
    row_position,
)


def test_active_rows_from_constants():
    assert active_row_count() == 96
    assert active_row_count(3, 0.1) == 2


def test_rows_increase_across_active_band():
    geometry = default_row_geometry()
    active = geometry.z_positions[:geometry.active_rows]
    assert np.all(np.diff(active) > 0)
    assert active[0] == -DEPTH / 2
    assert np.isclose(active[-1], DEPTH / 2)


def test_collapsed_rows_sit_on_upper_bound():
    geometry = default_row_geometry()
    collapsed = geometry.z_positions[geometry.active_rows:]
    assert len(collapsed) == POINTS_PER_SLICE - geometry.active_rows
    assert np.all(collapsed == DEPTH / 2)
    assert not geometry.is_active(geometry.active_rows)
    assert geometry.is_active(geometry.active_rows - 1)


def test_exponent_spreads_low_rows():
    geometry = default_row_geometry()
    spacing = np.diff(geometry.z_positions[:geometry.active_rows])
    assert spacing[0] > spacing[-1]


def test_table_matches_single_row_mapping():
    geometry = FrequencyRowGeometry.build(points_per_slice=16, active_fraction=0.5, depth=10)
    for row in range(16):
        assert geometry.position(row) == row_position(row, 8, depth=10)


def test_table_is_read_only_and_shared():
    geometry = default_row_geometry()
    assert geometry is default_row_geometry()
    assert not geometry.z_positions.flags.writeable


def test_export_positions_add_boundary_row():
    geometry = default_row_geometry()
    export = geometry.export_positions
    assert len(export) == geometry.active_rows + 1
    assert export[-1] == DEPTH / 2
    np.testing.assert_array_equal(export[:-1], geometry.z_positions[:geometry.active_rows])


def test_color_ramp_endpoints_are_exact():
    assert color_ramp(0.0) == tuple(COLOR_VALUES[0])
    assert color_ramp(1.0) == tuple(COLOR_VALUES[-1])


def test_color_ramp_clamps_out_of_range():
    assert color_ramp(-3.0) == color_ramp(0.0)
    assert color_ramp(7.5) == color_ramp(1.0)


def test_color_ramp_interpolates_between_stops():
    r, g, b = color_ramp(0.075)  # halfway between deep red and red-orange
    assert np.isclose(r, (0.55 + 1.0) / 2)
    assert np.isclose(g, 0.13 / 2)
    assert b == 0.0


def test_scalar_and_array_ramp_agree():
    values = np.linspace(-0.2, 1.2, 57)
    table = color_ramp_array(values)
    for v, rgb in zip(values, table):
        assert color_ramp(v) == tuple(rgb)


def test_normalize_samples_with_stride():
    raw = np.zeros(FREQ_BIN_COUNT, dtype=np.uint8)
    raw[4 * 10] = 255  # row 10 samples source bin 40 (stride 4)
    raw[4 * 10 + 1] = 200  # between strides, never sampled
    out = normalize_slice(raw)
    assert out.shape == (POINTS_PER_SLICE,)
    assert out[10] == 1.0
    assert np.count_nonzero(out) == 1


def test_normalize_applies_emphasis():
    raw = np.full(FREQ_BIN_COUNT, 128, dtype=np.uint8)
    out = normalize_slice(raw)
    assert np.allclose(out, (128 / 255) ** 1.2)


def test_noise_gate_silences_quiet_collapsed_rows():
    geometry = default_row_geometry()
    quiet = int(NOISE_FLOOR * 255) - 1
    raw = np.full(FREQ_BIN_COUNT, quiet, dtype=np.uint8)
    out = normalize_slice(raw, geometry)
    assert np.all(out[geometry.active_rows:] == 0)
    # active rows are never gated
    assert np.all(out[:geometry.active_rows] > 0)


def test_noise_gate_passes_strong_collapsed_rows():
    geometry = default_row_geometry()
    raw = np.full(FREQ_BIN_COUNT, 200, dtype=np.uint8)
    out = normalize_slice(raw, geometry)
    assert np.all(out[geometry.active_rows:] > 0)


def test_slice_is_immutable():
    out = normalize_slice(np.zeros(FREQ_BIN_COUNT))
    assert not out.flags.writeable


def test_malformed_input_gives_silence():
    for bad in (None, [], np.zeros(7), ["a"] * FREQ_BIN_COUNT, np.full(FREQ_BIN_COUNT, np.nan)):
        out = normalize_slice(bad)
        assert out.shape == (POINTS_PER_SLICE,)
        assert np.all(out == 0)


def test_out_of_range_magnitudes_are_clipped():
    raw = np.full(FREQ_BIN_COUNT, 1000.0)
    assert np.all(normalize_slice(raw) == 1.0)
