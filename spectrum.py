import logging
from dataclasses import dataclass
from functools import lru_cache

import numpy as np

from config import (
    ACTIVE_FREQUENCY_FRACTION,
    DEPTH,
    EMPHASIS_EXPONENT,
    FREQ_BIN_COUNT,
    FREQUENCY_EXPONENT,
    MAX_MAGNITUDE,
    NOISE_FLOOR,
    POINTS_PER_SLICE,
)

# Frequency axis: row index -> z coordinate (lows spread, highs collapsed)
# Color ramp: amplitude -> rgb, shared by the live view and the export
# Normalization: raw analyser bytes -> one Slice of 0-1 amplitudes

logger = logging.getLogger(__name__)

# (position, rgb) stops: deep red at silence through yellow to deep blue at peak
COLOR_STOPS = np.array([0.00, 0.15, 0.30, 0.45, 0.65, 0.82, 1.00])
COLOR_VALUES = np.array([
    [0.55, 0.00, 0.00],  # deep red
    [1.00, 0.13, 0.00],  # red-orange
    [1.00, 0.75, 0.00],  # amber
    [1.00, 1.00, 0.00],  # yellow
    [0.12, 0.86, 1.00],  # cyan
    [0.00, 0.46, 1.00],  # blue
    [0.00, 0.12, 0.70],  # deep blue
])


def active_row_count(points_per_slice=POINTS_PER_SLICE, active_fraction=ACTIVE_FREQUENCY_FRACTION):
    """Number of rows that keep their own spatial extent (at least two)"""
    return max(2, int(np.floor(points_per_slice * active_fraction)))


def row_position(row, active_rows, exponent=FREQUENCY_EXPONENT, depth=DEPTH):
    """Map one frequency row to its z coordinate in [-depth/2, depth/2]"""
    if row < active_rows:
        t = row / (active_rows - 1)
        return -depth / 2 + depth * t ** exponent
    # collapsed rows all sit on the front boundary
    return depth / 2


@dataclass(frozen=True, eq=False)
class FrequencyRowGeometry:
    """
    Precomputed z coordinate and active flag for every frequency row.

    Built once and handed to both the live buffer and the exporter so the two
    never disagree about where a row sits.
    """
    points_per_slice: int
    active_rows: int
    exponent: float
    depth: float
    z_positions: np.ndarray

    @classmethod
    def build(cls, points_per_slice=POINTS_PER_SLICE, active_fraction=ACTIVE_FREQUENCY_FRACTION,
              exponent=FREQUENCY_EXPONENT, depth=DEPTH):
        active_rows = active_row_count(points_per_slice, active_fraction)
        z = np.array([row_position(row, active_rows, exponent, depth)
                      for row in range(points_per_slice)], dtype=float)
        z.flags.writeable = False
        return cls(points_per_slice, active_rows, exponent, depth, z)

    def position(self, row):
        return float(self.z_positions[row])

    def is_active(self, row):
        return row < self.active_rows

    @property
    def active_mask(self):
        return np.arange(self.points_per_slice) < self.active_rows

    @property
    def export_positions(self):
        """z of the active band plus the single front boundary row"""
        boundary = self.z_positions[self.active_rows] if self.active_rows < self.points_per_slice else self.depth / 2
        return np.append(self.z_positions[:self.active_rows], boundary)


@lru_cache(maxsize=1)
def default_row_geometry():
    """The process-wide row table built from config constants"""
    return FrequencyRowGeometry.build()


def color_ramp_array(values):
    """Vectorised ramp lookup: (...,) amplitudes -> (..., 3) rgb"""
    v = np.clip(np.asarray(values, dtype=float), 0.0, 1.0)
    return np.stack([np.interp(v, COLOR_STOPS, COLOR_VALUES[:, channel]) for channel in range(3)], axis=-1)


def color_ramp(value):
    """Single amplitude -> (r, g, b); same arithmetic as color_ramp_array"""
    r, g, b = color_ramp_array(value)
    return float(r), float(g), float(b)


def normalize_slice(raw, geometry=None, freq_bin_count=FREQ_BIN_COUNT):
    """
    Downsample one analyser snapshot into a Slice.

    Rows beyond the active band are gated to zero below the noise floor, then
    every row gets a slight perceptual emphasis. Malformed input gives an
    all-zero slice instead of an exception so the display loop keeps running.
    """
    geometry = geometry or default_row_geometry()
    points = geometry.points_per_slice

    try:
        magnitudes = np.asarray(raw, dtype=float)
    except (TypeError, ValueError):
        magnitudes = None

    if magnitudes is None or magnitudes.shape != (freq_bin_count,) or not np.all(np.isfinite(magnitudes)):
        logger.warning("Malformed magnitude snapshot, substituting silence")
        silent = np.zeros(points)
        silent.flags.writeable = False
        return silent

    stride = freq_bin_count // points
    source = np.minimum(freq_bin_count - 1, np.arange(points) * stride)
    bins = np.clip(magnitudes[source], 0, MAX_MAGNITUDE) / MAX_MAGNITUDE

    # keep collapsed highs silent unless the signal is strong
    gated = (bins < NOISE_FLOOR) & ~geometry.active_mask
    bins[gated] = 0.0

    emphasized = bins ** EMPHASIS_EXPONENT
    emphasized.flags.writeable = False
    return emphasized
