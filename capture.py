import logging
import threading

import numpy as np

from config import EXPORT_BASENAME, HEIGHT_SCALE, LIVE_BASE_COLOR, NUM_SLICES, WIDTH
from converter import InsufficientData, SpectrogramSolidBuilder
from geometry_export import export_obj
from spectrum import color_ramp_array, default_row_geometry, normalize_slice

logger = logging.getLogger(__name__)


def _frozen(values):
    data = np.array(values, dtype=float)
    data.flags.writeable = False
    return data


class CaptureHistory:
    """Append-only record of every slice captured since the last reset"""

    def __init__(self, slices=None):
        self._slices = []
        if slices is not None:
            for s in slices:
                self.append(s)

    def append(self, slice_):
        self._slices.append(_frozen(slice_))

    def reset(self):
        self._slices.clear()

    def as_array(self):
        """(slices, rows) copy of the whole history"""
        if not self._slices:
            return np.zeros((0, 0))
        return np.vstack(self._slices)

    def __len__(self):
        return len(self._slices)

    def __getitem__(self, index):
        return self._slices[index]

    def __iter__(self):
        return iter(self._slices)


class LiveSurfaceBuffer:
    """
    Scrolling (rows x num_slices) grid of heights and colors for display.

    Stored as a ring buffer: advance() overwrites the oldest column and moves
    the cursor, grid() returns the columns ordered oldest to newest.
    """

    def __init__(self, geometry=None, num_slices=NUM_SLICES, width=WIDTH, height_scale=HEIGHT_SCALE):
        self.geometry = geometry or default_row_geometry()
        self.num_slices = num_slices
        self.height_scale = height_scale
        self.x_positions = np.linspace(-width / 2, width / 2, num_slices)
        rows = self.geometry.points_per_slice
        self._heights = np.zeros((rows, num_slices))
        self._colors = np.zeros((rows, num_slices, 3))
        self._cursor = 0
        self.reset()

    @property
    def amplitude_scale(self):
        return self.geometry.depth * self.height_scale

    @property
    def z_positions(self):
        return self.geometry.z_positions

    def advance(self, slice_):
        """Drop the oldest column and append the new slice on the right"""
        values = np.asarray(slice_, dtype=float)
        self._heights[:, self._cursor] = values * self.amplitude_scale
        self._colors[:, self._cursor] = color_ramp_array(values)
        self._cursor = (self._cursor + 1) % self.num_slices

    def reset(self):
        """Flat surface in the neutral base color"""
        self._heights[:] = 0.0
        self._colors[:] = LIVE_BASE_COLOR
        self._cursor = 0

    def _order(self):
        return (self._cursor + np.arange(self.num_slices)) % self.num_slices

    def grid(self):
        """(heights, colors) with column 0 the oldest"""
        order = self._order()
        return self._heights[:, order], self._colors[:, order]

    def column(self, index):
        """Heights of one displayed column (0 = oldest, -1 = newest)"""
        return self._heights[:, self._order()[index]]

    def sample_history(self):
        """Rebuild a history from what is on screen (export fallback)"""
        heights, _ = self.grid()
        amplitudes = np.clip(heights / self.amplitude_scale, 0.0, 1.0)
        return CaptureHistory(amplitudes.T)


class CaptureSession:
    """
    One capture: the live buffer, the history and the playback flags.

    tick() and export() hold the same lock, so a capture append never
    interleaves with an export running on another thread.
    """

    def __init__(self, geometry=None, builder=None):
        self.geometry = geometry or default_row_geometry()
        self.history = CaptureHistory()
        self.live = LiveSurfaceBuffer(self.geometry)
        self.builder = builder or SpectrogramSolidBuilder(self.geometry)
        self.capturing = False
        self.ended = False
        self.preview = None
        self._lock = threading.Lock()

    def start(self):
        self.capturing = True
        self.ended = False

    def pause(self):
        self.capturing = False

    def reset(self):
        with self._lock:
            self.capturing = False
            self.ended = False
            self.history.reset()
            self.live.reset()
            self.preview = None
        logger.info("Capture session reset.")

    def tick(self, raw):
        """Normalize one analyser snapshot into the live view (and history)"""
        if self.ended:
            return None
        slice_ = normalize_slice(raw, self.geometry)
        with self._lock:
            self.live.advance(slice_)
            if self.capturing:
                self.history.append(slice_)
        return slice_

    def end(self):
        """Content finished: stop capturing and build the preview solid"""
        self.capturing = False
        self.ended = True
        with self._lock:
            if len(self.history) >= 2:
                self.preview = self.builder.build(self.history)
        logger.info("Capture ended with %d slices.", len(self.history))
        return self.preview

    def build_solid(self):
        """Solid from the history, or from the live view when too little was captured"""
        with self._lock:
            try:
                return self.builder.build(self.history)
            except InsufficientData as e:
                logger.info("%s; sampling the live surface instead", e)
                return self.builder.build(self.live.sample_history())

    def export(self, basename=EXPORT_BASENAME):
        return export_obj(self.build_solid(), basename)

    def run(self, source):
        """Pull snapshots from an analyser until it ends or is paused"""
        source.play()
        self.start()
        while not source.ended and not source.paused:
            self.tick(source.read())
        if source.ended:
            self.end()
        return self
