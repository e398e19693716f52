"""
Build-time constants for capture, geometry and export.

Nothing here is configurable at runtime; components take their parameters
from these names so the live view and the exported solid stay in agreement.
"""

# capture: frequency rows per slice and columns kept on screen
POINTS_PER_SLICE = 128
NUM_SLICES = 1024

# frequency axis shaping: show the first 75% of rows, spread the lows
ACTIVE_FREQUENCY_FRACTION = 0.75
FREQUENCY_EXPONENT = 0.65
NOISE_FLOOR = 0.03
EMPHASIS_EXPONENT = 1.2
MAX_MAGNITUDE = 255

# spatial extents (scene units, roughly mm when printed)
WIDTH = 400          # time axis (x)
DEPTH = 80           # frequency axis (z)
HEIGHT_SCALE = 0.6   # amplitude axis (y) = amplitude * DEPTH * HEIGHT_SCALE

# export
BASE_THICKNESS = 4
BACK_THICKNESS = 6   # rear slab; the solid is clipped at the back plane instead
FLAT_EPSILON_FRACTION = 0.02
EXPORT_BASENAME = "spectrogram_sculpture"

# colors
LIVE_BASE_COLOR = (0.15, 0.15, 0.15)   # empty live surface
SOLID_BASE_COLOR = (0.7, 0.7, 0.7)     # flat regions, walls and base plate

# analyser (browser AnalyserNode defaults the capture was tuned against)
SAMPLE_RATE = 44100
FFT_SIZE = 1024
FREQ_BIN_COUNT = FFT_SIZE // 2
SMOOTHING_TIME_CONSTANT = 0.85
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
FRAME_RATE = 60      # display ticks per second
