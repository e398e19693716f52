import logging

import librosa
import numpy as np
from scipy.signal import get_window

from config import (
    FFT_SIZE,
    FRAME_RATE,
    MAX_DECIBELS,
    MIN_DECIBELS,
    SAMPLE_RATE,
    SMOOTHING_TIME_CONSTANT,
)

# Audio file -> one byte-magnitude snapshot per display tick
# Mirrors a browser AnalyserNode: blackman window, |X|/N, temporal smoothing,
# dB mapped onto 0-255 between MIN_DECIBELS and MAX_DECIBELS

logger = logging.getLogger(__name__)


class AudioLoadError(ValueError):
    """The audio file could not be decoded"""


class AudioFileAnalyser:
    def __init__(self, samples, sample_rate=SAMPLE_RATE, fft_size=FFT_SIZE,
                 frame_rate=FRAME_RATE, smoothing=SMOOTHING_TIME_CONSTANT):
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.frame_rate = frame_rate
        self.smoothing = smoothing
        self.hop_length = max(1, int(round(sample_rate / frame_rate)))
        self.frequency_bin_count = fft_size // 2

        self.magnitudes = self._magnitude_frames(np.asarray(samples, dtype=np.float32))
        self._smoothed = np.zeros(self.frequency_bin_count)
        self.position = 0
        self.paused = True

    @classmethod
    def from_file(cls, path, duration=None, **kwargs):
        """Load mono audio with librosa and analyse it"""
        sample_rate = kwargs.pop('sample_rate', SAMPLE_RATE)
        try:
            y, sr = librosa.load(path, sr=sample_rate, mono=True, duration=duration)
        except Exception as e:
            raise AudioLoadError(f"could not decode {path}: {e}") from e
        logger.info("Loaded %s: %.2f s at %d Hz", path, len(y) / sr, sr)
        return cls(y, sample_rate=sr, **kwargs)

    def _magnitude_frames(self, samples):
        """(frames, bins) of |X|/N, one frame per tick ending at the playhead"""
        # silence before the start, like an analyser that has just been connected
        padded = np.concatenate([np.zeros(self.fft_size, dtype=np.float32), samples])
        window = get_window('blackman', self.fft_size)
        stft = librosa.stft(padded, n_fft=self.fft_size, hop_length=self.hop_length,
                            window=window, center=False)
        return np.abs(stft[:self.frequency_bin_count]).T / self.fft_size

    @property
    def frame_count(self):
        return len(self.magnitudes)

    @property
    def duration(self):
        return self.frame_count / self.frame_rate

    @property
    def ended(self):
        return self.position >= self.frame_count

    def play(self):
        self.paused = False

    def pause(self):
        self.paused = True

    def seek(self, seconds):
        self.position = int(np.clip(round(seconds * self.frame_rate), 0, self.frame_count))

    def read(self):
        """Byte magnitudes at the playhead, then advance one tick"""
        frame = self.magnitudes[min(self.position, self.frame_count - 1)]
        self._smoothed = self.smoothing * self._smoothed + (1 - self.smoothing) * frame

        with np.errstate(divide='ignore'):
            decibels = 20 * np.log10(self._smoothed)
        scaled = np.floor(255 / (MAX_DECIBELS - MIN_DECIBELS) * (decibels - MIN_DECIBELS))

        self.position += 1
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def __iter__(self):
        while not self.ended:
            yield self.read()
