"""Real-time spectrum analysis over the playing audio.

Mirrors the Web Audio ``AnalyserNode`` byte-frequency output: a Blackman
window over the last ``fft_size`` samples, FFT magnitudes scaled by
``1 / fft_size``, exponential time smoothing, and a linear map from the
``[min_db, max_db]`` range onto 0-255.
"""

import logging
from typing import Optional

import numpy as np

from lyricvid.render.audio import AudioSource
from lyricvid.render.playback import AudioPlayback

logger = logging.getLogger(__name__)


def blackman_window(size: int) -> np.ndarray:
    """Blackman window with the analyser's (periodic) definition."""
    n = np.arange(size, dtype=np.float64)
    a0, a1, a2 = 0.42, 0.5, 0.08
    return (a0 - a1 * np.cos(2 * np.pi * n / size) + a2 * np.cos(4 * np.pi * n / size)).astype(np.float32)


class SpectrumAnalyzer:
    """Produces fixed-length byte magnitude frames from the current audio window.

    Frame length is ``fft_size // 2`` and never changes for an instance.
    """

    def __init__(
        self,
        source: AudioSource,
        playback: AudioPlayback,
        fft_size: int = 256,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got {smoothing}")
        if max_db <= min_db:
            raise ValueError("max_db must be greater than min_db")

        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._source: Optional[AudioSource] = source
        self._playback: Optional[AudioPlayback] = playback
        self._window = blackman_window(fft_size)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float32)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    @property
    def closed(self) -> bool:
        return self._source is None

    def empty_frame(self) -> np.ndarray:
        return np.zeros(self.bin_count, dtype=np.uint8)

    def sample(self) -> np.ndarray:
        """Return the smoothed spectrum for the current playback position.

        Returns a zero-filled frame when no audio is flowing (not started,
        stopped, ended or closed).
        """
        playback = self._playback
        if self._source is None or playback is None or not playback.is_playing:
            self._smoothed.fill(0.0)
            return self.empty_frame()

        position = playback.current_time()
        if not playback.is_playing:
            self._smoothed.fill(0.0)
            return self.empty_frame()

        magnitudes = self._magnitudes(self._source.window_ending_at(position, self.fft_size))
        tau = self.smoothing
        self._smoothed = tau * self._smoothed + (1.0 - tau) * magnitudes
        return self._to_bytes(self._smoothed)

    def sample_at(self, time_s: float) -> np.ndarray:
        """Unsmoothed spectrum at an arbitrary position (preview/scrubbing)."""
        if self._source is None:
            return self.empty_frame()
        magnitudes = self._magnitudes(self._source.window_ending_at(time_s, self.fft_size))
        return self._to_bytes(magnitudes)

    def close(self) -> None:
        """Release the audio source and playback references."""
        if self._source is not None:
            logger.debug("[ANALYZER] Released audio source")
        self._source = None
        self._playback = None
        self._smoothed.fill(0.0)

    def _magnitudes(self, window: np.ndarray) -> np.ndarray:
        spectrum = np.fft.rfft(window * self._window)
        return (np.abs(spectrum[: self.bin_count]) / self.fft_size).astype(np.float32)

    def _to_bytes(self, magnitudes: np.ndarray) -> np.ndarray:
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(magnitudes)
        scaled = np.floor(255.0 / (self.max_db - self.min_db) * (db - self.min_db))
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8)
