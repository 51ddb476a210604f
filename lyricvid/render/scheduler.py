"""Render loop: one composite per tick, paced by playback time."""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from PIL import Image

from lyricvid.exceptions import ExportCancelledError, PlaybackError
from lyricvid.render.analyzer import SpectrumAnalyzer
from lyricvid.render.playback import AudioPlayback, PlaybackState
from lyricvid.render.style_config import RenderStyleConfig
from lyricvid.render.styles import SongMetadata, StyleRenderer
from lyricvid.render.timeline import LyricTimeline

logger = logging.getLogger(__name__)

# Share of reported progress reserved for asset loading and setup
ENCODING_PROGRESS_START = 0.2
# Highest value reported before the output file is finalized
ENCODING_PROGRESS_CEILING = 0.99

# Tolerance for accumulated floating-point playback positions
_SLOT_EPSILON = 1e-6


class ProgressReporter:
    """Forwards monotonic progress in [0, 1] to a callback.

    The callback fires only when the floored percentage changes. After
    ``close()`` nothing is forwarded. Exceptions raised by the callback
    are logged and do not reach the export.
    """

    def __init__(self, callback: Optional[Callable[[float], Any]] = None):
        self._callback = callback
        self._value = 0.0
        self._last_percent: Optional[int] = None
        self._closed = False

    @property
    def value(self) -> float:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    def report(self, value: float) -> bool:
        """Report ``value``; returns True if the callback was invoked."""
        if self._closed:
            return False
        self._value = max(self._value, min(1.0, max(0.0, value)))
        percent = int(math.floor(self._value * 100 + _SLOT_EPSILON))
        if percent == self._last_percent:
            return False
        self._last_percent = percent
        if self._callback is not None:
            try:
                self._callback(self._value)
            except Exception:
                logger.exception(f"[PROGRESS] Progress callback failed at {percent}%")
        return True

    def report_encoding(self, elapsed: float, duration: float) -> bool:
        """Map playback position into the encoding share of progress."""
        fraction = min(1.0, elapsed / duration) if duration > 0 else 1.0
        value = ENCODING_PROGRESS_START + (1.0 - ENCODING_PROGRESS_START) * fraction
        return self.report(min(value, ENCODING_PROGRESS_CEILING))

    def complete(self) -> None:
        self.report(1.0)

    def close(self) -> None:
        self._closed = True


@dataclass
class SchedulerStats:
    """Counters for one scheduler run."""

    ticks: int = 0
    frames_written: int = 0
    frames_rendered: int = 0
    duplicated_frames: int = 0
    padded_frames: int = 0


class FrameScheduler:
    """Drives rendering at the output frame rate until playback ends.

    Each tick renders one composite for the current playback time and writes
    it to every frame slot whose timestamp ``index / fps`` has been reached,
    so the video stream always has ``ceil(duration * fps)`` frames.
    """

    def __init__(
        self,
        playback: AudioPlayback,
        analyzer: SpectrumAnalyzer,
        timeline: LyricTimeline,
        renderer: StyleRenderer,
        encoder: Any,
        image: Image.Image,
        metadata: SongMetadata,
        config: RenderStyleConfig,
        fps: int = 30,
        progress: Optional[ProgressReporter] = None,
        cancel_check: Optional[Callable[[], Any]] = None,
        stall_timeout_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.playback = playback
        self.analyzer = analyzer
        self.timeline = timeline
        self.renderer = renderer
        self.encoder = encoder
        self.image = image
        self.metadata = metadata
        self.config = config
        self.fps = fps
        self.progress = progress or ProgressReporter()
        self.stall_timeout_s = stall_timeout_s
        self.stats = SchedulerStats()
        self._cancel_check = cancel_check
        self._clock = clock
        self._stopped = False
        self._canvas = Image.new("RGB", (config.width, config.height), (0, 0, 0))

    @property
    def total_frames(self) -> int:
        return int(math.ceil(self.playback.duration_s * self.fps - _SLOT_EPSILON))

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Stop the loop at the next tick boundary without padding."""
        self._stopped = True

    def due_frames(self, elapsed: float) -> int:
        """Number of frame slots whose timestamp is <= ``elapsed``."""
        return min(self.total_frames, int(math.floor(elapsed * self.fps + _SLOT_EPSILON)) + 1)

    def compose(self, elapsed: float) -> bytes:
        """Render the composite for ``elapsed`` and return it as rgb24 bytes."""
        spectrum = self.analyzer.sample()
        lyric = self.timeline.resolve_active(elapsed)
        self.renderer.render(self._canvas, self.image, spectrum, lyric, self.metadata, elapsed, self.config)
        self.stats.frames_rendered += 1
        return self._canvas.tobytes()

    async def run(self) -> SchedulerStats:
        """Run until playback ends.

        Raises:
            ExportCancelledError: If stopped or the cancel check fires
            PlaybackError: If playback stops advancing or halts unexpectedly
        """
        duration = self.playback.duration_s
        interval = 1.0 / self.fps
        total = self.total_frames
        next_slot = 0
        last_elapsed = 0.0
        last_advance_at = self._clock()

        logger.info(f"[SCHEDULER] Starting: {total} frames @ {self.fps} fps, duration {duration:.2f}s")

        while True:
            await self._raise_if_cancelled()

            elapsed = self.playback.current_time()
            state = self.playback.state
            if state is PlaybackState.STOPPED:
                raise PlaybackError("Playback stopped before reaching the end")
            if state is PlaybackState.ENDED:
                break

            now = self._clock()
            if elapsed > last_elapsed:
                last_elapsed = elapsed
                last_advance_at = now
            elif now - last_advance_at > self.stall_timeout_s:
                raise PlaybackError(f"Playback stalled at {elapsed:.2f}s for {self.stall_timeout_s:.1f}s")
            # Frames are handed over in non-decreasing time order
            elapsed = max(elapsed, last_elapsed)

            due = self.due_frames(elapsed)
            if due > next_slot:
                frame = self.compose(elapsed)
                for _ in range(next_slot, due):
                    await self.encoder.write_frame(frame)
                    self.stats.frames_written += 1
                self.stats.duplicated_frames += due - next_slot - 1
                next_slot = due
                self.progress.report_encoding(elapsed, duration)

            self.stats.ticks += 1
            await self.playback.wait_next_frame(interval)

        await self._raise_if_cancelled()
        if next_slot < total:
            frame = self.compose(duration)
            for _ in range(next_slot, total):
                await self.encoder.write_frame(frame)
                self.stats.frames_written += 1
                self.stats.padded_frames += 1
        self.progress.report_encoding(duration, duration)

        logger.info(
            f"[SCHEDULER] Done: {self.stats.frames_written} frames written, "
            f"{self.stats.frames_rendered} rendered, {self.stats.duplicated_frames} duplicated, "
            f"{self.stats.padded_frames} padded"
        )
        return self.stats

    async def _raise_if_cancelled(self) -> None:
        if self._stopped or await self._is_cancelled():
            self._stopped = True
            raise ExportCancelledError()

    async def _is_cancelled(self) -> bool:
        if self._cancel_check is None:
            return False
        result = self._cancel_check()
        if asyncio.iscoroutine(result):
            return await result
        return bool(result)
