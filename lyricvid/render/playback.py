"""Playback clocks.

A playback object is the single source of "current playback time" for an
export. The scheduler reads it through ``current_time()`` and paces itself
with ``wait_next_frame()``.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable


class PlaybackState(Enum):
    """Playback lifecycle."""

    IDLE = "idle"
    PLAYING = "playing"
    ENDED = "ended"
    STOPPED = "stopped"


class AudioPlayback(ABC):
    """Base class for playback clocks over a known duration."""

    def __init__(self, duration_s: float):
        if duration_s <= 0:
            raise ValueError("Playback duration must be greater than 0")
        self.duration_s = duration_s
        self.state = PlaybackState.IDLE

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING

    @property
    def ended(self) -> bool:
        self.current_time()
        return self.state is PlaybackState.ENDED

    def play(self) -> None:
        """Start playback from time 0."""
        if self.state is not PlaybackState.IDLE:
            raise RuntimeError(f"Cannot start playback from state {self.state.value}")
        self.state = PlaybackState.PLAYING
        self._on_play()

    def stop(self) -> None:
        """Halt playback. Safe to call more than once."""
        if self.state in (PlaybackState.PLAYING, PlaybackState.IDLE):
            self.state = PlaybackState.STOPPED

    def _mark_ended_if_done(self, position: float) -> float:
        if position >= self.duration_s:
            if self.state is PlaybackState.PLAYING:
                self.state = PlaybackState.ENDED
            return self.duration_s
        return position

    @abstractmethod
    def _on_play(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def current_time(self) -> float:
        """Current playback position in seconds, clamped to the duration."""
        raise NotImplementedError

    @abstractmethod
    async def wait_next_frame(self, interval_s: float) -> None:
        """Suspend until roughly one frame interval of playback has passed."""
        raise NotImplementedError


class RealtimePlayback(AudioPlayback):
    """Playback position follows a monotonic wall clock."""

    def __init__(self, duration_s: float, clock: Callable[[], float] = time.monotonic):
        super().__init__(duration_s)
        self._clock = clock
        self._started_at: float | None = None
        self._stopped_position = 0.0

    def _on_play(self) -> None:
        self._started_at = self._clock()

    def current_time(self) -> float:
        if self._started_at is None:
            return 0.0
        if self.state is PlaybackState.STOPPED:
            return self._stopped_position
        position = self._mark_ended_if_done(self._clock() - self._started_at)
        return max(0.0, position)

    def stop(self) -> None:
        self._stopped_position = self.current_time()
        super().stop()

    async def wait_next_frame(self, interval_s: float) -> None:
        if self._started_at is None:
            await asyncio.sleep(interval_s)
            return
        # Sleep to the next frame boundary so rendering time is absorbed
        elapsed = self._clock() - self._started_at
        next_boundary = (int(elapsed / interval_s) + 1) * interval_s
        await asyncio.sleep(max(0.0, next_boundary - elapsed))


class SteppedPlayback(AudioPlayback):
    """Playback position advances exactly one frame interval per tick."""

    def __init__(self, duration_s: float):
        super().__init__(duration_s)
        self._position = 0.0

    def _on_play(self) -> None:
        self._position = 0.0

    def current_time(self) -> float:
        if self.state is PlaybackState.PLAYING:
            return self._mark_ended_if_done(self._position)
        return min(self._position, self.duration_s)

    async def wait_next_frame(self, interval_s: float) -> None:
        if self.state is PlaybackState.PLAYING:
            self._position = min(self._position + interval_s, self.duration_s)
        # Yield so cancellation and other tasks can run between frames
        await asyncio.sleep(0)


class StaticPlayback(AudioPlayback):
    """Fixed playback position, used for single-frame previews."""

    def __init__(self, duration_s: float, position_s: float):
        super().__init__(duration_s)
        self._position = max(0.0, min(position_s, duration_s))
        self.state = PlaybackState.PLAYING

    def _on_play(self) -> None:
        return

    def current_time(self) -> float:
        return self._position

    async def wait_next_frame(self, interval_s: float) -> None:
        await asyncio.sleep(0)


def create_playback(pacing: str, duration_s: float) -> AudioPlayback:
    """Create the playback clock for the configured pacing mode."""
    if pacing == "frame":
        return SteppedPlayback(duration_s)
    if pacing == "realtime":
        return RealtimePlayback(duration_s)
    raise ValueError(f"Unknown render pacing: {pacing}")
