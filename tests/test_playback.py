"""Tests for playback clocks."""

import pytest

from lyricvid.render.playback import (
    PlaybackState,
    RealtimePlayback,
    StaticPlayback,
    SteppedPlayback,
    create_playback,
)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSteppedPlayback:
    """Tests for frame-stepped playback."""

    @pytest.mark.asyncio
    async def test_advances_one_interval_per_tick(self):
        """Test position moves by exactly one interval per wait."""
        playback = SteppedPlayback(1.0)
        playback.play()

        await playback.wait_next_frame(0.25)
        await playback.wait_next_frame(0.25)

        assert playback.current_time() == pytest.approx(0.5)
        assert playback.is_playing

    @pytest.mark.asyncio
    async def test_ends_at_duration(self):
        """Test that playback ends and clamps at the duration."""
        playback = SteppedPlayback(0.5)
        playback.play()

        for _ in range(5):
            await playback.wait_next_frame(0.2)

        assert playback.current_time() == 0.5
        assert playback.state is PlaybackState.ENDED
        assert playback.ended

    @pytest.mark.asyncio
    async def test_does_not_advance_before_play(self):
        """Test that an idle playback stays at 0."""
        playback = SteppedPlayback(1.0)

        await playback.wait_next_frame(0.1)

        assert playback.current_time() == 0.0

    def test_play_twice_fails(self):
        """Test that playback starts only once."""
        playback = SteppedPlayback(1.0)
        playback.play()

        with pytest.raises(RuntimeError):
            playback.play()

    def test_stop_is_idempotent(self):
        """Test that stop may be called repeatedly."""
        playback = SteppedPlayback(1.0)
        playback.play()

        playback.stop()
        playback.stop()

        assert playback.state is PlaybackState.STOPPED
        assert not playback.is_playing

    def test_invalid_duration(self):
        """Test that a non-positive duration is rejected."""
        with pytest.raises(ValueError):
            SteppedPlayback(0.0)


class TestRealtimePlayback:
    """Tests for wall-clock playback."""

    def test_follows_clock(self):
        """Test position is clock time since play."""
        clock = FakeClock()
        playback = RealtimePlayback(10.0, clock=clock)

        assert playback.current_time() == 0.0
        playback.play()
        clock.now += 2.5

        assert playback.current_time() == pytest.approx(2.5)

    def test_ends_at_duration(self):
        """Test clamping and the ended state."""
        clock = FakeClock()
        playback = RealtimePlayback(3.0, clock=clock)
        playback.play()
        clock.now += 4.0

        assert playback.current_time() == 3.0
        assert playback.state is PlaybackState.ENDED

    def test_stop_freezes_position(self):
        """Test that the position stays where it was stopped."""
        clock = FakeClock()
        playback = RealtimePlayback(10.0, clock=clock)
        playback.play()
        clock.now += 1.0
        playback.stop()
        clock.now += 5.0

        assert playback.current_time() == pytest.approx(1.0)
        assert playback.state is PlaybackState.STOPPED

    def test_stop_after_end_keeps_ended(self):
        """Test that stopping an ended playback does not change its state."""
        clock = FakeClock()
        playback = RealtimePlayback(1.0, clock=clock)
        playback.play()
        clock.now += 2.0
        playback.current_time()

        playback.stop()

        assert playback.state is PlaybackState.ENDED


class TestStaticPlayback:
    """Tests for the fixed-position playback used by previews."""

    def test_position_is_clamped(self):
        """Test position clamping to [0, duration]."""
        assert StaticPlayback(5.0, 7.0).current_time() == 5.0
        assert StaticPlayback(5.0, -1.0).current_time() == 0.0

    def test_reports_playing(self):
        """Test that a static playback analyzes as playing."""
        assert StaticPlayback(5.0, 2.0).is_playing


class TestCreatePlayback:
    """Tests for the pacing factory."""

    def test_modes(self):
        """Test that each pacing mode maps to its clock."""
        assert isinstance(create_playback("frame", 1.0), SteppedPlayback)
        assert isinstance(create_playback("realtime", 1.0), RealtimePlayback)

    def test_unknown_mode(self):
        """Test that an unknown pacing mode is rejected."""
        with pytest.raises(ValueError):
            create_playback("turbo", 1.0)
