"""Tests for the export pipeline.

Most tests substitute the encoder, playback and asset loader so no ffmpeg
is needed; the end-to-end test at the bottom runs the real stack.
"""

import asyncio
import os
from pathlib import Path

import pytest

from conftest import FakeEncoder, FakeLoader, RecordingPlayback, no_capability_check, wav_bytes
from lyricvid.exceptions import (
    AssetLoadError,
    CapabilityError,
    EncodingError,
    ExportCancelledError,
    ExportInProgressError,
    InvalidLyricsError,
)
from lyricvid.render.assets import MediaAsset
from lyricvid.render.pipeline import ExportPipeline, ExportState, output_filename
from lyricvid.render.style_config import AspectRatio, RenderStyleConfig, VisualizationStyle
from lyricvid.utils.media_info import get_media_info

LYRICS = [{"text": "Hello", "start_time": 0.0}, {"text": "World", "start_time": 0.25}]


class Harness:
    """Builds a pipeline with fakes and records what they saw."""

    def __init__(self, settings, duration_s=0.5, loader_error=None, fail_on_frame=None, capability_check=None):
        self.events: list[str] = []
        self.encoders: list[FakeEncoder] = []
        self.work_dirs: list[str] = []
        self.duration_s = duration_s
        self.loader_error = loader_error
        self.fail_on_frame = fail_on_frame
        self.pipeline = ExportPipeline(
            settings=settings,
            encoder_factory=self._encoder,
            playback_factory=self._playback,
            loader_factory=self._loader,
            capability_check=capability_check or no_capability_check,
        )

    def _encoder(self, ffmpeg_path, config, audio_path, output_path):
        encoder = FakeEncoder(ffmpeg_path, config, audio_path, output_path, events=self.events, fail_on_frame=self.fail_on_frame)
        self.encoders.append(encoder)
        return encoder

    def _playback(self, pacing, duration_s):
        return RecordingPlayback(duration_s, self.events)

    def _loader(self, settings, work_dir):
        self.work_dirs.append(work_dir)
        return FakeLoader(settings, work_dir, duration_s=self.duration_s, error=self.loader_error)

    async def export(self, audio_asset, image_asset, config=None, song_name="My Song", timeline=None, **kwargs):
        return await self.pipeline.export(
            audio=audio_asset,
            image=image_asset,
            timeline=LYRICS if timeline is None else timeline,
            song_name=song_name,
            creator_name="Me",
            config=config or RenderStyleConfig(),
            **kwargs,
        )


class TestOutputFilename:
    """Tests for output naming."""

    def test_spaces_become_underscores(self):
        """Test the documented naming pattern."""
        assert output_filename("My Song", "mp4") == "My_Song_lyric_video.mp4"

    def test_path_separators_are_replaced(self):
        """Test that a song name cannot escape the output directory."""
        assert output_filename("AC/DC \\ Live", "webm") == "AC_DC___Live_lyric_video.webm"


class TestExportSuccess:
    """Tests for a completed export."""

    @pytest.mark.asyncio
    async def test_export_produces_file(self, test_settings, audio_asset, image_asset):
        """Test that the output lands in output_dir with the expected name."""
        harness = Harness(test_settings)

        result = await harness.export(audio_asset, image_asset)

        assert result.filename == "My_Song_lyric_video.mp4"
        assert result.path == os.path.join(test_settings.output_dir, "My_Song_lyric_video.mp4")
        assert Path(result.path).read_bytes() == b"fake-video"
        assert result.content_type == "video/mp4"
        assert (result.width, result.height) == (1920, 1080)
        assert result.frame_count == 15
        assert harness.encoders[0].frames_written == 15
        assert harness.pipeline.state is ExportState.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_monotonic_and_complete(self, test_settings, audio_asset, image_asset):
        """Test that progress starts at 0, never decreases and ends at exactly 1.0."""
        harness = Harness(test_settings)
        values: list[float] = []

        await harness.export(audio_asset, image_asset, on_progress=values.append)

        assert values[0] == 0.0
        assert values == sorted(values)
        assert values[-1] == 1.0
        assert values.count(1.0) == 1
        assert all(0.0 <= v <= 1.0 for v in values)

    @pytest.mark.asyncio
    async def test_lifecycle_order(self, test_settings, audio_asset, image_asset):
        """Test encoder starts before playback and finishes after it stops."""
        harness = Harness(test_settings)

        await harness.export(audio_asset, image_asset)

        assert harness.events == ["encoder.start", "playback.play", "playback.stop", "encoder.finish"]

    @pytest.mark.asyncio
    async def test_work_dir_removed(self, test_settings, audio_asset, image_asset):
        """Test that the per-export work directory is deleted."""
        harness = Harness(test_settings)

        await harness.export(audio_asset, image_asset)

        assert not os.path.exists(harness.work_dirs[0])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("style", list(VisualizationStyle))
    async def test_every_style_exports(self, style, test_settings, audio_asset, image_asset):
        """Test each visualization style in the vertical aspect ratio."""
        harness = Harness(test_settings, duration_s=0.2)
        config = RenderStyleConfig(style=style, aspect_ratio=AspectRatio.PORTRAIT)

        result = await harness.export(audio_asset, image_asset, config=config)

        assert (result.width, result.height) == (1080, 1920)
        assert result.frame_count == 6

    @pytest.mark.asyncio
    async def test_pipeline_is_reusable(self, test_settings, audio_asset, image_asset):
        """Test that a finished pipeline accepts another export."""
        harness = Harness(test_settings)

        await harness.export(audio_asset, image_asset)
        await harness.export(audio_asset, image_asset, song_name="Second")

        assert harness.pipeline.state is ExportState.COMPLETED
        assert os.path.exists(os.path.join(test_settings.output_dir, "Second_lyric_video.mp4"))

    @pytest.mark.asyncio
    async def test_failing_progress_callback_on_completion(self, test_settings, audio_asset, image_asset):
        """Test that a callback raising on the final 1.0 still yields the finished file."""
        harness = Harness(test_settings)
        values: list[float] = []

        def on_progress(value):
            values.append(value)
            if value >= 1.0:
                raise RuntimeError("listener went away")

        result = await harness.export(audio_asset, image_asset, on_progress=on_progress)

        assert values[-1] == 1.0
        assert os.path.exists(result.path)
        assert harness.pipeline.state is ExportState.COMPLETED


class TestConcurrency:
    """Tests for the one-export-at-a-time rule."""

    @pytest.mark.asyncio
    async def test_second_export_rejected(self, test_settings, audio_asset, image_asset):
        """Test that a concurrent export is rejected and the first still completes."""
        harness = Harness(test_settings)
        first = asyncio.create_task(harness.export(audio_asset, image_asset))

        for _ in range(10_000):
            if harness.pipeline.state is ExportState.ENCODING:
                break
            await asyncio.sleep(0)
        assert harness.pipeline.is_busy

        with pytest.raises(ExportInProgressError):
            await harness.export(audio_asset, image_asset, song_name="Other")

        result = await first
        assert result.filename == "My_Song_lyric_video.mp4"
        assert len(harness.encoders) == 1


class TestCancellation:
    """Tests for cancel()."""

    def test_cancel_when_idle(self, test_settings):
        """Test that cancel without a running export is a no-op."""
        assert Harness(test_settings).pipeline.cancel() is False

    @pytest.mark.asyncio
    async def test_cancel_during_encoding(self, test_settings, audio_asset, image_asset):
        """Test that cancel stops progress, releases resources and leaves no output."""
        harness = Harness(test_settings, duration_s=1.0)
        values: list[float] = []

        def on_progress(value):
            values.append(value)
            if value >= 0.5:
                assert harness.pipeline.cancel() is True

        with pytest.raises(ExportCancelledError):
            await harness.export(audio_asset, image_asset, on_progress=on_progress)

        assert values[-1] >= 0.5
        assert all(v < 1.0 for v in values)
        assert harness.pipeline.state is ExportState.CANCELLED
        assert harness.encoders[0].aborted
        assert not harness.encoders[0].finished
        assert harness.events.index("encoder.abort") < harness.events.index("playback.stop")
        assert not os.path.exists(os.path.join(test_settings.output_dir, "My_Song_lyric_video.mp4"))
        assert not os.path.exists(harness.work_dirs[0])

    @pytest.mark.asyncio
    async def test_no_progress_after_cancel(self, test_settings, audio_asset, image_asset):
        """Test that the callback is never invoked after cancel returns."""
        harness = Harness(test_settings, duration_s=1.0)
        after_cancel: list[float] = []
        cancelled = False

        def on_progress(value):
            nonlocal cancelled
            if cancelled:
                after_cancel.append(value)
            elif value >= 0.3:
                harness.pipeline.cancel()
                cancelled = True

        with pytest.raises(ExportCancelledError):
            await harness.export(audio_asset, image_asset, on_progress=on_progress)

        assert after_cancel == []

    @pytest.mark.asyncio
    async def test_cancel_check_callable(self, test_settings, audio_asset, image_asset):
        """Test the external cancel check is honored."""
        harness = Harness(test_settings, duration_s=1.0)
        calls = 0

        def cancel_check():
            nonlocal calls
            calls += 1
            return calls > 5

        with pytest.raises(ExportCancelledError):
            await harness.export(audio_asset, image_asset, cancel_check=cancel_check)

        assert harness.pipeline.state is ExportState.CANCELLED

    @pytest.mark.asyncio
    async def test_task_cancellation_tears_down(self, test_settings, audio_asset, image_asset):
        """Test that cancelling the awaiting task releases the encoder."""
        harness = Harness(test_settings, duration_s=1.0)
        task = asyncio.create_task(harness.export(audio_asset, image_asset))

        for _ in range(10_000):
            if harness.encoders and harness.encoders[0].frames_written > 2:
                break
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert harness.encoders[0].aborted
        assert harness.pipeline.state is ExportState.CANCELLED


class TestFailures:
    """Tests for error categorization."""

    @pytest.mark.asyncio
    async def test_encoder_failure(self, test_settings, audio_asset, image_asset):
        """Test that an encoder fault surfaces as EncodingError."""
        harness = Harness(test_settings, fail_on_frame=3)

        with pytest.raises(EncodingError) as exc_info:
            await harness.export(audio_asset, image_asset)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert harness.pipeline.state is ExportState.FAILED
        assert harness.encoders[0].aborted
        assert "playback.stop" in harness.events

    @pytest.mark.asyncio
    async def test_loader_failure(self, test_settings, audio_asset, image_asset):
        """Test that an unexpected loading fault surfaces as AssetLoadError."""
        harness = Harness(test_settings, loader_error=ValueError("bad header"))

        with pytest.raises(AssetLoadError) as exc_info:
            await harness.export(audio_asset, image_asset)

        assert "bad header" in exc_info.value.message
        assert harness.encoders == []
        assert harness.pipeline.state is ExportState.FAILED

    @pytest.mark.asyncio
    async def test_categorized_error_passes_through(self, test_settings, audio_asset, image_asset):
        """Test that categorized errors are not rewrapped."""
        harness = Harness(test_settings, loader_error=AssetLoadError("unreadable", asset="image"))

        with pytest.raises(AssetLoadError) as exc_info:
            await harness.export(audio_asset, image_asset)

        assert exc_info.value.asset == "image"
        assert exc_info.value.__cause__ is None

    @pytest.mark.asyncio
    async def test_capability_failure(self, test_settings, audio_asset, image_asset):
        """Test that a missing capability fails before any asset work."""

        async def missing(ffmpeg_path, ffprobe_path, output_format):
            raise CapabilityError("libx264 not available")

        harness = Harness(test_settings, capability_check=missing)

        with pytest.raises(CapabilityError):
            await harness.export(audio_asset, image_asset)

        assert harness.work_dirs == []
        assert harness.pipeline.state is ExportState.FAILED

    @pytest.mark.asyncio
    async def test_negative_start_time_rejected_before_loading(self, test_settings, audio_asset, image_asset):
        """Test that a malformed lyric line is reported as a lyrics problem, not an asset problem."""
        harness = Harness(test_settings)
        values: list[float] = []

        with pytest.raises(InvalidLyricsError) as exc_info:
            await harness.export(
                audio_asset, image_asset, timeline=[{"text": "x", "start_time": -1}], on_progress=values.append
            )

        assert exc_info.value.asset == "lyrics"
        assert exc_info.value.code == "INVALID_LYRICS"
        assert exc_info.value.message.startswith("lyrics: ")
        assert "LyricLineIn" not in exc_info.value.message
        assert harness.work_dirs == []
        assert values == []
        assert harness.pipeline.state is ExportState.IDLE

        result = await harness.export(audio_asset, image_asset)
        assert os.path.exists(result.path)

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, test_settings, audio_asset, image_asset):
        """Test that a failed pipeline can run the next export."""
        harness = Harness(test_settings, fail_on_frame=1)
        with pytest.raises(EncodingError):
            await harness.export(audio_asset, image_asset)

        harness.fail_on_frame = None
        result = await harness.export(audio_asset, image_asset)

        assert os.path.exists(result.path)


@pytest.mark.requires_ffmpeg
class TestEndToEnd:
    """Full export through ffmpeg."""

    @pytest.mark.asyncio
    async def test_ten_second_classic_export(self, test_settings, image_asset):
        """Test a real export keeps the audio duration and video geometry."""
        audio = MediaAsset(data=wav_bytes(10.0), content_type="audio/wav", filename="song.wav")
        pipeline = ExportPipeline(settings=test_settings)
        values: list[float] = []

        result = await pipeline.export(
            audio=audio,
            image=image_asset,
            timeline=[{"text": "Hello", "start_time": 0.0}, {"text": "World", "start_time": 5.0}],
            song_name="End To End",
            creator_name="Tester",
            config=RenderStyleConfig(style=VisualizationStyle.CLASSIC, aspect_ratio=AspectRatio.LANDSCAPE),
            on_progress=values.append,
        )

        info = get_media_info(result.path)
        assert info.has_video and info.has_audio
        assert (info.width, info.height) == (1920, 1080)
        assert info.audio_duration_s == pytest.approx(10.0, abs=0.034)
        assert result.frame_count == 300
        assert values[-1] == 1.0
        assert pipeline.state is ExportState.COMPLETED
