"""Lyric video export pipeline.

Pipeline stages:
1. Capability check (ffmpeg/ffprobe and the output codecs)
2. Concurrent asset loading (image, audio, vinyl disc overlay)
3. Encoding: encoder and playback start together, FrameScheduler renders
4. Finalizing: grace delay, encoder flush, output handed to the caller

Any failure releases resources in a fixed order (render loop, encoder,
playback, analyzer, work directory) and surfaces one categorized error.
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from lyricvid.config import Settings, get_settings
from lyricvid.exceptions import (
    AssetLoadError,
    EncodingError,
    ExportCancelledError,
    ExportInProgressError,
    InvalidLyricsError,
    LyricVidError,
)
from lyricvid.render.analyzer import SpectrumAnalyzer
from lyricvid.render.assets import AssetLoader, LoadedAssets, MediaAsset
from lyricvid.render.encoder import EncoderConfig, FFmpegEncoder, check_capabilities
from lyricvid.render.playback import AudioPlayback, create_playback
from lyricvid.render.scheduler import FrameScheduler, ProgressReporter, SchedulerStats
from lyricvid.render.style_config import RenderStyleConfig, VisualizationStyle
from lyricvid.render.styles import SongMetadata, create_style_renderer
from lyricvid.render.text_renderer import TextRenderer
from lyricvid.render.timeline import LyricInput, LyricTimeline

logger = logging.getLogger(__name__)


class ExportState(str, Enum):
    """Export lifecycle states."""

    IDLE = "idle"
    LOADING_ASSETS = "loading_assets"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATES = frozenset({ExportState.LOADING_ASSETS, ExportState.ENCODING, ExportState.FINALIZING})

_TRANSITIONS: dict[ExportState, frozenset[ExportState]] = {
    ExportState.IDLE: frozenset({ExportState.LOADING_ASSETS}),
    ExportState.LOADING_ASSETS: frozenset({ExportState.ENCODING, ExportState.FAILED, ExportState.CANCELLED}),
    ExportState.ENCODING: frozenset({ExportState.FINALIZING, ExportState.FAILED, ExportState.CANCELLED}),
    ExportState.FINALIZING: frozenset({ExportState.COMPLETED, ExportState.FAILED, ExportState.CANCELLED}),
    ExportState.COMPLETED: frozenset({ExportState.LOADING_ASSETS}),
    ExportState.FAILED: frozenset({ExportState.LOADING_ASSETS}),
    ExportState.CANCELLED: frozenset({ExportState.LOADING_ASSETS}),
}


@dataclass
class EncodedVideoFile:
    """Finished, muxed output handed to the caller."""

    path: str
    filename: str
    content_type: str
    duration_s: float
    width: int
    height: int
    fps: int
    frame_count: int
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)


def output_filename(song_name: str, extension: str) -> str:
    """``<song name, spaces as underscores>_lyric_video.<ext>``."""
    stem = re.sub(r"[\\/]", "_", song_name.replace(" ", "_"))
    return f"{stem}_lyric_video.{extension}"


def build_timeline(lines: Union[LyricTimeline, Iterable[LyricInput]]) -> LyricTimeline:
    """Build a timeline from raw lyric lines.

    Raises:
        InvalidLyricsError: If a line fails validation
    """
    if isinstance(lines, LyricTimeline):
        return lines
    try:
        return LyricTimeline(lines)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "line"
        raise InvalidLyricsError(f"{field}: {error['msg']}") from e


EncoderFactory = Callable[[str, EncoderConfig, str, str], Any]
PlaybackFactory = Callable[[str, float], AudioPlayback]
LoaderFactory = Callable[[Settings, str], AssetLoader]
CapabilityCheck = Callable[[str, str, str], Awaitable[None]]


class ExportPipeline:
    """Runs one export at a time.

    The encoder, playback, analyzer and asset loader are created through
    factories so alternative implementations can be substituted.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        encoder_factory: Optional[EncoderFactory] = None,
        playback_factory: Optional[PlaybackFactory] = None,
        loader_factory: Optional[LoaderFactory] = None,
        capability_check: Optional[CapabilityCheck] = None,
    ):
        self.settings = settings or get_settings()
        self._encoder_factory = encoder_factory or FFmpegEncoder
        self._playback_factory = playback_factory or create_playback
        self._loader_factory = loader_factory or AssetLoader
        self._capability_check = capability_check or check_capabilities
        self._text_renderer = TextRenderer(font_dir=self.settings.font_dir)

        self._state = ExportState.IDLE
        self._cancel_requested = False
        self._cancel_event: Optional[asyncio.Event] = None
        self._reporter: Optional[ProgressReporter] = None
        self._loading_task: Optional[asyncio.Future] = None
        self._scheduler: Optional[FrameScheduler] = None
        self.last_stats: Optional[SchedulerStats] = None

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state in ACTIVE_STATES

    def _transition(self, new_state: ExportState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid export state transition: {self._state.value} -> {new_state.value}")
        logger.info(f"[EXPORT] State: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def cancel(self) -> bool:
        """Request cancellation of the running export.

        Progress callbacks stop immediately; the export raises
        ExportCancelledError once teardown completes. Returns False when
        no export is running.
        """
        if not self.is_busy:
            return False
        logger.info(f"[EXPORT] Cancel requested in state {self._state.value}")
        self._cancel_requested = True
        if self._reporter is not None:
            self._reporter.close()
        if self._scheduler is not None:
            self._scheduler.stop()
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self._loading_task is not None and not self._loading_task.done():
            self._loading_task.cancel()
        return True

    async def export(
        self,
        audio: MediaAsset,
        image: MediaAsset,
        timeline: Union[LyricTimeline, Iterable[LyricInput]],
        song_name: str,
        creator_name: str,
        config: RenderStyleConfig,
        on_progress: Optional[Callable[[float], Any]] = None,
        cancel_check: Optional[Callable[[], Any]] = None,
    ) -> EncodedVideoFile:
        """Render and mux a lyric video.

        Args:
            audio: Audio bytes with content type
            image: Image bytes with content type
            timeline: Lyric timeline (or raw lines to build one from)
            song_name: Song title shown in the frame and used for the filename
            creator_name: Creator shown as "by <creator>"
            config: Visual style for this export
            on_progress: Called with monotonic progress in [0, 1], ending at 1.0
            cancel_check: Optional callable (sync or async) returning True to cancel

        Returns:
            The finished output file

        Raises:
            ExportInProgressError: If an export is already running on this pipeline
            InvalidLyricsError: If a lyric line is malformed (raised before any work starts)
            AssetLoadError, CapabilityError, EncodingError, PlaybackError: On failure
            ExportCancelledError: If cancelled
        """
        if self.is_busy:
            raise ExportInProgressError()
        timeline = build_timeline(timeline)
        self._transition(ExportState.LOADING_ASSETS)

        self._cancel_requested = False
        self._cancel_event = asyncio.Event()
        self._scheduler = None
        self._loading_task = None
        reporter = ProgressReporter(on_progress)
        self._reporter = reporter

        settings = self.settings
        work_dir = tempfile.mkdtemp(prefix=settings.work_dir_prefix)
        phase = "loading"
        encoder = None
        playback: Optional[AudioPlayback] = None
        analyzer: Optional[SpectrumAnalyzer] = None

        def is_cancelled() -> Any:
            if self._cancel_requested:
                return True
            return cancel_check() if cancel_check is not None else False

        try:
            reporter.report(0.0)
            logger.info(
                f"[EXPORT] Starting: '{song_name}' style={config.style.value} "
                f"aspect={config.aspect_ratio.value} lyrics={len(timeline)}"
            )

            await self._capability_check(settings.ffmpeg_path, settings.ffprobe_path, settings.render_output_format)
            self._raise_if_cancelled()

            loader = self._loader_factory(settings, work_dir)
            need_disc = config.style is VisualizationStyle.VINYL
            assets = await self._await_loading(loader.load(audio, image, need_disc=need_disc))
            self._raise_if_cancelled()

            # Encoding
            self._transition(ExportState.ENCODING)
            phase = "encoding"

            encoder_config = EncoderConfig.from_settings(settings, config.width, config.height, assets.duration_s)
            partial_path = os.path.join(work_dir, output_filename(song_name, encoder_config.extension))
            encoder = self._encoder_factory(settings.ffmpeg_path, encoder_config, assets.audio_path, partial_path)
            playback = self._playback_factory(settings.render_pacing, assets.duration_s)
            analyzer = SpectrumAnalyzer(
                assets.audio,
                playback,
                fft_size=settings.analysis_fft_size,
                smoothing=settings.analysis_smoothing,
                min_db=settings.analysis_min_db,
                max_db=settings.analysis_max_db,
            )
            scheduler = self._build_scheduler(
                assets, playback, analyzer, timeline, encoder, song_name, creator_name, config, reporter, is_cancelled,
            )
            self._scheduler = scheduler

            await encoder.start()
            playback.play()
            reporter.report_encoding(0.0, assets.duration_s)

            self.last_stats = await scheduler.run()
            self._raise_if_cancelled()

            # Finalizing
            self._transition(ExportState.FINALIZING)
            phase = "finalizing"
            playback.stop()
            await self._grace_delay(settings.finalize_grace_ms / 1000.0)
            self._raise_if_cancelled()

            encoded_path = await encoder.finish()
            self._raise_if_cancelled()
            analyzer.close()

            result = self._publish(encoded_path, encoder_config, scheduler)
            self._transition(ExportState.COMPLETED)
            reporter.complete()
            reporter.close()
            logger.info(f"[EXPORT] Completed: {result.path} ({result.size_bytes} bytes)")
            return result

        except ExportCancelledError:
            await self._teardown(reporter, encoder, playback, analyzer)
            self._transition(ExportState.CANCELLED)
            logger.info("[EXPORT] Cancelled")
            raise
        except asyncio.CancelledError:
            await self._teardown(reporter, encoder, playback, analyzer)
            self._transition(ExportState.CANCELLED)
            logger.info("[EXPORT] Task cancelled")
            raise
        except LyricVidError as e:
            await self._teardown(reporter, encoder, playback, analyzer)
            self._transition(ExportState.FAILED)
            logger.error(f"[EXPORT] Failed ({e.code}) during {phase}: {e.message}")
            raise
        except Exception as e:
            await self._teardown(reporter, encoder, playback, analyzer)
            self._transition(ExportState.FAILED)
            logger.exception(f"[EXPORT] Unexpected error during {phase}")
            raise self._normalize_error(e, phase) from e
        finally:
            self._scheduler = None
            self._loading_task = None
            self._reporter = None
            shutil.rmtree(work_dir, ignore_errors=True)

    def _build_scheduler(
        self,
        assets: LoadedAssets,
        playback: AudioPlayback,
        analyzer: SpectrumAnalyzer,
        timeline: LyricTimeline,
        encoder: Any,
        song_name: str,
        creator_name: str,
        config: RenderStyleConfig,
        reporter: ProgressReporter,
        cancel_check: Callable[[], Any],
    ) -> FrameScheduler:
        renderer = create_style_renderer(
            config.style,
            text_renderer=self._text_renderer,
            background_alpha=self.settings.background_image_alpha,
            disc_image=assets.disc,
            rotation_rad_s=self.settings.vinyl_rotation_rad_s,
        )
        return FrameScheduler(
            playback=playback,
            analyzer=analyzer,
            timeline=timeline,
            renderer=renderer,
            encoder=encoder,
            image=assets.image,
            metadata=SongMetadata(title=song_name, creator=creator_name),
            config=config,
            fps=self.settings.render_fps,
            progress=reporter,
            cancel_check=cancel_check,
            stall_timeout_s=self.settings.playback_stall_timeout_s,
        )

    async def _await_loading(self, coro: Awaitable[LoadedAssets]) -> LoadedAssets:
        task = asyncio.ensure_future(coro)
        self._loading_task = task
        try:
            return await task
        except asyncio.CancelledError:
            # cancel() cancels the loading task; an outer cancellation propagates as-is
            if self._cancel_requested and not _current_task_cancelling():
                raise ExportCancelledError() from None
            raise
        finally:
            self._loading_task = None

    async def _grace_delay(self, seconds: float) -> None:
        if seconds <= 0 or self._cancel_event is None:
            return
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _raise_if_cancelled(self) -> None:
        if self._cancel_requested:
            raise ExportCancelledError()

    def _publish(self, encoded_path: str, encoder_config: EncoderConfig, scheduler: FrameScheduler) -> EncodedVideoFile:
        os.makedirs(self.settings.output_dir, exist_ok=True)
        filename = os.path.basename(encoded_path)
        final_path = os.path.join(self.settings.output_dir, filename)
        shutil.move(encoded_path, final_path)
        return EncodedVideoFile(
            path=final_path,
            filename=filename,
            content_type=encoder_config.content_type,
            duration_s=encoder_config.duration_s or 0.0,
            width=encoder_config.width,
            height=encoder_config.height,
            fps=encoder_config.fps,
            frame_count=scheduler.stats.frames_written,
            size_bytes=os.path.getsize(final_path),
        )

    async def _teardown(
        self,
        reporter: ProgressReporter,
        encoder: Any,
        playback: Optional[AudioPlayback],
        analyzer: Optional[SpectrumAnalyzer],
    ) -> None:
        """Release resources: render loop, encoder, playback, analyzer."""
        reporter.close()
        if self._scheduler is not None:
            self._scheduler.stop()
        if encoder is not None:
            try:
                await encoder.abort()
            except Exception:
                logger.exception("[EXPORT] Encoder abort failed")
        if playback is not None:
            playback.stop()
        if analyzer is not None:
            analyzer.close()
        logger.info("[EXPORT] Resources released")

    @staticmethod
    def _normalize_error(exc: Exception, phase: str) -> LyricVidError:
        if phase == "loading":
            return AssetLoadError(str(exc) or exc.__class__.__name__)
        return EncodingError(str(exc) or exc.__class__.__name__)


def _current_task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0
