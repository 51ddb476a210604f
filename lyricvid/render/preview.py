"""Single-frame previews for scrubbing.

Renders the composite at an arbitrary timestamp without playback or an
encoder. Timeline queries may come in any order, and the spectrum is the
instantaneous (unsmoothed) analysis at that position.
"""

import io
import logging
from typing import Optional

import numpy as np
from PIL import Image

from lyricvid.config import Settings, get_settings
from lyricvid.render.analyzer import SpectrumAnalyzer
from lyricvid.render.audio import AudioSource
from lyricvid.render.playback import StaticPlayback
from lyricvid.render.style_config import RenderStyleConfig
from lyricvid.render.styles import SongMetadata, StyleRenderer, create_style_renderer
from lyricvid.render.text_renderer import TextRenderer
from lyricvid.render.timeline import LyricTimeline

logger = logging.getLogger(__name__)


class PreviewRenderer:
    """Renders preview frames for one (image, audio, timeline, style) set.

    Keeps the style renderer between calls so the background and text
    layers are reused while scrubbing.
    """

    def __init__(
        self,
        image: Image.Image,
        timeline: LyricTimeline,
        config: RenderStyleConfig,
        metadata: SongMetadata,
        audio: Optional[AudioSource] = None,
        disc_image: Optional[Image.Image] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.image = image
        self.timeline = timeline
        self.config = config
        self.metadata = metadata
        self.audio = audio
        self.renderer: StyleRenderer = create_style_renderer(
            config.style,
            text_renderer=TextRenderer(font_dir=self.settings.font_dir),
            background_alpha=self.settings.background_image_alpha,
            disc_image=disc_image,
            rotation_rad_s=self.settings.vinyl_rotation_rad_s,
        )

    def spectrum_at(self, timestamp: float) -> np.ndarray:
        bins = self.settings.analysis_fft_size // 2
        if self.audio is None:
            return np.zeros(bins, dtype=np.uint8)
        analyzer = SpectrumAnalyzer(
            self.audio,
            StaticPlayback(self.audio.duration_s, timestamp),
            fft_size=self.settings.analysis_fft_size,
            smoothing=self.settings.analysis_smoothing,
            min_db=self.settings.analysis_min_db,
            max_db=self.settings.analysis_max_db,
        )
        try:
            return analyzer.sample_at(timestamp)
        finally:
            analyzer.close()

    def render(self, timestamp: float) -> Image.Image:
        """Composite the frame at ``timestamp`` (seconds, clamped to >= 0)."""
        timestamp = max(0.0, timestamp)
        if self.audio is not None:
            timestamp = min(timestamp, self.audio.duration_s)
        canvas = Image.new("RGB", (self.config.width, self.config.height), (0, 0, 0))
        lyric = self.timeline.resolve_active(timestamp)
        self.renderer.render(
            canvas, self.image, self.spectrum_at(timestamp), lyric, self.metadata, timestamp, self.config
        )
        logger.debug(f"[PREVIEW] Rendered {self.config.style.value} @ {timestamp:.3f}s lyric={lyric!r}")
        return canvas


def render_preview_frame(
    image: Image.Image,
    timeline: LyricTimeline,
    timestamp: float,
    config: RenderStyleConfig,
    song_name: str,
    creator_name: str = "",
    audio: Optional[AudioSource] = None,
    settings: Optional[Settings] = None,
) -> Image.Image:
    """Render one composite frame at ``timestamp``."""
    previewer = PreviewRenderer(
        image,
        timeline,
        config,
        SongMetadata(title=song_name, creator=creator_name),
        audio=audio,
        settings=settings,
    )
    return previewer.render(timestamp)


def to_png_bytes(frame: Image.Image) -> bytes:
    """Encode a frame as PNG bytes."""
    buffer = io.BytesIO()
    frame.save(buffer, format="PNG")
    return buffer.getvalue()
