from lyricvid.render.analyzer import SpectrumAnalyzer
from lyricvid.render.assets import MediaAsset
from lyricvid.render.pipeline import EncodedVideoFile, ExportPipeline, ExportState
from lyricvid.render.preview import render_preview_frame, to_png_bytes
from lyricvid.render.style_config import AspectRatio, LyricFont, RenderStyleConfig, VisualizationStyle
from lyricvid.render.styles import SongMetadata, create_style_renderer, extract_palette
from lyricvid.render.timeline import LyricLine, LyricTimeline

__all__ = [
    "AspectRatio",
    "EncodedVideoFile",
    "ExportPipeline",
    "ExportState",
    "LyricFont",
    "LyricLine",
    "LyricTimeline",
    "MediaAsset",
    "RenderStyleConfig",
    "SongMetadata",
    "SpectrumAnalyzer",
    "VisualizationStyle",
    "create_style_renderer",
    "extract_palette",
    "render_preview_frame",
    "to_png_bytes",
]
