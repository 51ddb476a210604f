from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "lyricvid"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings
    render_fps: int = 30
    render_output_format: Literal["mp4", "webm"] = "mp4"
    render_crf: int = 18
    render_preset: str = "medium"
    render_audio_bitrate: str = "192k"
    # Maximum threads for FFmpeg (limits per-thread buffer memory)
    render_ffmpeg_threads: int = 2
    # "realtime" paces frames by wall clock, "frame" steps one frame per tick
    render_pacing: Literal["realtime", "frame"] = "realtime"

    # Spectrum analysis (Web Audio analyser defaults)
    analysis_sample_rate: int = 44100
    analysis_fft_size: int = 256
    analysis_smoothing: float = 0.8
    analysis_min_db: float = -100.0
    analysis_max_db: float = -30.0

    # Asset limits
    max_audio_size_mb: int = 20
    max_image_size_mb: int = 20
    allowed_audio_types: list[str] = [
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/x-wav",
        "audio/ogg",
        "audio/flac",
        "audio/aac",
        "audio/mp4",
        "audio/webm",
    ]
    allowed_image_types: list[str] = ["image/png", "image/jpeg", "image/gif", "image/webp"]
    asset_load_timeout_s: float = 30.0

    # Export lifecycle
    finalize_grace_ms: int = 500
    playback_stall_timeout_s: float = 5.0

    # Styling
    background_image_alpha: float = 0.3
    vinyl_rotation_rad_s: float = 0.5
    vinyl_disc_path: str | None = None
    font_dir: str | None = None

    # Output
    output_dir: str = "/tmp/lyricvid-output"
    work_dir_prefix: str = "lyricvid_export_"

    @computed_field
    @property
    def max_audio_size_bytes(self) -> int:
        return self.max_audio_size_mb * 1024 * 1024

    @computed_field
    @property
    def max_image_size_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
