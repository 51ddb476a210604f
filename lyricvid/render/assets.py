"""Asset loading for an export: image, audio and the vinyl disc overlay.

All assets are validated up front (empty, size ceiling, content type) and
then decoded concurrently under a single timeout.
"""

import asyncio
import io
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from lyricvid.config import Settings
from lyricvid.exceptions import AssetLoadError, AssetTimeoutError, AssetTooLargeError
from lyricvid.render.audio import AudioSource, decode_audio_file
from lyricvid.render.styles import make_vinyl_disc
from lyricvid.utils.media_info import get_audio_info_async

logger = logging.getLogger(__name__)

_AUDIO_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
    "audio/aac": ".aac",
    "audio/mp4": ".m4a",
    "audio/webm": ".webm",
}


@dataclass(frozen=True)
class MediaAsset:
    """Raw asset bytes plus the caller's content-type hint."""

    data: bytes
    content_type: str
    filename: Optional[str] = None

    @classmethod
    def from_path(cls, path: str | Path, content_type: Optional[str] = None) -> "MediaAsset":
        path = Path(path)
        if content_type is None:
            content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            data=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
            filename=path.name,
        )

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class LoadedAssets:
    """Decoded assets, immutable for the rest of the export."""

    image: Image.Image
    audio: AudioSource
    audio_path: str
    disc: Optional[Image.Image] = None

    @property
    def duration_s(self) -> float:
        return self.audio.duration_s


def validate_asset(asset: MediaAsset, kind: str, max_bytes: int, allowed_types: list[str]) -> None:
    """Reject empty, oversized or wrongly-typed assets before any decoding."""
    if asset.size_bytes == 0:
        raise AssetLoadError("file is empty", asset=kind)
    if asset.size_bytes > max_bytes:
        raise AssetTooLargeError(kind, asset.size_bytes, max_bytes)
    content_type = asset.content_type.split(";")[0].strip().lower()
    if content_type not in allowed_types:
        raise AssetLoadError(f"unsupported content type {content_type!r}", asset=kind)


def decode_image(data: bytes) -> Image.Image:
    """Decode image bytes to a fully loaded RGB image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            decoded = img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise AssetLoadError(f"could not decode image ({e})", asset="image") from e
    if decoded.width == 0 or decoded.height == 0:
        raise AssetLoadError("image has no pixels", asset="image")
    return decoded


class AssetLoader:
    """Loads the assets for one export into a private work directory."""

    def __init__(self, settings: Settings, work_dir: str):
        self.settings = settings
        self.work_dir = work_dir

    async def load(self, audio: MediaAsset, image: MediaAsset, need_disc: bool = False) -> LoadedAssets:
        """Validate then decode all assets concurrently.

        Raises:
            AssetLoadError: If any asset is invalid or fails to decode
            AssetTimeoutError: If decoding exceeds ``asset_load_timeout_s``
        """
        validate_asset(audio, "audio", self.settings.max_audio_size_bytes, self.settings.allowed_audio_types)
        validate_asset(image, "image", self.settings.max_image_size_bytes, self.settings.allowed_image_types)

        tasks = [
            asyncio.ensure_future(self._load_image(image)),
            asyncio.ensure_future(self._load_audio(audio)),
            asyncio.ensure_future(self._load_disc(need_disc)),
        ]
        timeout = self.settings.asset_load_timeout_s
        try:
            decoded_image, (audio_source, audio_path), disc = await asyncio.wait_for(asyncio.gather(*tasks), timeout)
        except asyncio.TimeoutError as e:
            raise AssetTimeoutError(timeout) from e
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(
            f"[ASSETS] Loaded image {decoded_image.width}x{decoded_image.height}, "
            f"audio {audio_source.duration_s:.2f}s, disc={'yes' if disc is not None else 'no'}"
        )
        return LoadedAssets(image=decoded_image, audio=audio_source, audio_path=audio_path, disc=disc)

    async def _load_image(self, image: MediaAsset) -> Image.Image:
        return await asyncio.to_thread(decode_image, image.data)

    async def _load_audio(self, audio: MediaAsset) -> tuple[AudioSource, str]:
        content_type = audio.content_type.split(";")[0].strip().lower()
        suffix = _AUDIO_EXTENSIONS.get(content_type) or Path(audio.filename or "").suffix or ".bin"
        audio_path = os.path.join(self.work_dir, f"source_audio{suffix}")
        await asyncio.to_thread(Path(audio_path).write_bytes, audio.data)

        try:
            info = await get_audio_info_async(audio_path, ffprobe_path=self.settings.ffprobe_path)
        except RuntimeError as e:
            raise AssetLoadError(f"could not probe audio ({e})", asset="audio") from e
        if info is None:
            raise AssetLoadError("no audio stream found", asset="audio")
        duration = info.get("duration_s")
        if duration is not None and duration <= 0:
            raise AssetLoadError("audio is empty", asset="audio")

        try:
            source = await decode_audio_file(
                audio_path,
                ffmpeg_path=self.settings.ffmpeg_path,
                sample_rate=self.settings.analysis_sample_rate,
                duration_s=duration,
            )
        except RuntimeError as e:
            raise AssetLoadError(str(e), asset="audio") from e
        return source, audio_path

    async def _load_disc(self, need_disc: bool) -> Optional[Image.Image]:
        if not need_disc:
            return None
        disc_path = self.settings.vinyl_disc_path
        if not disc_path:
            return await asyncio.to_thread(make_vinyl_disc)
        try:
            data = await asyncio.to_thread(Path(disc_path).read_bytes)
        except OSError as e:
            raise AssetLoadError(f"could not read {disc_path} ({e})", asset="disc") from e
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                return img.convert("RGBA")
        except (UnidentifiedImageError, OSError) as e:
            raise AssetLoadError(f"could not decode {disc_path} ({e})", asset="disc") from e
