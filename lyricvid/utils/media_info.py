"""Media file information utilities using FFprobe."""

import asyncio
import json
import subprocess
from dataclasses import dataclass
from typing import Any, Optional

from lyricvid.config import get_settings


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class MediaInfo:
    """Media file information."""

    duration_s: float | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    audio_duration_s: float | None = None
    sample_rate: int | None = None
    channels: int | None = None
    has_video: bool = False
    has_audio: bool = False


def _ffprobe_command(file_path: str, *args: str, ffprobe_path: str | None = None) -> list[str]:
    return [
        ffprobe_path or _get_settings().ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]


def _parse_ffprobe_output(stdout: str) -> dict:
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def _run_ffprobe(file_path: str, *args: str) -> dict:
    """Run ffprobe and return parsed JSON."""
    cmd = _ffprobe_command(file_path, *args)

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    return _parse_ffprobe_output(result.stdout)


async def _run_ffprobe_async(file_path: str, *args: str, ffprobe_path: str | None = None) -> dict:
    """Async version of _run_ffprobe."""
    cmd = _ffprobe_command(file_path, *args, ffprobe_path=ffprobe_path)
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {stderr.decode('utf-8', errors='replace')}")
    return _parse_ffprobe_output(stdout.decode("utf-8", errors="replace"))


def _audio_stream_info(data: dict) -> Optional[dict[str, Any]]:
    streams = data.get("streams", [])
    if not streams:
        return None

    stream = streams[0]
    duration = stream.get("duration")
    if duration is None:
        duration = data.get("format", {}).get("duration")
    return {
        "codec": stream.get("codec_name"),
        "sample_rate": int(stream.get("sample_rate", 0)) or None,
        "channels": stream.get("channels"),
        "duration_s": float(duration) if duration is not None else None,
    }


async def get_audio_info_async(file_path: str, ffprobe_path: str | None = None) -> Optional[dict]:
    """
    Get audio stream information without blocking the event loop.

    Args:
        file_path: Path to media file
        ffprobe_path: ffprobe binary, defaults to the configured one

    Returns:
        Dictionary with codec, sample_rate, channels, duration_s, or None if no audio

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = await _run_ffprobe_async(
        file_path,
        "-show_format", "-show_streams", "-select_streams", "a",
        ffprobe_path=ffprobe_path,
    )
    return _audio_stream_info(data)


def get_media_info(file_path: str) -> MediaInfo:
    """
    Get complete media file information.

    Args:
        file_path: Path to media file

    Returns:
        MediaInfo with all stream info

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")

    info = MediaInfo()

    # Get format info
    format_info = data.get("format", {})
    if "duration" in format_info:
        info.duration_s = float(format_info["duration"])

    # Get stream info
    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video":
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")

            # Calculate FPS
            r_frame_rate = stream.get("r_frame_rate", "0/1")
            if "/" in r_frame_rate:
                num, den = r_frame_rate.split("/")
                if int(den) > 0:
                    info.fps = int(num) / int(den)

        elif codec_type == "audio":
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")
            info.sample_rate = int(stream.get("sample_rate", 0)) or None
            info.channels = stream.get("channels")
            if stream.get("duration") is not None:
                info.audio_duration_s = float(stream["duration"])

    return info
