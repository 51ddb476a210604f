"""FFmpeg encoder fed with raw RGB frames on stdin.

The encoder process is started before the first frame is produced and muxes
the original audio file in the same pass, so video and audio share one
timeline starting at 0.
"""

import asyncio
import collections
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image

from lyricvid.config import Settings
from lyricvid.exceptions import CapabilityError, EncodingError

logger = logging.getLogger(__name__)

# output format -> (video codec, audio codec, content type)
OUTPUT_CODECS: dict[str, tuple[str, str, str]] = {
    "mp4": ("libx264", "aac", "video/mp4"),
    "webm": ("libvpx-vp9", "libopus", "video/webm"),
}

STDERR_TAIL_LINES = 20


@dataclass(frozen=True)
class EncoderConfig:
    """Encoding parameters for one export."""

    width: int
    height: int
    fps: int = 30
    output_format: str = "mp4"
    crf: int = 18
    preset: str = "medium"
    audio_bitrate: str = "192k"
    threads: int = 2
    duration_s: Optional[float] = None

    def __post_init__(self) -> None:
        if self.output_format not in OUTPUT_CODECS:
            raise ValueError(f"Unsupported output format: {self.output_format}")

    @classmethod
    def from_settings(cls, settings: Settings, width: int, height: int, duration_s: Optional[float] = None) -> "EncoderConfig":
        return cls(
            width=width,
            height=height,
            fps=settings.render_fps,
            output_format=settings.render_output_format,
            crf=settings.render_crf,
            preset=settings.render_preset,
            audio_bitrate=settings.render_audio_bitrate,
            threads=settings.render_ffmpeg_threads,
            duration_s=duration_s,
        )

    @property
    def video_codec(self) -> str:
        return OUTPUT_CODECS[self.output_format][0]

    @property
    def audio_codec(self) -> str:
        return OUTPUT_CODECS[self.output_format][1]

    @property
    def content_type(self) -> str:
        return OUTPUT_CODECS[self.output_format][2]

    @property
    def extension(self) -> str:
        return self.output_format

    @property
    def frame_size(self) -> int:
        """Bytes per rgb24 frame."""
        return self.width * self.height * 3


def build_encode_command(ffmpeg_path: str, config: EncoderConfig, audio_path: str, output_path: str) -> list[str]:
    """Build the FFmpeg command: rawvideo on stdin (input 0) + audio file (input 1)."""
    cmd = [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-s", f"{config.width}x{config.height}",
        "-r", str(config.fps),
        "-i", "pipe:0",
        "-i", audio_path,
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-threads", str(config.threads),
    ]

    if config.output_format == "mp4":
        cmd += [
            "-c:v", config.video_codec,
            "-preset", config.preset,
            "-crf", str(config.crf),
            "-pix_fmt", "yuv420p",
            "-c:a", config.audio_codec,
            "-b:a", config.audio_bitrate,
            "-movflags", "+faststart",
        ]
    else:
        cmd += [
            "-c:v", config.video_codec,
            "-crf", str(config.crf),
            "-b:v", "0",
            "-deadline", "good",
            "-cpu-used", "4",
            "-row-mt", "1",
            "-pix_fmt", "yuv420p",
            "-c:a", config.audio_codec,
            "-b:a", config.audio_bitrate,
        ]

    cmd += ["-r", str(config.fps)]
    if config.duration_s:
        cmd += ["-t", f"{config.duration_s:.3f}"]
    cmd.append(output_path)
    return cmd


async def check_capabilities(ffmpeg_path: str, ffprobe_path: str, output_format: str) -> None:
    """Verify the FFmpeg binaries exist and provide the codecs for ``output_format``.

    Raises:
        CapabilityError: If a binary or codec is missing
    """
    for name, path in (("ffmpeg", ffmpeg_path), ("ffprobe", ffprobe_path)):
        if shutil.which(path) is None:
            raise CapabilityError(f"{name} not found at {path!r}")

    if output_format not in OUTPUT_CODECS:
        raise CapabilityError(f"Unsupported output format: {output_format}")
    video_codec, audio_codec, _ = OUTPUT_CODECS[output_format]

    proc = await asyncio.create_subprocess_exec(
        ffmpeg_path, "-hide_banner", "-encoders",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, _ = await proc.communicate()
    if proc.returncode != 0:
        raise CapabilityError("Could not list FFmpeg encoders")

    available = set()
    for line in stdout.decode("utf-8", errors="replace").splitlines():
        parts = line.split()
        if len(parts) >= 2:
            available.add(parts[1])

    missing = [codec for codec in (video_codec, audio_codec) if codec not in available]
    if missing:
        raise CapabilityError(f"FFmpeg lacks required encoders for {output_format}: {', '.join(missing)}")


class FFmpegEncoder:
    """Streams frames into an FFmpeg subprocess.

    Lifecycle: ``start()`` → ``write_frame()``* → ``finish()``, or ``abort()``
    at any point, which kills the process and deletes the partial output.
    """

    def __init__(self, ffmpeg_path: str, config: EncoderConfig, audio_path: str, output_path: str):
        self.ffmpeg_path = ffmpeg_path
        self.config = config
        self.audio_path = audio_path
        self.output_path = output_path
        self.frames_written = 0
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        self._finished = False

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    async def start(self) -> None:
        if self._proc is not None:
            raise RuntimeError("Encoder already started")

        cmd = build_encode_command(self.ffmpeg_path, self.config, self.audio_path, self.output_path)
        logger.info(f"[ENCODER] Starting: {' '.join(cmd)}")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodingError(f"Failed to start encoder ({e})") from e
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def _drain_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        async for raw_line in self._proc.stderr:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                self._stderr_tail.append(line)

    async def write_frame(self, frame: Union[Image.Image, bytes]) -> None:
        """Write one rgb24 frame. Raises EncodingError if the encoder has died."""
        if self._proc is None or self._proc.stdin is None:
            raise EncodingError("Encoder is not running")
        data = frame.tobytes() if isinstance(frame, Image.Image) else frame
        if len(data) != self.config.frame_size:
            raise EncodingError(f"Frame is {len(data)} bytes, expected {self.config.frame_size}")

        try:
            self._proc.stdin.write(data)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            await self._reap()
            raise EncodingError("Encoder exited unexpectedly", stderr_tail=self.stderr_tail or None) from e
        self.frames_written += 1

    async def finish(self) -> str:
        """Close stdin, wait for the muxer to flush and return the output path."""
        if self._proc is None or self._proc.stdin is None:
            raise EncodingError("Encoder is not running")

        self._proc.stdin.close()
        try:
            await self._proc.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass
        await self._reap()

        if self._proc.returncode != 0:
            logger.error(f"[ENCODER] FFmpeg exited with {self._proc.returncode}: {self.stderr_tail}")
            raise EncodingError(
                f"FFmpeg exited with code {self._proc.returncode}",
                stderr_tail=self.stderr_tail or None,
            )
        if not os.path.exists(self.output_path) or os.path.getsize(self.output_path) == 0:
            raise EncodingError("Encoder produced no output")

        self._finished = True
        logger.info(f"[ENCODER] Finished: {self.frames_written} frames -> {self.output_path}")
        return self.output_path

    async def abort(self) -> None:
        """Kill the encoder without finalizing and delete any partial output. Idempotent."""
        if self._proc is not None and self._proc.returncode is None:
            logger.info("[ENCODER] Aborting")
            self._proc.kill()
            await self._proc.wait()
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            await asyncio.gather(self._stderr_task, return_exceptions=True)
        if not self._finished and os.path.exists(self.output_path):
            os.remove(self.output_path)

    async def _reap(self) -> None:
        assert self._proc is not None
        await self._proc.wait()
        if self._stderr_task is not None:
            await asyncio.gather(self._stderr_task, return_exceptions=True)
