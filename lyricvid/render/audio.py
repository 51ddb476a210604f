"""Decoded audio signal shared by the scheduler and the spectrum analyzer."""

import asyncio
import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioSource:
    """Mono float32 PCM in [-1, 1] plus the file it was decoded from.

    ``duration_s`` is the container duration reported by ffprobe when known,
    otherwise the length of the decoded samples.
    """

    samples: np.ndarray
    sample_rate: int
    duration_s: float
    file_path: str | None = None

    @classmethod
    def from_array(
        cls,
        samples: np.ndarray,
        sample_rate: int,
        file_path: str | None = None,
    ) -> "AudioSource":
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim > 1:
            data = data.mean(axis=1).astype(np.float32)
        return cls(
            samples=data,
            sample_rate=sample_rate,
            duration_s=len(data) / float(sample_rate),
            file_path=file_path,
        )

    @property
    def sample_count(self) -> int:
        return int(self.samples.shape[0])

    def window_ending_at(self, time_s: float, size: int) -> np.ndarray:
        """Return ``size`` samples ending at ``time_s``, zero-padded at the start."""
        end = int(round(time_s * self.sample_rate))
        end = max(0, min(end, self.sample_count))
        start = end - size
        if start >= 0:
            return self.samples[start:end]
        window = np.zeros(size, dtype=np.float32)
        if end > 0:
            window[-end:] = self.samples[:end]
        return window


def build_decode_command(ffmpeg_path: str, file_path: str, sample_rate: int) -> list[str]:
    """FFmpeg command that decodes any audio input to mono float32 PCM on stdout."""
    return [
        ffmpeg_path,
        "-v", "error",
        "-i", file_path,
        "-vn",
        "-ac", "1",
        "-ar", str(sample_rate),
        "-f", "f32le",
        "-acodec", "pcm_f32le",
        "pipe:1",
    ]


async def decode_audio_file(
    file_path: str,
    ffmpeg_path: str,
    sample_rate: int,
    duration_s: float | None = None,
) -> AudioSource:
    """Decode an audio file to an AudioSource.

    Raises:
        RuntimeError: If FFmpeg fails or produces no samples
    """
    cmd = build_decode_command(ffmpeg_path, file_path, sample_rate)
    logger.info(f"[ASSETS] Decoding audio: {file_path} @ {sample_rate} Hz")

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        raise RuntimeError(f"Audio decode failed: {stderr.decode('utf-8', errors='replace').strip()}")

    usable = len(stdout) - (len(stdout) % 4)
    samples = np.frombuffer(stdout[:usable], dtype="<f4").astype(np.float32)
    if samples.size == 0:
        raise RuntimeError("Audio decode produced no samples")

    decoded_duration = samples.size / float(sample_rate)
    return AudioSource(
        samples=samples,
        sample_rate=sample_rate,
        duration_s=duration_s if duration_s and duration_s > 0 else decoded_duration,
        file_path=file_path,
    )
