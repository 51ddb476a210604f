"""
Pytest fixtures for lyricvid tests.

Audio and images are synthesized on the fly (sine tones, gradients), so no
external test data is needed.

CI/CD Note:
Tests that need real ffmpeg/ffprobe binaries are marked with
@pytest.mark.requires_ffmpeg and are skipped when either is missing.
Run `pytest -m "not requires_ffmpeg"` to skip them explicitly.
"""

import io
import os
import shutil
import tempfile
import wave
from pathlib import Path
from typing import Optional

import numpy as np
import pytest
from PIL import Image

from lyricvid.config import Settings
from lyricvid.render.assets import LoadedAssets, MediaAsset
from lyricvid.render.audio import AudioSource
from lyricvid.render.playback import SteppedPlayback

SAMPLE_RATE = 44100


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg and ffprobe on PATH",
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_collection_modifyitems(config, items):
    if _ffmpeg_available():
        return
    skip = pytest.mark.skip(reason="ffmpeg/ffprobe not available")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


def sine_samples(duration_s: float, freq_hz: float = 440.0, sample_rate: int = SAMPLE_RATE, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(round(duration_s * sample_rate)), dtype=np.float64) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq_hz * t)).astype(np.float32)


def wav_bytes(duration_s: float, freq_hz: float = 440.0, sample_rate: int = SAMPLE_RATE) -> bytes:
    """16-bit mono PCM WAV containing a sine tone."""
    pcm = (sine_samples(duration_s, freq_hz, sample_rate) * 32767).astype("<i2")
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm.tobytes())
    return buffer.getvalue()


def gradient_image(width: int = 320, height: int = 240) -> Image.Image:
    x = np.linspace(0, 255, width, dtype=np.float32)
    y = np.linspace(0, 255, height, dtype=np.float32)
    r = np.broadcast_to(x[None, :], (height, width))
    g = np.broadcast_to(y[:, None], (height, width))
    b = np.full((height, width), 128, dtype=np.float32)
    return Image.fromarray(np.stack([r, g, b], axis=-1).astype(np.uint8), "RGB")


def png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="lyricvid_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_output_dir: Path) -> Settings:
    """Fast deterministic settings: stepped pacing, no grace delay."""
    return Settings(
        render_pacing="frame",
        finalize_grace_ms=0,
        render_preset="ultrafast",
        render_crf=30,
        output_dir=str(temp_output_dir / "output"),
        asset_load_timeout_s=30.0,
    )


@pytest.fixture
def sample_image() -> Image.Image:
    return gradient_image()


@pytest.fixture
def image_asset(sample_image: Image.Image) -> MediaAsset:
    return MediaAsset(data=png_bytes(sample_image), content_type="image/png", filename="cover.png")


@pytest.fixture
def audio_asset() -> MediaAsset:
    return MediaAsset(data=wav_bytes(1.0), content_type="audio/wav", filename="tone.wav")


@pytest.fixture
def sine_source() -> AudioSource:
    """Two seconds of a 1 kHz tone."""
    return AudioSource.from_array(sine_samples(2.0, 1000.0), SAMPLE_RATE)


@pytest.fixture
def wav_file(temp_output_dir: Path) -> Path:
    """Two-second 440 Hz WAV file on disk."""
    path = temp_output_dir / "tone.wav"
    path.write_bytes(wav_bytes(2.0))
    return path


# =============================================================================
# Fakes for pipeline tests (no ffmpeg needed)
# =============================================================================


class FakeEncoder:
    """Records frames instead of encoding; ``finish`` writes a placeholder file."""

    def __init__(self, ffmpeg_path, config, audio_path, output_path, events: Optional[list] = None, fail_on_frame: Optional[int] = None):
        self.config = config
        self.audio_path = audio_path
        self.output_path = output_path
        self.events = events if events is not None else []
        self.fail_on_frame = fail_on_frame
        self.frames_written = 0
        self.started = False
        self.finished = False
        self.aborted = False

    async def start(self):
        self.started = True
        self.events.append("encoder.start")

    async def write_frame(self, frame):
        if self.fail_on_frame is not None and self.frames_written >= self.fail_on_frame:
            raise RuntimeError("encoder pipe closed")
        self.frames_written += 1

    async def finish(self):
        self.finished = True
        self.events.append("encoder.finish")
        Path(self.output_path).write_bytes(b"fake-video")
        return self.output_path

    async def abort(self):
        self.aborted = True
        self.events.append("encoder.abort")
        if os.path.exists(self.output_path):
            os.remove(self.output_path)


class RecordingPlayback(SteppedPlayback):
    """Stepped playback that records lifecycle calls."""

    def __init__(self, duration_s: float, events: list):
        super().__init__(duration_s)
        self.events = events

    def play(self):
        self.events.append("playback.play")
        super().play()

    def stop(self):
        self.events.append("playback.stop")
        super().stop()


class FakeLoader:
    """Returns in-memory assets without probing or decoding files."""

    def __init__(self, settings, work_dir, duration_s: float = 0.5, error: Optional[Exception] = None):
        self.settings = settings
        self.work_dir = work_dir
        self.duration_s = duration_s
        self.error = error

    async def load(self, audio, image, need_disc=False):
        if self.error is not None:
            raise self.error
        source = AudioSource.from_array(sine_samples(self.duration_s, 440.0), SAMPLE_RATE)
        return LoadedAssets(
            image=gradient_image(),
            audio=source,
            audio_path=os.path.join(self.work_dir, "source_audio.wav"),
            disc=None,
        )


async def no_capability_check(ffmpeg_path, ffprobe_path, output_format):
    return None
