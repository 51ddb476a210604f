"""Custom exceptions for lyric video export.

Every failure that leaves ``ExportPipeline.export`` is one of these classes,
so callers only ever see a categorized error with a machine-readable code.
"""

from typing import Any

from lyricvid.constants.error_codes import get_error_spec


class LyricVidError(Exception):
    """Base exception for all lyricvid errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the caller's failure notification."""
        spec = get_error_spec(self.code)
        return {
            "code": self.code,
            "kind": self.__class__.__name__,
            "message": self.message,
            "retryable": spec.get("retryable", False),
            "suggested_action": spec.get("suggested_action"),
        }


# =============================================================================
# Asset Errors
# =============================================================================


class AssetLoadError(LyricVidError):
    """Image or audio failed to decode, was empty, or exceeded size limits."""

    code = "ASSET_LOAD_FAILED"
    message = "Asset could not be loaded"

    def __init__(
        self,
        message: str | None = None,
        *,
        asset: str | None = None,
        code: str | None = None,
    ):
        self.asset = asset
        if asset and message:
            message = f"{asset}: {message}"
        super().__init__(message, code=code)


class AssetTooLargeError(AssetLoadError):
    """Asset exceeds the configured size ceiling."""

    code = "ASSET_TOO_LARGE"

    def __init__(self, asset: str, size_bytes: int, max_bytes: int):
        message = (
            f"file is {size_bytes / 1024 / 1024:.2f} MB, "
            f"limit is {max_bytes / 1024 / 1024:.0f} MB"
        )
        super().__init__(message, asset=asset)
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["parameters"] = {
            "asset": self.asset,
            "size_bytes": self.size_bytes,
            "max_bytes": self.max_bytes,
        }
        return payload


class AssetTimeoutError(AssetLoadError):
    """Asset loading did not finish within the configured timeout."""

    code = "ASSET_TIMEOUT"

    def __init__(self, timeout_s: float):
        super().__init__(f"Asset loading timed out after {timeout_s:.1f}s")
        self.timeout_s = timeout_s


class InvalidLyricsError(AssetLoadError):
    """A lyric line is malformed (negative start time, missing text)."""

    code = "INVALID_LYRICS"
    message = "Lyric lines are invalid"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message, asset="lyrics")


# =============================================================================
# Host Capability Errors
# =============================================================================


class CapabilityError(LyricVidError):
    """Host environment lacks a required encode/decode capability."""

    code = "CAPABILITY_MISSING"
    message = "Required encoder capability is not available"


# =============================================================================
# Runtime Errors
# =============================================================================


class EncodingError(LyricVidError):
    """Encoder reported a runtime failure mid-export."""

    code = "ENCODING_FAILED"
    message = "Video encoding failed"

    def __init__(self, message: str | None = None, *, stderr_tail: str | None = None):
        self.stderr_tail = stderr_tail
        if stderr_tail:
            message = f"{message or self.message}: {stderr_tail}"
        super().__init__(message)


class PlaybackError(LyricVidError):
    """Underlying audio failed during playback."""

    code = "PLAYBACK_FAILED"
    message = "Audio playback failed"


# =============================================================================
# Lifecycle Errors
# =============================================================================


class ExportInProgressError(LyricVidError):
    """A second export was requested while one is already running."""

    code = "EXPORT_IN_PROGRESS"
    message = "An export is already running on this pipeline"


class ExportCancelledError(LyricVidError):
    """Export was cancelled before it completed."""

    code = "EXPORT_CANCELLED"
    message = "Export was cancelled"
