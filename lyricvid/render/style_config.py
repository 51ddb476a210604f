"""Per-export visual style configuration."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lyricvid.utils.colors import DEFAULT_PALETTE, is_valid_color


class VisualizationStyle(str, Enum):
    """Closed set of frame layouts."""

    CLASSIC = "classic"
    VINYL = "vinyl"
    WAVES = "waves"
    BIG_TEXT = "big_text"


class AspectRatio(str, Enum):
    """Output aspect ratios with their fixed resolutions."""

    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"

    @property
    def resolution(self) -> tuple[int, int]:
        if self is AspectRatio.LANDSCAPE:
            return (1920, 1080)
        return (1080, 1920)

    @property
    def lyric_font_size(self) -> int:
        return 48 if self is AspectRatio.LANDSCAPE else 42


class LyricFont(str, Enum):
    """Lyric font choices (A, B, C)."""

    MUKTA = "mukta"
    TIRO = "tiro"
    BALOO = "baloo"


@dataclass(frozen=True)
class RenderStyleConfig:
    """Visual settings for one export. Immutable for the whole export."""

    style: VisualizationStyle = VisualizationStyle.CLASSIC
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    font: LyricFont = LyricFont.MUKTA
    palette: tuple[str, ...] = field(default=DEFAULT_PALETTE)

    def __post_init__(self) -> None:
        object.__setattr__(self, "style", VisualizationStyle(self.style))
        object.__setattr__(self, "aspect_ratio", AspectRatio(self.aspect_ratio))
        object.__setattr__(self, "font", LyricFont(self.font))
        palette = tuple(self.palette)
        if not palette:
            raise ValueError("palette must contain at least one color")
        invalid = [c for c in palette if not is_valid_color(c)]
        if invalid:
            raise ValueError(f"Invalid palette colors: {invalid}")
        object.__setattr__(self, "palette", palette)

    @property
    def width(self) -> int:
        return self.aspect_ratio.resolution[0]

    @property
    def height(self) -> int:
        return self.aspect_ratio.resolution[1]

    @property
    def font_size(self) -> int:
        return self.aspect_ratio.lyric_font_size

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "style": self.style.value,
            "aspect_ratio": self.aspect_ratio.value,
            "font": self.font.value,
            "palette": list(self.palette),
        }
