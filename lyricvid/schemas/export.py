from pydantic import BaseModel, ConfigDict, Field, field_validator

from lyricvid.render.style_config import (
    AspectRatio,
    LyricFont,
    RenderStyleConfig,
    VisualizationStyle,
)
from lyricvid.render.timeline import LyricTimeline
from lyricvid.schemas.lyrics import LyricLineIn, timeline_from_records
from lyricvid.utils.colors import DEFAULT_PALETTE, is_valid_color


class StyleSettingsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    style: VisualizationStyle = Field(VisualizationStyle.CLASSIC, alias="visualizationStyle")
    aspect_ratio: AspectRatio = Field(AspectRatio.LANDSCAPE, alias="aspectRatio")
    font: LyricFont = LyricFont.MUKTA
    # Empty means "use the default palette"
    palette: list[str] = Field(default_factory=list, alias="imageColors")

    @field_validator("palette")
    @classmethod
    def validate_palette(cls, v: list[str]) -> list[str]:
        invalid = [c for c in v if not is_valid_color(c)]
        if invalid:
            raise ValueError(f"Invalid palette colors: {invalid}")
        return v

    def to_config(self) -> RenderStyleConfig:
        return RenderStyleConfig(
            style=self.style,
            aspect_ratio=self.aspect_ratio,
            font=self.font,
            palette=tuple(self.palette) or DEFAULT_PALETTE,
        )


class ExportRequestIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    song_name: str = Field(alias="songName")
    creator_name: str = Field("", alias="creatorName")
    settings: StyleSettingsIn = Field(default_factory=StyleSettingsIn)
    lyrics: list[LyricLineIn] = Field(default_factory=list)

    def to_timeline(self) -> LyricTimeline:
        return timeline_from_records(self.lyrics)

    def to_config(self) -> RenderStyleConfig:
        return self.settings.to_config()
