from pydantic import BaseModel, ConfigDict, Field

from lyricvid.render.timeline import LyricLine, LyricTimeline


class LyricLineIn(BaseModel):
    """Lyric line as produced by manual entry, transcription or the timing editor."""

    model_config = ConfigDict(populate_by_name=True)

    text: str
    start_time: float = Field(ge=0, alias="startTime")

    def to_line(self) -> LyricLine:
        return LyricLine(text=self.text, start_time=self.start_time)


def timeline_from_records(records: list[LyricLineIn]) -> LyricTimeline:
    """Build an immutable timeline from validated lyric records."""
    return LyricTimeline(record.to_line() for record in records)
