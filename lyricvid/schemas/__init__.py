from lyricvid.schemas.export import ExportRequestIn, StyleSettingsIn
from lyricvid.schemas.lyrics import LyricLineIn, timeline_from_records

__all__ = [
    "ExportRequestIn",
    "LyricLineIn",
    "StyleSettingsIn",
    "timeline_from_records",
]
