"""Lyric timeline: ordered, immutable (text, start_time) entries.

Lookup uses a binary search over the sorted start times, so queries are
O(log n) and independent of call order (playback and scrubbing both work).
"""

import bisect
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Optional, Union


@dataclass(frozen=True)
class LyricLine:
    """One lyric line and the playback time (seconds) it becomes active."""

    text: str
    start_time: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"text": self.text, "start_time": self.start_time}


LyricInput = Union[LyricLine, Mapping[str, Any]]


class LyricTimeline:
    """Sorted sequence of LyricLine with active-lyric resolution.

    Construction stable-sorts by start time. Entries sharing a start time
    keep their input order; the last of them is the one reported active.
    """

    def __init__(self, lines: Iterable[LyricInput] = ()):
        parsed = [_coerce_line(line) for line in lines]
        # sorted() is stable: equal start times keep their declared order
        self._lines: tuple[LyricLine, ...] = tuple(sorted(parsed, key=lambda line: line.start_time))
        self._starts: tuple[float, ...] = tuple(line.start_time for line in self._lines)

    @property
    def lines(self) -> tuple[LyricLine, ...]:
        return self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[LyricLine]:
        return iter(self._lines)

    def __getitem__(self, index: int) -> LyricLine:
        return self._lines[index]

    def __repr__(self) -> str:
        return f"LyricTimeline({len(self._lines)} lines)"

    def resolve_index(self, timestamp: float) -> Optional[int]:
        """Index of the last entry with ``start_time <= timestamp``, or None."""
        index = bisect.bisect_right(self._starts, timestamp) - 1
        return index if index >= 0 else None

    def resolve_active(self, timestamp: float) -> Optional[str]:
        """Text of the active lyric at ``timestamp``, or None before the first entry."""
        index = self.resolve_index(timestamp)
        if index is None:
            return None
        return self._lines[index].text

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize to a list of dictionaries."""
        return [line.to_dict() for line in self._lines]


def _coerce_line(line: LyricInput) -> LyricLine:
    if isinstance(line, LyricLine):
        return line
    # schemas.lyrics imports LyricLine from this module
    from lyricvid.schemas.lyrics import LyricLineIn

    return LyricLineIn.model_validate(line).to_line()
