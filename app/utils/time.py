"""Helpers for minutes-since-midnight time arithmetic.

All scheduling math works on integer minutes. "HH:MM" strings only exist at
the API boundary and on stored availability records.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from app.core.exceptions import ValidationError

MINUTES_PER_DAY = 24 * 60

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-4]):([0-5]\d)$")


def parse_time(value: Union[str, int], field: str = "time") -> int:
    """Convert a 24-hour "HH:MM" string to minutes since midnight.

    "24:00" is accepted as the end of the day. Integers are passed through
    after a range check.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an 'HH:MM' string", {"field": field})
    if isinstance(value, int):
        minutes = value
    else:
        match = _HHMM_PATTERN.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise ValidationError(
                f"{field} must be a 24-hour 'HH:MM' string, got {value!r}",
                {"field": field, "value": str(value)},
            )
        minutes = int(match.group(1)) * 60 + int(match.group(2))

    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise ValidationError(
            f"{field} is out of range: {value!r}", {"field": field, "value": str(value)}
        )
    return minutes


def format_minutes(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise ValidationError(f"minutes out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def to_datetime(day: date, minutes: int) -> datetime:
    """Naive tenant-local datetime for a date and a minute offset."""
    return datetime.combine(day, datetime.min.time()) + timedelta(minutes=minutes)


def minutes_until(day: date, minutes: int, now: datetime) -> float:
    """Signed minutes between ``now`` and the given local date/time."""
    return (to_datetime(day, minutes) - now).total_seconds() / 60


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open ``[start, end)`` range in minutes since midnight."""

    start: int
    end: int

    def __post_init__(self):
        if self.start >= self.end:
            raise ValidationError(
                f"Time range start must be before end "
                f"({format_minutes(self.start)} >= {format_minutes(self.end)})",
                {"start": self.start, "end": self.end},
            )

    @classmethod
    def parse(cls, start: Union[str, int], end: Union[str, int]) -> "Interval":
        return cls(parse_time(start, "start"), parse_time(end, "end"))

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and self.end > other.start

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end

    def covers(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def as_strings(self) -> tuple[str, str]:
        return format_minutes(self.start), format_minutes(self.end)

    def __str__(self):
        start, end = self.as_strings()
        return f"{start}-{end}"


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort by start and merge overlapping or touching intervals."""
    merged: list[Interval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = Interval(last.start, interval.end)
        else:
            merged.append(interval)
    return merged


def peak_overlap(intervals: Iterable[Interval], window: Optional[Interval] = None) -> int:
    """Largest number of intervals active at the same instant.

    When ``window`` is given, only instants inside it are considered.
    """
    events: list[tuple[int, int]] = []
    for interval in intervals:
        if window is not None:
            if not interval.overlaps(window):
                continue
            interval = Interval(
                max(interval.start, window.start), min(interval.end, window.end)
            )
        events.append((interval.start, 1))
        events.append((interval.end, -1))

    # Ends sort before starts at the same minute, so touching ranges never stack
    events.sort(key=lambda e: (e[0], e[1]))
    depth = peak = 0
    for _, delta in events:
        depth += delta
        peak = max(peak, depth)
    return peak


def saturated_intervals(intervals: Iterable[Interval], capacity: int) -> list[Interval]:
    """Ranges where at least ``capacity`` intervals are active at once."""
    events: list[tuple[int, int]] = []
    for interval in intervals:
        events.append((interval.start, 1))
        events.append((interval.end, -1))
    events.sort(key=lambda e: (e[0], e[1]))

    result: list[Interval] = []
    depth = 0
    opened_at: Optional[int] = None
    for minute, delta in events:
        depth += delta
        if depth >= capacity and opened_at is None:
            opened_at = minute
        elif depth < capacity and opened_at is not None:
            if minute > opened_at:
                result.append(Interval(opened_at, minute))
            opened_at = None
    return merge_intervals(result)


def subtract_intervals(
    base: Iterable[Interval], removed: Iterable[Interval]
) -> list[Interval]:
    """Parts of ``base`` not covered by any interval in ``removed``."""
    cuts = merge_intervals(removed)
    result: list[Interval] = []
    for interval in merge_intervals(base):
        cursor = interval.start
        for cut in cuts:
            if cut.end <= cursor or cut.start >= interval.end:
                continue
            if cut.start > cursor:
                result.append(Interval(cursor, cut.start))
            cursor = max(cursor, cut.end)
            if cursor >= interval.end:
                break
        if cursor < interval.end:
            result.append(Interval(cursor, interval.end))
    return result


def clip_interval(interval: Interval, bounds: Interval) -> Optional[Interval]:
    """Intersection of two intervals, or None when they do not overlap."""
    if not interval.overlaps(bounds):
        return None
    return Interval(max(interval.start, bounds.start), min(interval.end, bounds.end))
