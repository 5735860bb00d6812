"""Session windows as UTC epoch-millisecond pairs.

Anchors arrive as the wall-clock instant the user picked in their own calendar. A naive
``datetime`` is interpreted through ``timezone_offset_minutes`` (minutes east of UTC, so
UTC-05:00 is ``-300``); an aware ``datetime`` carries its own offset.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode

MS_PER_MINUTE = 60_000
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    start: int
    end: int

    @property
    def duration_ms(self) -> int:
        return self.end - self.start

    def shifted(self, delta_ms: int) -> "TimeWindow":
        return TimeWindow(self.start + delta_ms, self.end + delta_ms)

    def overlaps(self, other: "TimeWindow") -> bool:
        return windows_overlap(self, other)


def windows_overlap(a: TimeWindow, b: TimeWindow) -> bool:
    # Half-open intervals: a window ending at 11:00 never clashes with one starting at 11:00.
    return a.start < b.end and b.start < a.end


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value.astimezone(timezone.utc) - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_ms(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def to_local_wall_clock(value_ms: int, timezone_offset_minutes: int | None = None) -> datetime:
    """Naive wall-clock datetime for a UTC instant seen from the given offset."""
    offset = timezone_offset_minutes or 0
    return (from_epoch_ms(value_ms) + timedelta(minutes=offset)).replace(tzinfo=None)


def resolve_anchor(anchor: datetime, timezone_offset_minutes: int | None = None) -> tuple[datetime, int]:
    """Split ``anchor`` into a naive wall clock and its UTC offset in minutes.

    An aware anchor carries its own offset, which wins over the argument.
    """
    if anchor.tzinfo is not None:
        utcoffset = anchor.utcoffset() or timedelta(0)
        return anchor.replace(tzinfo=None), int(utcoffset.total_seconds() // 60)
    return anchor, timezone_offset_minutes or 0


def anchor_to_epoch_ms(anchor: datetime, timezone_offset_minutes: int | None = None) -> int:
    wall_clock, offset = resolve_anchor(anchor, timezone_offset_minutes)
    return to_epoch_ms(wall_clock.replace(tzinfo=timezone.utc)) - offset * MS_PER_MINUTE


def validate_duration(duration_minutes: int) -> None:
    if duration_minutes is None or duration_minutes <= 0:
        raise ScheduleError(
            ScheduleErrorCode.invalid_duration,
            "Session duration must be a positive number of minutes",
            durationMinutes=duration_minutes,
        )


def compute_window(
    anchor: datetime,
    duration_minutes: int,
    timezone_offset_minutes: int | None = None,
) -> TimeWindow:
    validate_duration(duration_minutes)
    start = anchor_to_epoch_ms(anchor, timezone_offset_minutes)
    return TimeWindow(start=start, end=start + duration_minutes * MS_PER_MINUTE)


def window_from_bounds(start_ms: int, end_ms: int) -> TimeWindow:
    if end_ms <= start_ms:
        raise ScheduleError(
            ScheduleErrorCode.invalid_duration,
            "End time must be after start time",
        )
    return TimeWindow(start=start_ms, end=end_ms)
