"""Expansion of recurrence rules into concrete session start instants.

All calendar arithmetic happens on the naive local wall clock so that weekday filters and
time-of-day follow the user's calendar; callers convert the results to UTC with the same
offset they used for the anchor. Weekdays use the 0=Sunday..6=Saturday numbering the
clients send.
"""
from __future__ import annotations

import calendar
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode

DEFAULT_MAX_OCCURRENCES = 52


class RecurrenceType(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"


FIXED_STEP_DAYS = {
    RecurrenceType.daily: 1,
    RecurrenceType.weekly: 7,
    RecurrenceType.biweekly: 14,
}

# Weeks skipped after each scanned week when a weekday set is given.
WEEKS_SKIPPED = {
    RecurrenceType.daily: 0,
    RecurrenceType.weekly: 0,
    RecurrenceType.biweekly: 1,
}


def _invalid(message: str, **fields) -> ScheduleError:
    return ScheduleError(ScheduleErrorCode.invalid_recurrence, message, **fields)


@dataclass(frozen=True)
class RecurrenceSpec:
    type: RecurrenceType
    occurrences: int
    days_of_week: tuple[int, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        type: str | RecurrenceType,
        occurrences: int,
        days_of_week: Iterable[int] | None = None,
        *,
        max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
    ) -> "RecurrenceSpec":
        try:
            recurrence_type = RecurrenceType(type)
        except ValueError as exc:
            raise _invalid(f"Unknown recurrence type: {type}") from exc

        if not isinstance(occurrences, int) or isinstance(occurrences, bool):
            raise _invalid("Occurrences must be an integer")
        if occurrences < 1 or occurrences > max_occurrences:
            raise _invalid(
                f"Occurrences must be between 1 and {max_occurrences}",
                occurrences=occurrences,
            )

        days = tuple(sorted(set(days_of_week or ())))
        invalid_days = [day for day in days if not isinstance(day, int) or day < 0 or day > 6]
        if invalid_days:
            raise _invalid("Days of week must be between 0 (Sunday) and 6 (Saturday)", daysOfWeek=invalid_days)
        if days and recurrence_type is RecurrenceType.monthly:
            raise _invalid("Monthly recurrence cannot be combined with days of week")

        return cls(type=recurrence_type, occurrences=occurrences, days_of_week=days)

    def to_rule(self) -> dict:
        return {
            "type": self.type.value,
            "daysOfWeek": list(self.days_of_week) or None,
            "occurrences": self.occurrences,
        }


@dataclass(frozen=True)
class RecurrenceExpansion:
    occurrences: list[datetime]
    adjusted_start: datetime | None = None

    @property
    def first(self) -> datetime:
        return self.occurrences[0]

    def __len__(self) -> int:
        return len(self.occurrences)


def js_weekday(value: datetime) -> int:
    return (value.weekday() + 1) % 7


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months to ``value``, clamping the day to the month end if needed."""
    year = value.year + (value.month - 1 + months) // 12
    month = (value.month - 1 + months) % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def smart_start_date(anchor: datetime, days_of_week: Iterable[int]) -> datetime:
    """First date on or after ``anchor`` whose weekday is in ``days_of_week``."""
    days = sorted(set(days_of_week))
    if not days:
        return anchor
    day = js_weekday(anchor)
    if day in days:
        return anchor
    next_day = next((candidate for candidate in days if candidate > day), days[0])
    days_to_add = next_day - day if next_day > day else (7 - day) + next_day
    return anchor + timedelta(days=days_to_add)


def iter_occurrences(spec: RecurrenceSpec, anchor: datetime) -> Iterator[datetime]:
    if not spec.days_of_week:
        for index in range(spec.occurrences):
            if spec.type is RecurrenceType.monthly:
                # Always offset from the anchor so a 31st keeps coming back after a short month.
                yield add_months(anchor, index)
            else:
                yield anchor + timedelta(days=FIXED_STEP_DAYS[spec.type] * index)
        return

    start = smart_start_date(anchor, spec.days_of_week)
    block_stride = 7 * (1 + WEEKS_SKIPPED[spec.type])
    block_offset = 0
    produced = 0
    while produced < spec.occurrences:
        for day_in_block in range(7):
            candidate = start + timedelta(days=block_offset + day_in_block)
            if js_weekday(candidate) not in spec.days_of_week:
                continue
            yield candidate
            produced += 1
            if produced == spec.occurrences:
                return
        block_offset += block_stride


def expand_recurrence(spec: RecurrenceSpec, anchor: datetime) -> RecurrenceExpansion:
    occurrences = list(iter_occurrences(spec, anchor))
    adjusted_start = None
    if spec.days_of_week and occurrences[0] != anchor:
        adjusted_start = occurrences[0]
    return RecurrenceExpansion(occurrences=occurrences, adjusted_start=adjusted_start)
