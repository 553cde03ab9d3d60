from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Iterable, Sequence

from .errors import ValidationError


@dataclass(frozen=True)
class TemplateWindow:
    """One bookable window on a weekday (0 = Monday)."""

    weekday: int
    start: time
    end: time
    capacity: int = 1

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ValidationError("weekday must be between 0 (Monday) and 6 (Sunday)")
        if self.start >= self.end:
            raise ValidationError("window start must be earlier than its end")
        if self.capacity < 1:
            raise ValidationError("capacity must be >= 1")


@dataclass(frozen=True)
class WeeklyTemplate:
    windows: tuple[TemplateWindow, ...]

    @classmethod
    def of(cls, windows: Iterable[TemplateWindow]) -> "WeeklyTemplate":
        return cls(windows=tuple(windows))

    def __bool__(self) -> bool:
        return bool(self.windows)


@dataclass(frozen=True)
class PlannedSlot:
    slot_date: date
    start_time: time
    end_time: time
    capacity: int


def _minutes_to_time(minutes: int) -> time:
    return time(hour=minutes // 60, minute=minutes % 60)


def build_weekly_template(
    *,
    working_days: Sequence[int] = (0, 1, 2, 3, 4, 5),
    day_start: time = time(10, 0),
    day_end: time = time(18, 0),
    slots_per_day: int = 5,
    slot_minutes: int = 60,
    capacity: int = 1,
) -> WeeklyTemplate:
    """
    Spread `slots_per_day` fixed-length slots evenly across the working day.

    Slot starts are `floor(total_minutes / slots_per_day)` apart, each slot
    lasting `slot_minutes`; the last slot must still finish by midnight.
    """
    if slots_per_day < 1:
        raise ValidationError("slots_per_day must be >= 1")
    if slot_minutes < 1:
        raise ValidationError("slot_minutes must be >= 1")
    start_minutes = day_start.hour * 60 + day_start.minute
    end_minutes = day_end.hour * 60 + day_end.minute
    if start_minutes >= end_minutes:
        raise ValidationError("day_start must be earlier than day_end")

    interval = (end_minutes - start_minutes) // slots_per_day
    windows: list[TemplateWindow] = []
    for weekday in sorted(set(working_days)):
        for i in range(slots_per_day):
            slot_start = start_minutes + i * interval
            slot_end = slot_start + slot_minutes
            if slot_end >= 24 * 60:
                raise ValidationError("slot would run past midnight")
            windows.append(
                TemplateWindow(
                    weekday=weekday,
                    start=_minutes_to_time(slot_start),
                    end=_minutes_to_time(slot_end),
                    capacity=capacity,
                )
            )
    return WeeklyTemplate.of(windows)


def expand_week(week_start: date, template: WeeklyTemplate) -> list[PlannedSlot]:
    """Concrete slots for the calendar week beginning on `week_start`."""
    if not isinstance(week_start, date):
        raise ValidationError("week_start must be a calendar date")
    if not template:
        raise ValidationError("template has no windows")

    # A week may start on any weekday; map each template weekday onto its date in the week.
    days = [week_start + timedelta(days=offset) for offset in range(7)]
    dates_by_weekday = {day.weekday(): day for day in days}
    planned = {
        (dates_by_weekday[w.weekday], w.start): PlannedSlot(
            slot_date=dates_by_weekday[w.weekday],
            start_time=w.start,
            end_time=w.end,
            capacity=w.capacity,
        )
        for w in template.windows
    }
    return sorted(planned.values(), key=lambda p: (p.slot_date, p.start_time))
