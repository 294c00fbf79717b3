"""
Recurrence expansion for class timetables.

Turns a weekly schedule plus a recurrence pattern and a date range into an
ordered list of (date, time) session slots. Everything here is pure: no
database access, no clock reads. Callers pass `today` explicitly.
"""
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from constants import WEEKDAY_NAMES, RecurrencePattern
from exceptions import ValidationError

Slot = Tuple[date, time]


def parse_time(value) -> time:
    """Accept a time object or an "HH:MM" / "HH:MM:SS" string."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        parts = [int(p) for p in str(value).strip().split(":")]
        if len(parts) not in (2, 3):
            raise ValueError
        return time(parts[0], parts[1])
    except ValueError:
        raise ValidationError(f"Invalid start time '{value}', expected HH:MM")


@dataclass(frozen=True)
class WeeklySchedule:
    """
    Start times per weekday, indexed by date.weekday() (Monday = 0).

    Always exactly seven sorted, de-duplicated tuples, so an unknown day name
    can never be stored.
    """
    days: Tuple[Tuple[time, ...], ...]

    def __post_init__(self):
        if len(self.days) != 7:
            raise ValidationError("A weekly schedule must have exactly 7 days")

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Iterable]) -> "WeeklySchedule":
        """Build from {"monday": ["09:00", ...], ...}; day names are case-insensitive."""
        if not isinstance(mapping, dict):
            raise ValidationError("weekly_schedule must be a mapping of day name to start times")
        slots: List[List[time]] = [[] for _ in range(7)]
        for day_name, times in mapping.items():
            key = str(day_name).strip().lower()
            if key not in WEEKDAY_NAMES:
                raise ValidationError(f"Unknown day name '{day_name}'")
            for value in times or []:
                slots[WEEKDAY_NAMES.index(key)].append(parse_time(value))
        return cls(tuple(tuple(sorted(set(day))) for day in slots))

    def to_mapping(self) -> Dict[str, List[str]]:
        return {
            WEEKDAY_NAMES[index]: [t.strftime("%H:%M") for t in times]
            for index, times in enumerate(self.days)
        }

    def times_for(self, day: date) -> Tuple[time, ...]:
        return self.days[day.weekday()]

    @property
    def is_empty(self) -> bool:
        return not any(self.days)


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def is_emitting_week(pattern: str, start_date: date, day: date) -> bool:
    """bi_weekly emits weeks at an even offset from start_date's week."""
    if pattern == RecurrencePattern.WEEKLY.value:
        return True
    weeks = (_week_start(day) - _week_start(start_date)).days // 7
    return weeks % 2 == 0


def horizon_end(today: date, horizon_months: int) -> date:
    """Same day horizon_months later, clamped to the last day of a shorter month."""
    return today + relativedelta(months=horizon_months)


def expand(
    schedule: WeeklySchedule,
    pattern: str,
    start_date: date,
    end_date: Optional[date],
    today: date,
    horizon_months: int = 3,
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
) -> List[Slot]:
    """
    Expand a timetable into chronologically ordered (date, time) slots.

    Open-ended timetables stop at window_end, or at today + horizon_months
    when no window is given. window_start and
    window_end narrow the output without changing which weeks are emitted,
    so a partial re-expansion agrees with a full one.
    """
    if pattern not in (RecurrencePattern.WEEKLY.value, RecurrencePattern.BI_WEEKLY.value):
        raise ValidationError(f"Invalid recurrence pattern '{pattern}'")
    if end_date is not None and end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")

    if end_date is not None:
        last = end_date
    elif window_end is not None:
        last = window_end
    else:
        last = horizon_end(today, horizon_months)
    if window_end is not None:
        last = min(last, window_end)
    first = start_date if window_start is None else max(start_date, window_start)

    slots: List[Slot] = []
    day = first
    while day <= last:
        times = schedule.times_for(day)
        if times and is_emitting_week(pattern, start_date, day):
            slots.extend((day, t) for t in times)
        day += timedelta(days=1)
    return slots
