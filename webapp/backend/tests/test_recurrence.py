"""
Tests for timetable recurrence expansion.

Covers:
- WeeklySchedule parsing (day names, times, unknown days)
- Weekly and bi-weekly expansion over fixed and open-ended ranges
- Windowed expansion agreeing with full expansion
"""
import pytest
from datetime import date, time

from exceptions import ValidationError
from services.recurrence import WeeklySchedule, expand, horizon_end, is_emitting_week, parse_time


MON_WED_9AM = {"monday": ["09:00"], "wednesday": ["09:00"]}


class TestParseTime:
    """Tests for start-time parsing."""

    def test_parses_hh_mm(self):
        assert parse_time("09:30") == time(9, 30)

    def test_drops_seconds(self):
        """Start times are minute-precision."""
        assert parse_time("14:05:59") == time(14, 5)
        assert parse_time(time(14, 5, 59)) == time(14, 5)

    @pytest.mark.parametrize("value", ["9am", "25:00", "", "12"])
    def test_rejects_malformed(self, value):
        with pytest.raises(ValidationError):
            parse_time(value)


class TestWeeklySchedule:
    """Tests for the seven-slot weekly schedule."""

    def test_from_mapping_indexes_by_weekday(self):
        schedule = WeeklySchedule.from_mapping(MON_WED_9AM)
        assert schedule.days[0] == (time(9, 0),)
        assert schedule.days[1] == ()
        assert schedule.days[2] == (time(9, 0),)
        assert len(schedule.days) == 7

    def test_day_names_case_insensitive(self):
        schedule = WeeklySchedule.from_mapping({"Friday": ["10:00"], "SUNDAY": ["11:00"]})
        assert schedule.days[4] == (time(10, 0),)
        assert schedule.days[6] == (time(11, 0),)

    def test_times_sorted_and_deduplicated(self):
        schedule = WeeklySchedule.from_mapping({"tuesday": ["14:00", "09:00", "14:00"]})
        assert schedule.days[1] == (time(9, 0), time(14, 0))

    def test_unknown_day_rejected(self):
        with pytest.raises(ValidationError):
            WeeklySchedule.from_mapping({"funday": ["09:00"]})

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError):
            WeeklySchedule.from_mapping(["monday"])

    def test_is_empty(self):
        assert WeeklySchedule.from_mapping({"monday": []}).is_empty
        assert not WeeklySchedule.from_mapping(MON_WED_9AM).is_empty

    def test_to_mapping_lists_every_day(self):
        mapping = WeeklySchedule.from_mapping(MON_WED_9AM).to_mapping()
        assert mapping["monday"] == ["09:00"]
        assert mapping["sunday"] == []
        assert len(mapping) == 7


class TestIsEmittingWeek:
    """Tests for bi-weekly week parity."""

    def test_weekly_always_emits(self):
        assert is_emitting_week("weekly", date(2024, 3, 4), date(2024, 3, 11))

    def test_bi_weekly_alternates_from_start_week(self):
        start = date(2024, 3, 6)  # Wednesday
        assert is_emitting_week("bi_weekly", start, date(2024, 3, 4))  # same Monday-week
        assert not is_emitting_week("bi_weekly", start, date(2024, 3, 11))
        assert is_emitting_week("bi_weekly", start, date(2024, 3, 18))


class TestExpand:
    """Tests for expand()."""

    def test_march_2024_scenario(self):
        """Mon/Wed 09:00 from 2024-03-04 to 2024-03-15 yields exactly four sessions."""
        slots = expand(
            WeeklySchedule.from_mapping(MON_WED_9AM), "weekly",
            date(2024, 3, 4), date(2024, 3, 15), today=date(2024, 3, 1),
        )
        assert slots == [
            (date(2024, 3, 4), time(9, 0)),
            (date(2024, 3, 6), time(9, 0)),
            (date(2024, 3, 11), time(9, 0)),
            (date(2024, 3, 13), time(9, 0)),
        ]

    def test_expansion_is_deterministic(self):
        """Expanding the same range twice gives the same slots."""
        schedule = WeeklySchedule.from_mapping(MON_WED_9AM)
        first = expand(schedule, "weekly", date(2024, 3, 4), date(2024, 3, 31), today=date(2024, 3, 1))
        second = expand(schedule, "weekly", date(2024, 3, 4), date(2024, 3, 31), today=date(2024, 3, 1))
        assert first == second
        assert len(first) == len(set(first))

    def test_bi_weekly_skips_alternate_weeks(self):
        slots = expand(
            WeeklySchedule.from_mapping(MON_WED_9AM), "bi_weekly",
            date(2024, 3, 4), date(2024, 3, 31), today=date(2024, 3, 1),
        )
        assert [d for d, _ in slots] == [
            date(2024, 3, 4), date(2024, 3, 6),
            date(2024, 3, 18), date(2024, 3, 20),
        ]

    def test_multiple_times_per_day_ordered(self):
        slots = expand(
            WeeklySchedule.from_mapping({"monday": ["14:00", "09:00"]}), "weekly",
            date(2024, 3, 4), date(2024, 3, 4), today=date(2024, 3, 1),
        )
        assert slots == [(date(2024, 3, 4), time(9, 0)), (date(2024, 3, 4), time(14, 0))]

    def test_open_ended_stops_at_horizon(self):
        """Without end_date, expansion stops at today + horizon months."""
        today = date(2024, 1, 15)
        slots = expand(
            WeeklySchedule.from_mapping({"monday": ["09:00"]}), "weekly",
            date(2024, 1, 1), None, today=today, horizon_months=3,
        )
        assert slots[-1][0] <= horizon_end(today, 3) == date(2024, 4, 15)
        assert slots[-1][0] == date(2024, 4, 15)

    @pytest.mark.parametrize("today,months,expected", [
        (date(2024, 11, 30), 3, date(2025, 2, 28)),
        (date(2023, 11, 30), 3, date(2024, 2, 29)),
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2024, 10, 15), 3, date(2025, 1, 15)),
    ])
    def test_horizon_clamps_to_month_end(self, today, months, expected):
        assert horizon_end(today, months) == expected

    def test_window_does_not_shift_bi_weekly_parity(self):
        """A windowed re-expansion emits the same weeks as the full expansion."""
        schedule = WeeklySchedule.from_mapping({"monday": ["09:00"]})
        full = expand(schedule, "bi_weekly", date(2024, 3, 4), date(2024, 4, 30), today=date(2024, 3, 1))
        window = expand(
            schedule, "bi_weekly", date(2024, 3, 4), date(2024, 4, 30), today=date(2024, 3, 1),
            window_start=date(2024, 3, 25),
        )
        assert window == [slot for slot in full if slot[0] >= date(2024, 3, 25)]

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            expand(WeeklySchedule.from_mapping(MON_WED_9AM), "weekly",
                   date(2024, 3, 15), date(2024, 3, 4), today=date(2024, 3, 1))

    def test_invalid_pattern_rejected(self):
        with pytest.raises(ValidationError):
            expand(WeeklySchedule.from_mapping(MON_WED_9AM), "monthly",
                   date(2024, 3, 4), date(2024, 3, 15), today=date(2024, 3, 1))
