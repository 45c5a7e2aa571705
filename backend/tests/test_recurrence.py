"""
Tests for recurrence.py - rule parsing and next generation calculation.
"""
import pytest
import sys
import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import CustomRule, DailyRule, MonthlyRule, WeeklyRule
from recurrence import (
    MalformedRuleError,
    calculate_next_generation,
    dump_recurrence_rule,
    parse_recurrence_rule,
)


def rule(**data):
    return parse_recurrence_rule(data)


class TestParseRecurrenceRule:
    """Tests for turning stored JSON into typed rules."""

    def test_parses_camel_case_keys(self):
        parsed = rule(frequency="weekly", daysOfWeek=[5, 1, 3, 3], time="07:15",
                      assignTo="rotate", rotationUserIds=["u1", "u2"])

        assert isinstance(parsed, WeeklyRule)
        assert parsed.days_of_week == [1, 3, 5]
        assert parsed.time == "07:15"
        assert parsed.assign_to == "rotate"
        assert parsed.rotation_user_ids == ["u1", "u2"]

    def test_accepts_snake_case_and_json_string(self):
        parsed = parse_recurrence_rule('{"frequency": "monthly", "day_of_month": 15, "interval": 2}')

        assert isinstance(parsed, MonthlyRule)
        assert parsed.day_of_month == 15
        assert parsed.interval == 2

    def test_defaults(self):
        parsed = rule(frequency="daily")

        assert parsed.interval == 1
        assert parsed.time == "09:00"
        assert parsed.assign_to == "none"

    def test_null_interval_and_time_use_defaults(self):
        parsed = rule(frequency="custom", interval=None, time=None)

        assert isinstance(parsed, CustomRule)
        assert parsed.interval == 1
        assert parsed.time == "09:00"

    def test_drops_fields_of_other_frequencies(self):
        """dayOfMonth has no meaning on a weekly rule and is discarded."""
        parsed = rule(frequency="weekly", daysOfWeek=[1], dayOfMonth=31, interval=4)

        assert not hasattr(parsed, "day_of_month")
        assert not hasattr(parsed, "interval")

    def test_unassigned_and_unknown_assign_to_mean_none(self):
        assert rule(frequency="daily", assignTo="unassigned").assign_to == "none"
        assert rule(frequency="daily", assignTo="round-robin").assign_to == "none"
        assert rule(frequency="daily", assignTo=None).assign_to == "none"

    def test_unknown_frequency_is_an_error(self):
        with pytest.raises(MalformedRuleError, match="yearly"):
            rule(frequency="yearly")
        with pytest.raises(MalformedRuleError):
            rule(interval=2)

    def test_invalid_fields_are_errors(self):
        with pytest.raises(MalformedRuleError):
            rule(frequency="daily", interval=0)
        with pytest.raises(MalformedRuleError):
            rule(frequency="weekly", daysOfWeek=[7])
        with pytest.raises(MalformedRuleError):
            rule(frequency="monthly", dayOfMonth=32)
        with pytest.raises(MalformedRuleError):
            rule(frequency="daily", time="25:00")
        with pytest.raises(MalformedRuleError):
            rule(frequency="daily", time="nine")

    def test_interval_has_upper_bound(self):
        with pytest.raises(MalformedRuleError, match="interval"):
            rule(frequency="daily", interval=10 ** 7)
        with pytest.raises(MalformedRuleError, match="interval"):
            rule(frequency="custom", interval=3651)
        with pytest.raises(MalformedRuleError, match="interval"):
            rule(frequency="monthly", interval=10 ** 6)

        assert rule(frequency="daily", interval=3650).interval == 3650
        assert rule(frequency="monthly", interval=120).interval == 120

    def test_non_object_input_is_an_error(self):
        with pytest.raises(MalformedRuleError):
            parse_recurrence_rule("not json")
        with pytest.raises(MalformedRuleError):
            parse_recurrence_rule(["daily"])
        with pytest.raises(MalformedRuleError):
            parse_recurrence_rule(None)

    def test_dump_uses_stored_shape(self):
        dumped = dump_recurrence_rule(rule(frequency="weekly", days_of_week=[2], time="8:05"))

        assert dumped["frequency"] == "weekly"
        assert dumped["daysOfWeek"] == [2]
        assert dumped["time"] == "08:05"
        assert "fixedUserId" not in dumped


class TestCalculateNextGeneration:
    """Tests for calculate_next_generation."""

    def test_daily_adds_interval_and_sets_time(self):
        start = datetime(2025, 1, 20, 17, 45, 30, 123456)

        assert calculate_next_generation(rule(frequency="daily"), start) == datetime(2025, 1, 21, 9, 0)
        assert calculate_next_generation(rule(frequency="daily", interval=3, time="07:30"), start) == \
            datetime(2025, 1, 23, 7, 30)

    def test_daily_crosses_year_end(self):
        assert calculate_next_generation(rule(frequency="daily"), datetime(2025, 12, 31, 9, 0)) == \
            datetime(2026, 1, 1, 9, 0)

    def test_custom_matches_daily(self):
        start = datetime(2025, 3, 1, 12, 0)
        daily = calculate_next_generation(rule(frequency="daily", interval=5), start)
        custom = calculate_next_generation(rule(frequency="custom", interval=5), start)

        assert custom == daily == datetime(2025, 3, 6, 9, 0)

    def test_weekly_next_day_same_week(self):
        """Mon/Wed/Fri from a Wednesday is that Friday."""
        wednesday = datetime(2025, 1, 22, 9, 0)
        result = calculate_next_generation(rule(frequency="weekly", daysOfWeek=[1, 3, 5]), wednesday)

        assert result == datetime(2025, 1, 24, 9, 0)

    def test_weekly_single_day_never_today(self):
        """Monday-only from a Monday wraps to the following Monday."""
        monday = datetime(2025, 1, 20, 6, 0)
        result = calculate_next_generation(rule(frequency="weekly", daysOfWeek=[1]), monday)

        assert result == datetime(2025, 1, 27, 9, 0)

    def test_weekly_wraps_to_first_day_next_week(self):
        friday = datetime(2025, 1, 24, 9, 0)
        saturday = datetime(2025, 1, 25, 9, 0)
        days = rule(frequency="weekly", daysOfWeek=[1, 3, 5])

        assert calculate_next_generation(days, friday) == datetime(2025, 1, 27, 9, 0)
        assert calculate_next_generation(days, saturday) == datetime(2025, 1, 27, 9, 0)

    def test_weekly_sunday(self):
        sunday = datetime(2025, 1, 26, 9, 0)

        assert calculate_next_generation(rule(frequency="weekly", daysOfWeek=[0]), sunday) == \
            datetime(2025, 2, 2, 9, 0)
        assert calculate_next_generation(rule(frequency="weekly", daysOfWeek=[0, 6]), datetime(2025, 1, 25)) == \
            sunday

    def test_weekly_without_days_adds_a_week(self):
        result = calculate_next_generation(rule(frequency="weekly"), datetime(2025, 1, 22, 18, 0))

        assert result == datetime(2025, 1, 29, 9, 0)

    def test_weekly_result_is_always_a_later_date(self):
        days = rule(frequency="weekly", daysOfWeek=[0, 2, 4, 6], time="00:00")
        for offset in range(14):
            start = datetime(2025, 1, 20 + offset % 7, 23, 59)
            assert calculate_next_generation(days, start).date() > start.date()

    def test_biweekly_ignores_interval(self):
        result = calculate_next_generation(rule(frequency="biweekly", interval=5), datetime(2025, 1, 20))

        assert result == datetime(2025, 2, 3, 9, 0)

    def test_monthly_clamps_to_leap_february(self):
        result = calculate_next_generation(
            rule(frequency="monthly", interval=1, dayOfMonth=31, time="09:00"),
            datetime(2024, 1, 15, 0, 0),
        )

        assert result == datetime(2024, 2, 29, 9, 0)

    def test_monthly_clamps_to_short_february(self):
        result = calculate_next_generation(rule(frequency="monthly", dayOfMonth=31), datetime(2025, 1, 31))

        assert result == datetime(2025, 2, 28, 9, 0)

    def test_monthly_without_day_keeps_day_but_never_spills(self):
        assert calculate_next_generation(rule(frequency="monthly"), datetime(2025, 3, 10)) == \
            datetime(2025, 4, 10, 9, 0)
        assert calculate_next_generation(rule(frequency="monthly"), datetime(2025, 1, 31)) == \
            datetime(2025, 2, 28, 9, 0)

    def test_monthly_interval_crosses_year(self):
        assert calculate_next_generation(rule(frequency="monthly", interval=2, dayOfMonth=15),
                                         datetime(2024, 12, 1)) == datetime(2025, 2, 15, 9, 0)
        assert calculate_next_generation(rule(frequency="monthly", interval=12), datetime(2024, 2, 29)) == \
            datetime(2025, 2, 28, 9, 0)

    def test_aware_datetimes_keep_their_zone(self):
        start = datetime(2025, 1, 20, 14, 0, tzinfo=timezone.utc)
        result = calculate_next_generation(rule(frequency="daily"), start)

        assert result == datetime(2025, 1, 21, 9, 0, tzinfo=timezone.utc)
        assert result.tzinfo is timezone.utc

    def test_time_is_wall_clock_in_rule_zone(self):
        new_york = ZoneInfo("America/New_York")
        start = datetime(2025, 3, 8, 9, 0, tzinfo=new_york)
        result = calculate_next_generation(rule(frequency="daily"), start)

        # DST starts overnight; the task still lands at 09:00 local
        assert result.hour == 9
        assert result.astimezone(timezone.utc).hour == 13

    def test_defaults_to_now(self):
        result = calculate_next_generation(rule(frequency="daily"))

        assert result > datetime.now(timezone.utc)

    def test_result_past_max_date_is_malformed_rule(self):
        near_end = datetime(9999, 6, 1, 9, 0)

        with pytest.raises(MalformedRuleError, match="cannot be scheduled"):
            calculate_next_generation(rule(frequency="daily", interval=3650), near_end)
        with pytest.raises(MalformedRuleError, match="cannot be scheduled"):
            calculate_next_generation(rule(frequency="monthly", interval=120), near_end)
        with pytest.raises(MalformedRuleError, match="cannot be scheduled"):
            calculate_next_generation(rule(frequency="weekly", daysOfWeek=[1]), datetime(9999, 12, 30))
