import calendar
import json
import os
from datetime import datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from pydantic import TypeAdapter, ValidationError

from models import BaseRule, RecurrenceRule

FREQUENCIES = ("daily", "weekly", "biweekly", "monthly", "custom")

_rule_adapter = TypeAdapter(RecurrenceRule)


class MalformedRuleError(ValueError):
    """Raised when a stored or submitted recurrence rule cannot be used."""


def schedule_timezone() -> ZoneInfo:
    return ZoneInfo(os.getenv("SCHEDULE_TIMEZONE", "UTC"))


def schedule_now() -> datetime:
    """Current instant in the timezone recurrence rules are evaluated in."""
    return datetime.now(schedule_timezone())


def parse_recurrence_rule(data: Any) -> BaseRule:
    """
    Parse a recurrence rule from a dict, a JSON string or an existing rule.
    Raises MalformedRuleError for unknown frequencies or invalid fields.
    """
    if isinstance(data, BaseRule):
        return data
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedRuleError(f"Recurrence rule is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedRuleError("Recurrence rule must be an object")

    frequency = data.get("frequency")
    if frequency not in FREQUENCIES:
        raise MalformedRuleError(f"Unsupported recurrence frequency: {frequency!r}")

    try:
        return _rule_adapter.validate_python(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'][1:]) or 'rule'}: {err['msg']}"
            for err in e.errors()
        )
        raise MalformedRuleError(f"Invalid {frequency} rule: {problems}") from e


def dump_recurrence_rule(rule: BaseRule) -> dict:
    """Serialize a rule back to its stored camelCase JSON shape."""
    return rule.model_dump(by_alias=True, exclude_none=True)


def calculate_next_generation(rule: BaseRule, from_date: Optional[datetime] = None) -> datetime:
    """
    Calculate the next generation instant for a recurrence rule.

    The time of day is set to rule.time first, then the date is advanced:
    - daily/custom: interval days
    - weekly: next listed weekday strictly after from_date's weekday,
      wrapping to the first listed day of the following week; 7 days if no
      days are listed
    - biweekly: 14 days
    - monthly: interval months, clamping the day to the target month's length

    Naive datetimes stay naive; aware datetimes keep their tzinfo and are
    advanced in wall-clock time. Raises MalformedRuleError if the result
    falls outside the representable date range.
    """
    if from_date is None:
        from_date = schedule_now()

    hours, minutes = rule.hour_minute
    next_date = from_date.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    try:
        return _advance(rule, next_date)
    except MalformedRuleError:
        raise
    except (OverflowError, ValueError) as e:
        raise MalformedRuleError(
            f"{rule.frequency} rule cannot be scheduled after {from_date.isoformat()}: {e}"
        ) from e


def _advance(rule: BaseRule, next_date: datetime) -> datetime:
    if rule.frequency in ("daily", "custom"):
        return next_date + timedelta(days=rule.interval)

    if rule.frequency == "weekly":
        if not rule.days_of_week:
            return next_date + timedelta(days=7)
        # 0=Sunday..6=Saturday, Python's weekday() has Monday=0
        current_day = (next_date.weekday() + 1) % 7
        later_days = [day for day in rule.days_of_week if day > current_day]
        if later_days:
            offset = later_days[0] - current_day
        else:
            offset = 7 - current_day + rule.days_of_week[0]
        return next_date + timedelta(days=offset)

    if rule.frequency == "biweekly":
        return next_date + timedelta(days=14)

    if rule.frequency == "monthly":
        return _add_months(next_date, rule.interval, rule.day_of_month)

    raise MalformedRuleError(f"Unsupported recurrence frequency: {rule.frequency!r}")


def _add_months(value: datetime, months: int, day_of_month: Optional[int]) -> datetime:
    """Move value forward by months, never spilling into the month after."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    day = min(day_of_month or value.day, last_day)
    return value.replace(year=year, month=month, day=day)
