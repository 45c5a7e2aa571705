from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_DAY_INTERVAL = 3650  # ten years
MAX_MONTH_INTERVAL = 120


class BaseRule(BaseModel):
    """Fields shared by every recurrence frequency.

    Stored rules use camelCase keys (daysOfWeek, assignTo, ...); both spellings
    are accepted on input. Keys that belong to another frequency are dropped.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    time: str = "09:00"  # HH:MM wall-clock time
    assign_to: Literal["none", "fixed", "rotate"] = "none"
    fixed_user_id: Optional[str] = None
    rotation_user_ids: list[str] = Field(default_factory=list)

    @field_validator("time", mode="before")
    @classmethod
    def _check_time(cls, value: Any) -> str:
        if value is None or value == "":
            return "09:00"
        try:
            hours, minutes = (int(part) for part in str(value).split(":"))
        except ValueError:
            raise ValueError(f"time must be HH:MM, got {value!r}")
        if not (0 <= hours <= 23 and 0 <= minutes <= 59):
            raise ValueError(f"time out of range: {value!r}")
        return f"{hours:02d}:{minutes:02d}"

    @field_validator("assign_to", mode="before")
    @classmethod
    def _normalize_assign_to(cls, value: Any) -> str:
        # "unassigned", None and anything unknown mean no assignment
        return value if value in ("fixed", "rotate") else "none"

    @field_validator("rotation_user_ids", mode="before")
    @classmethod
    def _default_rotation(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def hour_minute(self) -> tuple[int, int]:
        hours, minutes = self.time.split(":")
        return int(hours), int(minutes)


class DailyRule(BaseRule):
    frequency: Literal["daily"]
    interval: int = Field(default=1, ge=1, le=MAX_DAY_INTERVAL)

    @field_validator("interval", mode="before")
    @classmethod
    def _default_interval(cls, value: Any) -> Any:
        return 1 if value is None else value


class CustomRule(DailyRule):
    """Every N days. Same mechanics as daily; only the intent differs."""
    frequency: Literal["custom"]


class WeeklyRule(BaseRule):
    frequency: Literal["weekly"]
    days_of_week: list[int] = Field(default_factory=list)  # 0=Sunday..6=Saturday

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _check_days(cls, value: Any) -> list[int]:
        if value is None:
            return []
        try:
            days = sorted({int(day) for day in value})
        except (TypeError, ValueError):
            raise ValueError(f"daysOfWeek must be a list of integers, got {value!r}")
        if any(day < 0 or day > 6 for day in days):
            raise ValueError(f"daysOfWeek entries must be 0-6, got {days}")
        return days


class BiweeklyRule(BaseRule):
    frequency: Literal["biweekly"]


class MonthlyRule(BaseRule):
    frequency: Literal["monthly"]
    interval: int = Field(default=1, ge=1, le=MAX_MONTH_INTERVAL)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)

    @field_validator("interval", mode="before")
    @classmethod
    def _default_interval(cls, value: Any) -> Any:
        return 1 if value is None else value


RecurrenceRule = Annotated[
    Union[DailyRule, WeeklyRule, BiweeklyRule, MonthlyRule, CustomRule],
    Field(discriminator="frequency"),
]


class Template(BaseModel):
    id: str
    name: str
    default_title: Optional[str] = None
    default_description: Optional[str] = None
    default_division_id: Optional[str] = None
    default_custom_fields: Optional[dict[str, Any]] = None
    is_active: bool = False
    recurrence_rule: Optional[dict[str, Any]] = None  # raw JSON, parsed per sweep
    last_generated_at: Optional[datetime] = None
    next_generation_at: Optional[datetime] = None
    last_assigned_index: Optional[int] = None  # rotation pointer
    created_at: str  # ISO format datetime string


class Task(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status_id: str
    division_id: Optional[str] = None
    template_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    custom_fields: Optional[dict[str, Any]] = None
    scheduled_for: Optional[datetime] = None  # due instant this task was generated for
    created_at: str


class Assignment(BaseModel):
    user_id: Optional[str] = None
    rotation_index: Optional[int] = None


class GenerationResult(BaseModel):
    template_id: str
    template_name: str
    task_id: Optional[str] = None
    success: bool
    error: Optional[str] = None


class SweepResponse(BaseModel):
    success: bool = True
    generated: int
    failed: int
    results: list[GenerationResult]
    timestamp: str
