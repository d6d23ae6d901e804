"""Plan schemas for the calendar API."""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, datetime, time
from typing import List, Optional

from app.recurrence.rule import MAX_INTERVAL, MIN_INTERVAL, RecurrenceRule, RepeatUnit, Weekday

# Placeholder start used to validate a recurrence payload before the plan start is known
_VALIDATION_START = date.min


class RecurrenceReq(BaseModel):
    """Recurrence part of a create/update request."""
    repeat_unit: RepeatUnit
    repeat_interval: int = Field(default=1, ge=MIN_INTERVAL, le=MAX_INTERVAL)
    repeat_weekdays: List[Weekday] = Field(default_factory=list)
    repeat_day_of_month: Optional[int] = Field(None, ge=1, le=31)
    repeat_weeks_of_month: List[int] = Field(default_factory=list)
    repeat_month: Optional[int] = Field(None, ge=1, le=12)
    repeat_day_of_year: Optional[int] = Field(None, ge=1, le=31)
    exception_dates: Optional[List[date]] = None  # None on update keeps the stored exceptions
    end_date: Optional[date] = None  # last day the rule may produce; None = forever

    @model_validator(mode="after")
    def check_rule_shape(self) -> "RecurrenceReq":
        # MalformedRuleError is a ValueError, so pydantic reports it as 422
        self.to_rule(_VALIDATION_START)
        return self

    def to_rule(self, start_date: date) -> RecurrenceRule:
        return RecurrenceRule(
            unit=self.repeat_unit,
            interval=self.repeat_interval,
            weekdays=self.repeat_weekdays,
            day_of_month=self.repeat_day_of_month,
            weeks_of_month=self.repeat_weeks_of_month,
            month=self.repeat_month,
            day_of_year=self.repeat_day_of_year,
            exception_dates=self.exception_dates or (),
            rule_start_date=start_date,
            rule_end_date=self.end_date,
        )


class AlarmReq(BaseModel):
    """Alarm requested for a plan."""
    alarm_date: date
    alarm_time: time


class PlanCreate(BaseModel):
    """Schema for creating a plan."""
    name: str = Field(..., min_length=1, max_length=30)
    content: Optional[str] = Field(None, max_length=300)
    location: Optional[str] = Field(None, max_length=200)
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    is_recurring: bool = False
    recurrence: Optional[RecurrenceReq] = None
    alarms: List[AlarmReq] = Field(default_factory=list, max_length=10)

    @model_validator(mode="after")
    def check_plan_shape(self) -> "PlanCreate":
        if (self.end_date, self.end_time) < (self.start_date, self.start_time):
            raise ValueError("plan must not end before it starts")
        if self.is_recurring and self.recurrence is None:
            raise ValueError("recurring plan requires a recurrence")
        if not self.is_recurring and self.recurrence is not None:
            raise ValueError("recurrence given for a non-recurring plan")
        if self.recurrence is not None:
            self.recurrence.to_rule(self.start_date)
        return self


class PlanUpdate(BaseModel):
    """
    Schema for a partial plan update.

    Omitted fields keep their stored value. ``is_recurring`` left out with a
    ``recurrence`` given updates the rule of a recurring plan. ``version``,
    when given, must match the stored version or the update is rejected.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=30)
    content: Optional[str] = Field(None, max_length=300)
    location: Optional[str] = Field(None, max_length=200)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_recurring: Optional[bool] = None
    recurrence: Optional[RecurrenceReq] = None
    alarms: Optional[List[AlarmReq]] = Field(None, max_length=10)
    version: Optional[int] = Field(None, ge=1)


class AlarmResponse(BaseModel):
    """Alarm as returned by the API."""
    id: int
    alarm_date: date
    alarm_time: time
    status: str
    sent_at: Optional[datetime] = None
    retry_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class RecurrenceResponse(BaseModel):
    repeat_unit: RepeatUnit
    repeat_interval: int
    repeat_weekdays: List[Weekday] = []
    repeat_day_of_month: Optional[int] = None
    repeat_weeks_of_month: List[int] = []
    repeat_month: Optional[int] = None
    repeat_day_of_year: Optional[int] = None
    exception_dates: List[date] = []
    start_date: date
    end_date: Optional[date] = None

    model_config = ConfigDict(from_attributes=True)


class PlanResponse(BaseModel):
    """Schema for plan API responses."""
    id: int
    user_id: str
    name: str
    content: Optional[str] = None
    location: Optional[str] = None
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    is_recurring: bool
    recurrence: Optional[RecurrenceResponse] = None
    repeat_description: Optional[str] = None
    alarms: List[AlarmResponse] = []
    version: int
    created_at: datetime
    updated_at: datetime


class OccurrenceResponse(BaseModel):
    """One occurrence of a plan inside a month view."""
    plan_id: int
    name: str
    content: Optional[str] = None
    location: Optional[str] = None
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    is_recurring: bool
    repeat_description: Optional[str] = None
    version: int


class MonthlyPlansResponse(BaseModel):
    year: int
    month: int
    occurrences: List[OccurrenceResponse]


class CacheKeysResponse(BaseModel):
    keys: List[str]
