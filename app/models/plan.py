"""Plan, recurrence and alarm models for SQLModel."""
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, ForeignKey, Integer, JSON, String
from datetime import date, datetime, time
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from app.recurrence.rule import RecurrenceRule

if TYPE_CHECKING:
    from app.models.user import User

# Optimistic concurrency counter, bumped by SQLAlchemy on every UPDATE of a plan row
PLAN_VERSION_COLUMN = Column("version", Integer, nullable=False)


class Plan(SQLModel, table=True):
    """Plan entity: a single or recurring calendar entry owned by a user."""

    __mapper_args__ = {"version_id_col": PLAN_VERSION_COLUMN}

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(
        sa_column=Column(String, ForeignKey("user.id", ondelete="CASCADE"), index=True)
    )
    name: str = Field(max_length=30, min_length=1)
    content: Optional[str] = Field(default=None, max_length=300)
    location: Optional[str] = Field(default=None, max_length=200)
    start_date: date = Field(index=True)
    end_date: date = Field(index=True)
    start_time: time
    end_time: time
    is_recurring: bool = Field(default=False)
    version: Optional[int] = Field(default=None, sa_column=PLAN_VERSION_COLUMN)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    user: "User" = Relationship(back_populates="plans")
    recurring_info: Optional["RecurringInfo"] = Relationship(
        back_populates="plan",
        sa_relationship_kwargs={"uselist": False, "cascade": "all, delete-orphan"}
    )
    alarms: List["PlanAlarm"] = Relationship(
        back_populates="plan",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

    @property
    def recurrence(self) -> Optional[RecurrenceRule]:
        """Immutable rule view of the stored recurrence row."""
        if not self.is_recurring or self.recurring_info is None:
            return None
        return self.recurring_info.to_rule()


class RecurringInfo(SQLModel, table=True):
    """
    Stored recurrence rule of a plan.

    Rows are never patched field by field: a changed rule replaces the whole
    row, so no weekday or week-position data from an older unit survives.
    """

    __tablename__ = "recurring_info"

    id: Optional[int] = Field(default=None, primary_key=True)
    plan_id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("plan.id", ondelete="CASCADE"), unique=True, index=True)
    )
    repeat_unit: str = Field(max_length=20)  # WEEKLY, MONTHLY, YEARLY
    repeat_interval: int = Field(default=1)
    repeat_weekdays: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    repeat_day_of_month: Optional[int] = Field(default=None)
    repeat_weeks_of_month: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    repeat_month: Optional[int] = Field(default=None)
    repeat_day_of_year: Optional[int] = Field(default=None)
    exception_dates: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))  # ISO dates
    start_date: date
    end_date: Optional[date] = Field(default=None)

    plan: Optional[Plan] = Relationship(back_populates="recurring_info")

    @classmethod
    def from_rule(cls, rule: RecurrenceRule) -> "RecurringInfo":
        return cls(
            repeat_unit=rule.unit.value,
            repeat_interval=rule.interval,
            repeat_weekdays=sorted(d.value for d in rule.weekdays),
            repeat_day_of_month=rule.day_of_month,
            repeat_weeks_of_month=sorted(rule.weeks_of_month),
            repeat_month=rule.month,
            repeat_day_of_year=rule.day_of_year,
            exception_dates=sorted(d.isoformat() for d in rule.exception_dates),
            start_date=rule.rule_start_date,
            end_date=rule.rule_end_date,
        )

    def to_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            unit=self.repeat_unit,
            interval=self.repeat_interval,
            weekdays=self.repeat_weekdays or [],
            day_of_month=self.repeat_day_of_month,
            weeks_of_month=self.repeat_weeks_of_month or [],
            month=self.repeat_month,
            day_of_year=self.repeat_day_of_year,
            exception_dates=[date.fromisoformat(d) for d in self.exception_dates or []],
            rule_start_date=self.start_date,
            rule_end_date=self.end_date,
        )


class AlarmStatus(str, Enum):
    """Delivery state of a plan alarm."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PlanAlarm(SQLModel, table=True):
    """Reminder attached to a plan."""

    __tablename__ = "plan_alarm"

    id: Optional[int] = Field(default=None, primary_key=True)
    plan_id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("plan.id", ondelete="CASCADE"), index=True)
    )
    alarm_date: date = Field(index=True)
    alarm_time: time
    lead_days: int = Field(default=0)  # days between alarm_date and the occurrence it announces
    status: str = Field(default=AlarmStatus.PENDING.value, max_length=20, index=True)
    sent_at: Optional[datetime] = Field(default=None)
    failure_reason: Optional[str] = Field(default=None, max_length=500)
    retry_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    plan: Optional[Plan] = Relationship(back_populates="alarms")

    @property
    def alarm_datetime(self) -> datetime:
        return datetime.combine(self.alarm_date, self.alarm_time)
