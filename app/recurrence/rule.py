"""Recurrence rule value type for recurring plans."""
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple


MIN_INTERVAL = 1
MAX_INTERVAL = 20
LAST_WEEK = -1
WEEK_POSITIONS = frozenset({1, 2, 3, 4, 5, LAST_WEEK})


class MalformedRuleError(ValueError):
    """Raised when a rule has missing or foreign fields for its unit."""


class RepeatUnit(str, Enum):
    """Repetition granularity of a rule."""

    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Weekday(str, Enum):
    """Day of week, ordered like date.weekday()."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def number(self) -> int:
        return _WEEKDAY_ORDER.index(self)

    @property
    def short_name(self) -> str:
        return self.value[:3].title()

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return _WEEKDAY_ORDER[day.weekday()]


_WEEKDAY_ORDER = tuple(Weekday)

_POSITION_NAMES = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th", LAST_WEEK: "last"}
_MONTH_NAMES = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


@dataclass(frozen=True)
class RecurrenceRule:
    """
    Immutable description of how a plan repeats.

    Which positional fields are meaningful depends on ``unit``:

    - WEEKLY: ``weekdays``
    - MONTHLY: ``day_of_month``, or ``weeks_of_month`` together with ``weekdays``
    - YEARLY: ``month`` and ``day_of_year`` (a day within that month)

    Construction fails with MalformedRuleError when a required field is
    missing or a field that does not belong to the unit is set, so an
    expander never sees an ill-formed rule.
    """

    unit: RepeatUnit
    rule_start_date: date
    interval: int = 1
    weekdays: FrozenSet[Weekday] = frozenset()
    day_of_month: Optional[int] = None
    weeks_of_month: FrozenSet[int] = frozenset()
    month: Optional[int] = None
    day_of_year: Optional[int] = None
    exception_dates: FrozenSet[date] = frozenset()
    rule_end_date: Optional[date] = None

    def __post_init__(self):
        # Accept plain iterables and strings from callers, store canonical values
        try:
            object.__setattr__(self, "unit", RepeatUnit(self.unit))
            object.__setattr__(self, "weekdays", frozenset(Weekday(d) for d in self.weekdays))
        except ValueError as e:
            raise MalformedRuleError(str(e)) from e
        object.__setattr__(self, "weeks_of_month", frozenset(self.weeks_of_month))
        object.__setattr__(self, "exception_dates", frozenset(self.exception_dates))
        self._validate()

    def _validate(self):
        if not isinstance(self.interval, int) or not MIN_INTERVAL <= self.interval <= MAX_INTERVAL:
            raise MalformedRuleError(
                f"interval must be between {MIN_INTERVAL} and {MAX_INTERVAL}, got {self.interval!r}"
            )
        if self.rule_end_date is not None and self.rule_end_date < self.rule_start_date:
            raise MalformedRuleError("rule_end_date must not be before rule_start_date")

        if self.unit is RepeatUnit.WEEKLY:
            if not self.weekdays:
                raise MalformedRuleError("weekly rule requires at least one weekday")
            self._forbid("day_of_month", "weeks_of_month", "month", "day_of_year")
        elif self.unit is RepeatUnit.MONTHLY:
            self._forbid("month", "day_of_year")
            has_day = self.day_of_month is not None
            has_positions = bool(self.weeks_of_month) or bool(self.weekdays)
            if has_day == has_positions:
                raise MalformedRuleError(
                    "monthly rule requires exactly one of day_of_month or weeks_of_month with weekdays"
                )
            if has_day:
                _check_range("day_of_month", self.day_of_month, 1, 31)
            else:
                if not self.weeks_of_month or not self.weekdays:
                    raise MalformedRuleError("week-position rule requires both weeks_of_month and weekdays")
                unknown = self.weeks_of_month - WEEK_POSITIONS
                if unknown:
                    raise MalformedRuleError(f"invalid week positions: {sorted(unknown)}")
        else:
            self._forbid("weekdays", "day_of_month", "weeks_of_month")
            if self.month is None or self.day_of_year is None:
                raise MalformedRuleError("yearly rule requires month and day_of_year")
            _check_range("month", self.month, 1, 12)
            _check_range("day_of_year", self.day_of_year, 1, 31)

    def _forbid(self, *names: str):
        present = [name for name in names if getattr(self, name) not in (None, frozenset())]
        if present:
            raise MalformedRuleError(
                f"{', '.join(present)} not valid for {self.unit.value.lower()} rule"
            )

    # ---- derived values -------------------------------------------------

    def pattern(self) -> Tuple:
        """Fields that decide which dates the rule produces, bounds excluded."""
        return (
            self.unit,
            self.interval,
            self.weekdays,
            self.day_of_month,
            self.weeks_of_month,
            self.month,
            self.day_of_year,
        )

    def same_pattern(self, other: Optional["RecurrenceRule"]) -> bool:
        return other is not None and self.pattern() == other.pattern()

    def unit_collections(self) -> FrozenSet[str]:
        """Names of the non-empty unit-specific sub-collections."""
        names = set()
        if self.weekdays:
            names.add("weekdays")
        if self.weeks_of_month:
            names.add("weeks_of_month")
        return frozenset(names)

    def with_exception(self, day: date) -> "RecurrenceRule":
        return replace(self, exception_dates=self.exception_dates | {day})

    def with_exceptions(self, days: Iterable[date]) -> "RecurrenceRule":
        return replace(self, exception_dates=frozenset(days))

    def rebased(self, start: date, end: Optional[date] = None) -> "RecurrenceRule":
        return replace(self, rule_start_date=start, rule_end_date=end)

    def describe(self) -> str:
        """
        Human readable summary.

        Examples: "Every week on Mon, Wed", "Every 2 months on day 31",
        "Every month on the 2nd, last Tue", "Every year on Feb 29".
        """
        noun = {RepeatUnit.WEEKLY: "week", RepeatUnit.MONTHLY: "month", RepeatUnit.YEARLY: "year"}[self.unit]
        head = f"Every {noun}" if self.interval == 1 else f"Every {self.interval} {noun}s"
        days = ", ".join(d.short_name for d in sorted(self.weekdays, key=lambda d: d.number))

        if self.unit is RepeatUnit.WEEKLY:
            body = f"on {days}"
        elif self.unit is RepeatUnit.MONTHLY and self.day_of_month is not None:
            body = f"on day {self.day_of_month}"
        elif self.unit is RepeatUnit.MONTHLY:
            positions = sorted(self.weeks_of_month, key=lambda p: 99 if p == LAST_WEEK else p)
            body = f"on the {', '.join(_POSITION_NAMES[p] for p in positions)} {days}"
        else:
            body = f"on {_MONTH_NAMES[self.month - 1]} {self.day_of_year}"

        text = f"{head} {body}"
        if self.rule_end_date is not None:
            text += f" until {self.rule_end_date.isoformat()}"
        return text


def _check_range(name: str, value, low: int, high: int):
    if not isinstance(value, int) or not low <= value <= high:
        raise MalformedRuleError(f"{name} must be between {low} and {high}, got {value!r}")
