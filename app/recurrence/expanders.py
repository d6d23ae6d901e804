"""
Unit expanders for recurring plans.

Each expander enumerates candidate dates for one repeat unit and leaves the
final decision to the occurrence validator. All three share the same flow:
anchor the cadence to the plan's start, jump forward by whole intervals to
the query window, then step by the interval until the window (or the rule's
end date) is passed. The cadence is never resynchronised to the window, so
"every 2 weeks" means the same dates no matter which month is queried.
"""
import calendar
import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Any, Iterator, List, Optional

from app.recurrence.rule import LAST_WEEK, RecurrenceRule, RepeatUnit, Weekday
from app.recurrence.validator import is_valid_occurrence

logger = logging.getLogger(__name__)


def effective_end(rule: RecurrenceRule, window_end: date) -> date:
    """Last date worth generating: the window end or the rule end, whichever is earlier."""
    if rule.rule_end_date is not None and rule.rule_end_date < window_end:
        return rule.rule_end_date
    return window_end


def align_forward(anchor: int, target: int, step: int) -> int:
    """Smallest ``anchor + k * step`` (k >= 0) that is not below ``target``."""
    if anchor >= target:
        return anchor
    steps = -(-(target - anchor) // step)
    return anchor + steps * step


def first_weekday_on_or_after(start: date, weekday: Weekday) -> date:
    return start + timedelta(days=(weekday.number - start.weekday()) % 7)


def nth_weekday_of_month(year: int, month: int, weekday: Weekday, position: int) -> Optional[date]:
    """
    Find the Nth given weekday of a month.

    Args:
        year: Calendar year
        month: Month 1-12
        weekday: Target weekday
        position: 1-5 for the Nth occurrence, -1 for the last one

    Returns:
        The date, or None when the month has no such occurrence
        (e.g. a 5th Tuesday in a month with four Tuesdays).
    """
    days_in_month = calendar.monthrange(year, month)[1]
    if position == LAST_WEEK:
        last = date(year, month, days_in_month)
        return last - timedelta(days=(last.weekday() - weekday.number) % 7)

    first = date(year, month, 1)
    day = 1 + (weekday.number - first.weekday()) % 7 + 7 * (position - 1)
    if day > days_in_month:
        return None
    return date(year, month, day)


def _month_ordinal(day: date) -> int:
    return day.year * 12 + day.month - 1


class UnitExpander(ABC):
    """Common driver: enumerate candidates, keep the valid ones."""

    unit: RepeatUnit

    def expand_dates(self, plan: Any, window_start: date, window_end: date) -> List[date]:
        """
        Expand a plan's rule into occurrence start dates inside the window.

        Args:
            plan: Plan-like object with ``start_date`` and ``recurrence``
            window_start: First day of the query window (inclusive)
            window_end: Last day of the query window (inclusive)

        Returns:
            Sorted list of distinct occurrence start dates
        """
        rule = plan.recurrence
        if window_end < window_start:
            return []
        dates = {
            candidate
            for candidate in self.candidates(plan, rule, window_start, window_end)
            if is_valid_occurrence(plan, candidate, window_start, window_end)
        }
        return sorted(dates)

    @abstractmethod
    def candidates(self, plan: Any, rule: RecurrenceRule, window_start: date, window_end: date) -> Iterator[date]:
        """Yield candidate dates; may include dates the validator rejects."""


class WeeklyExpander(UnitExpander):
    """Every N weeks on a set of weekdays."""

    unit = RepeatUnit.WEEKLY

    def candidates(self, plan, rule, window_start, window_end):
        last = effective_end(rule, window_end)
        step_days = 7 * rule.interval
        for weekday in sorted(rule.weekdays, key=lambda d: d.number):
            anchor = first_weekday_on_or_after(plan.start_date, weekday)
            ordinal = align_forward(anchor.toordinal(), window_start.toordinal(), step_days)
            while ordinal <= last.toordinal():
                yield date.fromordinal(ordinal)
                ordinal += step_days


class MonthlyExpander(UnitExpander):
    """Every N months, on a fixed day or on week positions."""

    unit = RepeatUnit.MONTHLY

    def candidates(self, plan, rule, window_start, window_end):
        for year, month in self._candidate_months(plan, rule, window_start, window_end):
            if rule.day_of_month is not None:
                # Clamp rather than skip: day 31 in February falls on the 28th/29th
                day = min(rule.day_of_month, calendar.monthrange(year, month)[1])
                yield date(year, month, day)
                continue

            for position in sorted(rule.weeks_of_month):
                for weekday in sorted(rule.weekdays, key=lambda d: d.number):
                    candidate = nth_weekday_of_month(year, month, weekday, position)
                    if candidate is not None:
                        yield candidate

    @staticmethod
    def _candidate_months(plan, rule, window_start, window_end):
        last = effective_end(rule, window_end)
        current = align_forward(_month_ordinal(plan.start_date), _month_ordinal(window_start), rule.interval)
        stop = _month_ordinal(last)
        while current <= stop:
            year, month_index = divmod(current, 12)
            yield year, month_index + 1
            current += rule.interval


class YearlyExpander(UnitExpander):
    """Every N years on a fixed month and day."""

    unit = RepeatUnit.YEARLY

    def candidates(self, plan, rule, window_start, window_end):
        if window_start.year == window_end.year and not window_start.month <= rule.month <= window_end.month:
            return

        last = effective_end(rule, window_end)
        year = align_forward(plan.start_date.year, window_start.year, rule.interval)
        while year <= last.year:
            try:
                yield date(year, rule.month, rule.day_of_year)
            except ValueError:
                # Feb 30, or Feb 29 outside a leap year: no occurrence that year
                logger.debug(f"Skipping impossible yearly date {year}-{rule.month}-{rule.day_of_year}")
            year += rule.interval


EXPANDERS = {
    expander.unit: expander
    for expander in (WeeklyExpander(), MonthlyExpander(), YearlyExpander())
}
