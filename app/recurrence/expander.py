"""Occurrence expansion entry point: routes a plan's rule to its unit expander."""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from app.recurrence.expanders import EXPANDERS, UnitExpander
from app.recurrence.rule import MAX_INTERVAL, RepeatUnit

logger = logging.getLogger(__name__)

# Feb 29 yearly rules can go 8 years without a match
MAX_LOOKAHEAD_YEARS = 8 * MAX_INTERVAL + 1


@dataclass(frozen=True)
class Occurrence:
    """One concrete materialisation of a plan on a specific date."""

    plan: Any
    start_date: date
    end_date: date

    @property
    def key(self) -> Tuple[Any, date]:
        return (self.plan.id, self.start_date)

    @classmethod
    def of(cls, plan: Any, start: Optional[date] = None) -> "Occurrence":
        """Build an occurrence starting on ``start``, keeping the plan's duration."""
        start = plan.start_date if start is None else start
        return cls(plan=plan, start_date=start, end_date=start + (plan.end_date - plan.start_date))


class OccurrenceExpander:
    """Dispatches on ``rule.unit`` and turns expanded dates into occurrences."""

    def __init__(self, expanders: Optional[Dict[RepeatUnit, UnitExpander]] = None):
        self.expanders = expanders or EXPANDERS

    def expand(self, plan: Any, window_start: date, window_end: date) -> List[Occurrence]:
        """
        Expand a recurring plan into occurrences for a query window.

        Args:
            plan: Plan-like object (``id``, ``start_date``, ``end_date``, ``recurrence``)
            window_start: First day of the window (inclusive)
            window_end: Last day of the window (inclusive)

        Returns:
            Occurrences ordered by start date. Plans without a rule produce
            nothing; callers emit single plans directly.
        """
        rule = getattr(plan, "recurrence", None)
        if rule is None:
            logger.warning(f"Plan {getattr(plan, 'id', None)} has no recurrence rule, nothing to expand")
            return []

        expander = self.expanders[rule.unit]
        dates = expander.expand_dates(plan, window_start, window_end)
        occurrences = [Occurrence.of(plan, day) for day in dates]
        logger.debug(f"Expanded plan {getattr(plan, 'id', None)} into {len(occurrences)} occurrences "
                     f"for {window_start}..{window_end}")
        return occurrences

    def next_occurrence(self, plan: Any, on_or_after: date) -> Optional[Occurrence]:
        """First occurrence starting on or after a date, or None if the rule is exhausted."""
        rule = getattr(plan, "recurrence", None)
        if rule is None:
            return Occurrence.of(plan) if plan.start_date >= on_or_after else None

        window_start = on_or_after
        for _ in range(MAX_LOOKAHEAD_YEARS):
            if rule.rule_end_date is not None and window_start > rule.rule_end_date:
                return None
            window_end = _one_year_later(window_start) - timedelta(days=1)
            occurrences = self.expand(plan, window_start, window_end)
            if occurrences:
                return occurrences[0]
            window_start = window_end + timedelta(days=1)
        return None


def _one_year_later(day: date) -> date:
    try:
        return day.replace(year=day.year + 1)
    except ValueError:
        return day.replace(year=day.year + 1, day=28)


occurrence_expander = OccurrenceExpander()


def expand(plan: Any, window_start: date, window_end: date) -> List[Occurrence]:
    """Module-level shortcut over the default expander."""
    return occurrence_expander.expand(plan, window_start, window_end)
