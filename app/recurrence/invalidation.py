"""Month cache invalidation for plan mutations."""
from datetime import date
from typing import Any, Optional, Set, Tuple

YearMonth = Tuple[int, int]
Span = Tuple[date, date]


class InvertedSpanError(AssertionError):
    """Raised when a span ends before it starts; signals a broken upstream invariant."""


def affected_months(start_date: date, end_date: date) -> Set[YearMonth]:
    """
    Collect every (year, month) touched by a date span.

    Args:
        start_date: First day of the span
        end_date: Last day of the span (inclusive)

    Returns:
        Set of (year, month) pairs from start's month to end's month inclusive

    Raises:
        InvertedSpanError: If end_date is before start_date
    """
    if end_date < start_date:
        raise InvertedSpanError(f"span ends before it starts: {start_date} > {end_date}")

    months = set()
    year, month = start_date.year, start_date.month
    while (year, month) <= (end_date.year, end_date.month):
        months.add((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def months_to_evict(before: Optional[Span], after: Optional[Span]) -> Set[YearMonth]:
    """Union of the months covered by a plan before and after a mutation."""
    months: Set[YearMonth] = set()
    for span in (before, after):
        if span is not None:
            months |= affected_months(*span)
    return months


def eviction_span(plan: Any) -> Optional[Span]:
    """
    Date span whose cached months can contain occurrences of this plan.

    Single plans cover start..end. Bounded recurring plans cover the first
    start up to the last possible occurrence's end. Unbounded recurring plans
    return None: every cached month of the user may hold one of them.
    """
    rule = getattr(plan, "recurrence", None)
    if rule is None:
        return (plan.start_date, plan.end_date)
    if rule.rule_end_date is None:
        return None
    duration = plan.end_date - plan.start_date
    return (plan.start_date, max(plan.end_date, rule.rule_end_date + duration))
