"""Occurrence validity check shared by all unit expanders."""
from datetime import date
from typing import Any


def is_valid_occurrence(plan: Any, candidate: date, window_start: date, window_end: date) -> bool:
    """
    Check whether a candidate date is a legitimate occurrence of the plan's rule.

    Args:
        plan: Plan-like object exposing ``start_date`` and ``recurrence``
        candidate: Date produced by an expander
        window_start: First day of the query window (inclusive)
        window_end: Last day of the query window (inclusive)

    Returns:
        True if the candidate should be emitted, False otherwise. Never raises
        for well-formed inputs; missing values resolve to False.
    """
    if plan is None or candidate is None or window_start is None or window_end is None:
        return False

    if candidate < plan.start_date:
        return False

    if candidate < window_start or candidate > window_end:
        return False

    rule = getattr(plan, "recurrence", None)
    if rule is None:
        return True

    if candidate < rule.rule_start_date:
        return False

    if rule.rule_end_date is not None and candidate > rule.rule_end_date:
        return False

    return candidate not in rule.exception_dates
