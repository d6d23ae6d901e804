"""Recurrence engine: rule expansion, mutation planning and cache invalidation."""

from .expander import Occurrence, OccurrenceExpander, expand, occurrence_expander
from .invalidation import InvertedSpanError, affected_months, eviction_span, months_to_evict
from .mutation import MutationPlan, RecurrenceMutationPlanner, Transition, plan_mutation
from .rule import MalformedRuleError, RecurrenceRule, RepeatUnit, Weekday
from .validator import is_valid_occurrence

__all__ = [
    "InvertedSpanError",
    "MalformedRuleError",
    "MutationPlan",
    "Occurrence",
    "OccurrenceExpander",
    "RecurrenceMutationPlanner",
    "RecurrenceRule",
    "RepeatUnit",
    "Transition",
    "Weekday",
    "affected_months",
    "eviction_span",
    "expand",
    "is_valid_occurrence",
    "months_to_evict",
    "occurrence_expander",
    "plan_mutation",
]
