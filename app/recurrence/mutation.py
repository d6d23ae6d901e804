"""
Recurrence mutation planning.

Given the rule a plan currently holds and what an update request asks for,
decide which of the transitions applies and which stored sub-collections
must be dropped. The planner never edits a rule in place: every change
produces a brand new RecurrenceRule that the persistence layer swaps in
whole, so a unit change cannot leave weekday or week-position rows behind.
"""
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import FrozenSet, Optional

from app.recurrence.rule import MalformedRuleError, RecurrenceRule

logger = logging.getLogger(__name__)

ALL_COLLECTIONS = frozenset({"weekdays", "weeks_of_month", "exception_dates"})


class Transition(str, Enum):
    """Recurrence transition selected for an update."""

    NONE = "NONE"            # single -> single
    ATTACH = "ATTACH"        # single -> recurring
    DETACH = "DETACH"        # recurring -> single
    REPLACE = "REPLACE"      # recurring -> recurring, pattern changed
    UNCHANGED = "UNCHANGED"  # recurring -> recurring, same pattern


@dataclass(frozen=True)
class MutationPlan:
    """What the persistence layer has to do with the plan's recurrence state."""

    transition: Transition
    new_rule: Optional[RecurrenceRule]
    collections_to_clear: FrozenSet[str] = frozenset()

    @property
    def is_recurring(self) -> bool:
        return self.new_rule is not None

    def rule_changed(self, existing: Optional[RecurrenceRule]) -> bool:
        """True when the stored rule row has to be rewritten."""
        return self.new_rule != existing


class RecurrenceMutationPlanner:
    """State machine over (was recurring, requested recurring)."""

    def plan(
        self,
        existing_rule: Optional[RecurrenceRule],
        requested_is_recurring: Optional[bool],
        requested_rule: Optional[RecurrenceRule],
        plan_start: Optional[date] = None,
    ) -> MutationPlan:
        """
        Compute the mutation for one plan update (or creation).

        Args:
            existing_rule: Rule stored on the plan, None for single plans and creations
            requested_is_recurring: Flag from the request; None when not restated
            requested_rule: Rule from the request payload, if any; its exceptions replace the stored ones
            plan_start: Plan start date after the update; kept rules are rebased onto it

        Returns:
            MutationPlan describing the transition

        Raises:
            MalformedRuleError: If the request asks for a recurring plan without any rule
        """
        was_recurring = existing_rule is not None

        if requested_is_recurring is False:
            if not was_recurring:
                return MutationPlan(Transition.NONE, None)
            logger.info("Recurrence removed, dropping rule and all sub-collections")
            return MutationPlan(Transition.DETACH, None, ALL_COLLECTIONS)

        if not was_recurring:
            if requested_is_recurring is None:
                if requested_rule is not None:
                    logger.warning("Recurrence payload sent for a single plan without is_recurring, ignoring it")
                return MutationPlan(Transition.NONE, None)
            if requested_rule is None:
                raise MalformedRuleError("is_recurring requested without a recurrence rule")
            logger.info(f"Attaching new {requested_rule.unit.value} rule")
            return MutationPlan(Transition.ATTACH, requested_rule)

        # recurring -> recurring
        if requested_rule is None:
            return MutationPlan(Transition.UNCHANGED, self._rebase(existing_rule, plan_start))

        if requested_rule.same_pattern(existing_rule):
            logger.info("Recurrence pattern unchanged")
            kept = existing_rule.rebased(
                plan_start or existing_rule.rule_start_date, requested_rule.rule_end_date
            ).with_exceptions(requested_rule.exception_dates)
            return MutationPlan(Transition.UNCHANGED, kept)

        if requested_rule.unit != existing_rule.unit:
            logger.info(f"Repeat unit changed: {existing_rule.unit.value} -> {requested_rule.unit.value}")
        else:
            logger.info(f"{existing_rule.unit.value} rule details changed")

        return MutationPlan(Transition.REPLACE, requested_rule, existing_rule.unit_collections())

    @staticmethod
    def _rebase(rule: RecurrenceRule, plan_start: Optional[date]) -> RecurrenceRule:
        if plan_start is None or plan_start == rule.rule_start_date:
            return rule
        if rule.rule_end_date is not None and rule.rule_end_date < plan_start:
            raise MalformedRuleError("plan start moved past the recurrence end date")
        return rule.rebased(plan_start, rule.rule_end_date)


mutation_planner = RecurrenceMutationPlanner()


def plan_mutation(
    existing_rule: Optional[RecurrenceRule],
    requested_is_recurring: Optional[bool],
    requested_rule: Optional[RecurrenceRule],
    plan_start: Optional[date] = None,
) -> MutationPlan:
    """Module-level shortcut over the default planner."""
    return mutation_planner.plan(existing_rule, requested_is_recurring, requested_rule, plan_start)
