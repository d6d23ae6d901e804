"""Tests for the recurrence mutation planner."""
from datetime import date

import pytest

from app.recurrence.mutation import ALL_COLLECTIONS, Transition, plan_mutation
from app.recurrence.rule import MalformedRuleError, RecurrenceRule, RepeatUnit, Weekday

START = date(2025, 7, 7)


def weekly(**kwargs):
    kwargs.setdefault("weekdays", [Weekday.MONDAY, Weekday.WEDNESDAY])
    return RecurrenceRule(unit=RepeatUnit.WEEKLY, rule_start_date=START, **kwargs)


def monthly_day(day=15, **kwargs):
    return RecurrenceRule(unit=RepeatUnit.MONTHLY, rule_start_date=START, day_of_month=day, **kwargs)


class TestFromSinglePlan:
    """Transitions starting from a plan without a rule."""

    def test_single_stays_single(self):
        mutation = plan_mutation(None, False, None)

        assert mutation.transition is Transition.NONE
        assert mutation.new_rule is None
        assert mutation.collections_to_clear == frozenset()

    def test_attach(self):
        rule = weekly()
        mutation = plan_mutation(None, True, rule, START)

        assert mutation.transition is Transition.ATTACH
        assert mutation.new_rule == rule
        assert mutation.is_recurring

    def test_recurring_flag_without_rule_is_malformed(self):
        with pytest.raises(MalformedRuleError):
            plan_mutation(None, True, None)

    def test_payload_without_flag_is_ignored(self):
        mutation = plan_mutation(None, None, weekly())

        assert mutation.transition is Transition.NONE
        assert not mutation.is_recurring


class TestFromRecurringPlan:
    """Transitions starting from a plan that already repeats."""

    def test_detach_clears_everything(self):
        mutation = plan_mutation(weekly(), False, None)

        assert mutation.transition is Transition.DETACH
        assert mutation.new_rule is None
        assert mutation.collections_to_clear == ALL_COLLECTIONS

    def test_weekly_to_monthly_clears_weekdays(self):
        mutation = plan_mutation(weekly(), None, monthly_day(), START)

        assert mutation.transition is Transition.REPLACE
        assert mutation.new_rule.unit is RepeatUnit.MONTHLY
        assert mutation.new_rule.weekdays == frozenset()
        assert mutation.collections_to_clear == {"weekdays"}

    def test_week_positions_to_day_of_month_clears_both(self):
        existing = RecurrenceRule(unit=RepeatUnit.MONTHLY, rule_start_date=START,
                                  weeks_of_month=[2], weekdays=[Weekday.TUESDAY])

        mutation = plan_mutation(existing, True, monthly_day(), START)

        assert mutation.transition is Transition.REPLACE
        assert mutation.new_rule.weeks_of_month == frozenset()
        assert mutation.collections_to_clear == {"weekdays", "weeks_of_month"}

    def test_replace_takes_requested_exceptions(self):
        existing = weekly(exception_dates=[date(2025, 7, 14)])

        mutation = plan_mutation(existing, None, monthly_day(exception_dates=[date(2025, 9, 15)]), START)

        assert mutation.new_rule.exception_dates == {date(2025, 9, 15)}

    def test_replace_can_drop_all_exceptions(self):
        existing = weekly(exception_dates=[date(2025, 7, 21)])

        mutation = plan_mutation(existing, True, weekly(interval=2), START)

        assert mutation.transition is Transition.REPLACE
        assert mutation.new_rule.exception_dates == frozenset()

    def test_same_pattern_keeps_rule_with_new_end(self):
        existing = weekly(exception_dates=[date(2025, 7, 14)])
        requested = weekly(rule_end_date=date(2025, 12, 31), exception_dates=[date(2025, 7, 14)])

        mutation = plan_mutation(existing, True, requested, START)

        assert mutation.transition is Transition.UNCHANGED
        assert mutation.new_rule.rule_end_date == date(2025, 12, 31)
        assert mutation.new_rule.exception_dates == {date(2025, 7, 14)}
        assert mutation.collections_to_clear == frozenset()

    def test_same_pattern_adds_requested_exception(self):
        mutation = plan_mutation(weekly(), True, weekly(exception_dates=[date(2025, 7, 21)]), START)

        assert mutation.transition is Transition.UNCHANGED
        assert mutation.new_rule.exception_dates == {date(2025, 7, 21)}
        assert mutation.rule_changed(weekly())

    def test_same_pattern_removes_exception(self):
        existing = weekly(exception_dates=[date(2025, 7, 14), date(2025, 7, 21)])

        mutation = plan_mutation(existing, None, weekly(exception_dates=[date(2025, 7, 21)]), START)

        assert mutation.new_rule.exception_dates == {date(2025, 7, 21)}

    def test_no_payload_keeps_rule(self):
        existing = weekly()

        mutation = plan_mutation(existing, None, None, START)

        assert mutation.transition is Transition.UNCHANGED
        assert mutation.new_rule == existing
        assert not mutation.rule_changed(existing)

    def test_moved_plan_start_rebases_rule(self):
        existing = weekly()

        mutation = plan_mutation(existing, None, None, date(2025, 8, 4))

        assert mutation.transition is Transition.UNCHANGED
        assert mutation.new_rule.rule_start_date == date(2025, 8, 4)
        assert mutation.rule_changed(existing)

    def test_start_moved_past_end_is_malformed(self):
        existing = weekly(rule_end_date=date(2025, 7, 31))

        with pytest.raises(MalformedRuleError):
            plan_mutation(existing, None, None, date(2025, 8, 4))

    def test_interval_change_is_replace(self):
        mutation = plan_mutation(weekly(), None, weekly(interval=2), START)

        assert mutation.transition is Transition.REPLACE
        assert mutation.new_rule.interval == 2
