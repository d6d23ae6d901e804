"""Tests for PlanService against an in-memory database."""
from datetime import date, time

import pytest
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import select

from app.models.plan import PlanAlarm, RecurringInfo
from app.schemas.plan import PlanCreate, PlanUpdate
from app.services.errors import InvalidPlanOperationError, PlanConflictError, PlanNotFoundError
from app.services.plan_service import PlanService, month_bounds
from app.utils.metrics import metrics_collector

MONDAY = date(2025, 7, 7)


def single_plan(**overrides):
    data = {
        "name": "Dentist",
        "start_date": date(2025, 8, 12),
        "end_date": date(2025, 8, 12),
        "start_time": time(10, 0),
        "end_time": time(11, 0),
    }
    data.update(overrides)
    return PlanCreate(**data)


def biweekly_plan(**overrides):
    data = {
        "name": "Standup",
        "start_date": MONDAY,
        "end_date": MONDAY,
        "start_time": time(9, 0),
        "end_time": time(9, 30),
        "is_recurring": True,
        "recurrence": {
            "repeat_unit": "WEEKLY",
            "repeat_interval": 2,
            "repeat_weekdays": ["MONDAY", "WEDNESDAY"],
        },
    }
    data.update(overrides)
    return PlanCreate(**data)


def dates_of(views):
    return [view["start_date"] for view in views]


@pytest.fixture
def service(session, cache, publisher, user):
    return PlanService(session, cache=cache, publisher=publisher)


class TestMonthView:
    """Month queries, expansion and caching."""

    def test_month_bounds(self):
        assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
        with pytest.raises(InvalidPlanOperationError):
            month_bounds(2025, 13)

    def test_single_and_recurring_plans_in_one_month(self, service, user):
        service.create_plan(user.id, single_plan())
        service.create_plan(user.id, biweekly_plan())

        views = service.get_month_plans(user.id, 2025, 8)

        assert dates_of(views) == ["2025-08-04", "2025-08-06", "2025-08-12", "2025-08-18", "2025-08-20"]
        assert views[0]["repeat_description"] == "Every 2 weeks on Mon, Wed"
        assert views[2]["repeat_description"] is None

    def test_plan_spanning_months_shows_in_both(self, service, user):
        service.create_plan(user.id, single_plan(start_date=date(2025, 3, 28), end_date=date(2025, 4, 3)))

        assert len(service.get_month_plans(user.id, 2025, 3)) == 1
        assert len(service.get_month_plans(user.id, 2025, 4)) == 1
        assert service.get_month_plans(user.id, 2025, 5) == []

    def test_second_read_is_served_from_cache(self, service, user, cache):
        service.create_plan(user.id, biweekly_plan())

        first = service.get_month_plans(user.id, 2025, 8)
        second = service.get_month_plans(user.id, 2025, 8)

        assert first == second
        assert cache.keys(user.id) == [f"monthly_plans:{user.id}:2025:8"]
        counters = metrics_collector.get_metrics()["counters"]
        assert counters["month_cache_misses_total"] == 1
        assert counters["month_cache_hits_total"] == 1

    def test_other_users_plans_are_invisible(self, service, user):
        service.create_plan(user.id, single_plan())

        assert service.get_month_plans("someone-else", 2025, 8) == []


class TestCreate:
    """Plan creation."""

    def test_recurring_plan_gets_rule_row(self, service, user, session, publisher):
        plan = service.create_plan(user.id, biweekly_plan())

        info = session.exec(select(RecurringInfo).where(RecurringInfo.plan_id == plan.id)).one()
        assert info.repeat_unit == "WEEKLY"
        assert info.repeat_weekdays == ["MONDAY", "WEDNESDAY"]
        assert info.start_date == MONDAY
        assert plan.version == 1
        assert publisher.of_type("plan.created")[0]["plan_id"] == plan.id

    def test_create_evicts_cached_month(self, service, user, cache):
        service.get_month_plans(user.id, 2025, 8)
        assert cache.keys(user.id)

        service.create_plan(user.id, single_plan())

        assert cache.keys(user.id) == []
        assert dates_of(service.get_month_plans(user.id, 2025, 8)) == ["2025-08-12"]

    def test_alarm_after_start_rejected(self, service, user):
        with pytest.raises(InvalidPlanOperationError):
            service.create_plan(user.id, single_plan(alarms=[{"alarm_date": "2025-08-13", "alarm_time": "09:00"}]))

    def test_alarm_lead_days(self, service, user):
        plan = service.create_plan(user.id, single_plan(alarms=[{"alarm_date": "2025-08-11", "alarm_time": "20:00"}]))

        assert [(a.alarm_date, a.lead_days) for a in plan.alarms] == [(date(2025, 8, 11), 1)]


class TestUpdate:
    """Partial updates and recurrence transitions."""

    def test_weekly_to_monthly_replaces_rule_row(self, service, user, session, cache):
        plan = service.create_plan(user.id, biweekly_plan())
        service.get_month_plans(user.id, 2025, 8)

        updated = service.update_plan(plan.id, user.id, PlanUpdate(
            recurrence={"repeat_unit": "MONTHLY", "repeat_day_of_month": 15},
        ))

        rows = session.exec(select(RecurringInfo)).all()
        assert len(rows) == 1
        assert rows[0].repeat_unit == "MONTHLY"
        assert rows[0].repeat_weekdays == []
        assert updated.version == 2
        assert cache.keys(user.id) == []
        assert dates_of(service.get_month_plans(user.id, 2025, 8)) == ["2025-08-15"]

    def test_detach_removes_rule_row(self, service, user, session):
        plan = service.create_plan(user.id, biweekly_plan())

        updated = service.update_plan(plan.id, user.id, PlanUpdate(is_recurring=False))

        assert not updated.is_recurring
        assert updated.recurrence is None
        assert session.exec(select(RecurringInfo)).all() == []
        assert dates_of(service.get_month_plans(user.id, 2025, 7)) == ["2025-07-07"]

    def test_attach_rule_to_single_plan(self, service, user):
        plan = service.create_plan(user.id, single_plan())

        updated = service.update_plan(plan.id, user.id, PlanUpdate(
            is_recurring=True,
            recurrence={"repeat_unit": "MONTHLY", "repeat_weeks_of_month": [-1], "repeat_weekdays": ["TUESDAY"]},
        ))

        assert updated.is_recurring
        assert dates_of(service.get_month_plans(user.id, 2025, 9)) == ["2025-09-30"]

    def test_recurring_flag_without_rule(self, service, user):
        plan = service.create_plan(user.id, single_plan())

        with pytest.raises(InvalidPlanOperationError):
            service.update_plan(plan.id, user.id, PlanUpdate(is_recurring=True))

    def test_moving_plan_evicts_old_and_new_months(self, service, user, cache):
        plan = service.create_plan(user.id, single_plan(start_date=date(2025, 3, 28), end_date=date(2025, 4, 3)))
        for month in (3, 4, 5, 6):
            service.get_month_plans(user.id, 2025, month)

        service.update_plan(plan.id, user.id, PlanUpdate(start_date=date(2025, 4, 25), end_date=date(2025, 5, 2)))

        assert cache.keys(user.id) == [f"monthly_plans:{user.id}:2025:6"]

    def test_stale_version_is_rejected(self, service, user):
        plan = service.create_plan(user.id, single_plan())
        service.update_plan(plan.id, user.id, PlanUpdate(name="Dentist 2", version=1))

        with pytest.raises(PlanConflictError) as excinfo:
            service.update_plan(plan.id, user.id, PlanUpdate(name="Dentist 3", version=1))

        assert excinfo.value.details["current_version"] == 2
        assert service.get_plan(plan.id, user.id).name == "Dentist 2"

    def test_concurrent_write_becomes_conflict(self, service, user, session, monkeypatch):
        plan = service.create_plan(user.id, single_plan())

        def lost_race():
            raise StaleDataError("version mismatch")

        monkeypatch.setattr(session, "commit", lost_race)

        with pytest.raises(PlanConflictError):
            service.update_plan(plan.id, user.id, PlanUpdate(name="Renamed"))
        assert metrics_collector.get_metrics()["counters"]["plan_conflicts_total"] == 1

    def test_end_before_start_rejected(self, service, user):
        plan = service.create_plan(user.id, single_plan())

        with pytest.raises(InvalidPlanOperationError):
            service.update_plan(plan.id, user.id, PlanUpdate(end_date=date(2025, 8, 1)))

    def test_start_moved_past_rule_end_rejected(self, service, user):
        plan = service.create_plan(user.id, biweekly_plan(recurrence={
            "repeat_unit": "WEEKLY", "repeat_weekdays": ["MONDAY"], "end_date": "2025-07-31",
        }))

        with pytest.raises(InvalidPlanOperationError):
            service.update_plan(plan.id, user.id, PlanUpdate(start_date=date(2025, 8, 4), end_date=date(2025, 8, 4)))

    def test_moving_start_shifts_pending_alarms(self, service, user):
        plan = service.create_plan(user.id, single_plan(alarms=[{"alarm_date": "2025-08-11", "alarm_time": "20:00"}]))

        updated = service.update_plan(plan.id, user.id, PlanUpdate(start_date=date(2025, 8, 14), end_date=date(2025, 8, 14)))

        assert [a.alarm_date for a in updated.alarms] == [date(2025, 8, 13)]

    def test_rule_update_without_exceptions_keeps_stored_ones(self, service, user):
        plan = service.create_plan(user.id, biweekly_plan())
        service.delete_occurrence(plan.id, user.id, date(2025, 8, 6))

        updated = service.update_plan(plan.id, user.id, PlanUpdate(recurrence={
            "repeat_unit": "WEEKLY", "repeat_interval": 2, "repeat_weekdays": ["MONDAY", "WEDNESDAY"],
            "end_date": "2025-12-31",
        }))

        assert updated.recurring_info.exception_dates == ["2025-08-06"]
        assert updated.recurrence.rule_end_date == date(2025, 12, 31)

    def test_sent_exception_dates_replace_stored_ones(self, service, user):
        plan = service.create_plan(user.id, biweekly_plan())
        service.delete_occurrence(plan.id, user.id, date(2025, 8, 6))
        recurrence = {
            "repeat_unit": "WEEKLY", "repeat_interval": 2, "repeat_weekdays": ["MONDAY", "WEDNESDAY"],
            "exception_dates": [],
        }

        updated = service.update_plan(plan.id, user.id, PlanUpdate(recurrence=recurrence))

        assert updated.recurring_info.exception_dates == []
        assert "2025-08-06" in dates_of(service.get_month_plans(user.id, 2025, 8))

    def test_unknown_plan(self, service, user):
        with pytest.raises(PlanNotFoundError):
            service.update_plan(999, user.id, PlanUpdate(name="x"))


class TestDelete:
    """Whole-plan and single-occurrence deletion."""

    def test_delete_plan_removes_children(self, service, user, session, publisher):
        plan = service.create_plan(user.id, biweekly_plan(alarms=[{"alarm_date": "2025-07-06", "alarm_time": "20:00"}]))
        plan_id = plan.id

        service.delete_plan(plan_id, user.id)

        with pytest.raises(PlanNotFoundError):
            service.get_plan(plan_id, user.id)
        assert session.exec(select(RecurringInfo)).all() == []
        assert session.exec(select(PlanAlarm)).all() == []
        assert publisher.of_type("plan.deleted")[0]["plan_id"] == plan_id

    def test_delete_other_users_plan(self, service, user):
        plan = service.create_plan(user.id, single_plan())

        with pytest.raises(PlanNotFoundError):
            service.delete_plan(plan.id, "intruder")

    def test_delete_one_occurrence(self, service, user, cache):
        plan = service.create_plan(user.id, biweekly_plan())
        service.get_month_plans(user.id, 2025, 8)
        service.get_month_plans(user.id, 2025, 9)

        updated = service.delete_occurrence(plan.id, user.id, date(2025, 8, 6))

        assert updated.recurring_info.exception_dates == ["2025-08-06"]
        assert cache.keys(user.id) == [f"monthly_plans:{user.id}:2025:9"]
        assert dates_of(service.get_month_plans(user.id, 2025, 8)) == ["2025-08-04", "2025-08-18", "2025-08-20"]

    def test_delete_date_that_is_not_an_occurrence(self, service, user):
        plan = service.create_plan(user.id, biweekly_plan())

        with pytest.raises(InvalidPlanOperationError) as excinfo:
            service.delete_occurrence(plan.id, user.id, date(2025, 8, 5))
        assert excinfo.value.code == "NOT_AN_OCCURRENCE"

    def test_delete_occurrence_of_single_plan(self, service, user):
        plan = service.create_plan(user.id, single_plan())

        with pytest.raises(InvalidPlanOperationError) as excinfo:
            service.delete_occurrence(plan.id, user.id, date(2025, 8, 12))
        assert excinfo.value.code == "NOT_RECURRING"
