"""Plan service: CRUD over plans with recurrence expansion and month caching."""
import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import Session, select

from app.dapr.client import dapr_publisher
from app.models.plan import AlarmStatus, Plan, PlanAlarm, RecurringInfo
from app.recurrence import (
    MalformedRuleError,
    MutationPlan,
    Occurrence,
    Transition,
    affected_months,
    eviction_span,
    months_to_evict,
    occurrence_expander,
    plan_mutation,
)
from app.schemas.plan import AlarmReq, PlanCreate, PlanUpdate
from app.services.errors import InvalidPlanOperationError, PlanConflictError, PlanNotFoundError
from app.services.plan_cache_service import PlanCacheService, plan_cache
from app.utils.metrics import metrics_collector

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100

# Columns a partial update may not null out
REQUIRED_FIELDS = ("name", "start_date", "end_date", "start_time", "end_time")


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last day of a month."""
    if not 1 <= month <= 12 or not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidPlanOperationError(
            "INVALID_MONTH",
            f"Unsupported month {year}-{month}",
            {"year": year, "month": month},
        )
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def occurrence_view(occurrence: Occurrence) -> Dict[str, Any]:
    """JSON-ready view of one occurrence, as stored in the month cache."""
    plan = occurrence.plan
    rule = plan.recurrence
    return {
        "plan_id": plan.id,
        "name": plan.name,
        "content": plan.content,
        "location": plan.location,
        "start_date": occurrence.start_date.isoformat(),
        "end_date": occurrence.end_date.isoformat(),
        "start_time": plan.start_time.isoformat(),
        "end_time": plan.end_time.isoformat(),
        "is_recurring": plan.is_recurring,
        "repeat_description": rule.describe() if rule is not None else None,
        "version": plan.version,
    }


class PlanService:
    """Service class for plan CRUD with recurrence handling and cache invalidation."""

    def __init__(self, session: Session, cache: Optional[PlanCacheService] = None, publisher=None):
        self.session = session
        self.cache = cache if cache is not None else plan_cache
        self.publisher = publisher if publisher is not None else dapr_publisher

    # ---- reads ----------------------------------------------------------

    def get_plan(self, plan_id: int, user_id: str) -> Plan:
        """Get a specific plan by ID, ensuring user ownership."""
        statement = select(Plan).where(Plan.id == plan_id).where(Plan.user_id == user_id)
        plan = self.session.exec(statement).first()
        if plan is None:
            raise PlanNotFoundError(plan_id, user_id)
        return plan

    def find_month_candidates(self, user_id: str, month_start: date, month_end: date) -> List[Plan]:
        """Plans that may have an occurrence in the month: overlapping singles and started recurring plans."""
        statement = select(Plan).where(Plan.user_id == user_id).where(
            or_(
                and_(Plan.is_recurring == False, Plan.start_date <= month_end, Plan.end_date >= month_start),  # noqa: E712
                and_(Plan.is_recurring == True, Plan.start_date <= month_end),  # noqa: E712
            )
        )
        return list(self.session.exec(statement).all())

    def get_month_plans(self, user_id: str, year: int, month: int) -> List[Dict[str, Any]]:
        """
        Occurrences of a user's plans in one month, served cache-aside.

        Returns:
            Occurrence views ordered by start date, start time and plan id
        """
        month_start, month_end = month_bounds(year, month)

        cached = self.cache.get(user_id, year, month)
        if cached is not None:
            metrics_collector.cache_hit()
            logger.debug(f"Month cache hit for user {user_id} {year}-{month:02d}")
            return cached
        metrics_collector.cache_miss()

        occurrences: List[Occurrence] = []
        for plan in self.find_month_candidates(user_id, month_start, month_end):
            if plan.recurrence is None:
                occurrences.append(Occurrence.of(plan))
            else:
                occurrences.extend(occurrence_expander.expand(plan, month_start, month_end))

        occurrences.sort(key=lambda o: (o.start_date, o.plan.start_time, o.plan.id))
        views = [occurrence_view(o) for o in occurrences]
        self.cache.set(user_id, year, month, views)
        logger.info(f"Built month view for user {user_id} {year}-{month:02d}: {len(views)} occurrences")
        return views

    # ---- writes ---------------------------------------------------------

    def create_plan(self, user_id: str, data: PlanCreate) -> Plan:
        """Create a plan, its recurrence row and its alarms."""
        now = datetime.utcnow()
        plan = Plan(
            user_id=user_id,
            name=data.name,
            content=data.content,
            location=data.location,
            start_date=data.start_date,
            end_date=data.end_date,
            start_time=data.start_time,
            end_time=data.end_time,
            is_recurring=False,
            created_at=now,
            updated_at=now,
        )
        requested_rule = self._requested_rule(data.recurrence, data.start_date)
        mutation = plan_mutation(None, data.is_recurring, requested_rule, data.start_date)
        if mutation.new_rule is not None:
            plan.recurring_info = RecurringInfo.from_rule(mutation.new_rule)
        plan.is_recurring = mutation.is_recurring
        plan.alarms = self._build_alarms(plan, data.alarms)

        self.session.add(plan)
        self.session.commit()
        self.session.refresh(plan)

        self._evict(user_id, eviction_span(plan))
        metrics_collector.increment_counter("plans_created_total")
        logger.info(f"Created plan {plan.id} for user {user_id} ({mutation.transition.value})")
        self.publisher.publish_plan_created(self._event_data(plan))
        return plan

    def update_plan(self, plan_id: int, user_id: str, changes: PlanUpdate) -> Plan:
        """
        Partially update a plan.

        The recurrence transition is decided by the mutation planner; a changed
        rule replaces the stored RecurringInfo row instead of patching it.

        Raises:
            PlanNotFoundError: Plan missing or owned by someone else
            PlanConflictError: ``changes.version`` is stale or a concurrent write won
            InvalidPlanOperationError: Resulting plan or rule is inconsistent
        """
        plan = self.get_plan(plan_id, user_id)
        self._check_version(plan, changes.version)

        before_span = eviction_span(plan)
        existing_rule = plan.recurrence
        old_start = plan.start_date

        fields = {
            key: value
            for key, value in changes.model_dump(
                exclude_unset=True, exclude={"version", "is_recurring", "recurrence", "alarms"}
            ).items()
            if value is not None or key not in REQUIRED_FIELDS
        }
        new_start = fields.get("start_date", plan.start_date)
        self._check_time_span(
            new_start,
            fields.get("start_time", plan.start_time),
            fields.get("end_date", plan.end_date),
            fields.get("end_time", plan.end_time),
        )

        requested_rule = self._requested_rule(changes.recurrence, new_start, existing_rule)
        try:
            mutation = plan_mutation(existing_rule, changes.is_recurring, requested_rule, new_start)
        except MalformedRuleError as e:
            raise InvalidPlanOperationError("MALFORMED_RULE", str(e)) from e

        try:
            # Rule row swap flushes before any column change so the version bumps once
            self._apply_mutation(plan, existing_rule, mutation)
            for key, value in fields.items():
                setattr(plan, key, value)
            if changes.alarms is not None:
                plan.alarms = self._build_alarms(plan, changes.alarms)
            elif plan.start_date != old_start:
                self._shift_pending_alarms(plan, plan.start_date - old_start)
            plan.updated_at = datetime.utcnow()
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            metrics_collector.increment_counter("plan_conflicts_total")
            raise PlanConflictError(plan_id, changes.version) from e
        except InvalidPlanOperationError:
            self.session.rollback()
            raise
        self.session.refresh(plan)

        self._evict(user_id, before_span, eviction_span(plan))
        metrics_collector.increment_counter("plans_updated_total")
        logger.info(f"Updated plan {plan.id} for user {user_id} ({mutation.transition.value}), version {plan.version}")
        self.publisher.publish_plan_updated(self._event_data(plan, transition=mutation.transition.value))
        return plan

    def delete_plan(self, plan_id: int, user_id: str, version: Optional[int] = None) -> None:
        """Delete a plan with all its occurrences, recurrence row and alarms."""
        plan = self.get_plan(plan_id, user_id)
        self._check_version(plan, version)
        span = eviction_span(plan)
        event_data = self._event_data(plan)

        try:
            self.session.delete(plan)
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            metrics_collector.increment_counter("plan_conflicts_total")
            raise PlanConflictError(plan_id, version) from e

        self._evict(user_id, span)
        metrics_collector.increment_counter("plans_deleted_total")
        logger.info(f"Deleted plan {plan_id} for user {user_id}")
        self.publisher.publish_plan_deleted(event_data)

    def delete_occurrence(self, plan_id: int, user_id: str, occurrence_date: date,
                          version: Optional[int] = None) -> Plan:
        """Remove a single occurrence of a recurring plan by adding it to the exception dates."""
        plan = self.get_plan(plan_id, user_id)
        self._check_version(plan, version)
        rule = plan.recurrence
        if rule is None:
            raise InvalidPlanOperationError(
                "NOT_RECURRING",
                f"Plan {plan_id} is not recurring, delete the plan instead",
                {"plan_id": plan_id},
            )
        if not occurrence_expander.expand(plan, occurrence_date, occurrence_date):
            raise InvalidPlanOperationError(
                "NOT_AN_OCCURRENCE",
                f"Plan {plan_id} has no occurrence on {occurrence_date.isoformat()}",
                {"plan_id": plan_id, "date": occurrence_date.isoformat()},
            )

        mutation = MutationPlan(Transition.UNCHANGED, rule.with_exception(occurrence_date))
        try:
            # Pending alarms for this date are cancelled and rolled forward by the dispatcher
            self._apply_mutation(plan, rule, mutation)
            plan.updated_at = datetime.utcnow()
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            metrics_collector.increment_counter("plan_conflicts_total")
            raise PlanConflictError(plan_id, version) from e
        self.session.refresh(plan)

        occurrence = Occurrence.of(plan, occurrence_date)
        self.cache.evict_months(user_id, affected_months(occurrence.start_date, occurrence.end_date))
        metrics_collector.increment_counter("plans_updated_total")
        logger.info(f"Excluded {occurrence_date} from plan {plan_id} for user {user_id}")
        self.publisher.publish_plan_updated(
            self._event_data(plan, transition="EXCEPTION_ADDED", occurrence_date=occurrence_date.isoformat())
        )
        return plan

    # ---- helpers --------------------------------------------------------

    def _check_version(self, plan: Plan, expected: Optional[int]):
        if expected is not None and expected != plan.version:
            metrics_collector.increment_counter("plan_conflicts_total")
            raise PlanConflictError(plan.id, expected, plan.version)

    @staticmethod
    def _check_time_span(start_date: date, start_time: time, end_date: date, end_time: time):
        if (end_date, end_time) < (start_date, start_time):
            raise InvalidPlanOperationError(
                "INVALID_TIME_SPAN",
                "Plan must not end before it starts",
                {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )

    @staticmethod
    def _requested_rule(recurrence, start_date: date, existing_rule=None):
        if recurrence is None:
            return None
        try:
            rule = recurrence.to_rule(start_date)
        except MalformedRuleError as e:
            raise InvalidPlanOperationError("MALFORMED_RULE", str(e)) from e
        if recurrence.exception_dates is None and existing_rule is not None:
            rule = rule.with_exceptions(existing_rule.exception_dates)
        return rule

    def _apply_mutation(self, plan: Plan, existing_rule, mutation: MutationPlan):
        """
        Swap the plan's RecurringInfo row for the mutation's new rule.

        Collections are never cleared one by one: the replacement row is built
        from the new rule alone, so dropping the old row is what clears them.
        collections_to_clear is only reported in the log.
        """
        if mutation.rule_changed(existing_rule):
            if plan.recurring_info is not None:
                # Old row goes first: plan_id is unique on recurring_info
                plan.recurring_info = None
                self.session.flush()
            if mutation.new_rule is not None:
                plan.recurring_info = RecurringInfo.from_rule(mutation.new_rule)
            if mutation.collections_to_clear:
                logger.debug(f"Plan {plan.id}: cleared {sorted(mutation.collections_to_clear)}")
        plan.is_recurring = mutation.is_recurring

    def _build_alarms(self, plan: Plan, alarms: List[AlarmReq]) -> List[PlanAlarm]:
        built = []
        for alarm in alarms:
            lead = (plan.start_date - alarm.alarm_date).days
            if lead < 0:
                raise InvalidPlanOperationError(
                    "ALARM_AFTER_START",
                    "Alarm date must not be after the plan start date",
                    {"alarm_date": alarm.alarm_date.isoformat()},
                )
            built.append(PlanAlarm(alarm_date=alarm.alarm_date, alarm_time=alarm.alarm_time, lead_days=lead))
        return built

    @staticmethod
    def _shift_pending_alarms(plan: Plan, delta: timedelta):
        for alarm in plan.alarms:
            if alarm.status == AlarmStatus.PENDING.value:
                alarm.alarm_date = alarm.alarm_date + delta

    def _evict(self, user_id: str, *spans):
        """
        Evict the cached months covered by the plan's spans around a write.

        Each span comes from eviction_span(); None marks an unbounded recurring
        plan, whose occurrences may sit in any cached month of the user.
        """
        if any(span is None for span in spans):
            evicted = self.cache.evict_user(user_id)
        else:
            before, after = (spans + (None,))[:2]
            evicted = self.cache.evict_months(user_id, months_to_evict(before, after))
        metrics_collector.increment_counter("month_cache_evictions_total", evicted)

    @staticmethod
    def _event_data(plan: Plan, **extra) -> Dict[str, Any]:
        data = {
            "plan_id": plan.id,
            "user_id": plan.user_id,
            "name": plan.name,
            "start_date": plan.start_date.isoformat(),
            "end_date": plan.end_date.isoformat(),
            "is_recurring": plan.is_recurring,
            "version": plan.version,
        }
        data.update(extra)
        return data
