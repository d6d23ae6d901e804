"""Alarm Scheduler Service: dispatches due plan alarms through the event publisher."""
import logging
import os
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from sqlmodel import Session, select

from app.dapr.client import dapr_publisher
from app.models.plan import AlarmStatus, Plan, PlanAlarm
from app.recurrence import Occurrence, occurrence_expander
from app.utils.metrics import metrics_collector

logger = logging.getLogger(__name__)

PLAN_TIMEZONE = os.environ.get("PLAN_TIMEZONE", "Asia/Seoul")
ENABLE_ALARM_JOBS = os.environ.get("ENABLE_ALARM_JOBS", "0") == "1"
ALARM_DISPATCH_INTERVAL_SECONDS = int(os.environ.get("ALARM_DISPATCH_INTERVAL_SECONDS", "60"))
MAX_ALARM_RETRIES = 3

scheduler: Optional[BackgroundScheduler] = None


def mask_phone_number(phone_number: Optional[str]) -> str:
    """01012345678 -> 0101***5678; anything too short is fully masked."""
    if not phone_number:
        return "<none>"
    if len(phone_number) < 8:
        return "*" * len(phone_number)
    return phone_number[:4] + "*" * (len(phone_number) - 8) + phone_number[-4:]


def local_now(tz_name: str = PLAN_TIMEZONE) -> datetime:
    """Naive wall-clock time in the plan time zone; plan dates and times are stored naive."""
    return datetime.now(pytz.timezone(tz_name)).replace(tzinfo=None)


class AlarmScheduler:
    """Service for dispatching alarms attached to single and recurring plans."""

    def __init__(self, db_session: Session, publisher=None):
        self.db = db_session
        self.publisher = publisher if publisher is not None else dapr_publisher

    def get_due_alarms(self, now: datetime) -> List[PlanAlarm]:
        """Pending alarms whose date and time are not after ``now``."""
        statement = select(PlanAlarm).where(
            PlanAlarm.status == AlarmStatus.PENDING.value,
            PlanAlarm.alarm_date <= now.date(),
        ).order_by(PlanAlarm.alarm_date, PlanAlarm.alarm_time)
        return [alarm for alarm in self.db.exec(statement).all() if alarm.alarm_datetime <= now]

    def target_occurrence(self, alarm: PlanAlarm, plan: Plan) -> Optional[Occurrence]:
        """The occurrence an alarm announces, or None if it no longer exists."""
        target = alarm.alarm_date + timedelta(days=alarm.lead_days)
        if plan.recurrence is None:
            return Occurrence.of(plan) if target == plan.start_date else None
        found = occurrence_expander.expand(plan, target, target)
        return found[0] if found else None

    def process_due_alarms(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Send every due alarm once.

        Args:
            now: Wall-clock time in the plan time zone; defaults to the current time

        Returns:
            Counts of sent, failed, retried and cancelled alarms
        """
        now = now or local_now()
        result = {"sent": 0, "failed": 0, "retried": 0, "cancelled": 0}

        for alarm in self.get_due_alarms(now):
            plan = alarm.plan
            occurrence = self.target_occurrence(alarm, plan)
            if occurrence is None:
                logger.info(f"Alarm {alarm.id} of plan {plan.id} has no matching occurrence, cancelling")
                alarm.status = AlarmStatus.CANCELLED.value
                alarm.failure_reason = "occurrence no longer exists"
                result["cancelled"] += 1
            else:
                result[self._send(alarm, plan, occurrence, now)] += 1

            if plan.recurrence is not None and alarm.status != AlarmStatus.PENDING.value:
                self._schedule_next(alarm, plan, now)

        self.db.commit()
        if any(result.values()):
            logger.info(f"Alarm dispatch at {now.isoformat()}: {result}")
        return result

    def _send(self, alarm: PlanAlarm, plan: Plan, occurrence: Occurrence, now: datetime) -> str:
        phone_number = plan.user.phone_number if plan.user is not None else None
        alarm_data = {
            "alarm_id": alarm.id,
            "plan_id": plan.id,
            "user_id": plan.user_id,
            "plan_name": plan.name,
            "location": plan.location,
            "occurrence_date": occurrence.start_date.isoformat(),
            "start_time": plan.start_time.isoformat(),
            "phone_number": phone_number,
        }
        try:
            self.publisher.publish_alarm_due(alarm_data)
        except Exception as e:
            alarm.retry_count += 1
            alarm.failure_reason = str(e)[:500]
            if alarm.retry_count >= MAX_ALARM_RETRIES:
                alarm.status = AlarmStatus.FAILED.value
                metrics_collector.increment_counter("alarms_failed_total")
                logger.error(f"Alarm {alarm.id} for {mask_phone_number(phone_number)} failed "
                             f"after {alarm.retry_count} attempts: {e}")
                return "failed"
            logger.warning(f"Alarm {alarm.id} for {mask_phone_number(phone_number)} failed, "
                           f"attempt {alarm.retry_count}: {e}")
            return "retried"

        alarm.status = AlarmStatus.SENT.value
        alarm.sent_at = now
        alarm.failure_reason = None
        metrics_collector.increment_counter("alarms_sent_total")
        logger.info(f"Alarm {alarm.id} for plan {plan.id} sent to {mask_phone_number(phone_number)}")
        return "sent"

    def _schedule_next(self, alarm: PlanAlarm, plan: Plan, now: datetime):
        """Queue the same alarm for the plan's next occurrence that can still be announced."""
        after = max(
            alarm.alarm_date + timedelta(days=alarm.lead_days + 1),
            now.date() + timedelta(days=alarm.lead_days),
        )
        following = occurrence_expander.next_occurrence(plan, after)
        if following is None:
            logger.info(f"Plan {plan.id} has no further occurrences, alarm chain ends")
            return
        next_alarm = PlanAlarm(
            alarm_date=following.start_date - timedelta(days=alarm.lead_days),
            alarm_time=alarm.alarm_time,
            lead_days=alarm.lead_days,
        )
        plan.alarms.append(next_alarm)
        logger.debug(f"Next alarm for plan {plan.id} on {next_alarm.alarm_date} {next_alarm.alarm_time}")


def dispatch_due_alarms(session_factory: Optional[Callable[[], Session]] = None) -> Dict[str, Any]:
    """Scheduler job entry point: one session per run."""
    if session_factory is None:
        from app.db.config import engine
        with Session(engine) as session:
            return AlarmScheduler(session).process_due_alarms()
    with session_factory() as session:
        return AlarmScheduler(session).process_due_alarms()


def start_alarm_scheduler() -> Optional[BackgroundScheduler]:
    """Start the background alarm dispatch job when ENABLE_ALARM_JOBS=1."""
    global scheduler
    if not ENABLE_ALARM_JOBS:
        logger.info("Alarm jobs disabled (ENABLE_ALARM_JOBS != 1)")
        return None
    if scheduler and scheduler.running:
        return scheduler
    scheduler = BackgroundScheduler(timezone=pytz.timezone(PLAN_TIMEZONE))
    scheduler.add_job(
        dispatch_due_alarms,
        "interval",
        seconds=ALARM_DISPATCH_INTERVAL_SECONDS,
        id="plan-alarm-dispatch",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Alarm scheduler started, every {ALARM_DISPATCH_INTERVAL_SECONDS}s in {PLAN_TIMEZONE}")
    return scheduler


def shutdown_alarm_scheduler():
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
    scheduler = None
