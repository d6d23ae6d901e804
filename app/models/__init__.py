"""Models package: importing it registers every table on SQLModel.metadata."""

from .user import User
from .plan import AlarmStatus, Plan, PlanAlarm, RecurringInfo

__all__ = ["AlarmStatus", "Plan", "PlanAlarm", "RecurringInfo", "User"]
