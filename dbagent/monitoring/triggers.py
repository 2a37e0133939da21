"""
Triggers — when is a schedule due, and when should it fire next.

Usage:
    next_ts = compute_next_run(schedule, now=time.time())
    if should_run(schedule, now, recovery_timeout=900): ...
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from croniter import croniter

from dbagent.core.errors import ConfigError
from dbagent.monitoring.models import Schedule, ScheduleStatus, ScheduleType

logger = logging.getLogger(__name__)


class Trigger(ABC):
    """Computes the next fire timestamp for a schedule."""

    @abstractmethod
    def next_fire_time(self, now: float) -> float:
        """Return the next unix timestamp at which the schedule should fire."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description, e.g. 'cron(0 0 * * *)'."""
        ...


class CronTrigger(Trigger):
    """
    Fires on a cron schedule, evaluated in UTC.

    expression: standard 5-field cron string, e.g. "0 9 * * 1-5"
    """

    def __init__(self, expression: str) -> None:
        validate_cron(expression)
        self._expression = expression

    def next_fire_time(self, now: float) -> float:
        # croniter treats a float base as UTC and returns strictly after it
        return croniter(self._expression, now).get_next(float)

    @property
    def description(self) -> str:
        return f"cron({self._expression})"


class IntervalTrigger(Trigger):
    """Fires `seconds` after the previous run."""

    def __init__(self, seconds: int) -> None:
        if seconds < 1:
            raise ConfigError("Interval must be at least 1 second")
        self._seconds = seconds

    def next_fire_time(self, now: float) -> float:
        return now + self._seconds

    @property
    def description(self) -> str:
        s = self._seconds
        if s % 3600 == 0:
            return f"every {s // 3600}h"
        if s % 60 == 0:
            return f"every {s // 60}m"
        return f"every {s}s"


def validate_cron(expression: str | None) -> str:
    """Return the expression if croniter accepts it, raise ConfigError otherwise."""
    if not expression or not croniter.is_valid(expression):
        raise ConfigError(f"Invalid cron expression: {expression!r}")
    return expression


def make_trigger(schedule: Schedule) -> Trigger | None:
    """
    Build the Trigger for a schedule, or None if it has no timing config.

    Raises ConfigError for a cron schedule with a bad expression.
    """
    if schedule.schedule_type == ScheduleType.CRON.value:
        return CronTrigger(schedule.cron_expression or "")
    if schedule.schedule_type == ScheduleType.AUTOMATIC.value and schedule.min_interval:
        return IntervalTrigger(int(schedule.min_interval))
    return None


def compute_next_run(schedule: Schedule, now: float) -> float:
    """
    Next fire time after `now`.

    cron      → next cron tick strictly after now
    automatic → now + min_interval
    otherwise → now (runs again on the next poll)
    """
    trigger = make_trigger(schedule)
    if trigger is None:
        return now
    return trigger.next_fire_time(now)


def describe(schedule: Schedule) -> str:
    try:
        trigger = make_trigger(schedule)
    except ConfigError:
        return f"invalid({schedule.cron_expression})"
    return trigger.description if trigger else "every tick"


def should_run(schedule: Schedule, now: float, recovery_timeout: float) -> bool:
    """
    Is the schedule eligible to run at `now`?

    A `running` schedule is only eligible again once `recovery_timeout`
    seconds have passed after its next_run; it is then treated as crashed.
    """
    if not schedule.enabled or schedule.next_run is None:
        return False

    if schedule.status == ScheduleStatus.SCHEDULED.value:
        return now >= schedule.next_run

    if schedule.status == ScheduleStatus.RUNNING.value:
        if now >= schedule.next_run + recovery_timeout:
            logger.warning(
                f"Schedule {schedule.id} has been running past the recovery timeout "
                f"({recovery_timeout}s), assuming it crashed and running it again"
            )
            return True
        return False

    return False
