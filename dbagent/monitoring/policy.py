"""
Severity policy — what a classified run outcome causes beyond the Run record.

    alert                 → the schedule's failure counter goes up
    level >= notify_level → a notification is sent

Both are best-effort: a failure count that cannot be written, or a
notification that cannot be delivered, is logged and dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dbagent.monitoring.models import Connection, NotificationLevel, Run, Schedule

if TYPE_CHECKING:
    from dbagent.notifications.router import NotificationSink
    from dbagent.store.schedules import ScheduleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyOutcome:
    counted_failure: bool
    notified: bool


def should_count_failure(level: NotificationLevel | str) -> bool:
    return NotificationLevel(level) == NotificationLevel.ALERT


def should_notify(level: NotificationLevel | str, notify_level: NotificationLevel | str) -> bool:
    return NotificationLevel(level).at_least(notify_level)


async def apply_severity_policy(
    schedule: Schedule,
    connection: Connection,
    run: Run,
    store: ScheduleStore,
    sink: NotificationSink,
) -> PolicyOutcome:
    level = NotificationLevel(run.notification_level)

    counted = False
    if should_count_failure(level):
        try:
            await store.increment_failures(schedule.id)
            counted = True
        except Exception as e:
            logger.error(f"Could not count failure for schedule {schedule.id}: {e}")

    notified = False
    if should_notify(level, schedule.notify_level):
        try:
            notified = await sink.notify(
                schedule,
                connection,
                level,
                title=run.summary,
                message=run.result,
                run=run,
            )
        except Exception as e:
            logger.error(f"Notification for schedule {schedule.id} failed: {e}")

    return PolicyOutcome(counted_failure=counted, notified=notified)
