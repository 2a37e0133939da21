"""
Notification primitives — Notification dataclass and NotificationChannel ABC.

Every delivery target (Slack, console, file log) implements
NotificationChannel. The NotificationRouter decides which ones fire.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from dbagent.monitoring.models import Connection, NotificationLevel, Run, Schedule


@dataclass
class Notification:
    """A classified playbook outcome on its way to a human."""

    schedule: Schedule
    connection: Connection
    level: NotificationLevel
    title: str           # the one-sentence summary
    message: str         # the long-form result
    run: Run | None = None
    fired_at: float = field(default_factory=time.time)

    @property
    def extra_text(self) -> str | None:
        return self.schedule.extra_notification_text


class NotificationChannel(ABC):
    """
    Abstract delivery target.

    The router calls is_active first — if False the channel is skipped
    entirely. deliver() returns True if the message was actually sent.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. 'slack', 'console', 'file'."""
        ...

    @property
    @abstractmethod
    def is_active(self) -> bool:
        """Whether this channel can currently receive notifications."""
        ...

    @property
    def is_external(self) -> bool:
        """
        External platforms (Slack, …) have higher routing priority than
        the local console. Override to True in those channels.
        """
        return False

    @abstractmethod
    async def deliver(self, notification: Notification) -> bool:
        """Attempt to deliver the notification."""
        ...
