"""
NotificationRouter — decides which channels receive each notification.

Routing logic:

    1. Try all active EXTERNAL channels (Slack, …).
    2. If no external channel delivered AND the console is active → console.
    3. ALWAYS write to the file log (silent, non-interactive record).

The router is the NotificationSink the monitoring runner talks to:
notify() builds the Notification and routes it, and never raises.
"""

from __future__ import annotations

import logging
from typing import Protocol

from dbagent.monitoring.models import Connection, NotificationLevel, Run, Schedule
from dbagent.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def notify(
        self,
        schedule: Schedule,
        connection: Connection,
        level: NotificationLevel,
        title: str,
        message: str,
        run: Run | None = None,
    ) -> bool: ...


class NotificationRouter:
    """
    Routes notifications to the appropriate channel(s).

    Usage:
        router = NotificationRouter()
        router.register(SlackWebhookChannel(store, default_url, public_url))
        router.register(ConsoleChannel(console))
        router.register(FileChannel())

        await router.notify(schedule, connection, level, title, message, run)
    """

    def __init__(self) -> None:
        self._channels: list[NotificationChannel] = []

    def register(self, channel: NotificationChannel) -> None:
        """Register a channel. Order of registration doesn't affect routing."""
        self._channels.append(channel)
        logger.debug(f"Notification channel registered: {channel.name}")

    def unregister(self, name: str) -> None:
        self._channels = [c for c in self._channels if c.name != name]

    @property
    def channel_names(self) -> list[str]:
        return [c.name for c in self._channels]

    async def notify(
        self,
        schedule: Schedule,
        connection: Connection,
        level: NotificationLevel,
        title: str,
        message: str,
        run: Run | None = None,
    ) -> bool:
        notification = Notification(
            schedule=schedule,
            connection=connection,
            level=NotificationLevel(level),
            title=title,
            message=message,
            run=run,
        )
        return await self.route(notification)

    async def route(self, notification: Notification) -> bool:
        """
        Deliver the notification according to the priority rules above.

        Returns True if any interactive channel (external or console)
        delivered it. Never raises — failures are logged and swallowed.
        """
        external_channels = [c for c in self._channels if c.is_external]
        local_channels = [c for c in self._channels if not c.is_external and c.name != "file"]
        file_channels = [c for c in self._channels if c.name == "file"]

        # ── Step 1: Try external platforms ────────────────────────────────────
        delivered = False
        for channel in external_channels:
            if not channel.is_active:
                continue
            if await self._deliver(channel, notification):
                delivered = True

        # ── Step 2: Console fallback (only if no external delivery) ───────────
        if not delivered:
            for channel in local_channels:
                if not channel.is_active:
                    continue
                if await self._deliver(channel, notification):
                    delivered = True

        # ── Step 3: Always log to file ─────────────────────────────────────────
        for channel in file_channels:
            await self._deliver(channel, notification)

        if not delivered:
            logger.info(
                f"Notification for schedule {notification.schedule.id} "
                f"({notification.level.value}) reached no interactive channel"
            )
        return delivered

    @staticmethod
    async def _deliver(channel: NotificationChannel, notification: Notification) -> bool:
        try:
            ok = await channel.deliver(notification)
        except Exception as e:
            logger.warning(f"Channel {channel.name} delivery failed: {e}")
            return False
        if ok:
            logger.debug(f"Notification delivered via {channel.name}")
        return bool(ok)
