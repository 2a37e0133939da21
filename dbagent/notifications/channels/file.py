"""
FileChannel — always-on record that appends to ~/.dbagent/notifications.log.
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path

from dbagent.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)


class FileChannel(NotificationChannel):
    """
    Appends notifications to a plain-text log file.

    Always active — acts as a silent fallback and permanent record.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = (log_path or (Path.home() / ".dbagent" / "notifications.log")).expanduser()

    @property
    def name(self) -> str:
        return "file"

    @property
    def is_active(self) -> bool:
        return True

    async def deliver(self, notification: Notification) -> bool:
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            ts = datetime.datetime.fromtimestamp(notification.fired_at).strftime(
                "%Y-%m-%d %H:%M:%S"
            )
            entry = (
                f"[{ts}] [{notification.level.value.upper()}] "
                f"[{notification.connection.name} / {notification.schedule.playbook}]\n"
                f"{notification.title}\n\n"
                f"{notification.message}\n"
                f"{'─' * 60}\n"
            )
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(entry)
            return True
        except OSError as e:
            logger.warning(f"FileChannel write failed: {e}")
            return False
