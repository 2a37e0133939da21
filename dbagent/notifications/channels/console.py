"""
ConsoleChannel — prints notifications to the terminal running `dbagent serve`
or `dbagent tick`. Only used when no external channel delivered.
"""

from __future__ import annotations

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from dbagent.monitoring.models import NotificationLevel
from dbagent.notifications.base import Notification, NotificationChannel

_STYLE = {
    NotificationLevel.INFO: "green",
    NotificationLevel.WARNING: "yellow",
    NotificationLevel.ALERT: "red",
}


class ConsoleChannel(NotificationChannel):
    def __init__(self, console: Console | None = None, active: bool = True) -> None:
        self._console = console or Console()
        self._active = active

    @property
    def name(self) -> str:
        return "console"

    @property
    def is_active(self) -> bool:
        return self._active

    def set_active(self, active: bool) -> None:
        self._active = active

    async def deliver(self, notification: Notification) -> bool:
        if not self._active:
            return False
        style = _STYLE[notification.level]
        self._console.print(
            Panel(
                Markdown(notification.message),
                title=f"[{style}]{notification.level.value.upper()}[/{style}] {notification.title}",
                subtitle=f"{notification.connection.name} · {notification.schedule.playbook}",
                border_style=style,
            )
        )
        return True
