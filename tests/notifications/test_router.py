"""Tests for dbagent/notifications/router.py and channel basics."""
from __future__ import annotations

import pytest

from dbagent.monitoring.models import Connection, NotificationLevel, Run, Schedule
from dbagent.notifications.base import Notification, NotificationChannel
from dbagent.notifications.router import NotificationRouter


# ── Helpers ──────────────────────────────────────────────────────────────────

def _make_notification(**kwargs) -> Notification:
    schedule = Schedule(
        user_id="alice",
        project_id="p1",
        connection_id="c1",
        playbook="generalMonitoring",
        cron_expression="0 * * * *",
        extra_notification_text="<@oncall>",
    )
    connection = Connection(
        name="shop-prod", project_id="p1", user_id="alice", connection_string="postgresql://x"
    )
    defaults = dict(
        schedule=schedule,
        connection=connection,
        level=NotificationLevel.ALERT,
        title="Connections near max_connections",
        message="## Findings\n\n**95%** of connections in use.",
    )
    defaults.update(kwargs)
    return Notification(**defaults)


class FakeChannel(NotificationChannel):
    """Controllable test channel."""

    def __init__(
        self,
        name: str,
        *,
        active: bool = True,
        external: bool = False,
        should_succeed: bool = True,
    ) -> None:
        self._name = name
        self._active = active
        self._external = external
        self._should_succeed = should_succeed
        self.delivered: list[Notification] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_external(self) -> bool:
        return self._external

    async def deliver(self, notification: Notification) -> bool:
        if self._should_succeed:
            self.delivered.append(notification)
        return self._should_succeed


# ── NotificationRouter ───────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestNotificationRouter:
    async def test_register_and_channel_names(self):
        router = NotificationRouter()
        router.register(FakeChannel("console"))
        router.register(FakeChannel("file"))
        assert set(router.channel_names) == {"console", "file"}

    async def test_unregister(self):
        router = NotificationRouter()
        router.register(FakeChannel("console"))
        router.register(FakeChannel("file"))
        router.unregister("console")
        assert "console" not in router.channel_names

    async def test_external_channel_used_first(self):
        """When external channel is active, it gets the notification."""
        ext = FakeChannel("slack", active=True, external=True)
        console = FakeChannel("console", active=True, external=False)
        file_ch = FakeChannel("file", active=True, external=False)

        router = NotificationRouter()
        router.register(ext)
        router.register(console)
        router.register(file_ch)

        assert await router.route(_make_notification()) is True

        assert len(ext.delivered) == 1
        assert len(console.delivered) == 0  # external delivered → console not used
        assert len(file_ch.delivered) == 1

    async def test_console_fallback_when_no_external(self):
        """When no external channel delivers, the console gets used."""
        console = FakeChannel("console", active=True, external=False)
        file_ch = FakeChannel("file", active=True, external=False)

        router = NotificationRouter()
        router.register(console)
        router.register(file_ch)

        await router.route(_make_notification())

        assert len(console.delivered) == 1

    async def test_failing_external_falls_back_to_console(self):
        """External channel that fails (returns False) → console fallback."""
        ext = FakeChannel("slack", active=True, external=True, should_succeed=False)
        console = FakeChannel("console", active=True, external=False)

        router = NotificationRouter()
        router.register(ext)
        router.register(console)

        await router.route(_make_notification())

        assert len(ext.delivered) == 0
        assert len(console.delivered) == 1

    async def test_only_file_is_not_delivered(self):
        """The file record alone does not count as reaching someone."""
        file_ch = FakeChannel("file", active=True, external=False)
        console = FakeChannel("console", active=False, external=False)

        router = NotificationRouter()
        router.register(file_ch)
        router.register(console)

        assert await router.route(_make_notification()) is False
        assert len(file_ch.delivered) == 1
        assert len(console.delivered) == 0

    async def test_no_channels_no_error(self):
        """Empty router should not raise."""
        assert await NotificationRouter().route(_make_notification()) is False

    async def test_channel_exception_does_not_crash_router(self):
        """A channel that raises should not crash routing."""

        class BrokenChannel(FakeChannel):
            async def deliver(self, notification: Notification) -> bool:
                raise RuntimeError("boom")

        broken = BrokenChannel("slack", active=True, external=True)
        console = FakeChannel("console", active=True, external=False)
        file_ch = FakeChannel("file", active=True, external=False)

        router = NotificationRouter()
        router.register(broken)
        router.register(console)
        router.register(file_ch)

        await router.route(_make_notification())  # must not raise

        # broken failed → console fallback
        assert len(console.delivered) == 1

    async def test_notify_builds_notification(self):
        console = FakeChannel("console")
        router = NotificationRouter()
        router.register(console)
        n = _make_notification()
        run = Run(
            schedule_id=n.schedule.id,
            project_id="p1",
            result="r",
            summary="s",
            notification_level="warning",
        )

        await router.notify(n.schedule, n.connection, "warning", "s", "r", run)

        delivered = console.delivered[0]
        assert delivered.level is NotificationLevel.WARNING
        assert delivered.title == "s"
        assert delivered.message == "r"
        assert delivered.run is run


# ── Notification dataclass ────────────────────────────────────────────────────

class TestNotification:
    def test_fields(self):
        n = _make_notification()
        assert n.extra_text == "<@oncall>"
        assert n.run is None
        assert n.fired_at > 0
