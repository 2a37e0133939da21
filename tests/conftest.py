"""Shared test fixtures for dbagent."""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from dbagent.core.config import DBAgentConfig, MonitoringConfig
from dbagent.llm.mock import MockLLMProvider
from dbagent.monitoring.models import Connection, Project, Schedule
from dbagent.skills.base import FunctionSkill, tool
from dbagent.skills.builtin.playbooks import make_playbook_skill
from dbagent.skills.manager import SkillManager
from dbagent.store.database import Database
from dbagent.store.schedules import ScheduleStore

# 2024-01-01 10:00:00 UTC
NOW = 1704103200.0


class RecordingSink:
    """NotificationSink that remembers what it was asked to send."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[dict] = []
        self._fail = fail

    async def notify(self, schedule, connection, level, title, message, run=None) -> bool:
        self.calls.append(
            {
                "schedule": schedule,
                "connection": connection,
                "level": level,
                "title": title,
                "message": message,
                "run": run,
            }
        )
        if self._fail:
            raise RuntimeError("webhook down")
        return True


@tool(name="getSlowQueries", description="Get the slow queries")
async def fake_slow_queries() -> str:
    return '[{"query": "SELECT * FROM orders", "mean_exec_time": 4200}]'


def fake_tools_factory(opened: list | None = None):
    """Tools factory that never touches a real target database."""

    @asynccontextmanager
    async def factory(connection, registry):
        if opened is not None:
            opened.append(connection.id)
        manager = SkillManager()
        manager.register(FunctionSkill("postgres", "Fake postgres", [fake_slow_queries]))
        manager.register(make_playbook_skill(registry))
        yield manager

    return factory


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return DBAgentConfig()


@pytest.fixture
def monitoring_config():
    return MonitoringConfig(max_parallel_runs=20, timeout_for_running_schedule_secs=900)


@pytest.fixture
def mock_llm():
    """Create a mock LLM provider."""
    return MockLLMProvider()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)


@pytest.fixture
async def database(tmp_path):
    db = Database(tmp_path / "dbagent.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def admin_store(database):
    return ScheduleStore(database.admin())


@pytest.fixture
async def seeded(admin_store):
    """A project with one default connection, owned by alice."""
    project = await admin_store.create_project(Project(name="shop", user_id="alice"))
    connection = await admin_store.create_connection(
        Connection(
            name="shop-prod",
            project_id=project.id,
            user_id="alice",
            connection_string="postgresql://localhost/shop",
            is_default=True,
        )
    )
    return project, connection


@pytest.fixture
def make_schedule(admin_store, seeded):
    """Factory: insert a schedule on the seeded connection."""
    project, connection = seeded

    async def _make(now: float = NOW, **overrides) -> Schedule:
        fields = dict(
            user_id="alice",
            project_id=project.id,
            connection_id=connection.id,
            playbook="investigateSlowQueries",
            cron_expression="0 0 * * *",
            notify_level="warning",
        )
        fields.update(overrides)
        return await admin_store.create_schedule(Schedule(**fields), now=now)

    return _make


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_tools():
    return fake_tools_factory()


@pytest.fixture
def queue_run():
    """Queue the three replies of a one-step run: playbook, classification, summary."""

    def _queue(llm: MockLLMProvider, level: str = "info", summary: str = "All good") -> None:
        llm.set_response("Checked slow queries, nothing unusual.")
        llm.set_json({"summary": summary, "notificationLevel": level})
        llm.set_response("## Report\n\nEverything looks healthy.")

    return _queue
