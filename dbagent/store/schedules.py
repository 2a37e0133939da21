"""
ScheduleStore — schedules and the projects, connections, playbooks and
integrations they hang off.

The scheduler's hot path is three statements:

    try_claim_running    UPDATE … SET status='running' WHERE status='scheduled'
    set_scheduled_state  write-back after every run, success or failure
    increment_failures   failures = failures + 1

Everything else is CRUD for the CLI.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from dbagent.core.errors import (
    ConfigError,
    ConnectionNotFoundError,
    NotFoundError,
    ScheduleNotFoundError,
)
from dbagent.monitoring.models import (
    CloudProvider,
    Connection,
    NotificationLevel,
    Project,
    Schedule,
    ScheduleStatus,
    ScheduleType,
)
from dbagent.monitoring.triggers import compute_next_run, validate_cron
from dbagent.playbooks.registry import Playbook
from dbagent.store.database import DataAccess

logger = logging.getLogger(__name__)

_SCHEDULE_COLUMNS = (
    "id", "user_id", "project_id", "connection_id", "playbook", "schedule_type",
    "cron_expression", "min_interval", "max_interval", "model", "enabled", "status",
    "last_run", "next_run", "failures", "keep_history", "max_steps", "notify_level",
    "additional_instructions", "extra_notification_text", "created_at",
)


class ScheduleStore:
    """
    Usage:
        store = ScheduleStore(database.as_user("alice"))
        schedule = await store.create_schedule(Schedule(...))

        if await store.try_claim_running(schedule.id):
            ...
    """

    def __init__(self, access: DataAccess) -> None:
        self._access = access
        self._db = access.database

    @property
    def access(self) -> DataAccess:
        return self._access

    def _project_scope(self, column: str = "project_id") -> tuple[str, list[Any]]:
        """Scope tables that are owned through their project."""
        if self._access.is_admin:
            return "", []
        return (
            f" AND {column} IN (SELECT id FROM projects WHERE user_id = ?)",
            [self._access.user_id],
        )

    # ━━━ Projects ━━━

    async def create_project(self, project: Project) -> Project:
        if project.cloud_provider not in {c.value for c in CloudProvider}:
            raise ConfigError(f"Unknown cloud provider: {project.cloud_provider!r}")
        self._check_owner(project.user_id)
        await self._db.execute(
            "INSERT INTO projects (id, user_id, name, cloud_provider, created_at) "
            "VALUES (:id, :user_id, :name, :cloud_provider, :created_at)",
            project.to_dict(),
        )
        return project

    async def get_project(self, project_id: str) -> Project:
        scope, params = self._access.owner_filter()
        row = await self._db.fetchone(
            f"SELECT * FROM projects WHERE id = ?{scope}", [project_id, *params]
        )
        if row is None:
            raise NotFoundError(f"Project {project_id} not found")
        return Project.from_dict(row)

    async def list_projects(self) -> list[Project]:
        scope, params = self._access.owner_filter()
        rows = await self._db.fetchall(
            f"SELECT * FROM projects WHERE 1=1{scope} ORDER BY created_at", params
        )
        return [Project.from_dict(r) for r in rows]

    # ━━━ Connections ━━━

    async def create_connection(self, connection: Connection) -> Connection:
        await self.get_project(connection.project_id)
        self._check_owner(connection.user_id)
        async with self._db.transaction() as db:
            if connection.is_default:
                await db.execute(
                    "UPDATE connections SET is_default = 0 WHERE project_id = ?",
                    (connection.project_id,),
                )
            await db.execute(
                "INSERT INTO connections "
                "(id, project_id, user_id, name, connection_string, is_default, created_at) "
                "VALUES (:id, :project_id, :user_id, :name, :connection_string, :is_default, :created_at)",
                {**connection.to_dict(), "is_default": int(connection.is_default)},
            )
        return connection

    async def get_connection(self, connection_id: str) -> Connection:
        scope, params = self._access.owner_filter()
        row = await self._db.fetchone(
            f"SELECT * FROM connections WHERE id = ?{scope}", [connection_id, *params]
        )
        if row is None:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return Connection.from_dict(row)

    async def get_connection_for_schedule(self, schedule: Schedule) -> Connection:
        return await self.get_connection(schedule.connection_id)

    async def list_connections(self, project_id: str | None = None) -> list[Connection]:
        scope, params = self._access.owner_filter()
        sql = f"SELECT * FROM connections WHERE 1=1{scope}"
        if project_id:
            sql += " AND project_id = ?"
            params.append(project_id)
        rows = await self._db.fetchall(sql + " ORDER BY created_at", params)
        return [Connection.from_dict(r) for r in rows]

    # ━━━ Schedules ━━━

    async def create_schedule(self, schedule: Schedule, now: float | None = None) -> Schedule:
        """
        Validate and insert a schedule.

        Enabled schedules start `scheduled` with next_run computed from now;
        disabled ones start `disabled` with no next_run.
        """
        self._validate(schedule)
        self._check_owner(schedule.user_id)
        connection = await self.get_connection(schedule.connection_id)
        if connection.project_id != schedule.project_id:
            raise ConfigError(
                f"Connection {connection.id} does not belong to project {schedule.project_id}"
            )

        now = now if now is not None else time.time()
        if schedule.enabled:
            schedule.status = ScheduleStatus.SCHEDULED.value
            schedule.next_run = compute_next_run(schedule, now)
        else:
            schedule.status = ScheduleStatus.DISABLED.value
            schedule.next_run = None

        row = {**schedule.to_dict(), "enabled": int(schedule.enabled)}
        columns = ", ".join(_SCHEDULE_COLUMNS)
        values = ", ".join(f":{c}" for c in _SCHEDULE_COLUMNS)
        await self._db.execute(f"INSERT INTO schedules ({columns}) VALUES ({values})", row)
        logger.info(f"Created schedule {schedule.id} ({schedule.playbook})")
        return schedule

    async def update_schedule(self, schedule: Schedule, now: float | None = None) -> Schedule:
        """Persist configuration changes; lifecycle fields are recomputed, not copied."""
        self._validate(schedule)
        current = await self.get_schedule(schedule.id)
        now = now if now is not None else time.time()

        next_run = compute_next_run(schedule, now) if schedule.enabled else None
        if not schedule.enabled:
            status = (
                ScheduleStatus.RUNNING.value
                if current.status == ScheduleStatus.RUNNING.value
                else ScheduleStatus.DISABLED.value
            )
        elif current.status == ScheduleStatus.RUNNING.value:
            status = ScheduleStatus.RUNNING.value
        else:
            status = ScheduleStatus.SCHEDULED.value

        scope, params = self._access.owner_filter()
        await self._db.execute(
            f"""
            UPDATE schedules SET
                playbook = ?, schedule_type = ?, cron_expression = ?,
                min_interval = ?, max_interval = ?, model = ?, enabled = ?,
                status = ?, next_run = ?, keep_history = ?, max_steps = ?,
                notify_level = ?, additional_instructions = ?, extra_notification_text = ?
            WHERE id = ?{scope}
            """,
            [
                schedule.playbook, schedule.schedule_type, schedule.cron_expression,
                schedule.min_interval, schedule.max_interval, schedule.model,
                int(schedule.enabled), status, next_run, schedule.keep_history,
                schedule.max_steps, schedule.notify_level, schedule.additional_instructions,
                schedule.extra_notification_text, schedule.id, *params,
            ],
        )
        return await self.get_schedule(schedule.id)

    async def get_schedule(self, schedule_id: str) -> Schedule:
        scope, params = self._access.owner_filter()
        row = await self._db.fetchone(
            f"SELECT * FROM schedules WHERE id = ?{scope}", [schedule_id, *params]
        )
        if row is None:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        return Schedule.from_dict(row)

    async def list_schedules(self, project_id: str | None = None) -> list[Schedule]:
        scope, params = self._access.owner_filter()
        sql = f"SELECT * FROM schedules WHERE 1=1{scope}"
        if project_id:
            sql += " AND project_id = ?"
            params.append(project_id)
        rows = await self._db.fetchall(sql + " ORDER BY created_at", params)
        return [Schedule.from_dict(r) for r in rows]

    async def set_enabled(self, schedule_id: str, enabled: bool, now: float | None = None) -> Schedule:
        """
        Turn a schedule on or off.

        Disabling a running schedule leaves it `running`; the run's
        write-back then parks it as disabled.
        """
        schedule = await self.get_schedule(schedule_id)
        scope, params = self._access.owner_filter()
        if enabled:
            now = now if now is not None else time.time()
            schedule.enabled = True
            next_run = compute_next_run(schedule, now)
            await self._db.execute(
                f"""
                UPDATE schedules SET
                    enabled = 1,
                    status = CASE WHEN status = 'running' THEN 'running' ELSE 'scheduled' END,
                    next_run = ?
                WHERE id = ?{scope}
                """,
                [next_run, schedule_id, *params],
            )
        else:
            await self._db.execute(
                f"""
                UPDATE schedules SET
                    enabled = 0,
                    status = CASE WHEN status = 'running' THEN 'running' ELSE 'disabled' END,
                    next_run = NULL
                WHERE id = ?{scope}
                """,
                [schedule_id, *params],
            )
        return await self.get_schedule(schedule_id)

    async def delete_schedule(self, schedule_id: str) -> bool:
        """Delete a schedule and, by cascade, its run history."""
        scope, params = self._access.owner_filter()
        deleted = await self._db.execute(
            f"DELETE FROM schedules WHERE id = ?{scope}", [schedule_id, *params]
        )
        return deleted > 0

    # ━━━ Scheduler state transitions ━━━

    async def try_claim_running(self, schedule_id: str) -> bool:
        """
        Atomically move scheduled → running.

        Returns False if another worker got there first (or the schedule
        is no longer enabled).
        """
        scope, params = self._access.owner_filter()
        claimed = await self._db.execute(
            f"""
            UPDATE schedules SET status = 'running'
            WHERE id = ? AND status = 'scheduled' AND enabled = 1{scope}
            """,
            [schedule_id, *params],
        )
        return claimed == 1

    async def set_scheduled_state(
        self,
        schedule_id: str,
        next_run: float | None,
        last_run: float | None,
        status: str = ScheduleStatus.SCHEDULED.value,
        enabled: bool = True,
    ) -> None:
        """
        Write back a schedule's lifecycle after a run.

        A schedule that was disabled while it ran stays disabled, with
        next_run cleared, whatever the caller passes.
        """
        scope, params = self._access.owner_filter()
        flag = int(enabled)
        await self._db.execute(
            f"""
            UPDATE schedules SET
                status = CASE WHEN enabled = 1 AND ? = 1 THEN ? ELSE 'disabled' END,
                next_run = CASE WHEN enabled = 1 AND ? = 1 THEN ? ELSE NULL END,
                last_run = ?,
                enabled = CASE WHEN enabled = 1 AND ? = 1 THEN 1 ELSE 0 END
            WHERE id = ?{scope}
            """,
            [flag, status, flag, next_run, last_run, flag, schedule_id, *params],
        )

    async def increment_failures(self, schedule_id: str) -> None:
        scope, params = self._access.owner_filter()
        await self._db.execute(
            f"UPDATE schedules SET failures = failures + 1 WHERE id = ?{scope}",
            [schedule_id, *params],
        )

    # ━━━ Custom playbooks ━━━

    async def save_playbook(self, playbook: Playbook) -> Playbook:
        await self.get_project(playbook.project_id)
        await self._db.execute(
            """
            INSERT INTO playbooks (id, project_id, name, description, content, created_at)
            VALUES (:id, :project_id, :name, :description, :content, :created_at)
            ON CONFLICT(project_id, name) DO UPDATE SET
                description = excluded.description, content = excluded.content
            """,
            {
                "id": playbook.id or f"{playbook.project_id}:{playbook.name}",
                "project_id": playbook.project_id,
                "name": playbook.name,
                "description": playbook.description,
                "content": playbook.content,
                "created_at": playbook.created_at,
            },
        )
        return playbook

    async def list_playbooks(self, project_id: str) -> list[Playbook]:
        scope, params = self._project_scope()
        rows = await self._db.fetchall(
            f"SELECT * FROM playbooks WHERE project_id = ?{scope} ORDER BY name",
            [project_id, *params],
        )
        return [Playbook.from_dict(r) for r in rows]

    async def delete_playbook(self, project_id: str, name: str) -> bool:
        scope, params = self._project_scope()
        deleted = await self._db.execute(
            f"DELETE FROM playbooks WHERE project_id = ? AND name = ?{scope}",
            [project_id, name, *params],
        )
        return deleted > 0

    # ━━━ Integrations ━━━

    async def save_integration(self, project_id: str, name: str, data: dict[str, Any]) -> None:
        await self.get_project(project_id)
        await self._db.execute(
            """
            INSERT INTO integrations (project_id, name, data) VALUES (?, ?, ?)
            ON CONFLICT(project_id, name) DO UPDATE SET data = excluded.data
            """,
            [project_id, name, json.dumps(data)],
        )

    async def get_integration(self, project_id: str, name: str) -> dict[str, Any] | None:
        scope, params = self._project_scope()
        row = await self._db.fetchone(
            f"SELECT data FROM integrations WHERE project_id = ? AND name = ?{scope}",
            [project_id, name, *params],
        )
        return json.loads(row["data"]) if row else None

    # ━━━ Helpers ━━━

    def _check_owner(self, user_id: str) -> None:
        if not self._access.is_admin and user_id != self._access.user_id:
            raise ConfigError("Cannot create records owned by another user")

    @staticmethod
    def _validate(schedule: Schedule) -> None:
        if not schedule.playbook:
            raise ConfigError("Schedule needs a playbook")
        if schedule.schedule_type == ScheduleType.CRON.value:
            validate_cron(schedule.cron_expression)
        elif schedule.schedule_type == ScheduleType.AUTOMATIC.value:
            if not schedule.min_interval or schedule.min_interval < 1:
                raise ConfigError("Automatic schedules need min_interval >= 1 second")
            if schedule.max_interval and schedule.max_interval < schedule.min_interval:
                raise ConfigError("max_interval must not be smaller than min_interval")
        else:
            raise ConfigError(f"Unknown schedule type: {schedule.schedule_type!r}")
        if schedule.notify_level not in {lvl.value for lvl in NotificationLevel}:
            raise ConfigError(f"Unknown notify level: {schedule.notify_level!r}")
        if schedule.keep_history < 1:
            raise ConfigError("keep_history must be at least 1")
        if schedule.max_steps < 1:
            raise ConfigError("max_steps must be at least 1")
