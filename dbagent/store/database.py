"""
Database — the aiosqlite connection behind every store, and DataAccess,
the explicit handle that says whose data a call may touch.

DB: ~/.dbagent/dbagent.db

Tables:
    projects       id, user_id, name, cloud_provider, created_at
    connections    id, project_id, user_id, name, connection_string, is_default, created_at
    schedules      see dbagent.monitoring.models.Schedule
    schedule_runs  id, schedule_id, project_id, result, summary,
                   notification_level, messages (JSON), created_at
    playbooks      id, project_id, name, description, content, created_at
    integrations   project_id, name, data (JSON)

All writes go through one connection guarded by an asyncio.Lock, so a
multi-statement write (insert + trim) is one transaction that no other
coroutine can interleave with.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Mapping

import aiosqlite

from dbagent.core.errors import StorageError

logger = logging.getLogger(__name__)

Params = Mapping[str, Any] | Iterable[Any]


def _bind(params: Params) -> Mapping[str, Any] | tuple[Any, ...]:
    # named (:name) placeholders take a mapping, positional (?) a tuple
    if isinstance(params, Mapping):
        return params
    return tuple(params)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id             TEXT PRIMARY KEY,
    user_id        TEXT NOT NULL,
    name           TEXT NOT NULL,
    cloud_provider TEXT NOT NULL DEFAULT 'postgres',
    created_at     REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS connections (
    id                TEXT PRIMARY KEY,
    project_id        TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id           TEXT NOT NULL,
    name              TEXT NOT NULL,
    connection_string TEXT NOT NULL,
    is_default        INTEGER NOT NULL DEFAULT 0,
    created_at        REAL NOT NULL,
    UNIQUE (project_id, name)
);

CREATE TABLE IF NOT EXISTS schedules (
    id                      TEXT PRIMARY KEY,
    user_id                 TEXT NOT NULL,
    project_id              TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    connection_id           TEXT NOT NULL REFERENCES connections(id) ON DELETE CASCADE,
    playbook                TEXT NOT NULL,
    schedule_type           TEXT NOT NULL,
    cron_expression         TEXT,
    min_interval            INTEGER,
    max_interval            INTEGER,
    model                   TEXT NOT NULL DEFAULT '',
    enabled                 INTEGER NOT NULL DEFAULT 1,
    status                  TEXT NOT NULL DEFAULT 'disabled'
                            CHECK (status IN ('disabled', 'scheduled', 'running')),
    last_run                REAL,
    next_run                REAL,
    failures                INTEGER NOT NULL DEFAULT 0,
    keep_history            INTEGER NOT NULL DEFAULT 300,
    max_steps               INTEGER NOT NULL DEFAULT 1,
    notify_level            TEXT NOT NULL DEFAULT 'alert',
    additional_instructions TEXT,
    extra_notification_text TEXT,
    created_at              REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS schedule_runs (
    id                 TEXT PRIMARY KEY,
    schedule_id        TEXT NOT NULL REFERENCES schedules(id) ON DELETE CASCADE,
    project_id         TEXT NOT NULL,
    result             TEXT NOT NULL,
    summary            TEXT NOT NULL,
    notification_level TEXT NOT NULL
                       CHECK (notification_level IN ('info', 'warning', 'alert')),
    messages           TEXT NOT NULL,
    created_at         REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_schedule_runs_created
    ON schedule_runs(schedule_id, created_at);

CREATE TABLE IF NOT EXISTS playbooks (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    content     TEXT NOT NULL,
    created_at  REAL NOT NULL,
    UNIQUE (project_id, name)
);

CREATE TABLE IF NOT EXISTS integrations (
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name       TEXT NOT NULL,
    data       TEXT NOT NULL,
    PRIMARY KEY (project_id, name)
);
"""


class Database:
    """
    One aiosqlite connection plus a write lock.

    Usage:
        db = Database("~/.dbagent/dbagent.db")
        await db.initialize()

        admin = db.admin()
        alice = db.as_user("alice")
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Open the database and create tables."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # autocommit mode: transactions are opened explicitly in transaction()
            self._db = await aiosqlite.connect(str(self._db_path), isolation_level=None)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            await self._db.executescript(_SCHEMA)
            await self._db.commit()
            logger.debug(f"Database initialized at {self._db_path}")
        except Exception as e:
            raise StorageError(f"Failed to initialize SQLite at {self._db_path}: {e}") from e

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    def admin(self) -> DataAccess:
        """Unscoped access. Only the scheduler loop and the operator CLI use this."""
        return DataAccess(self, user_id=None)

    def as_user(self, user_id: str) -> DataAccess:
        """Access restricted to records owned by `user_id`."""
        if not user_id:
            raise ValueError("as_user() needs a user id")
        return DataAccess(self, user_id=user_id)

    async def fetchall(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        db = await self._ensure_db()
        try:
            async with db.execute(sql, _bind(params)) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise StorageError(f"Query failed: {e}") from e
        return [dict(r) for r in rows]

    async def fetchone(self, sql: str, params: Params = ()) -> dict[str, Any] | None:
        rows = await self.fetchall(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Params = ()) -> int:
        """Run one write statement in its own transaction. Returns rowcount."""
        async with self.transaction() as db:
            cursor = await db.execute(sql, _bind(params))
            return cursor.rowcount

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialized write transaction. Commits on success, rolls back on error.
        """
        db = await self._ensure_db()
        async with self._write_lock:
            try:
                await db.execute("BEGIN IMMEDIATE")
                yield db
                await db.commit()
            except StorageError:
                await db.rollback()
                raise
            except Exception as e:
                await db.rollback()
                raise StorageError(f"Write failed: {e}") from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None


class DataAccess:
    """
    A Database seen through one authorization mode.

    In user mode every owner-scoped query gets an extra `user_id = ?`
    predicate; in admin mode it gets nothing.
    """

    def __init__(self, database: Database, user_id: str | None) -> None:
        self._database = database
        self._user_id = user_id

    @property
    def database(self) -> Database:
        return self._database

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_admin(self) -> bool:
        return self._user_id is None

    def owner_filter(self, column: str = "user_id") -> tuple[str, list[Any]]:
        """SQL fragment (starting with AND) plus params that scope a query to the owner."""
        if self._user_id is None:
            return "", []
        return f" AND {column} = ?", [self._user_id]

    def __repr__(self) -> str:
        mode = "admin" if self.is_admin else f"user={self._user_id}"
        return f"DataAccess({mode})"
