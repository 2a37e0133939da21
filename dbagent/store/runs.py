"""
RunHistoryStore — append-only run records with per-schedule retention.

Retention is enforced on write: insert_and_trim() adds a run and evicts
the oldest ones beyond the schedule's keep_history in the same
transaction. Ordering is created_at, then insertion order (rowid), so
runs that share a timestamp still have a well-defined "oldest".
"""

from __future__ import annotations

import json
import logging

from dbagent.core.errors import RunNotFoundError, ScheduleNotFoundError
from dbagent.monitoring.models import Run
from dbagent.store.database import DataAccess

logger = logging.getLogger(__name__)


class RunHistoryStore:
    """
    Usage:
        runs = RunHistoryStore(database.as_user(schedule.user_id))
        await runs.insert_and_trim(run, keep_history=schedule.keep_history)
        latest = await runs.list_runs(schedule.id, limit=1)
    """

    def __init__(self, access: DataAccess) -> None:
        self._access = access
        self._db = access.database

    def _schedule_scope(self) -> tuple[str, list]:
        if self._access.is_admin:
            return "", []
        return (
            " AND schedule_id IN (SELECT id FROM schedules WHERE user_id = ?)",
            [self._access.user_id],
        )

    async def insert_and_trim(self, run: Run, keep_history: int) -> Run:
        """
        Insert `run`, then delete this schedule's runs older than the
        keep_history-th newest. The new run itself is never deleted, so a
        late run with an old created_at evicts the oldest other run instead.
        """
        keep = max(1, keep_history)
        scope, params = self._access.owner_filter()

        async with self._db.transaction() as db:
            async with db.execute(
                f"SELECT 1 FROM schedules WHERE id = ?{scope}", (run.schedule_id, *params)
            ) as cursor:
                if await cursor.fetchone() is None:
                    raise ScheduleNotFoundError(f"Schedule {run.schedule_id} not found")

            await db.execute(
                """
                INSERT INTO schedule_runs
                    (id, schedule_id, project_id, result, summary,
                     notification_level, messages, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.schedule_id,
                    run.project_id,
                    run.result,
                    run.summary,
                    run.notification_level,
                    json.dumps([m.to_dict() for m in run.messages]),
                    run.created_at,
                ),
            )

            async with db.execute(
                "SELECT COUNT(*) FROM schedule_runs WHERE schedule_id = ?",
                (run.schedule_id,),
            ) as cursor:
                (count,) = await cursor.fetchone()

            if count <= keep:
                return run

            # The new run always stays; it is kept alongside the keep - 1
            # most recent others. Cutoff is the oldest of those.
            if keep == 1:
                cursor = await db.execute(
                    "DELETE FROM schedule_runs WHERE schedule_id = ? AND id != ?",
                    (run.schedule_id, run.id),
                )
            else:
                async with db.execute(
                    """
                    SELECT created_at, rowid FROM schedule_runs
                    WHERE schedule_id = ? AND id != ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT 1 OFFSET ?
                    """,
                    (run.schedule_id, run.id, keep - 2),
                ) as cursor:
                    cutoff_created_at, cutoff_rowid = await cursor.fetchone()

                cursor = await db.execute(
                    """
                    DELETE FROM schedule_runs
                    WHERE schedule_id = ?
                      AND id != ?
                      AND (created_at < ? OR (created_at = ? AND rowid < ?))
                    """,
                    (
                        run.schedule_id,
                        run.id,
                        cutoff_created_at,
                        cutoff_created_at,
                        cutoff_rowid,
                    ),
                )
            logger.debug(
                f"Trimmed {cursor.rowcount} run(s) of schedule {run.schedule_id} "
                f"(keep_history={keep})"
            )

        return run

    async def list_runs(self, schedule_id: str, limit: int | None = None) -> list[Run]:
        """Runs of a schedule, newest first."""
        scope, params = self._schedule_scope()
        sql = (
            f"SELECT * FROM schedule_runs WHERE schedule_id = ?{scope} "
            "ORDER BY created_at DESC, rowid DESC"
        )
        args = [schedule_id, *params]
        if limit is not None:
            sql += " LIMIT ?"
            args.append(limit)
        rows = await self._db.fetchall(sql, args)
        return [self._row_to_run(r) for r in rows]

    async def get_run(self, run_id: str) -> Run:
        scope, params = self._schedule_scope()
        row = await self._db.fetchone(
            f"SELECT * FROM schedule_runs WHERE id = ?{scope}", [run_id, *params]
        )
        if row is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        return self._row_to_run(row)

    async def count_runs(self, schedule_id: str) -> int:
        scope, params = self._schedule_scope()
        row = await self._db.fetchone(
            f"SELECT COUNT(*) AS n FROM schedule_runs WHERE schedule_id = ?{scope}",
            [schedule_id, *params],
        )
        return row["n"] if row else 0

    @staticmethod
    def _row_to_run(row: dict) -> Run:
        d = dict(row)
        d["messages"] = json.loads(d["messages"])
        return Run.from_dict(d)
