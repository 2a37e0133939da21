"""
Target database client — pooled asyncpg access to a monitored PostgreSQL.

Every query here is read-only diagnostics: catalog and statistics views,
pg_stat_statements, and EXPLAIN inside a rolled-back transaction.

Usage:
    async with TargetDB.open(connection.connection_string) as db:
        rows = await db.get_vacuum_stats()
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

from dbagent.core.errors import TargetDBError

logger = logging.getLogger(__name__)

_SSLMODE_REQUIRE = re.compile(r"[\s;&?]?sslmode=require")
_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_PLACEHOLDERS = ("$1", "$2", "$3", "$4")

PERFORMANCE_SETTINGS = (
    "max_connections",
    "work_mem",
    "shared_buffers",
    "maintenance_work_mem",
    "lock_timeout",
    "idle_in_transaction_session_timeout",
    "checkpoint_completion_target",
    "idle_session_timeout",
    "default_transaction_isolation",
    "max_wal_size",
    "log_min_duration_statement",
    "effective_cache_size",
    "wal_buffers",
    "effective_io_concurrency",
    "random_page_cost",
    "seq_page_cost",
    "huge_pages",
)

VACUUM_SETTINGS = (
    "autovacuum",
    "autovacuum_vacuum_threshold",
    "autovacuum_vacuum_insert_threshold",
    "autovacuum_analyze_threshold",
    "autovacuum_freeze_max_age",
    "track_counts",
)


def parse_connection_string(connection_string: str) -> tuple[str, str | None]:
    """
    Split `sslmode=require` off a DSN.

    Hosted databases commonly use self-signed certificates, so `require`
    maps to asyncpg's encrypt-without-verify mode instead of being passed
    through in the DSN.
    """
    if "sslmode=require" not in connection_string:
        return connection_string, None
    dsn = _SSLMODE_REQUIRE.sub("", connection_string)
    if dsn.endswith("?"):
        dsn = dsn[:-1]
    return dsn, "require"


class TargetDB:
    """A small connection pool to one monitored PostgreSQL database."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        connection_string: str,
        max_size: int = 2,
    ) -> AsyncIterator[TargetDB]:
        """Open a pool for the duration of the block."""
        dsn, ssl = parse_connection_string(connection_string)
        try:
            pool = await asyncpg.create_pool(
                dsn=dsn,
                ssl=ssl,
                min_size=1,
                max_size=max_size,
            )
        except (OSError, asyncpg.PostgresError) as e:
            raise TargetDBError(f"Cannot connect to target database: {e}") from e

        try:
            yield cls(pool)
        finally:
            await pool.close()

    async def _fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        rows = await self._pool.fetch(query, *args)
        return [dict(row) for row in rows]

    # ━━━ Query Statistics ━━━

    async def get_slow_queries(self, threshold_ms: int) -> list[dict[str, Any]]:
        """Top 10 statements from pg_stat_statements slower than the threshold."""
        return await self._fetch(
            """
            SELECT
              calls,
              round(max_exec_time/1000) max_exec_secs,
              round(mean_exec_time/1000) mean_exec_secs,
              round(total_exec_time/1000) total_exec_secs,
              query
            FROM pg_stat_statements
            WHERE max_exec_time > $1
            ORDER BY total_exec_time DESC
            LIMIT 10
            """,
            threshold_ms,
        )

    async def explain_query(self, schema: str, query: str) -> str:
        """
        EXPLAIN a statement with `schema` as search path, never committing.

        Returns a readable message rather than raising when the statement
        cannot be explained, so the agent can adjust and retry.
        """
        if not _IDENTIFIER.match(schema):
            return "Invalid schema name. Only alphanumeric characters and underscores are allowed."
        if any(p in query for p in _PLACEHOLDERS):
            return (
                "The query seems to contain placeholders ($1, $2, etc). "
                "Replace them with actual values and try again."
            )

        async with self._pool.acquire() as conn:
            tr = conn.transaction()
            await tr.start()
            try:
                await conn.execute("SET LOCAL statement_timeout = '2000ms'")
                await conn.execute("SET LOCAL lock_timeout = '200ms'")
                await conn.execute(f"SET LOCAL search_path TO {schema}")
                rows = await conn.fetch(f"EXPLAIN {query}")
                return "\n".join(row["QUERY PLAN"] for row in rows)
            except asyncpg.PostgresError as e:
                logger.info(f"EXPLAIN failed: {e}")
                return "I could not run EXPLAIN on that query. Try a different method."
            finally:
                await tr.rollback()

    # ━━━ Schema ━━━

    async def describe_table(self, schema: str, table: str) -> str:
        """Columns and indexes of one table, as text."""
        columns = await self._fetch(
            """
            SELECT column_name, data_type, is_nullable, column_default
            FROM information_schema.columns
            WHERE table_schema = $1 AND table_name = $2
            ORDER BY ordinal_position
            """,
            schema,
            table,
        )
        indexes = await self._fetch(
            """
            SELECT
              i.relname AS index_name,
              array_to_string(array_agg(a.attname ORDER BY k.i), ', ') AS column_names,
              ix.indisunique AS is_unique,
              ix.indisprimary AS is_primary
            FROM
              pg_class t,
              pg_class i,
              pg_index ix,
              pg_attribute a,
              generate_subscripts(ix.indkey, 1) k(i)
            WHERE
              t.oid = ix.indrelid
              AND i.oid = ix.indexrelid
              AND a.attrelid = t.oid
              AND a.attnum = ix.indkey[k.i]
              AND t.relkind = 'r'
              AND t.relname = $1
              AND t.relnamespace = (SELECT oid FROM pg_namespace WHERE nspname = $2)
            GROUP BY i.relname, ix.indisunique, ix.indisprimary
            ORDER BY i.relname
            """,
            table,
            schema,
        )

        lines = [f"Table: {schema}.{table}", "", "Columns:"]
        for col in columns:
            line = f"{col['column_name']} {col['data_type']}"
            line += " NULL" if col["is_nullable"] == "YES" else " NOT NULL"
            if col["column_default"]:
                line += f" DEFAULT {col['column_default']}"
            lines.append(line)

        lines += ["", "Indexes:"]
        for idx in indexes:
            line = f"{idx['index_name']} ON ({idx['column_names']})"
            if idx["is_primary"]:
                line += " PRIMARY KEY"
            elif idx["is_unique"]:
                line += " UNIQUE"
            lines.append(line)

        return "\n".join(lines) + "\n"

    async def find_table_schema(self, table: str) -> str:
        """The schema holding the largest table named `table` (public if none)."""
        rows = await self._fetch(
            """
            SELECT
              schemaname AS schema,
              pg_total_relation_size(quote_ident(schemaname) || '.' || quote_ident(tablename)) AS total_bytes
            FROM pg_tables
            WHERE tablename = $1
            ORDER BY total_bytes DESC
            LIMIT 1
            """,
            table,
        )
        if not rows:
            return "public"
        return rows[0]["schema"]

    # ━━━ Activity ━━━

    async def get_current_active_queries(self) -> list[dict[str, Any]]:
        return await self._fetch(
            """
            SELECT
              pid,
              state,
              EXTRACT(EPOCH FROM (NOW() - query_start))::INTEGER AS duration,
              wait_event_type,
              wait_event,
              query
            FROM pg_stat_activity
            WHERE state != 'idle'
              AND pid != pg_backend_pid()
            ORDER BY duration DESC
            LIMIT 500
            """
        )

    async def get_queries_waiting_on_locks(self) -> list[dict[str, Any]]:
        return await self._fetch(
            """
            SELECT
              blocked.pid AS blocked_pid,
              blocked.query AS blocked_query,
              blocking.pid AS blocking_pid,
              blocking.query AS blocking_query,
              EXTRACT(EPOCH FROM (NOW() - blocked.query_start))::INTEGER AS blocked_duration
            FROM pg_stat_activity blocked
            JOIN pg_locks blocked_locks ON blocked.pid = blocked_locks.pid
            JOIN pg_locks blocking_locks ON blocked_locks.locktype = blocking_locks.locktype
              AND blocked_locks.database IS NOT DISTINCT FROM blocking_locks.database
              AND blocked_locks.relation IS NOT DISTINCT FROM blocking_locks.relation
              AND blocked_locks.page IS NOT DISTINCT FROM blocking_locks.page
              AND blocked_locks.tuple IS NOT DISTINCT FROM blocking_locks.tuple
              AND blocked_locks.virtualxid IS NOT DISTINCT FROM blocking_locks.virtualxid
              AND blocked_locks.transactionid IS NOT DISTINCT FROM blocking_locks.transactionid
              AND blocked_locks.classid IS NOT DISTINCT FROM blocking_locks.classid
              AND blocked_locks.objid IS NOT DISTINCT FROM blocking_locks.objid
              AND blocked_locks.objsubid IS NOT DISTINCT FROM blocking_locks.objsubid
              AND blocked_locks.pid != blocking_locks.pid
            JOIN pg_stat_activity blocking ON blocking_locks.pid = blocking.pid
            WHERE NOT blocked_locks.granted
              AND blocked.pid != pg_backend_pid()
            ORDER BY blocked_duration DESC
            """
        )

    async def get_vacuum_stats(self) -> list[dict[str, Any]]:
        """Top 50 user tables by dead tuples."""
        return await self._fetch(
            """
            SELECT
              schemaname,
              relname AS table_name,
              last_vacuum,
              last_autovacuum,
              vacuum_count,
              autovacuum_count,
              n_dead_tup AS dead_tuples,
              n_live_tup AS live_tuples,
              n_mod_since_analyze AS modifications_since_analyze
            FROM pg_stat_user_tables
            ORDER BY n_dead_tup DESC
            LIMIT 50
            """
        )

    async def get_connections_stats(self) -> list[dict[str, Any]]:
        return await self._fetch(
            """
            SELECT
              A.total_connections,
              A.non_idle_connections,
              B.max_connections,
              round((100 * A.total_connections::numeric / B.max_connections::numeric), 2)
                AS connections_utilization_pctg
            FROM
              (SELECT count(1) AS total_connections,
                      sum(CASE WHEN state != 'idle' THEN 1 ELSE 0 END) AS non_idle_connections
               FROM pg_stat_activity) A,
              (SELECT setting AS max_connections FROM pg_settings WHERE name = 'max_connections') B
            """
        )

    async def get_connections_groups(self) -> list[dict[str, Any]]:
        return await self._fetch(
            """
            SELECT
              count(*) AS total_connections,
              state,
              usename AS user,
              application_name,
              client_addr,
              wait_event_type,
              wait_event
            FROM pg_stat_activity
            GROUP BY state, usename, application_name, client_addr, wait_event_type, wait_event
            ORDER BY total_connections DESC
            """
        )

    # ━━━ Settings ━━━

    async def get_settings(self, names: tuple[str, ...]) -> list[dict[str, Any]]:
        """Rows of pg_settings for the given setting names."""
        return await self._fetch(
            """
            SELECT name, setting, unit, source, short_desc AS description
            FROM pg_settings
            WHERE name = ANY($1::text[])
            """,
            list(names),
        )
