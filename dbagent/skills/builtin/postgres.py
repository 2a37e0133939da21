"""
PostgreSQL Skill — diagnostics against one target database.

The skill is bound to a single TargetDB for the lifetime of a playbook
run. Results are returned as JSON text, which is what the model reads.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from dbagent.core.types import SkillManifest, ToolResult, ToolSpec
from dbagent.skills.base import Skill
from dbagent.targetdb.client import PERFORMANCE_SETTINGS, VACUUM_SETTINGS, TargetDB

logger = logging.getLogger(__name__)

MAX_QUERY_TEXT = 5000

_NO_PARAMS: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


def _to_json(rows: Any) -> str:
    # asyncpg hands back datetimes, Decimals and inet addresses
    return json.dumps(rows, default=str)


class PostgresSkill(Skill):
    """
    Skill for PostgreSQL performance diagnostics.

    Tools:
        getSlowQueries() → top slow statements from pg_stat_statements
        explainQuery(schema, query) → EXPLAIN plan
        describeTable(schema, table) → columns and indexes
        findTableSchema(table) → schema name
        getCurrentActiveQueries() → non-idle backends
        getQueriesWaitingOnLocks() → blocked/blocking pairs
        getVacuumStats() → dead tuples and vacuum history
        getConnectionsStats() → utilization vs max_connections
        getConnectionsGroups() → pg_stat_activity grouped by client
        getPerformanceAndVacuumSettings() → relevant pg_settings
    """

    def __init__(self, db: TargetDB, slow_query_threshold_ms: int = 2000) -> None:
        self._db = db
        self._threshold_ms = slow_query_threshold_ms

    def manifest(self) -> SkillManifest:
        return SkillManifest(
            name="postgres",
            version="1.0.0",
            description="Inspect a PostgreSQL database's queries, locks, connections and vacuum health",
            tools=(
                ToolSpec(
                    name="getSlowQueries",
                    description=(
                        "Get a list of slow queries formatted as a JSON array. Contains how many "
                        "times the query was called, the max execution time in seconds, the mean "
                        "execution time in seconds, the total execution time (all calls together) "
                        "in seconds, and the query itself."
                    ),
                    parameters=_NO_PARAMS,
                ),
                ToolSpec(
                    name="explainQuery",
                    description=(
                        "Run explain on a query. Returns the explain plan as received from PostgreSQL. "
                        "The query needs to be complete, it cannot contain $1, $2, etc. If you need to, "
                        "replace the parameters with your own made up values. Use the tool describeTable "
                        "to get the types of the columns. If you know the schema, pass it in as well."
                    ),
                    parameters={
                        "type": "object",
                        "properties": {
                            "schema": {
                                "type": "string",
                                "description": "Schema to use as search path (default: public)",
                            },
                            "query": {
                                "type": "string",
                                "description": "The complete SQL statement",
                            },
                        },
                        "required": ["query"],
                    },
                ),
                ToolSpec(
                    name="describeTable",
                    description=(
                        "Describe a table. If you know the schema, pass it as a parameter. "
                        "If you don't, use public."
                    ),
                    parameters={
                        "type": "object",
                        "properties": {
                            "schema": {"type": "string", "description": "Schema name"},
                            "table": {"type": "string", "description": "Table name"},
                        },
                        "required": ["table"],
                    },
                ),
                ToolSpec(
                    name="findTableSchema",
                    description="Find the schema of a table.",
                    parameters={
                        "type": "object",
                        "properties": {
                            "table": {"type": "string", "description": "Table name"},
                        },
                        "required": ["table"],
                    },
                ),
                ToolSpec(
                    name="getCurrentActiveQueries",
                    description="Get the currently active queries.",
                    parameters=_NO_PARAMS,
                ),
                ToolSpec(
                    name="getQueriesWaitingOnLocks",
                    description="Get the queries that are currently blocked waiting on locks.",
                    parameters=_NO_PARAMS,
                ),
                ToolSpec(
                    name="getVacuumStats",
                    description=(
                        "Get the vacuum stats for the top tables in the database. "
                        "They are sorted by the number of dead tuples descending."
                    ),
                    parameters=_NO_PARAMS,
                ),
                ToolSpec(
                    name="getConnectionsStats",
                    description="Get the connections stats for the database.",
                    parameters=_NO_PARAMS,
                ),
                ToolSpec(
                    name="getConnectionsGroups",
                    description=(
                        "Get the connections groups for the database. This is a view in the "
                        "pg_stat_activity table, grouped by (state, user, application_name, "
                        "client_addr, wait_event_type, wait_event)."
                    ),
                    parameters=_NO_PARAMS,
                ),
                ToolSpec(
                    name="getPerformanceAndVacuumSettings",
                    description="Get the performance and vacuum settings for the database.",
                    parameters=_NO_PARAMS,
                ),
            ),
        )

    async def execute_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ToolResult:
        logger.debug(f"postgres tool {tool_name} {arguments}")
        try:
            output = await self._dispatch(tool_name, arguments)
        except KeyError as e:
            return ToolResult(
                tool_call_id="",
                success=False,
                output="",
                error=f"Missing required argument: {e}",
            )
        except Exception as e:
            logger.warning(f"postgres tool {tool_name} failed: {e}")
            return ToolResult(tool_call_id="", success=False, output="", error=str(e))

        if output is None:
            return ToolResult(
                tool_call_id="",
                success=False,
                output="",
                error=f"Unknown tool: {tool_name}",
            )
        return ToolResult(tool_call_id="", success=True, output=output)

    async def _dispatch(self, tool_name: str, arguments: dict[str, Any]) -> str | None:
        db = self._db
        if tool_name == "getSlowQueries":
            return await self._slow_queries()
        elif tool_name == "explainQuery":
            return await db.explain_query(
                arguments.get("schema") or "public", arguments["query"]
            )
        elif tool_name == "describeTable":
            return await db.describe_table(
                arguments.get("schema") or "public", arguments["table"]
            )
        elif tool_name == "findTableSchema":
            return await db.find_table_schema(arguments["table"])
        elif tool_name == "getCurrentActiveQueries":
            return _to_json(await db.get_current_active_queries())
        elif tool_name == "getQueriesWaitingOnLocks":
            return _to_json(await db.get_queries_waiting_on_locks())
        elif tool_name == "getVacuumStats":
            return _to_json(await db.get_vacuum_stats())
        elif tool_name == "getConnectionsStats":
            return _to_json(await db.get_connections_stats())
        elif tool_name == "getConnectionsGroups":
            return _to_json(await db.get_connections_groups())
        elif tool_name == "getPerformanceAndVacuumSettings":
            performance = await db.get_settings(PERFORMANCE_SETTINGS)
            vacuum = await db.get_settings(VACUUM_SETTINGS)
            return (
                f"Performance settings: {_to_json(performance)}\n"
                f"Vacuum settings: {_to_json(vacuum)}\n"
            )
        return None

    async def _slow_queries(self) -> str:
        rows = await self._db.get_slow_queries(self._threshold_ms)
        for row in rows:
            if row.get("query") and len(row["query"]) > MAX_QUERY_TEXT:
                row["query"] = "Err: query too long to analyze"
        return _to_json(rows)
