"""
Playbooks — named, step-by-step diagnostic procedures for the agent.

Built-in playbooks ship with dbagent. Projects may add their own; a custom
playbook with the same name as a built-in shadows it for that project.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any, Iterable

SLOW_QUERIES_PLAYBOOK = """
Follow the following steps to find and troubleshoot slow queries:

Step 1:
Use the tool getSlowQueries to find the slow queries.

Step 2:
Pick a query to investigate. This doesn't have to be the slowest query.
Prefer a SELECT query, avoid UPDATE, DELETE, INSERT.
Avoid introspection queries, like the ones involving pg_catalog or information_schema. THIS IS VERY IMPORTANT.
Include the query in your summary, but format it on multiple lines, so that no line is longer than 80 characters.

Step 3:
Use the tool findTableSchema to find the schema of the table involved in the slow query you picked.
Use the tool describeTable to describe the table you found.

Step 4:
Use the tool explainQuery to explain the slow queries. Make sure to pass the schema you found to the tool.
Also, it's very important to replace the query parameters ($1, $2, etc) with the actual values. Generate your own values, but
take into account the data types of the columns.

Step 5:
If the previous step indicates that an index is missing, tell the user the exact DDL to create the index.

At the end:
After you are finished, make a summary of your findings: the slow query summary (don't include the actual query unless it's short),
the reason for which is slow, and the DDL to create the index if you found one. Also say what sort of improvement the user can expect
from the index.
"""

GENERAL_MONITORING_PLAYBOOK = """
Objective:
To assess and ensure the optimal performance of the PostgreSQL database by reviewing key metrics, activity, and slow queries.

Step 1:
Check connections:

Use the tool getConnectionsStats and make sure connection utilization is within acceptable limits (e.g., below 80%).
Use the tool getConnectionsGroups to spot a single application or user holding an unusual number of connections.

Step 2:
Review activity:

Use the tool getCurrentActiveQueries and look for long-running queries.
Use the tool getQueriesWaitingOnLocks and look for blocked sessions.

Step 3:
Check vacuum health:

Use the tool getVacuumStats and look for tables with many dead tuples or that have not been vacuumed recently.
Use the tool getPerformanceAndVacuumSettings to check whether the settings explain what you found.

Step 4:
Evaluate Slow Queries:

Retrieve and review slow queries.
Identify known queries and ensure they are optimized or deemed acceptable.

Step 5:
Document Findings:

Record any issues found and actions taken.
Note any recurring patterns or areas for improvement.
"""


@dataclass
class Playbook:
    """A named procedure, either built in or defined for one project."""

    name: str
    content: str
    description: str = ""
    is_builtin: bool = False
    id: str = ""
    project_id: str = ""
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "content": self.content,
            "is_builtin": self.is_builtin,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Playbook:
        return cls(
            id=d.get("id", ""),
            project_id=d.get("project_id", ""),
            name=d["name"],
            description=d.get("description", ""),
            content=d["content"],
            is_builtin=bool(d.get("is_builtin", False)),
            created_at=d.get("created_at", time.time()),
        )


BUILTIN_PLAYBOOKS: tuple[Playbook, ...] = (
    Playbook(
        name="investigateSlowQueries",
        description="Find slow queries, explain them and suggest missing indexes.",
        content=SLOW_QUERIES_PLAYBOOK,
        is_builtin=True,
    ),
    Playbook(
        name="generalMonitoring",
        description="Review connections, activity, vacuum health and slow queries.",
        content=GENERAL_MONITORING_PLAYBOOK,
        is_builtin=True,
    ),
)


class PlaybookRegistry:
    """
    Name → Playbook lookup for one project.

    Usage:
        registry = PlaybookRegistry(custom=await store.list_playbooks(project_id))
        registry.get_text("investigateSlowQueries")
    """

    def __init__(self, custom: Iterable[Playbook] = ()) -> None:
        self._playbooks: dict[str, Playbook] = {p.name: p for p in BUILTIN_PLAYBOOKS}
        for playbook in custom:
            self._playbooks[playbook.name] = playbook

    def get(self, name: str) -> Playbook | None:
        return self._playbooks.get(name)

    def get_text(self, name: str) -> str:
        """Playbook content, or an error string the agent can read."""
        playbook = self._playbooks.get(name)
        if playbook is None:
            return f"Error:Playbook {name} not found"
        return playbook.content

    def names(self) -> list[str]:
        return list(self._playbooks)

    def list_playbooks(self) -> list[Playbook]:
        return list(self._playbooks.values())

    def __contains__(self, name: object) -> bool:
        return name in self._playbooks
