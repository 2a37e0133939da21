"""
dbagent — scheduled, LLM-driven health checks for PostgreSQL databases.

Public API:
    from dbagent import Scheduler, PlaybookRunner, Database
"""

__version__ = "0.1.0"

from dbagent.core.config import DBAgentConfig
from dbagent.monitoring.models import Connection, NotificationLevel, Project, Run, Schedule
from dbagent.monitoring.runner import PlaybookRunner
from dbagent.monitoring.scheduler import Scheduler
from dbagent.store.database import Database

__all__ = [
    "DBAgentConfig",
    "Database",
    "Scheduler",
    "PlaybookRunner",
    "Project",
    "Connection",
    "Schedule",
    "Run",
    "NotificationLevel",
]
