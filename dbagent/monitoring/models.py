"""
Monitoring data model — schedules, runs, and the records they point at.

Timestamps are unix seconds (floats). Records are plain dataclasses with
to_dict/from_dict so they round-trip through SQLite rows and the CLI's
JSON output. The two structured model replies (severity and drill-down)
are pydantic models so they can be validated strictly.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from dbagent.core.types import Message


def new_id() -> str:
    return str(uuid.uuid4())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ScheduleStatus(str, Enum):
    DISABLED = "disabled"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class ScheduleType(str, Enum):
    CRON = "cron"
    AUTOMATIC = "automatic"


class NotificationLevel(str, Enum):
    """Severity of a run outcome. Ordered: info < warning < alert."""

    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def at_least(self, other: NotificationLevel | str) -> bool:
        return self.rank >= NotificationLevel(other).rank


_LEVEL_RANK = {
    NotificationLevel.INFO: 0,
    NotificationLevel.WARNING: 1,
    NotificationLevel.ALERT: 2,
}


class CloudProvider(str, Enum):
    POSTGRES = "postgres"
    AWS = "aws"
    GCP = "gcp"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class Project:
    name: str
    user_id: str
    cloud_provider: str = CloudProvider.POSTGRES.value
    id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "user_id": self.user_id,
            "cloud_provider": self.cloud_provider,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Project:
        return cls(
            id=d["id"],
            name=d["name"],
            user_id=d["user_id"],
            cloud_provider=d.get("cloud_provider", CloudProvider.POSTGRES.value),
            created_at=d["created_at"],
        )


@dataclass
class Connection:
    """A monitored PostgreSQL database."""

    name: str
    project_id: str
    user_id: str
    connection_string: str
    is_default: bool = False
    id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "connection_string": self.connection_string,
            "is_default": self.is_default,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Connection:
        return cls(
            id=d["id"],
            name=d["name"],
            project_id=d["project_id"],
            user_id=d["user_id"],
            connection_string=d["connection_string"],
            is_default=bool(d.get("is_default", False)),
            created_at=d["created_at"],
        )


@dataclass
class Schedule:
    """A recurring playbook run against one connection."""

    user_id: str
    project_id: str
    connection_id: str
    playbook: str
    schedule_type: str = ScheduleType.CRON.value
    cron_expression: str | None = None
    min_interval: int = 300      # seconds, automatic schedules
    max_interval: int = 86400    # seconds, automatic schedules
    model: str = ""              # empty = configured default
    enabled: bool = True
    status: str = ScheduleStatus.SCHEDULED.value
    last_run: float | None = None
    next_run: float | None = None
    failures: int = 0
    keep_history: int = 300
    max_steps: int = 1
    notify_level: str = NotificationLevel.ALERT.value
    additional_instructions: str | None = None
    extra_notification_text: str | None = None
    id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "project_id": self.project_id,
            "connection_id": self.connection_id,
            "playbook": self.playbook,
            "schedule_type": self.schedule_type,
            "cron_expression": self.cron_expression,
            "min_interval": self.min_interval,
            "max_interval": self.max_interval,
            "model": self.model,
            "enabled": self.enabled,
            "status": self.status,
            "last_run": self.last_run,
            "next_run": self.next_run,
            "failures": self.failures,
            "keep_history": self.keep_history,
            "max_steps": self.max_steps,
            "notify_level": self.notify_level,
            "additional_instructions": self.additional_instructions,
            "extra_notification_text": self.extra_notification_text,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Schedule:
        return cls(
            id=d["id"],
            user_id=d["user_id"],
            project_id=d["project_id"],
            connection_id=d["connection_id"],
            playbook=d["playbook"],
            schedule_type=d["schedule_type"],
            cron_expression=d.get("cron_expression"),
            min_interval=d.get("min_interval") or 0,
            max_interval=d.get("max_interval") or 0,
            model=d.get("model") or "",
            enabled=bool(d["enabled"]),
            status=d["status"],
            last_run=d.get("last_run"),
            next_run=d.get("next_run"),
            failures=d.get("failures", 0),
            keep_history=d.get("keep_history", 300),
            max_steps=d.get("max_steps", 1),
            notify_level=d.get("notify_level", NotificationLevel.ALERT.value),
            additional_instructions=d.get("additional_instructions"),
            extra_notification_text=d.get("extra_notification_text"),
            created_at=d["created_at"],
        )


@dataclass
class Run:
    """One immutable execution record of a schedule."""

    schedule_id: str
    project_id: str
    result: str
    summary: str
    notification_level: str
    messages: list[Message] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "project_id": self.project_id,
            "result": self.result,
            "summary": self.summary,
            "notification_level": self.notification_level,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Run:
        return cls(
            id=d["id"],
            schedule_id=d["schedule_id"],
            project_id=d["project_id"],
            result=d["result"],
            summary=d["summary"],
            notification_level=d["notification_level"],
            messages=[Message.from_dict(m) for m in d.get("messages", [])],
            created_at=d["created_at"],
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Structured model replies
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class NotificationDecision(BaseModel):
    """Severity classification of a playbook result."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str
    notification_level: Literal["info", "warning", "alert"] = Field(alias="notificationLevel")

    @property
    def level(self) -> NotificationLevel:
        return NotificationLevel(self.notification_level)


class PlaybookDecision(BaseModel):
    """Whether to drill down with another playbook, and which one."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    should_run_playbook: bool = Field(alias="shouldRunPlaybook")
    recommended_playbook: Optional[str] = Field(default=None, alias="recommendedPlaybook")
