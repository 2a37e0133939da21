"""
SlackWebhookChannel — delivers notifications to a Slack incoming webhook.

The webhook URL comes from the project's "slack" integration
({"webhook_url": "..."}); projects without one fall back to
`notifications.slack_webhook_url` from config.

Messages are Slack Block Kit: a title with a level emoji, the
database/playbook/model/schedule fields, the long-form result converted
from Markdown to Slack mrkdwn, and buttons linking back to the web UI.
"""

from __future__ import annotations

import datetime
import logging
import re
from typing import TYPE_CHECKING, Any

import httpx

from dbagent.monitoring.models import NotificationLevel, ScheduleType
from dbagent.notifications.base import Notification, NotificationChannel

if TYPE_CHECKING:
    from dbagent.store.schedules import ScheduleStore

logger = logging.getLogger(__name__)

_EMOJI = {
    NotificationLevel.INFO: ":white_check_mark:",
    NotificationLevel.WARNING: ":warning:",
    NotificationLevel.ALERT: ":alert:",
}

_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^### (.*)$", re.MULTILINE), r"*\1*"),
    (re.compile(r"^## (.*)$", re.MULTILINE), r"*\1*"),
    (re.compile(r"^# (.*)$", re.MULTILINE), r"*\1*"),
    (re.compile(r"\*\*(.*?)\*\*"), r"*\1*"),
    (re.compile(r"__(.*?)__"), r"_\1_"),
    (re.compile(r"\[(.*?)\]\((.*?)\)"), r"<\2|\1>"),
]


def markdown_to_mrkdwn(text: str) -> str:
    """Convert the common Markdown constructs to Slack's mrkdwn dialect."""
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text


def build_blocks(notification: Notification, public_url: str) -> dict[str, Any]:
    schedule = notification.schedule
    base = f"{public_url.rstrip('/')}/projects/{schedule.project_id}"
    schedule_text = (
        schedule.cron_expression
        if schedule.schedule_type == ScheduleType.CRON.value
        else "Automatic"
    )
    if schedule.next_run:
        next_check = datetime.datetime.fromtimestamp(
            schedule.next_run, tz=datetime.timezone.utc
        ).strftime("%Y-%m-%d %H:%M UTC")
    else:
        next_check = "the next scheduled time"

    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "text": {
                "type": "plain_text",
                "emoji": True,
                "text": f"{_EMOJI[notification.level]} {notification.title}",
            },
        }
    ]
    if notification.extra_text:
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": notification.extra_text}}
        )
    blocks += [
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Database:*\n{notification.connection.name}"},
                {"type": "mrkdwn", "text": f"*Playbook:*\n{schedule.playbook}"},
                {"type": "mrkdwn", "text": f"*Model:*\n{schedule.model or 'default'}"},
                {"type": "mrkdwn", "text": f"*Schedule:*\n{schedule_text}"},
            ],
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": markdown_to_mrkdwn(notification.message)},
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"I'll do the next check at *{next_check}*"},
        },
    ]

    buttons = []
    if notification.run is not None:
        buttons.append(
            {
                "type": "button",
                "style": "primary",
                "text": {"type": "plain_text", "text": "Open in chat"},
                "url": f"{base}/chats/new?scheduleRun={notification.run.id}",
            }
        )
    buttons += [
        {
            "type": "button",
            "text": {"type": "plain_text", "text": "Run History"},
            "url": f"{base}/monitoring/runs/{schedule.id}",
        },
        {
            "type": "button",
            "text": {"type": "plain_text", "text": "View Schedule Settings"},
            "url": f"{base}/monitoring/schedule/{schedule.id}",
        },
    ]
    blocks.append({"type": "actions", "elements": buttons})
    return {"text": f"{notification.level.value}: {notification.title}", "blocks": blocks}


class SlackWebhookChannel(NotificationChannel):
    """
    Posts Block Kit messages to a Slack incoming webhook.

    is_external = True  →  higher routing priority than the console.
    """

    def __init__(
        self,
        store: ScheduleStore | None = None,
        default_webhook_url: str = "",
        public_url: str = "http://localhost:4001",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store
        self._default_url = default_webhook_url.strip()
        self._public_url = public_url
        self._client = client

    @property
    def name(self) -> str:
        return "slack"

    @property
    def is_external(self) -> bool:
        return True

    @property
    def is_active(self) -> bool:
        return self._store is not None or bool(self._default_url)

    async def _webhook_url(self, notification: Notification) -> str:
        if self._store is not None:
            integration = await self._store.get_integration(
                notification.connection.project_id, "slack"
            )
            if integration and integration.get("webhook_url"):
                return integration["webhook_url"]
        return self._default_url

    async def deliver(self, notification: Notification) -> bool:
        url = await self._webhook_url(notification)
        if not url:
            logger.info(
                f"No Slack integration for project {notification.connection.project_id}"
            )
            return False

        payload = build_blocks(notification, self._public_url)
        try:
            if self._client is not None:
                resp = await self._client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=10) as client:
                    resp = await client.post(url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Slack delivery failed: {e}")
            return False

        logger.debug(f"Slack notification sent for schedule {notification.schedule.id}")
        return True
