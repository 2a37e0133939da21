"""
PlaybookRunner — executes one schedule's playbook end to end.

    1. resolve connection + project, open the target database, build tools
    2. agent run of the playbook
    3. severity classification      {summary, notificationLevel}
    4. drill-down, at most max_steps - 1 extra playbooks
                                    {shouldRunPlaybook, recommendedPlaybook}
    5. final summarization          → Run.result
    6. persist the Run (insert + trim), apply the severity policy

Nothing is stored or notified unless all of it succeeds. Model failures
(LLMError), store errors, an unreachable target database and classification
violations propagate to the scheduler, which counts one failure and
reschedules.
"""

from __future__ import annotations

import logging
import time
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Callable

from dbagent.agent.invoker import AgentInvoker
from dbagent.agent.prompts import (
    SUMMARY_PROMPT,
    monitoring_system_prompt,
    next_playbook_prompt,
    notification_level_prompt,
    run_playbook_prompt,
)
from dbagent.core.config import MonitoringConfig
from dbagent.core.errors import ClassificationError
from dbagent.core.types import Message
from dbagent.llm.base import LLMProvider
from dbagent.monitoring.models import (
    Connection,
    NotificationDecision,
    PlaybookDecision,
    Run,
    Schedule,
)
from dbagent.monitoring.policy import apply_severity_policy
from dbagent.notifications.router import NotificationSink
from dbagent.playbooks.registry import PlaybookRegistry
from dbagent.skills.builtin.playbooks import make_playbook_skill
from dbagent.skills.builtin.postgres import PostgresSkill
from dbagent.skills.manager import SkillManager
from dbagent.store.database import DataAccess
from dbagent.store.runs import RunHistoryStore
from dbagent.store.schedules import ScheduleStore
from dbagent.targetdb.client import TargetDB

logger = logging.getLogger(__name__)

ToolsFactory = Callable[[Connection, PlaybookRegistry], AbstractAsyncContextManager[SkillManager]]
ProviderFactory = Callable[[str], LLMProvider]


def postgres_tools(slow_query_threshold_ms: int = 2000) -> ToolsFactory:
    """Tools bound to the schedule's target database, open for one run."""

    @asynccontextmanager
    async def factory(
        connection: Connection, registry: PlaybookRegistry
    ) -> AsyncIterator[SkillManager]:
        async with TargetDB.open(connection.connection_string) as db:
            manager = SkillManager()
            manager.register(PostgresSkill(db, slow_query_threshold_ms))
            manager.register(make_playbook_skill(registry))
            try:
                yield manager
            finally:
                await manager.shutdown_all()

    return factory


class PlaybookRunner:
    """
    Runs schedules on behalf of one DataAccess (normally the schedule owner).

    Usage:
        runner = PlaybookRunner(
            database.as_user(schedule.user_id),
            sink=router,
            provider_factory=lambda model: make_provider(model, config.llm),
        )
        run = await runner.run(schedule, now=time.time())
    """

    def __init__(
        self,
        access: DataAccess,
        sink: NotificationSink,
        provider_factory: ProviderFactory,
        tools_factory: ToolsFactory | None = None,
        config: MonitoringConfig | None = None,
    ) -> None:
        self._config = config or MonitoringConfig()
        self._store = ScheduleStore(access)
        self._runs = RunHistoryStore(access)
        self._sink = sink
        self._provider_factory = provider_factory
        self._tools_factory = tools_factory or postgres_tools(self._config.slow_query_threshold_ms)

    async def run(self, schedule: Schedule, now: float | None = None) -> Run:
        now = now if now is not None else time.time()
        logger.info(f"Running schedule {schedule.id} (playbook={schedule.playbook})")

        connection = await self._store.get_connection_for_schedule(schedule)
        project = await self._store.get_project(schedule.project_id)
        registry = PlaybookRegistry(await self._store.list_playbooks(project.id))
        system_prompt = monitoring_system_prompt(project.cloud_provider)

        llm = self._provider_factory(schedule.model)
        invoker = AgentInvoker(
            llm,
            max_iterations=self._config.agent_max_iterations,
            temperature=self._config.temperature,
        )
        messages = [Message.user(run_playbook_prompt(schedule.playbook))]
        if schedule.additional_instructions:
            messages.append(Message.user(schedule.additional_instructions))

        try:
            async with self._tools_factory(connection, registry) as tools:
                run = await self._execute(
                    schedule, invoker, system_prompt, messages, tools, registry, now
                )
        finally:
            await llm.close()

        await self._runs.insert_and_trim(run, schedule.keep_history)
        outcome = await apply_severity_policy(schedule, connection, run, self._store, self._sink)
        logger.info(
            f"Schedule {schedule.id} finished: {run.notification_level} "
            f"(notified={outcome.notified}) {run.summary}"
        )
        return run

    async def _execute(
        self,
        schedule: Schedule,
        invoker: AgentInvoker,
        system_prompt: str,
        messages: list[Message],
        tools: SkillManager,
        registry: PlaybookRegistry,
        now: float,
    ) -> Run:
        # Step 1: the scheduled playbook
        result = await invoker.invoke(system_prompt, messages, tools)
        messages.extend(result.messages)

        # Severity is decided once, on the first playbook's result
        prompt = notification_level_prompt(schedule.playbook, result.text)
        decision = await invoker.classify(
            NotificationDecision, system_prompt, messages, prompt
        )
        messages.append(Message.user(prompt))
        messages.append(Message.assistant(decision.model_dump_json(by_alias=True)))
        logger.debug(f"Schedule {schedule.id} classified {decision.notification_level}")

        # Drill-down: bounded by max_steps, one agent run per extra step
        for step in range(max(schedule.max_steps, 1) - 1):
            prompt = next_playbook_prompt(registry.names())
            nxt = await invoker.classify(PlaybookDecision, system_prompt, messages, prompt)
            messages.append(Message.user(prompt))
            messages.append(Message.assistant(nxt.model_dump_json(by_alias=True)))
            if not nxt.should_run_playbook:
                break

            playbook = nxt.recommended_playbook
            if not playbook or playbook not in registry:
                raise ClassificationError(
                    f"Recommended playbook {playbook!r} is not one of {registry.names()}",
                    raw_output=nxt.model_dump_json(by_alias=True),
                )

            logger.info(f"Schedule {schedule.id} drilling down (step {step + 2}): {playbook}")
            messages.append(Message.user(run_playbook_prompt(playbook)))
            result = await invoker.invoke(system_prompt, messages, tools)
            messages.extend(result.messages)

        # Final summary of everything, no tools
        messages.append(Message.user(SUMMARY_PROMPT))
        summary = await invoker.invoke(system_prompt, messages, None)
        messages.extend(summary.messages)

        return Run(
            schedule_id=schedule.id,
            project_id=schedule.project_id,
            result=summary.text,
            summary=decision.summary,
            notification_level=decision.notification_level,
            messages=[Message.system(system_prompt), *messages],
            created_at=now,
        )

