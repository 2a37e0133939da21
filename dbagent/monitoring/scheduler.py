"""
Scheduler — the poll loop that turns due schedules into playbook runs.

Design:
- Every tick loads ALL schedules through an admin DataAccess (the loop acts
  for every user), filters them with should_run(), and lets the
  ConcurrencyGate admit at most max_parallel_runs of them
- Each admitted schedule runs through run_job() with a PlaybookRunner bound
  to the schedule owner's DataAccess
- run_job() claims the schedule with a conditional UPDATE
  (scheduled → running); a lost claim means another worker owns it
- Whatever happens inside the run, the schedule is written back to
  `scheduled` with a fresh next_run, so it never stays stuck in `running`
- A run that never finishes (crashed process) is picked up again once
  timeout_for_running_schedule_secs has passed after its next_run

No tick ever raises: every failure is logged and counted, and the next
tick runs regardless.
"""

from __future__ import annotations

import asyncio
import logging
import time

from dbagent.core.config import MonitoringConfig
from dbagent.core.errors import ConfigError
from dbagent.monitoring.gate import ConcurrencyGate
from dbagent.monitoring.models import Run, Schedule, ScheduleStatus
from dbagent.monitoring.runner import PlaybookRunner, ProviderFactory, ToolsFactory
from dbagent.monitoring.triggers import compute_next_run, should_run
from dbagent.notifications.router import NotificationSink
from dbagent.store.database import Database
from dbagent.store.schedules import ScheduleStore

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Background monitoring scheduler.

    Usage:
        scheduler = Scheduler(database, config.monitoring, router, provider_factory)

        # one-shot, e.g. from an external cron
        await scheduler.check_and_run_due_schedules()

        # or self-driving
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        database: Database,
        config: MonitoringConfig,
        sink: NotificationSink,
        provider_factory: ProviderFactory,
        tools_factory: ToolsFactory | None = None,
        gate: ConcurrencyGate | None = None,
    ) -> None:
        self._database = database
        self._config = config
        self._sink = sink
        self._provider_factory = provider_factory
        self._tools_factory = tools_factory
        self._gate = gate or ConcurrencyGate(config.max_parallel_runs)
        self._admin = ScheduleStore(database.admin())
        self._task: asyncio.Task | None = None
        self._running = False
        self._jobs: set[asyncio.Task] = set()

    @property
    def gate(self) -> ConcurrencyGate:
        return self._gate

    async def start(self) -> None:
        """Start the background polling loop."""
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="dbagent-scheduler")
        logger.info(f"Scheduler started (poll every {self._config.poll_interval}s)")

    async def stop(self) -> None:
        """Stop polling and wait for the runs already in flight."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._jobs:
            await asyncio.gather(*self._jobs, return_exceptions=True)
        logger.info("Scheduler stopped")

    # ── Poll loop ─────────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            # Jobs outlive the tick; the gate keeps overlapping ticks bounded
            await self.check_and_run_due_schedules(wait=False)
            await asyncio.sleep(self._config.poll_interval)

    async def check_and_run_due_schedules(
        self, now: float | None = None, *, wait: bool = True
    ) -> list[Schedule]:
        """
        One tick: find eligible schedules, admit up to the gate's capacity
        and run them.

        With wait=True the tick returns once every admitted run finished;
        with wait=False the runs continue as background tasks.

        Returns the admitted schedules. Never raises.
        """
        now = now if now is not None else time.time()
        try:
            schedules = await self._admin.list_schedules()
        except Exception as e:
            logger.error(f"Scheduler tick: could not load schedules: {e}")
            return []

        eligible = [
            s for s in schedules
            if should_run(s, now, self._config.timeout_for_running_schedule_secs)
        ]
        admitted = self._gate.admit(eligible)
        if not admitted:
            logger.debug(f"Scheduler tick: nothing to run ({len(schedules)} schedules)")
            return []

        logger.info(f"Scheduler tick: running {len(admitted)} of {len(eligible)} eligible")
        if wait:
            results = await asyncio.gather(
                *(self.run_job(s, now) for s in admitted), return_exceptions=True
            )
            for schedule, result in zip(admitted, results):
                if isinstance(result, BaseException):
                    logger.error(f"Schedule {schedule.id}: job crashed: {result}")
        else:
            for schedule in admitted:
                task = asyncio.create_task(
                    self.run_job(schedule, now), name=f"schedule:{schedule.id}"
                )
                self._jobs.add(task)
                task.add_done_callback(self._jobs.discard)
        return admitted

    # ── One job ───────────────────────────────────────────────────────────────

    async def run_job(self, schedule: Schedule, now: float) -> Run | None:
        """
        Claim, run and reschedule one schedule.

        Returns the Run, or None if the claim was lost or the run failed.
        The gate slot is released when this returns.
        """
        try:
            return await self._run_job(schedule, now)
        finally:
            self._gate.release(schedule.id)

    async def _run_job(self, schedule: Schedule, now: float) -> Run | None:
        if schedule.status == ScheduleStatus.SCHEDULED.value:
            try:
                claimed = await self._admin.try_claim_running(schedule.id)
            except Exception as e:
                logger.error(f"Schedule {schedule.id}: claim failed: {e}")
                return None
            if not claimed:
                logger.debug(f"Schedule {schedule.id} claimed elsewhere, skipping")
                return None
        else:
            logger.info(f"Schedule {schedule.id} recovering from status {schedule.status!r}")

        run: Run | None = None
        try:
            runner = PlaybookRunner(
                self._database.as_user(schedule.user_id),
                self._sink,
                self._provider_factory,
                tools_factory=self._tools_factory,
                config=self._config,
            )
            run = await runner.run(schedule, now)
        except Exception as e:
            logger.error(f"Schedule {schedule.id} ({schedule.playbook}) failed: {e}")
            await self._count_failure(schedule)

        await self._reschedule(schedule, now)
        return run

    async def _reschedule(self, schedule: Schedule, now: float) -> None:
        try:
            next_run = compute_next_run(schedule, now)
        except ConfigError as e:
            logger.error(f"Schedule {schedule.id}: cannot compute next run: {e}")
            await self._count_failure(schedule)
            next_run = now + self._config.timeout_for_running_schedule_secs

        try:
            await self._admin.set_scheduled_state(
                schedule.id, next_run=next_run, last_run=now
            )
        except Exception as e:
            logger.error(f"Schedule {schedule.id}: could not write back state: {e}")
        else:
            logger.debug(f"Schedule {schedule.id} next run at {next_run}")

    async def _count_failure(self, schedule: Schedule) -> None:
        try:
            await self._admin.increment_failures(schedule.id)
        except Exception as e:
            logger.warning(f"Schedule {schedule.id}: could not count failure: {e}")
