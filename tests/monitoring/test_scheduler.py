"""Tests for dbagent/monitoring/scheduler.py"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import pytest

from dbagent.core.config import MonitoringConfig
from dbagent.core.errors import ConfigError, LLMError, StorageError, TargetDBError
from dbagent.llm.mock import MockLLMProvider
from dbagent.monitoring.gate import ConcurrencyGate
from dbagent.monitoring.scheduler import Scheduler
from dbagent.store.runs import RunHistoryStore
from dbagent.store.schedules import ScheduleStore

MIDNIGHT = 1704153600.0   # first fire time of "0 0 * * *" after the fixture clock
DAY = 86400


def scripted_llms(level: str = "info", summary: str = "All good", created: list | None = None):
    """Provider factory: a fresh mock per run, scripted for a one-step run."""

    def factory(model):
        llm = MockLLMProvider()
        llm.set_response("Checked.")
        llm.set_json({"summary": summary, "notificationLevel": level})
        llm.set_response("Report.")
        if created is not None:
            created.append(llm)
        return llm

    return factory


@pytest.fixture
def make_scheduler(database, sink, fake_tools, monitoring_config):
    def _make(provider_factory=None, tools_factory=fake_tools, config=monitoring_config, gate=None):
        return Scheduler(
            database,
            config,
            sink,
            provider_factory or scripted_llms(),
            tools_factory=tools_factory,
            gate=gate,
        )

    return _make


@pytest.mark.asyncio
class TestTick:
    async def test_not_due_does_nothing(self, make_scheduler, make_schedule, now):
        await make_schedule()
        created = []
        scheduler = make_scheduler(scripted_llms(created=created))
        assert await scheduler.check_and_run_due_schedules(now=now) == []
        assert created == []

    async def test_info_run_reschedules_quietly(
        self, make_scheduler, make_schedule, admin_store, sink, database
    ):
        schedule = await make_schedule(cron_expression="0 0 * * *", notify_level="warning")
        scheduler = make_scheduler(scripted_llms(level="info"))

        admitted = await scheduler.check_and_run_due_schedules(now=MIDNIGHT)

        assert [s.id for s in admitted] == [schedule.id]
        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.next_run == MIDNIGHT + DAY
        assert loaded.last_run == MIDNIGHT
        assert loaded.failures == 0
        assert sink.calls == []
        assert await RunHistoryStore(database.admin()).count_runs(schedule.id) == 1

    async def test_alert_run_counts_and_notifies(self, make_scheduler, make_schedule, admin_store, sink):
        schedule = await make_schedule(cron_expression="0 0 * * *", notify_level="warning")
        scheduler = make_scheduler(scripted_llms(level="alert"))

        await scheduler.check_and_run_due_schedules(now=MIDNIGHT)

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.failures == 1
        assert loaded.status == "scheduled"
        assert len(sink.calls) == 1

    async def test_failure_count_write_error_still_notifies(
        self, make_scheduler, make_schedule, admin_store, sink, monkeypatch
    ):
        schedule = await make_schedule(notify_level="warning")
        attempts = []

        async def broken(self, schedule_id):
            attempts.append(schedule_id)
            raise StorageError("database is locked")

        monkeypatch.setattr(ScheduleStore, "increment_failures", broken)
        run = await make_scheduler(scripted_llms(level="alert")).run_job(schedule, MIDNIGHT)

        assert run is not None
        assert run.notification_level == "alert"
        assert attempts == [schedule.id]
        assert len(sink.calls) == 1
        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.next_run == MIDNIGHT + DAY

    async def test_gate_slots_released_after_tick(self, make_scheduler, make_schedule):
        await make_schedule()
        scheduler = make_scheduler()
        await scheduler.check_and_run_due_schedules(now=MIDNIGHT)
        assert scheduler.gate.in_flight == 0

    async def test_capacity_defers_the_rest(self, make_scheduler, make_schedule, admin_store):
        for _ in range(25):
            await make_schedule()
        created = []
        scheduler = make_scheduler(
            scripted_llms(created=created), config=MonitoringConfig(max_parallel_runs=20)
        )

        first = await scheduler.check_and_run_due_schedules(now=MIDNIGHT)
        assert len(first) == 20
        assert len(created) == 20

        second = await scheduler.check_and_run_due_schedules(now=MIDNIGHT)
        assert len(second) == 5
        assert {s.id for s in first}.isdisjoint({s.id for s in second})

        schedules = await admin_store.list_schedules()
        assert all(s.next_run == MIDNIGHT + DAY for s in schedules)

    async def test_store_failure_does_not_raise(self, make_scheduler, monkeypatch):
        scheduler = make_scheduler()

        async def broken(*args, **kwargs):
            raise StorageError("disk I/O error")

        monkeypatch.setattr(scheduler._admin, "list_schedules", broken)
        assert await scheduler.check_and_run_due_schedules(now=MIDNIGHT) == []


@pytest.mark.asyncio
class TestMutualExclusion:
    async def test_concurrent_jobs_run_once(self, make_scheduler, make_schedule):
        schedule = await make_schedule()
        created = []
        scheduler = make_scheduler(scripted_llms(created=created))

        results = await asyncio.gather(
            scheduler.run_job(schedule, MIDNIGHT),
            scheduler.run_job(schedule, MIDNIGHT),
        )

        assert len(created) == 1
        assert sum(r is not None for r in results) == 1

    async def test_two_schedulers_race(self, make_scheduler, make_schedule, database):
        schedule = await make_schedule()
        created = []
        factory = scripted_llms(created=created)
        a = make_scheduler(factory)
        b = make_scheduler(factory)

        await asyncio.gather(
            a.check_and_run_due_schedules(now=MIDNIGHT),
            b.check_and_run_due_schedules(now=MIDNIGHT),
        )

        assert len(created) == 1
        assert await RunHistoryStore(database.admin()).count_runs(schedule.id) == 1

    async def test_lost_claim_is_silent(self, make_scheduler, make_schedule, admin_store):
        schedule = await make_schedule()
        await admin_store.try_claim_running(schedule.id)
        created = []
        scheduler = make_scheduler(scripted_llms(created=created))

        # stale copy still says "scheduled"
        assert await scheduler.run_job(schedule, MIDNIGHT) is None
        assert created == []
        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "running"
        assert loaded.failures == 0


@pytest.mark.asyncio
class TestAlwaysRescheduled:
    async def test_classification_failure(self, make_scheduler, make_schedule, admin_store):
        schedule = await make_schedule()

        def bad_json(model):
            llm = MockLLMProvider()
            llm.set_response("Checked.")
            llm.set_response("definitely not json")
            return llm

        await make_scheduler(bad_json).check_and_run_due_schedules(now=MIDNIGHT)

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.next_run > MIDNIGHT
        assert loaded.failures == 1

    async def test_target_db_unreachable(self, make_scheduler, make_schedule, admin_store):
        schedule = await make_schedule()

        @asynccontextmanager
        async def unreachable(connection, registry):
            raise TargetDBError("connection refused")
            yield

        await make_scheduler(tools_factory=unreachable).check_and_run_due_schedules(now=MIDNIGHT)

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.next_run == MIDNIGHT + DAY
        assert loaded.failures == 1

    async def test_model_outage_counts_once_without_notifying(
        self, make_scheduler, make_schedule, admin_store, database, sink
    ):
        schedule = await make_schedule(notify_level="info")

        def unreachable_model(model):
            llm = MockLLMProvider()
            llm.set_error(LLMError("connection refused", provider="ollama", model=model))
            return llm

        await make_scheduler(unreachable_model).check_and_run_due_schedules(now=MIDNIGHT)

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.next_run == MIDNIGHT + DAY
        assert loaded.failures == 1
        assert sink.calls == []
        assert await RunHistoryStore(database.admin()).count_runs(schedule.id) == 0

    async def test_unknown_provider(self, make_scheduler, make_schedule, admin_store):
        schedule = await make_schedule()

        def no_provider(model):
            raise ConfigError(f"Unknown LLM provider: {model!r}")

        await make_scheduler(no_provider).check_and_run_due_schedules(now=MIDNIGHT)

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.failures == 1

    async def test_invalid_cron_at_reschedule(
        self, make_scheduler, make_schedule, admin_store, database, monitoring_config
    ):
        schedule = await make_schedule()
        await database.execute(
            "UPDATE schedules SET cron_expression = 'bogus' WHERE id = ?", [schedule.id]
        )
        schedule.cron_expression = "bogus"

        await make_scheduler().run_job(schedule, MIDNIGHT)

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.next_run == MIDNIGHT + monitoring_config.timeout_for_running_schedule_secs
        assert loaded.failures == 1

    async def test_disabled_mid_run_stays_disabled(
        self, make_scheduler, make_schedule, admin_store, fake_tools
    ):
        schedule = await make_schedule()

        @asynccontextmanager
        async def disabling(connection, registry):
            await admin_store.set_enabled(schedule.id, False)
            async with fake_tools(connection, registry) as tools:
                yield tools

        await make_scheduler(tools_factory=disabling).check_and_run_due_schedules(now=MIDNIGHT)

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.enabled is False
        assert loaded.status == "disabled"
        assert loaded.next_run is None
        assert loaded.last_run == MIDNIGHT


@pytest.mark.asyncio
class TestCrashRecovery:
    async def test_running_schedule_recovers_after_timeout(
        self, make_scheduler, make_schedule, admin_store, monitoring_config
    ):
        schedule = await make_schedule()
        # a previous process claimed it and died
        await admin_store.try_claim_running(schedule.id)
        timeout = monitoring_config.timeout_for_running_schedule_secs
        created = []
        scheduler = make_scheduler(scripted_llms(created=created))

        assert await scheduler.check_and_run_due_schedules(now=MIDNIGHT + timeout - 1) == []
        assert created == []

        recovered_at = MIDNIGHT + timeout
        admitted = await scheduler.check_and_run_due_schedules(now=recovered_at)
        assert [s.id for s in admitted] == [schedule.id]
        assert len(created) == 1

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.status == "scheduled"
        assert loaded.last_run == recovered_at
        assert loaded.next_run == MIDNIGHT + DAY


@pytest.mark.asyncio
class TestBackgroundLoop:
    async def test_fire_and_forget_tick(self, make_scheduler, make_schedule, admin_store):
        schedule = await make_schedule()
        scheduler = make_scheduler()

        admitted = await scheduler.check_and_run_due_schedules(now=MIDNIGHT, wait=False)
        assert len(admitted) == 1
        await scheduler.stop()  # waits for in-flight runs

        loaded = await admin_store.get_schedule(schedule.id)
        assert loaded.last_run == MIDNIGHT
        assert scheduler.gate.in_flight == 0

    async def test_start_and_stop(self, make_scheduler, make_schedule, database):
        schedule = await make_schedule()  # next_run is in 2024, so due now
        scheduler = make_scheduler(config=MonitoringConfig(poll_interval=3600))

        await scheduler.start()
        for _ in range(100):
            if await RunHistoryStore(database.admin()).count_runs(schedule.id):
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert await RunHistoryStore(database.admin()).count_runs(schedule.id) == 1
        loaded = await ScheduleStore(database.admin()).get_schedule(schedule.id)
        assert loaded.status == "scheduled"
