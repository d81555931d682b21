"""Tests for the Scheduler: heartbeat, cron reconciliation and timers."""

import asyncio
from datetime import UTC, datetime

import pytest
import pytest_asyncio

from tests.conftest import FailingAgentRunner, session, text, tool
from vigil.agent.runner import SYSTEM_CAPABILITIES
from vigil.agent.task_runner import TaskRunner
from vigil.checklist import ChecklistDocument
from vigil.directives import job_id_for
from vigil.handlers.alert_dispatcher import AlertDispatcher
from vigil.handlers.scheduler import Scheduler


@pytest.fixture
def checklist(settings) -> ChecklistDocument:
    return ChecklistDocument(settings.checklist_path)


@pytest.fixture
def dispatcher(mailbox, messenger, settings) -> AlertDispatcher:
    return AlertDispatcher(mailbox, messenger, settings)


@pytest_asyncio.fixture
async def make_scheduler(schedules, heartbeat_state, checklist, dispatcher, settings):
    created = []

    def factory(task_runner):
        scheduler = Scheduler(task_runner, schedules, heartbeat_state, checklist, dispatcher, settings)
        created.append(scheduler)
        return scheduler

    yield factory
    for scheduler in created:
        await scheduler.stop()


@pytest.fixture
def scheduler(make_scheduler, task_runner) -> Scheduler:
    return make_scheduler(task_runner)


class TestHeartbeat:

    async def test_skipped_without_checklist(self, scheduler, agent, heartbeat_state):
        assert await scheduler.run_heartbeat() is False
        assert agent.requests == []
        assert (await heartbeat_state.load()).last_run_at is None

    async def test_skipped_when_empty(self, scheduler, agent, checklist):
        checklist.path.write_text("   \n", encoding="utf-8")
        assert await scheduler.run_heartbeat() is False
        assert agent.requests == []

    async def test_runs_with_system_capabilities(self, scheduler, agent, checklist, heartbeat_state, history):
        checklist.path.write_text("- [ ] Check disk usage\n", encoding="utf-8")
        agent.queue(session("sess-hb"), tool("Bash"), text("All checks passed"))

        assert await scheduler.run_heartbeat() is True

        [request] = agent.requests
        assert request.capabilities == SYSTEM_CAPABILITIES
        assert request.session_handle is None
        assert str(checklist.path) in request.prompt
        assert "Last heartbeat: never" in request.prompt
        assert (await heartbeat_state.load()).last_run_at is not None
        # System calls leave chat history alone.
        assert await history.count() == 0

    async def test_failure_still_records_run(
        self, make_scheduler, history, sessions, settings, checklist, heartbeat_state
    ):
        checklist.path.write_text("- [ ] Check disk usage\n", encoding="utf-8")
        runner = TaskRunner(FailingAgentRunner(), history, sessions, settings)
        scheduler = make_scheduler(runner)

        assert await scheduler.run_heartbeat() is True
        assert (await heartbeat_state.load()).last_run_at is not None

    async def test_checklist_edit_triggers_reconcile(self, scheduler, checklist, schedules):
        checklist.path.write_text("- [ ] nothing scheduled\n", encoding="utf-8")
        await scheduler.reconcile()
        assert await schedules.list() == []

        checklist.path.write_text("CRON[0 8 * * *]: Send morning briefing\n", encoding="utf-8")
        await scheduler.run_heartbeat()

        assert [job.id for job in await schedules.list()] == [job_id_for("Send morning briefing")]
        assert scheduler.scheduled_job_ids == {job_id_for("Send morning briefing")}


class TestCronReconcile:

    async def test_valid_jobs_scheduled_invalid_skipped(self, scheduler, checklist, schedules):
        checklist.path.write_text(
            "CRON[0 8 * * *]: Send morning briefing\nCRON[every morning]: Water the plants\n",
            encoding="utf-8",
        )

        result = await scheduler.reconcile()

        assert len(result.added) == 2
        assert scheduler.scheduled_job_ids == {job_id_for("Send morning briefing")}
        assert scheduler.invalid_job_ids == {job_id_for("Water the plants")}
        # The invalid job is still listed.
        assert len(await schedules.list()) == 2

    async def test_removed_directive_unscheduled(self, scheduler, checklist):
        checklist.path.write_text("CRON[0 8 * * *]: Brief\nCRON[0 9 * * *]: Plants\n", encoding="utf-8")
        await scheduler.reconcile()
        assert len(scheduler.scheduled_job_ids) == 2

        checklist.path.write_text("CRON[0 8 * * *]: Brief\n", encoding="utf-8")
        await scheduler.reconcile()
        assert scheduler.scheduled_job_ids == {job_id_for("Brief")}

    async def test_disabled_job_not_scheduled(self, scheduler, checklist, schedules):
        checklist.path.write_text("CRON[0 8 * * *]: Brief\n", encoding="utf-8")
        await scheduler.reconcile()
        await schedules.set_enabled(job_id_for("Brief"), False)

        await scheduler.reconcile()
        assert scheduler.scheduled_job_ids == set()

    async def test_missing_checklist_keeps_jobs(self, scheduler, checklist, schedules):
        checklist.path.write_text("CRON[0 8 * * *]: Brief\n", encoding="utf-8")
        await scheduler.reconcile()
        checklist.path.unlink()

        await scheduler.reconcile()
        assert scheduler.scheduled_job_ids == {job_id_for("Brief")}
        assert (await schedules.get(job_id_for("Brief"))).orphaned is False


class TestCronRun:

    async def test_run_job_marks_last_run(self, scheduler, checklist, schedules, agent):
        checklist.path.write_text("CRON[0 8 * * *]: Send morning briefing\n", encoding="utf-8")
        await scheduler.reconcile()
        job = await schedules.get(job_id_for("Send morning briefing"))

        await scheduler.run_job(job)

        [request] = agent.requests
        assert "Task: Send morning briefing" in request.prompt
        assert request.session_handle is None
        assert (await schedules.get(job.id)).last_run_at is not None

    async def test_run_job_failure_still_marks_run(
        self, make_scheduler, history, sessions, settings, checklist, schedules
    ):
        checklist.path.write_text("CRON[0 8 * * *]: Brief\n", encoding="utf-8")
        scheduler = make_scheduler(TaskRunner(FailingAgentRunner(), history, sessions, settings))
        await scheduler.reconcile()
        job = await schedules.get(job_id_for("Brief"))

        await scheduler.run_job(job)
        assert (await schedules.get(job.id)).last_run_at is not None

    async def test_next_fire_time_in_configured_zone(self, scheduler):
        after = datetime(2026, 5, 1, 7, 59, 30, tzinfo=UTC)
        assert scheduler.next_fire_time("0 8 * * *", after) == datetime(2026, 5, 1, 8, 0, tzinfo=UTC)

    async def test_job_loop_fires(self, scheduler, schedules, agent, monkeypatch):
        checklist_text = "CRON[* * * * *]: Tick\n"
        scheduler._checklist.path.write_text(checklist_text, encoding="utf-8")

        # Fire almost immediately instead of waiting for the next minute.
        monkeypatch.setattr(
            scheduler,
            "next_fire_time",
            lambda trigger, after=None: scheduler._now(),
        )
        await scheduler.reconcile()
        job = None
        for _ in range(100):
            job = await schedules.get(job_id_for("Tick"))
            if job.last_run_at is not None:
                break
            await asyncio.sleep(0.01)

        assert "Task: Tick" in agent.requests[0].prompt
        assert job.last_run_at is not None


class TestLifecycle:

    async def test_start_creates_default_checklist(self, scheduler, checklist, schedules):
        await scheduler.start()

        assert checklist.path.exists()
        # The starter checklist only shows directives as inactive examples.
        assert await schedules.list() == []
        assert scheduler.scheduled_job_ids == set()

        await scheduler.stop()
        assert scheduler.scheduled_job_ids == set()

    async def test_alert_loop_delivers(self, make_scheduler, task_runner, mailbox, messenger, settings):
        settings.alert_check_interval = 1
        settings.heartbeat_initial_delay = 3600
        scheduler = make_scheduler(task_runner)
        await mailbox.append("disk full")

        await scheduler.start()
        try:
            for _ in range(30):
                if messenger.sent:
                    break
                await asyncio.sleep(0.1)
        finally:
            await scheduler.stop()

        assert messenger.texts_to("42") == ["\U0001f514 JARVIS:\n\ndisk full"]
