"""Scheduler -- owns every time-based trigger.

Three timer classes, each an asyncio task:

1. Heartbeat: after an initial delay, every heartbeat_interval seconds asks
   the agent to evaluate the checklist. Checklist edits are picked up here
   too: a changed fingerprint triggers a reconciliation first.
2. Alert sweep: every alert_check_interval seconds runs the AlertDispatcher.
3. Cron: one task per active job, sleeping until croniter's next fire time.

All agent failures are logged and absorbed; the next tick proceeds
normally and nothing is retried within a tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

from croniter import croniter

from vigil.agent.runner import SYSTEM_CAPABILITIES, resolve_capabilities
from vigil.agent.task_runner import AgentTask, TaskRunner
from vigil.checklist import ChecklistDocument, build_cron_prompt, build_heartbeat_prompt
from vigil.config import Settings
from vigil.directives import is_valid_trigger, parse_directives
from vigil.errors import AgentInvocationError
from vigil.handlers.alert_dispatcher import AlertDispatcher
from vigil.state.heartbeat import HeartbeatStateStore
from vigil.state.schedules import ScheduleStore
from vigil.state.schemas import CronJob, ReconcileResult, utcnow

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        task_runner: TaskRunner,
        schedules: ScheduleStore,
        heartbeat_state: HeartbeatStateStore,
        checklist: ChecklistDocument,
        dispatcher: AlertDispatcher,
        settings: Settings,
    ) -> None:
        self._runner = task_runner
        self._schedules = schedules
        self._heartbeat_state = heartbeat_state
        self._checklist = checklist
        self._dispatcher = dispatcher
        self._settings = settings
        self._tz: tzinfo | None = ZoneInfo(settings.timezone) if settings.timezone else None
        self._capabilities = resolve_capabilities(settings.system_tools, SYSTEM_CAPABILITIES)

        self._heartbeat_task: asyncio.Task | None = None
        self._alert_task: asyncio.Task | None = None
        self._job_tasks: dict[str, asyncio.Task] = {}
        self._invalid_jobs: set[str] = set()
        self._checklist_fingerprint: str | None = None
        self._reconcile_lock = asyncio.Lock()

    @property
    def scheduled_job_ids(self) -> set[str]:
        return set(self._job_tasks)

    @property
    def invalid_job_ids(self) -> set[str]:
        return set(self._invalid_jobs)

    async def start(self) -> None:
        await self._checklist.ensure_default(utcnow())
        await self.reconcile()

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="heartbeat")
        self._alert_task = asyncio.create_task(self._alert_loop(), name="alert-sweep")
        logger.info(
            "Scheduler started (heartbeat=%ds, alerts=%ds, cron jobs=%d)",
            self._settings.heartbeat_interval,
            self._settings.alert_check_interval,
            len(self._job_tasks),
        )

    async def stop(self) -> None:
        tasks = [t for t in (self._heartbeat_task, self._alert_task) if t]
        tasks.extend(self._job_tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._heartbeat_task = None
        self._alert_task = None
        self._job_tasks.clear()
        logger.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self) -> ReconcileResult:
        """Sync cron jobs with the checklist and (re)arm their timers."""
        async with self._reconcile_lock:
            text = await self._checklist.read()
            result = ReconcileResult()
            if text is not None:
                result = await self._schedules.reconcile(
                    parse_directives(text),
                    retire_orphans=self._settings.retire_orphaned_jobs,
                )
                self._checklist_fingerprint = ChecklistDocument.fingerprint(text)

            jobs = await self._schedules.list()
            self._invalid_jobs.clear()
            wanted: dict[str, CronJob] = {}
            for job in jobs:
                if not job.active:
                    continue
                if not is_valid_trigger(job.trigger):
                    logger.error("[Cron] Invalid schedule for %r: %s", job.name, job.trigger)
                    self._invalid_jobs.add(job.id)
                    continue
                wanted[job.id] = job

            for job_id in list(self._job_tasks):
                if job_id not in wanted:
                    self._job_tasks.pop(job_id).cancel()
                    logger.info("[Cron] Unscheduled %s", job_id)

            for job_id, job in wanted.items():
                if job_id not in self._job_tasks:
                    self._job_tasks[job_id] = asyncio.create_task(self._job_loop(job), name=f"cron-{job_id}")
                    logger.info("[Cron] Scheduled %r at %s", job.name, job.trigger)
            return result

    async def _reconcile_if_changed(self, text: str) -> None:
        if ChecklistDocument.fingerprint(text) != self._checklist_fingerprint:
            logger.info("Checklist changed, reconciling cron jobs")
            await self.reconcile()

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def run_heartbeat(self) -> bool:
        """Evaluate the checklist once. Returns False if skipped."""
        text = await self._checklist.read()
        if text is None:
            logger.info("[Heartbeat] No checklist at %s, skipping", self._checklist.path)
            return False
        if not text.strip():
            return False

        await self._reconcile_if_changed(text)

        logger.info("[Heartbeat] Running heartbeat check")
        state = await self._heartbeat_state.load()
        prompt = build_heartbeat_prompt(
            name=self._settings.assistant_name,
            checklist=self._checklist.path,
            alerts=self._settings.alerts_path,
            workdir=self._settings.agent_workdir,
            now=utcnow(),
            last_run=state.last_run_at,
        )
        try:
            result = await self._runner.run(
                AgentTask(prompt=prompt, capabilities=self._capabilities, label="Heartbeat")
            )
            if not result.produced_text:
                logger.info("  [Heartbeat] All checks passed, nothing to report")
        except AgentInvocationError:
            logger.exception("[Heartbeat] Agent call failed")
        finally:
            state.last_run_at = utcnow()
            await self._heartbeat_state.save(state)
        return True

    async def _heartbeat_loop(self) -> None:
        delay = self._settings.heartbeat_initial_delay
        while True:
            try:
                await asyncio.sleep(delay)
                delay = self._settings.heartbeat_interval
                await self.run_heartbeat()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("[Heartbeat] Failed")

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def _alert_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._settings.alert_check_interval)
                await self._dispatcher.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("[Alert Check] Error")

    # ------------------------------------------------------------------
    # Cron
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        if self._tz is not None:
            return datetime.now(self._tz)
        return datetime.now().astimezone()

    def next_fire_time(self, trigger: str, after: datetime | None = None) -> datetime:
        return croniter(trigger, after or self._now()).get_next(datetime)

    async def run_job(self, job: CronJob) -> None:
        """Run one cron job now; last_run_at is updated even on failure."""
        logger.info("[Cron: %s] Running", job.name)
        prompt = build_cron_prompt(
            name=self._settings.assistant_name,
            job=job,
            alerts=self._settings.alerts_path,
            now=utcnow(),
        )
        try:
            await self._runner.run(
                AgentTask(prompt=prompt, capabilities=self._capabilities, label=f"Cron: {job.name}")
            )
            logger.info("  [Cron: %s] Completed", job.name)
        except AgentInvocationError:
            logger.exception("[Cron: %s] Agent call failed", job.name)
        finally:
            await self._schedules.mark_run(job.id, utcnow())

    async def _job_loop(self, job: CronJob) -> None:
        while True:
            try:
                fire_at = self.next_fire_time(job.trigger)
                delay = (fire_at - self._now()).total_seconds()
                await asyncio.sleep(max(delay, 0))
                current = await self._schedules.get(job.id) or job
                await self.run_job(current)
                # Never fire twice within the same cron minute.
                await asyncio.sleep(max((fire_at - self._now()).total_seconds(), 0) + 1)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("[Cron: %s] Failed", job.name)
                await asyncio.sleep(60)
