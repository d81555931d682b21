"""Schedule store -- materialized cron jobs reconciled against the checklist."""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from vigil.directives import Directive
from vigil.state.schemas import CronJob, ReconcileResult, ensure_utc, utcnow
from vigil.storage.database import Database
from vigil.storage.models import CronJobRecord

logger = logging.getLogger(__name__)


def _to_job(row: CronJobRecord) -> CronJob:
    return CronJob(
        id=row.id,
        name=row.name,
        trigger=row.trigger,
        task=row.task,
        enabled=row.enabled,
        orphaned=row.orphaned,
        last_run_at=ensure_utc(row.last_run_at),
    )


class ScheduleStore:
    """CRUD for cron_jobs plus checklist reconciliation."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._lock = asyncio.Lock()

    async def reconcile(
        self,
        directives: Iterable[Directive],
        retire_orphans: bool = True,
    ) -> ReconcileResult:
        """Materialize unseen directives; never touch existing jobs' run state.

        With retire_orphans, jobs whose directive is missing from this parse
        are flagged orphaned (and unflagged when the directive returns).
        """
        result = ReconcileResult()
        async with self._lock:
            try:
                async with self._db.session() as session:
                    rows = (await session.execute(select(CronJobRecord))).scalars().all()
                    existing = {row.id: row for row in rows}
                    seen: set[str] = set()

                    for directive in directives:
                        job_id = directive.job_id
                        if job_id in seen:
                            continue
                        seen.add(job_id)
                        row = existing.get(job_id)
                        if row is None:
                            row = CronJobRecord(
                                id=job_id,
                                name=directive.name,
                                trigger=directive.trigger,
                                task=directive.task,
                                enabled=True,
                                orphaned=False,
                                created_at=utcnow(),
                            )
                            session.add(row)
                            result.added.append(_to_job(row))
                        elif row.orphaned and retire_orphans:
                            row.orphaned = False
                            result.restored.append(job_id)

                    if retire_orphans:
                        for job_id, row in existing.items():
                            if job_id not in seen and not row.orphaned:
                                row.orphaned = True
                                result.orphaned.append(job_id)

                    await session.commit()
            except SQLAlchemyError:
                logger.exception("Schedule reconciliation failed")
                return ReconcileResult()

        if result.added:
            logger.info("Added %d cron job(s) from checklist", len(result.added))
        if result.orphaned:
            logger.info("Retired %d cron job(s) missing from checklist", len(result.orphaned))
        if result.restored:
            logger.info("Restored %d cron job(s) back in checklist", len(result.restored))
        return result

    async def list(self) -> list[CronJob]:
        """All jobs in creation order; empty on storage errors."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(CronJobRecord).order_by(CronJobRecord.created_at, CronJobRecord.id)
                )
                return [_to_job(row) for row in result.scalars().all()]
        except SQLAlchemyError:
            logger.warning("Schedule unreadable, treating as empty", exc_info=True)
            return []

    async def get(self, job_id: str) -> CronJob | None:
        try:
            async with self._db.session() as session:
                row = await session.get(CronJobRecord, job_id)
                return _to_job(row) if row is not None else None
        except SQLAlchemyError:
            logger.warning("Schedule unreadable, treating as empty", exc_info=True)
            return None

    async def active_count(self) -> int:
        try:
            async with self._db.session() as session:
                return await session.scalar(
                    select(func.count())
                    .select_from(CronJobRecord)
                    .where(CronJobRecord.enabled.is_(True))
                    .where(CronJobRecord.orphaned.is_(False))
                ) or 0
        except SQLAlchemyError:
            logger.warning("Schedule unreadable, treating as empty", exc_info=True)
            return 0

    async def mark_run(self, job_id: str, ran_at: datetime) -> None:
        """Record a completed run. Best-effort."""
        await self._update(job_id, last_run_at=ran_at)

    async def set_enabled(self, job_id: str, enabled: bool) -> None:
        await self._update(job_id, enabled=enabled)

    async def _update(self, job_id: str, **values: object) -> None:
        async with self._lock:
            try:
                async with self._db.session() as session:
                    row = await session.get(CronJobRecord, job_id)
                    if row is None:
                        logger.warning("Cron job %s not found", job_id)
                        return
                    for key, value in values.items():
                        setattr(row, key, value)
                    await session.commit()
            except SQLAlchemyError:
                logger.exception("Failed to update cron job %s", job_id)
