"""Heartbeat state store -- the singleton row tracking the last heartbeat."""

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from vigil.state.schemas import HeartbeatState, ensure_utc
from vigil.storage.database import Database
from vigil.storage.models import HeartbeatStateRecord

logger = logging.getLogger(__name__)

_SINGLETON_ID = 1


class HeartbeatStateStore:
    def __init__(self, database: Database) -> None:
        self._db = database
        self._lock = asyncio.Lock()

    async def load(self) -> HeartbeatState:
        """Current state, or a fresh default if missing or unreadable."""
        try:
            async with self._db.session() as session:
                row = await session.get(HeartbeatStateRecord, _SINGLETON_ID)
                if row is None:
                    return HeartbeatState()
                return HeartbeatState(
                    last_run_at=ensure_utc(row.last_run_at),
                    last_checks=dict(row.last_checks or {}),
                )
        except SQLAlchemyError:
            logger.warning("Heartbeat state unreadable, using defaults", exc_info=True)
            return HeartbeatState()

    async def save(self, state: HeartbeatState) -> None:
        async with self._lock:
            try:
                async with self._db.session() as session:
                    row = await session.get(HeartbeatStateRecord, _SINGLETON_ID)
                    if row is None:
                        row = HeartbeatStateRecord(id=_SINGLETON_ID)
                        session.add(row)
                    row.last_run_at = state.last_run_at
                    row.last_checks = dict(state.last_checks)
                    await session.commit()
            except SQLAlchemyError:
                logger.exception("Failed to save heartbeat state")
