"""History store -- bounded append-only log of chat turns.

The log is the durable source of truth for session handles: the handle
attached to the newest turn of a conversation that carries one wins.
Reads degrade to "empty history" on storage errors and writes are
best-effort, so a broken database never takes down an in-flight call.
"""

import asyncio
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from vigil.state.schemas import Turn, ensure_utc
from vigil.storage.database import Database
from vigil.storage.models import TurnRecord

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def _to_turn(row: TurnRecord) -> Turn:
    return Turn(
        role=row.role,
        content=row.content,
        timestamp=ensure_utc(row.created_at),
        conversation_id=row.conversation_id,
        session_handle=row.session_handle,
    )


class HistoryStore:
    """Keeps the most recent ``limit`` turns across all conversations."""

    def __init__(self, database: Database, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._db = database
        self._limit = limit
        self._lock = asyncio.Lock()

    async def append(self, turn: Turn) -> None:
        """Persist a turn and discard the oldest turns beyond the limit."""
        async with self._lock:
            try:
                async with self._db.session() as session:
                    session.add(
                        TurnRecord(
                            role=turn.role,
                            content=turn.content,
                            created_at=turn.timestamp,
                            conversation_id=turn.conversation_id,
                            session_handle=turn.session_handle,
                        )
                    )
                    await session.flush()

                    cutoff = await session.scalar(
                        select(TurnRecord.id)
                        .order_by(TurnRecord.id.desc())
                        .offset(self._limit)
                        .limit(1)
                    )
                    if cutoff is not None:
                        await session.execute(delete(TurnRecord).where(TurnRecord.id <= cutoff))
                    await session.commit()
            except SQLAlchemyError:
                logger.exception(
                    "Failed to append %s turn for conversation %s",
                    turn.role,
                    turn.conversation_id,
                )

    async def most_recent_session_handle(self, conversation_id: str) -> str | None:
        """Scan newest to oldest for the conversation's last known handle."""
        try:
            async with self._db.session() as session:
                return await session.scalar(
                    select(TurnRecord.session_handle)
                    .where(TurnRecord.conversation_id == conversation_id)
                    .where(TurnRecord.session_handle.is_not(None))
                    .order_by(TurnRecord.id.desc())
                    .limit(1)
                )
        except SQLAlchemyError:
            logger.warning("History unreadable, treating as empty", exc_info=True)
            return None

    async def latest_session_handles(self) -> dict[str, str]:
        """Map every conversation in history to its most recent handle."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(TurnRecord.conversation_id, TurnRecord.session_handle)
                    .where(TurnRecord.conversation_id.is_not(None))
                    .where(TurnRecord.session_handle.is_not(None))
                    .order_by(TurnRecord.id)
                )
                # Ascending scan: later rows overwrite earlier ones.
                return {conversation: handle for conversation, handle in result.all()}
        except SQLAlchemyError:
            logger.warning("History unreadable, treating as empty", exc_info=True)
            return {}

    async def recent(self, limit: int | None = None, conversation_id: str | None = None) -> list[Turn]:
        """Return the newest turns, oldest first."""
        try:
            async with self._db.session() as session:
                q = select(TurnRecord).order_by(TurnRecord.id.desc())
                if conversation_id is not None:
                    q = q.where(TurnRecord.conversation_id == conversation_id)
                if limit is not None:
                    q = q.limit(limit)
                rows = (await session.execute(q)).scalars().all()
        except SQLAlchemyError:
            logger.warning("History unreadable, treating as empty", exc_info=True)
            return []
        return [_to_turn(row) for row in reversed(rows)]

    async def count(self) -> int:
        try:
            async with self._db.session() as session:
                return await session.scalar(select(func.count()).select_from(TurnRecord)) or 0
        except SQLAlchemyError:
            logger.warning("History unreadable, treating as empty", exc_info=True)
            return 0
