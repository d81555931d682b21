"""Session registry -- in-memory cache of conversation -> agent session handle.

Read-through/write-through over HistoryStore: a miss falls back to the
durable log, and the Task Runner appends a turn carrying every new handle.
After a restart the cache is empty until warm() rescans history.
"""

import logging

from vigil.state.history import HistoryStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, history: HistoryStore) -> None:
        self._history = history
        self._handles: dict[str, str] = {}
        # Conversations reset since their last turn; history still holds
        # the old handle, so lookups must not fall through to it.
        self._cleared: set[str] = set()

    async def warm(self) -> int:
        """Populate the cache from history. Returns the number of handles loaded."""
        handles = await self._history.latest_session_handles()
        for conversation_id, handle in handles.items():
            if conversation_id not in self._cleared:
                self._handles.setdefault(conversation_id, handle)
        logger.info("Session registry warmed with %d handle(s)", len(handles))
        return len(handles)

    async def get(self, conversation_id: str) -> str | None:
        handle = self._handles.get(conversation_id)
        if handle is not None:
            return handle
        if conversation_id in self._cleared:
            return None
        handle = await self._history.most_recent_session_handle(conversation_id)
        if handle is not None:
            self._handles[conversation_id] = handle
        return handle

    def peek(self, conversation_id: str) -> str | None:
        """Cache-only lookup."""
        return self._handles.get(conversation_id)

    def set(self, conversation_id: str, handle: str) -> None:
        self._handles[conversation_id] = handle
        self._cleared.discard(conversation_id)

    def clear(self, conversation_id: str) -> None:
        self._handles.pop(conversation_id, None)
        self._cleared.add(conversation_id)
        logger.info("Session cleared for conversation %s", conversation_id)
