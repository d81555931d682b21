"""Tests for HistoryStore and SessionRegistry."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from vigil.state import HistoryStore, SessionRegistry, Turn
from vigil.storage.database import Database


def _turn(content: str, conversation_id: str | None = "42", handle: str | None = None, role: str = "user") -> Turn:
    return Turn(role=role, content=content, conversation_id=conversation_id, session_handle=handle)


class TestHistoryStore:

    async def test_append_and_recent_preserve_order(self, history: HistoryStore):
        await history.append(_turn("one"))
        await history.append(_turn("two", role="assistant"))
        await history.append(_turn("three"))

        turns = await history.recent()
        assert [t.content for t in turns] == ["one", "two", "three"]
        assert turns[1].role == "assistant"
        assert turns[0].timestamp.tzinfo is not None

    async def test_session_handle_round_trip_across_conversations(self, history: HistoryStore):
        await history.append(_turn("hi", handle="sess-a", role="assistant"))
        await history.append(_turn("other", conversation_id="7", handle="sess-b", role="assistant"))
        await history.append(_turn("no handle", conversation_id="7"))

        assert await history.most_recent_session_handle("42") == "sess-a"
        assert await history.most_recent_session_handle("7") == "sess-b"
        assert await history.most_recent_session_handle("99") is None

    async def test_newest_handle_wins(self, history: HistoryStore):
        await history.append(_turn("a", handle="sess-1", role="assistant"))
        await history.append(_turn("b", handle="sess-2", role="assistant"))
        await history.append(_turn("c"))

        assert await history.most_recent_session_handle("42") == "sess-2"

    async def test_retention_drops_oldest(self, db: Database):
        store = HistoryStore(db, limit=10)
        for i in range(15):
            await store.append(_turn(f"m{i}"))

        turns = await store.recent()
        assert await store.count() == 10
        assert [t.content for t in turns] == [f"m{i}" for i in range(5, 15)]

    async def test_recent_filters_by_conversation(self, history: HistoryStore):
        await history.append(_turn("a"))
        await history.append(_turn("b", conversation_id="7"))
        await history.append(_turn("c"))

        turns = await history.recent(conversation_id="42")
        assert [t.content for t in turns] == ["a", "c"]
        assert [t.content for t in await history.recent(limit=1)] == ["c"]

    async def test_latest_session_handles(self, history: HistoryStore):
        await history.append(_turn("a", handle="old", role="assistant"))
        await history.append(_turn("b", conversation_id="7", handle="seven", role="assistant"))
        await history.append(_turn("c", handle="new", role="assistant"))

        assert await history.latest_session_handles() == {"42": "new", "7": "seven"}

    async def test_survives_reopen(self, settings):
        first = Database(settings)
        await first.connect()
        await HistoryStore(first).append(_turn("hi", handle="sess-1", role="assistant"))
        await first.disconnect()

        second = Database(settings)
        await second.connect()
        try:
            assert await HistoryStore(second).most_recent_session_handle("42") == "sess-1"
        finally:
            await second.disconnect()

    async def test_corrupt_database_cold_starts_empty(self, settings):
        settings.database_path.write_bytes(b"this is not a sqlite database" * 100)

        database = Database(settings)
        await database.connect()
        try:
            store = HistoryStore(database)
            assert await store.recent() == []
            assert await store.most_recent_session_handle("42") is None
            await store.append(_turn("fresh"))
            assert await store.count() == 1
        finally:
            await database.disconnect()

        assert list(settings.state_path.glob("vigil.db.corrupt-*"))

    async def test_read_failure_degrades_to_empty(self, history: HistoryStore, db: Database):
        await history.append(_turn("hi", handle="sess-1", role="assistant"))
        async with db.engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE turns")

        assert await history.recent() == []
        assert await history.most_recent_session_handle("42") is None
        assert await history.count() == 0
        # Best-effort write: logged, not raised.
        await history.append(_turn("lost"))

    def test_turn_is_immutable(self):
        turn = _turn("x")
        with pytest.raises(ValidationError):
            turn.content = "y"


class TestSessionRegistry:

    async def test_falls_back_to_history(self, history: HistoryStore, sessions: SessionRegistry):
        await history.append(_turn("hi", handle="sess-1", role="assistant"))

        assert sessions.peek("42") is None
        assert await sessions.get("42") == "sess-1"
        assert sessions.peek("42") == "sess-1"

    async def test_set_overrides_cache(self, sessions: SessionRegistry):
        sessions.set("42", "sess-9")
        assert await sessions.get("42") == "sess-9"

    async def test_clear_hides_stale_history(self, history: HistoryStore, sessions: SessionRegistry):
        await history.append(_turn("hi", handle="sess-1", role="assistant"))
        assert await sessions.get("42") == "sess-1"

        sessions.clear("42")
        assert await sessions.get("42") is None

        sessions.set("42", "sess-2")
        assert await sessions.get("42") == "sess-2"

    async def test_warm_loads_latest_handles(self, history: HistoryStore):
        await history.append(_turn("a", handle="sess-1", role="assistant"))
        await history.append(_turn("b", conversation_id="7", handle="sess-7", role="assistant"))

        registry = SessionRegistry(history)
        assert await registry.warm() == 2
        assert registry.peek("42") == "sess-1"
        assert registry.peek("7") == "sess-7"
