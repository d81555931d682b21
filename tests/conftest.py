"""Shared fixtures: tmp_path SQLite database, fake agent runner and messenger."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from vigil.agent.runner import AgentEvent, AgentRequest
from vigil.agent.task_runner import TaskRunner
from vigil.config import Settings
from vigil.errors import AgentInvocationError
from vigil.messenger import ProgressHandle
from vigil.state import (
    AlertMailbox,
    HeartbeatStateStore,
    HistoryStore,
    ScheduleStore,
    SessionRegistry,
)
from vigil.storage.database import Database

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def text(value: str) -> AgentEvent:
    return AgentEvent(type="text", text=value)


def tool(name: str) -> AgentEvent:
    return AgentEvent(type="tool_start", tool_name=name)


def session(handle: str) -> AgentEvent:
    return AgentEvent(type="session", session_handle=handle)


class FakeAgentRunner:
    """Replays scripted event lists, one per invoke() call.

    Records every request and the peak number of concurrently open streams.
    An Exception instance inside a script is raised at that point.
    """

    def __init__(self, *scripts: list, delay: float = 0.0) -> None:
        self.scripts = list(scripts)
        self.delay = delay
        self.requests: list[AgentRequest] = []
        self.active = 0
        self.max_active = 0

    def queue(self, *events) -> None:
        self.scripts.append(list(events))

    async def invoke(self, request: AgentRequest):
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else [text("ok")]
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            for item in script:
                if self.delay:
                    await asyncio.sleep(self.delay)
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.active -= 1


class FailingAgentRunner(FakeAgentRunner):
    def __init__(self, error: Exception | None = None) -> None:
        super().__init__()
        self.error = error or AgentInvocationError("transport down")

    async def invoke(self, request: AgentRequest):
        self.requests.append(request)
        raise self.error
        yield  # pragma: no cover


class FakeMessenger:
    """Records outbound traffic; delivery can be switched off."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.progress: list[tuple[str, str]] = []
        self.edits: list[tuple[int, str]] = []
        self.typing: list[str] = []
        self.deliver = True
        self._next_id = 100

    def texts_to(self, recipient: str) -> list[str]:
        return [t for r, t in self.sent if r == recipient]

    async def send_text(self, recipient: str, text: str) -> bool:
        if not self.deliver:
            return False
        self.sent.append((recipient, text))
        return True

    async def send_progress(self, recipient: str, text: str) -> ProgressHandle | None:
        self.progress.append((recipient, text))
        self._next_id += 1
        return ProgressHandle(recipient=recipient, message_id=self._next_id)

    async def update_progress(self, handle: ProgressHandle, text: str) -> bool:
        self.edits.append((handle.message_id, text))
        return True

    async def send_typing(self, recipient: str) -> None:
        self.typing.append(recipient)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        telegram_bot_token="123:test",
        anthropic_api_key="sk-ant-test-key",
        allowed_chats="42",
        state_dir=str(tmp_path),
        agent_workdir=str(tmp_path / "agent"),
        history_limit=100,
        heartbeat_initial_delay=0,
        progress_interval=0.05,
        timezone="UTC",
    )


@pytest_asyncio.fixture
async def db(settings):
    database = Database(settings)
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
def history(db, settings) -> HistoryStore:
    return HistoryStore(db, limit=settings.history_limit)


@pytest.fixture
def sessions(history) -> SessionRegistry:
    return SessionRegistry(history)


@pytest.fixture
def schedules(db) -> ScheduleStore:
    return ScheduleStore(db)


@pytest.fixture
def heartbeat_state(db) -> HeartbeatStateStore:
    return HeartbeatStateStore(db)


@pytest.fixture
def mailbox(settings) -> AlertMailbox:
    return AlertMailbox(settings.alerts_path)


@pytest.fixture
def agent() -> FakeAgentRunner:
    return FakeAgentRunner()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def task_runner(agent, history, sessions, settings) -> TaskRunner:
    return TaskRunner(agent, history, sessions, settings)
