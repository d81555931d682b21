"""Task runner -- the single choke point for agent invocations.

Every trigger (user message, heartbeat tick, cron tick) goes through
TaskRunner.run(). Calls for the same conversation are strictly serialized
with a per-conversation lock that is taken before any other suspension
point, so queued calls run in arrival order and never resume one session
handle twice concurrently. System calls (no conversation) are not
serialized here; any capacity limit is the agent runner's business.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from vigil.agent.runner import (
    SYSTEM_CAPABILITIES,
    AgentRequest,
    AgentRunner,
    Capability,
)
from vigil.config import Settings
from vigil.errors import AgentInvocationError
from vigil.state.history import HistoryStore
from vigil.state.schemas import Turn
from vigil.state.sessions import SessionRegistry

logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "Done."

_LOG_PREVIEW = 200


class ProgressReporter(Protocol):
    """Receives coarse progress for a running call."""

    async def started(self) -> None: ...

    async def activity(self, tool_name: str) -> None: ...


@dataclass
class AgentTask:
    prompt: str
    conversation_id: str | None = None
    session_handle: str | None = None  # explicit override of the registry lookup
    capabilities: frozenset[Capability] = field(default_factory=lambda: SYSTEM_CAPABILITIES)
    label: str = "chat"


@dataclass
class TaskResult:
    text: str
    session_handle: str | None = None
    tools_used: list[str] = field(default_factory=list)
    produced_text: bool = False


class ProgressThrottle:
    """Coalesces tool-use bursts into at most one notification per interval.

    The first activity is forwarded at once. Activities inside the
    following window only replace the pending "last known activity",
    which is flushed when the window closes. Once closed, nothing more is
    emitted, including a flush that is already talking to the sink.
    """

    def __init__(
        self,
        sink: Callable[[str], Awaitable[None]],
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._interval = interval
        self._clock = clock
        self._latest: str | None = None
        self._last_emit: float | None = None
        self._flush_task: asyncio.Task | None = None
        self._closed = False

    async def push(self, activity: str) -> None:
        if self._closed:
            return
        self._latest = activity
        now = self._clock()
        if self._last_emit is None or now - self._last_emit >= self._interval:
            if self._flush_task is None:
                await self._emit()
        elif self._flush_task is None:
            delay = self._interval - (now - self._last_emit)
            self._flush_task = asyncio.create_task(self._flush_later(delay), name="progress-flush")

    async def close(self) -> None:
        """Stop emitting and cancel any pending or in-flight flush."""
        self._closed = True
        task, self._flush_task = self._flush_task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _flush_later(self, delay: float) -> None:
        # The task reference stays set until the emit returns, so close()
        # always sees a flush that is still running.
        await asyncio.sleep(delay)
        while True:
            await self._emit()
            if self._latest is None:
                break
            await asyncio.sleep(self._interval)
        self._flush_task = None

    async def _emit(self) -> None:
        if self._closed or self._latest is None:
            return
        text, self._latest = self._latest, None
        self._last_emit = self._clock()
        try:
            await self._sink(text)
        except Exception:
            logger.warning("Progress notification failed", exc_info=True)


class TaskRunner:
    def __init__(
        self,
        agent: AgentRunner,
        history: HistoryStore,
        sessions: SessionRegistry,
        settings: Settings,
    ) -> None:
        self._agent = agent
        self._history = history
        self._sessions = sessions
        self._settings = settings
        self._locks: dict[str, asyncio.Lock] = {}

    def is_busy(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return lock is not None and lock.locked()

    def conversation_lock(self, conversation_id: str) -> asyncio.Lock:
        """The lock serializing every call for one conversation."""
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    async def run(self, task: AgentTask, progress: ProgressReporter | None = None) -> TaskResult:
        """Run one agent call; raises AgentInvocationError on stream failure."""
        if task.conversation_id is None:
            return await self._execute(task, progress)

        async with self.conversation_lock(task.conversation_id):
            return await self._execute(task, progress)

    async def _execute(self, task: AgentTask, progress: ProgressReporter | None) -> TaskResult:
        prior = task.session_handle
        if prior is None and task.conversation_id is not None:
            prior = await self._sessions.get(task.conversation_id)

        request = AgentRequest(
            prompt=task.prompt,
            working_directory=self._settings.agent_workdir,
            session_handle=prior,
            capabilities=task.capabilities,
        )
        logger.info(
            "[%s] Starting agent call (%s)",
            task.label,
            f"resuming {prior[:8]}" if prior else "fresh session",
        )

        throttle = ProgressThrottle(progress.activity, self._settings.progress_interval) if progress else None
        fragments: list[str] = []
        tools: list[str] = []
        handle: str | None = None

        try:
            if progress:
                try:
                    await progress.started()
                except Exception:
                    logger.warning("Progress start notification failed", exc_info=True)

            async for event in self._agent.invoke(request):
                if event.type == "session":
                    if event.session_handle:
                        handle = event.session_handle
                elif event.type == "tool_start":
                    tools.append(event.tool_name)
                    logger.info("  [%s] Using tool: %s", task.label, event.tool_name)
                    if throttle:
                        await throttle.push(event.tool_name)
                elif event.type == "text":
                    fragments.append(event.text)
                    if task.conversation_id is None and event.text.strip():
                        logger.info("  [%s] %s", task.label, event.text[:_LOG_PREVIEW])
                else:
                    raise AgentInvocationError(f"Malformed stream element: {event!r}")
        except (AgentInvocationError, asyncio.CancelledError):
            raise
        except Exception as exc:
            raise AgentInvocationError(f"Agent stream failed: {exc}") from exc
        finally:
            if throttle:
                await throttle.close()

        text = "".join(fragments)
        result = TaskResult(
            text=text or EMPTY_RESPONSE,
            session_handle=handle,
            tools_used=tools,
            produced_text=bool(text.strip()),
        )

        if task.conversation_id is not None:
            await self._record(task, result)
        return result

    async def _record(self, task: AgentTask, result: TaskResult) -> None:
        conversation_id = task.conversation_id
        if result.session_handle:
            self._sessions.set(conversation_id, result.session_handle)
        await self._history.append(Turn(role="user", content=task.prompt, conversation_id=conversation_id))
        await self._history.append(
            Turn(
                role="assistant",
                content=result.text,
                conversation_id=conversation_id,
                session_handle=result.session_handle,
            )
        )
