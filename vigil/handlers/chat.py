"""Chat handler -- inbound messages and conversation commands.

Every message is checked against the allow-list before anything else;
outsiders get a fixed "Unauthorized." reply. Slash-commands are answered
locally; everything else becomes a conversation-scoped agent call whose
final text is sent back through the messenger.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from vigil.agent.runner import CHAT_CAPABILITIES, resolve_capabilities
from vigil.agent.task_runner import AgentTask, TaskRunner
from vigil.config import Settings
from vigil.errors import AgentInvocationError, AuthorizationError
from vigil.messenger import Messenger, ProgressHandle
from vigil.state.heartbeat import HeartbeatStateStore
from vigil.state.schedules import ScheduleStore
from vigil.state.sessions import SessionRegistry

if TYPE_CHECKING:
    from vigil.handlers.scheduler import Scheduler

logger = logging.getLogger(__name__)

UNAUTHORIZED_REPLY = "Unauthorized."

_PREVIEW = 100


def _preview(text: str) -> str:
    return text[:_PREVIEW] + ("..." if len(text) > _PREVIEW else "")


def _fmt_time(value: datetime | None) -> str:
    if value is None:
        return "never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


class ProgressMessage:
    """Typing indicator plus one status message edited in place."""

    def __init__(self, messenger: Messenger, conversation_id: str, prefix: str) -> None:
        self._messenger = messenger
        self._conversation_id = conversation_id
        self._prefix = prefix
        self.handle: ProgressHandle | None = None

    async def started(self) -> None:
        await self._messenger.send_typing(self._conversation_id)

    async def activity(self, tool_name: str) -> None:
        status = f"{self._prefix}: {tool_name}..."
        if self.handle is None:
            self.handle = await self._messenger.send_progress(self._conversation_id, status)
        else:
            await self._messenger.update_progress(self.handle, status)

    async def finish(self, text: str) -> bool:
        """Replace the status message with the reply. False if there is none."""
        if self.handle is None:
            return False
        return await self._messenger.update_progress(self.handle, text)


class ChatHandler:
    def __init__(
        self,
        messenger: Messenger,
        task_runner: TaskRunner,
        sessions: SessionRegistry,
        schedules: ScheduleStore,
        heartbeat_state: HeartbeatStateStore,
        settings: Settings,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._messenger = messenger
        self._runner = task_runner
        self._sessions = sessions
        self._schedules = schedules
        self._heartbeat_state = heartbeat_state
        self._settings = settings
        self._scheduler = scheduler
        self._capabilities = resolve_capabilities(settings.chat_tools, CHAT_CAPABILITIES)
        self._commands = {
            "/start": self._cmd_start,
            "/reset": self._cmd_reset,
            "/status": self._cmd_status,
            "/heartbeat": self._cmd_heartbeat,
            "/cron": self._cmd_cron,
        }

    def authorize(self, conversation_id: str) -> None:
        if conversation_id not in self._settings.allowed_conversations:
            raise AuthorizationError(conversation_id)

    async def on_text_message(self, conversation_id: str, text: str) -> None:
        """Inbound entry point for the messenger."""
        try:
            self.authorize(conversation_id)
        except AuthorizationError:
            logger.info("Unauthorized ID: %s", conversation_id)
            await self._reply(conversation_id, UNAUTHORIZED_REPLY)
            return

        stripped = text.strip()
        if not stripped:
            return

        if stripped.startswith("/"):
            command = stripped.split()[0].split("@", 1)[0].lower()
            handler = self._commands.get(command)
            if handler is not None:
                await handler(conversation_id)
            return

        # No await before run(): the task runner's lock must be reached in
        # arrival order.
        await self._chat(conversation_id, text)

    async def _chat(self, conversation_id: str, text: str) -> None:
        logger.info("Received: %s", _preview(text))
        progress = ProgressMessage(self._messenger, conversation_id, self._settings.assistant_name)
        try:
            result = await self._runner.run(
                AgentTask(
                    prompt=text,
                    conversation_id=conversation_id,
                    capabilities=self._capabilities,
                    label=f"chat {conversation_id}",
                ),
                progress=progress,
            )
        except AgentInvocationError:
            logger.exception("Agent call failed for conversation %s", conversation_id)
            await self._reply(conversation_id, f"{self._settings.assistant_name}: Error occurred.")
            return

        logger.info("Sent: %s", _preview(result.text))
        if not await progress.finish(result.text):
            await self._reply(conversation_id, result.text)

    async def _reply(self, conversation_id: str, text: str) -> None:
        if not await self._messenger.send_text(conversation_id, text):
            logger.warning("Reply to %s was not delivered", conversation_id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _cmd_start(self, conversation_id: str) -> None:
        name = self._settings.assistant_name
        await self._reply(
            conversation_id,
            f"{name} ready. Full agent capabilities enabled.\n\n"
            "Features:\n"
            "• Persistent sessions\n"
            "• Autonomous heartbeat monitoring\n"
            "• Scheduled cron tasks\n"
            "• Full filesystem access\n\n"
            "Commands:\n"
            "/reset - Clear session\n"
            "/status - Show status\n"
            "/heartbeat - Force heartbeat check\n"
            "/cron - List scheduled tasks",
        )

    async def _cmd_reset(self, conversation_id: str) -> None:
        # Waits for an in-flight call, whose new handle would undo the reset.
        async with self._runner.conversation_lock(conversation_id):
            self._sessions.clear(conversation_id)
        await self._reply(conversation_id, "Session cleared.")

    async def _cmd_status(self, conversation_id: str) -> None:
        handle = await self._sessions.get(conversation_id)
        state = await self._heartbeat_state.load()
        active = await self._schedules.active_count()

        session = f"{handle[:8]}..." if handle else "none"
        await self._reply(
            conversation_id,
            f"\U0001f4ca {self._settings.assistant_name} Status\n\n"
            f"Session: {session}\n"
            f"Last heartbeat: {_fmt_time(state.last_run_at)}\n"
            f"Cron jobs: {active} active\n\n"
            f"Working directory: {self._settings.agent_workdir}\n"
            "Alert monitoring: active",
        )

    async def _cmd_heartbeat(self, conversation_id: str) -> None:
        if self._scheduler is None:
            await self._reply(conversation_id, "Heartbeat is not running.")
            return
        await self._reply(conversation_id, "Running heartbeat check...")
        ran = await self._scheduler.run_heartbeat()
        if ran:
            await self._reply(conversation_id, "Heartbeat check completed.")
        else:
            await self._reply(conversation_id, "Heartbeat skipped: checklist is missing or empty.")

    async def _cmd_cron(self, conversation_id: str) -> None:
        jobs = await self._schedules.list()
        if not jobs:
            await self._reply(
                conversation_id,
                "No cron jobs configured.\n\n"
                f"Add CRON directives to {self._settings.checklist_file}:\n"
                "CRON[0 8 * * *]: Send morning briefing",
            )
            return

        lines = []
        for i, job in enumerate(jobs, start=1):
            mark = "✓" if job.active else "✗"
            note = " (removed from checklist)" if job.orphaned else ""
            lines.append(
                f"{i}. {mark} {job.name}{note}\n"
                f"   Schedule: {job.trigger}\n"
                f"   Last run: {_fmt_time(job.last_run_at)}"
            )
        await self._reply(conversation_id, "\U0001f4c5 Cron Jobs:\n\n" + "\n\n".join(lines))
