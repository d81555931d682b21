"""Vigil entry point.

Initializes all components and runs until interrupted:
  Settings -> Database -> stores -> SessionRegistry (warm) -> TaskRunner
  -> TelegramMessenger -> AlertDispatcher -> Scheduler -> ChatHandler
"""

from __future__ import annotations

import asyncio
import logging
import sys

from vigil.agent.runner import AgentRunner, ClaudeAgentRunner
from vigil.agent.task_runner import TaskRunner
from vigil.checklist import ChecklistDocument
from vigil.config import Settings
from vigil.errors import ConfigurationError
from vigil.handlers.alert_dispatcher import AlertDispatcher
from vigil.handlers.chat import ChatHandler
from vigil.handlers.scheduler import Scheduler
from vigil.messenger import Messenger
from vigil.state import (
    AlertMailbox,
    HeartbeatStateStore,
    HistoryStore,
    ScheduleStore,
    SessionRegistry,
)
from vigil.storage.database import Database
from vigil.telegram_bot import TelegramMessenger

logger = logging.getLogger(__name__)


async def create_components(
    settings: Settings,
    messenger: Messenger | None = None,
    agent: AgentRunner | None = None,
) -> dict:
    """Initialize all components in dependency order.

    messenger/agent default to the Telegram and Claude implementations.
    The scheduler is created but not started.
    """
    database = Database(settings)
    await database.connect()

    history = HistoryStore(database, limit=settings.history_limit)
    sessions = SessionRegistry(history)
    await sessions.warm()

    schedules = ScheduleStore(database)
    heartbeat_state = HeartbeatStateStore(database)
    mailbox = AlertMailbox(settings.alerts_path)
    checklist = ChecklistDocument(settings.checklist_path)

    task_runner = TaskRunner(agent or ClaudeAgentRunner(settings), history, sessions, settings)

    if messenger is None:
        messenger = TelegramMessenger(settings.telegram_bot_token, settings.telegram_api_base)

    dispatcher = AlertDispatcher(mailbox, messenger, settings)
    scheduler = Scheduler(task_runner, schedules, heartbeat_state, checklist, dispatcher, settings)
    chat = ChatHandler(
        messenger, task_runner, sessions, schedules, heartbeat_state, settings, scheduler=scheduler,
    )

    return {
        "database": database,
        "history": history,
        "sessions": sessions,
        "schedules": schedules,
        "heartbeat_state": heartbeat_state,
        "mailbox": mailbox,
        "checklist": checklist,
        "task_runner": task_runner,
        "messenger": messenger,
        "dispatcher": dispatcher,
        "scheduler": scheduler,
        "chat": chat,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down Vigil...")

    scheduler = components.get("scheduler")
    if scheduler:
        await scheduler.stop()

    messenger = components.get("messenger")
    close = getattr(messenger, "close", None)
    if close:
        await close()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("Vigil shutdown complete.")


async def run(settings: Settings) -> None:
    components = await create_components(settings)
    try:
        messenger: TelegramMessenger = components["messenger"]
        me = await messenger.identify()
        logger.info("Connected to Telegram as @%s", me.get("username"))
        logger.info("Assistant: %s", settings.assistant_name)
        logger.info("Allowed chats: %s", ", ".join(sorted(settings.allowed_conversations)))
        logger.info("Working directory: %s", settings.agent_workdir)

        await components["scheduler"].start()
        logger.info("%s is now running with full autonomous capabilities.", settings.assistant_name)
        await messenger.start(components["chat"].on_text_message)
    finally:
        await shutdown_components(components)


def main() -> None:
    """Entry point: parse settings, validate, run until interrupted."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings.validate_required()
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)
    except Exception:
        logger.exception("Failed to start")
        sys.exit(1)


if __name__ == "__main__":
    main()
