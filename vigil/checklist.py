"""Heartbeat checklist document (HEARTBEAT.md) plus the agent prompts built from it."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from datetime import datetime
from pathlib import Path

from vigil.state.schemas import CronJob

logger = logging.getLogger(__name__)

DEFAULT_CHECKLIST = """# Heartbeat Monitoring Checklist

## Always Check

- [ ] Monitor system health (disk usage, memory, load average)
- [ ] Check for critical errors in logs
- [ ] Verify important services are running

## Scheduled Tasks

None yet. To schedule a task, add a line like the examples below with
the space after CRON removed:

    CRON [0 8 * * *]: Send daily briefing
    CRON [0 18 * * *]: Summarize the day

## Status

Last check: {created}
Issues detected: none
"""

HEARTBEAT_PROMPT = """You are {name}, running an autonomous heartbeat check.

Read the {checklist} file which contains your monitoring checklist. For each item:
1. Evaluate if the condition needs checking now
2. If yes, perform the check (use any tools you need)
3. If the condition is met and requires action, take appropriate action
4. If you need to alert the user, append the alert message to {alerts}

Current time: {now}
Last heartbeat: {last_run}

Important guidelines:
- Be proactive but not spammy
- Only send alerts for genuinely important things
- You can update {checklist} with status/results if needed
- You have full access to the {workdir} directory
- To send an alert: append your message to {alerts}
- Keep alerts concise and actionable

Example alert:
echo "\U0001f514 Disk usage is at 87% on /dev/sda1" >> {alerts}

Now check the checklist and execute any necessary checks."""

CRON_PROMPT = """You are {name}, executing a scheduled task.

Task: {task}

Current time: {now}
Last run: {last_run}

Execute this task now. If you need to alert the user with results, append them to {alerts}."""


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else "never"


def build_heartbeat_prompt(
    *,
    name: str,
    checklist: Path,
    alerts: Path,
    workdir: str,
    now: datetime,
    last_run: datetime | None,
) -> str:
    return HEARTBEAT_PROMPT.format(
        name=name,
        checklist=checklist,
        alerts=alerts,
        workdir=workdir,
        now=now.isoformat(),
        last_run=_iso(last_run),
    )


def build_cron_prompt(*, name: str, job: CronJob, alerts: Path, now: datetime) -> str:
    return CRON_PROMPT.format(
        name=name,
        task=job.task,
        alerts=alerts,
        now=now.isoformat(),
        last_run=_iso(job.last_run_at),
    )


class ChecklistDocument:
    """Read access to the human-edited checklist file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    async def read(self) -> str | None:
        """File contents, or None when it is missing or unreadable."""
        try:
            return await asyncio.to_thread(self.path.read_text, encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Cannot read checklist %s", self.path, exc_info=True)
            return None

    async def ensure_default(self, created: datetime) -> bool:
        """Write the starter checklist if none exists. Returns True if written."""
        if self.path.exists():
            return False
        await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(
            self.path.write_text,
            DEFAULT_CHECKLIST.format(created=created.isoformat()),
            encoding="utf-8",
        )
        logger.info("Created default checklist at %s", self.path)
        return True

    @staticmethod
    def fingerprint(text: str | None) -> str | None:
        if text is None:
            return None
        return hashlib.sha256(text.encode("utf-8")).hexdigest()
