"""Directive parsing for the heartbeat checklist.

A directive is any line containing ``CRON[<expression>]: <task text>``,
e.g. ``- [ ] CRON[0 8 * * *]: Send morning briefing``. Everything else
in the document is prose for the agent and is ignored here.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from croniter import croniter

_DIRECTIVE_RE = re.compile(r"\bCRON\[([^\]]+)\]:\s*(.+)$")

JOB_NAME_MAX = 50


@dataclass(frozen=True)
class Directive:
    trigger: str
    task: str

    @property
    def job_id(self) -> str:
        return job_id_for(self.task)

    @property
    def name(self) -> str:
        return self.task[:JOB_NAME_MAX]


def parse_directives(text: str) -> list[Directive]:
    """Extract directives in document order. Pure and repeatable."""
    directives: list[Directive] = []
    for line in text.splitlines():
        m = _DIRECTIVE_RE.search(line)
        if not m:
            continue
        trigger = " ".join(m.group(1).split())
        task = m.group(2).strip()
        if task:
            directives.append(Directive(trigger=trigger, task=task))
    return directives


def job_id_for(task: str) -> str:
    """Stable id derived from task text, so re-parsing never duplicates a job."""
    return "auto-" + hashlib.sha256(task.encode("utf-8")).hexdigest()[:12]


def is_valid_trigger(expression: str) -> bool:
    """Standard five-field cron only (croniter alone also accepts seconds)."""
    if len(expression.split()) != 5:
        return False
    return croniter.is_valid(expression)
