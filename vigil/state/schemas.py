"""Pydantic DTOs for the state stores.

These models define the public contract between the stores and the
components that use them; ORM rows never leave the store modules.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# --- History ---


class Turn(BaseModel):
    """One recorded message. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    conversation_id: str | None = None
    session_handle: str | None = None


# --- Schedules ---


class CronJob(BaseModel):
    """A recurring task materialized from a checklist directive."""

    id: str
    name: str
    trigger: str
    task: str
    enabled: bool = True
    orphaned: bool = False  # directive missing from the latest checklist parse
    last_run_at: datetime | None = None

    @property
    def active(self) -> bool:
        return self.enabled and not self.orphaned


class ReconcileResult(BaseModel):
    """Outcome of one checklist reconciliation pass."""

    added: list[CronJob] = []
    orphaned: list[str] = []
    restored: list[str] = []

    @property
    def changed(self) -> bool:
        return bool(self.added or self.orphaned or self.restored)


# --- Heartbeat ---


class HeartbeatState(BaseModel):
    last_run_at: datetime | None = None
    last_checks: dict[str, Any] = {}
