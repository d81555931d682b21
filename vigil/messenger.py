"""Messenger contract -- what the core needs from a chat transport."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

# Inbound callback: (conversation_id, text)
MessageHandler = Callable[[str, str], Awaitable[None]]


@dataclass(frozen=True)
class ProgressHandle:
    """Identifies an editable status message."""

    recipient: str
    message_id: int


class Messenger(Protocol):
    async def send_text(self, recipient: str, text: str) -> bool:
        """Deliver a message. Returns False instead of raising on failure."""
        ...

    async def send_progress(self, recipient: str, text: str) -> ProgressHandle | None: ...

    async def update_progress(self, handle: ProgressHandle, text: str) -> bool: ...

    async def send_typing(self, recipient: str) -> None: ...
