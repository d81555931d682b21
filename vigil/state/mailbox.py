"""Alert mailbox -- the append-only text file the agent writes findings to.

Producers (the agent's own shell/file tools, or append() in-process) only
ever append to ALERTS.txt. The dispatcher drains it in two steps:

1. claim() atomically renames ALERTS.txt to a timestamped ALERTS.txt.claim-*
   file, merges every claim file into the in-flight file ALERTS.txt.sending
   with a single replace, and returns the full pending text. Claim files
   are only removed after that replace, so a failed merge is retried on the
   next sweep. Appends that land after the rename create a fresh
   ALERTS.txt and belong to the next sweep.
2. commit() deletes the in-flight file once delivery succeeded. If
   delivery fails the in-flight text stays put and is re-claimed, together
   with anything new, on the next sweep.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path

from vigil.errors import PersistenceError

logger = logging.getLogger(__name__)


class AlertMailbox:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.inflight_path = self.path.with_name(self.path.name + ".sending")
        self._lock = asyncio.Lock()

    async def append(self, text: str) -> None:
        """Append one alert, newline-terminated."""
        if not text.endswith("\n"):
            text += "\n"
        async with self._lock:
            try:
                await asyncio.to_thread(self._append_sync, text)
            except OSError as exc:
                raise PersistenceError(f"Cannot append to {self.path}: {exc}") from exc

    async def claim(self) -> str:
        """Move pending alerts in flight and return them ('' when empty)."""
        async with self._lock:
            try:
                return await asyncio.to_thread(self._claim_sync)
            except OSError as exc:
                raise PersistenceError(f"Cannot claim {self.path}: {exc}") from exc

    async def commit(self) -> None:
        """Forget the in-flight alerts after successful delivery."""
        async with self._lock:
            try:
                await asyncio.to_thread(self.inflight_path.unlink, missing_ok=True)
            except OSError as exc:
                raise PersistenceError(f"Cannot clear {self.inflight_path}: {exc}") from exc

    async def peek(self) -> str:
        """Pending text (in flight + queued) without claiming it."""
        async with self._lock:
            try:
                return await asyncio.to_thread(self._peek_sync)
            except OSError as exc:
                raise PersistenceError(f"Cannot read {self.path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _append_sync(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a+b") as fh:
            # External writers may leave the last line unterminated.
            if fh.seek(0, os.SEEK_END) > 0:
                fh.seek(-1, os.SEEK_END)
                if fh.read(1) != b"\n":
                    text = "\n" + text
            fh.write(text.encode("utf-8"))

    def _read(self, path: Path) -> str:
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8", errors="replace")

    def _staged(self) -> list[Path]:
        return sorted(self.path.parent.glob(self.path.name + ".claim-*"))

    def _claim_sync(self) -> str:
        if self.path.exists():
            os.replace(self.path, self.path.with_name(f"{self.path.name}.claim-{time.time_ns():020d}"))

        # Claim files left by a failed hand-over are merged too, oldest first.
        staged = self._staged()
        pending = _join([self._read(self.inflight_path)] + [self._read(p) for p in staged])

        if not pending.strip():
            self.inflight_path.unlink(missing_ok=True)
            for p in staged:
                p.unlink(missing_ok=True)
            return ""

        if staged:
            self._stage_inflight(pending)
            for p in staged:
                p.unlink(missing_ok=True)
        return pending.strip()

    def _stage_inflight(self, text: str) -> None:
        """Replace the in-flight file in one atomic step."""
        tmp = self.path.with_name(self.path.name + ".merge")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, self.inflight_path)

    def _peek_sync(self) -> str:
        parts = [self._read(self.inflight_path)] + [self._read(p) for p in self._staged()]
        parts.append(self._read(self.path))
        return _join(parts).strip()


def _join(parts: list[str]) -> str:
    """Concatenate alert files, newline-separating unterminated pieces."""
    out = ""
    for part in parts:
        if not part:
            continue
        if out and not out.endswith("\n"):
            out += "\n"
        out += part
    return out
