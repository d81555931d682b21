"""Telegram transport for Vigil.

Long-polls the Bot API and hands every text message to the chat handler.
Outbound calls implement the Messenger protocol. Delivery failures are
reported as False/None, never raised into the core.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from vigil.errors import DeliveryError
from vigil.messenger import MessageHandler, ProgressHandle

logger = logging.getLogger(__name__)

# Max Telegram message length
TG_MAX_LEN = 4096


def split_message(text: str, limit: int = TG_MAX_LEN) -> list[str]:
    """Split on newlines so each chunk fits Telegram's limit."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) + 1 > limit:
            if current:
                chunks.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks


class TelegramMessenger:
    """Lightweight Telegram Bot API client implementing Messenger."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._api = f"{api_base.rstrip('/')}/bot{bot_token}"
        self._offset = 0
        self._http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=60, write=10, pool=10)
        )
        self._inflight: set[asyncio.Task] = set()

    async def identify(self) -> dict[str, Any]:
        """getMe -- also verifies the token."""
        return await self._tg("getMe")

    async def start(self, on_message: MessageHandler) -> None:
        """Polling loop. Runs until cancelled."""
        while True:
            try:
                updates = await self._tg(
                    "getUpdates",
                    {"offset": self._offset, "timeout": 30},
                    read_timeout=45,
                )
                for update in updates:
                    self._offset = update["update_id"] + 1
                    self._dispatch(update, on_message)
            except asyncio.CancelledError:
                raise
            except DeliveryError as e:
                if isinstance(e.__cause__, httpx.ReadTimeout):
                    continue  # Normal for long polling
                logger.error("Polling error: %s", e)
                await asyncio.sleep(5)
            except Exception as e:
                logger.error("Polling error: %s", e)
                await asyncio.sleep(5)

    def _dispatch(self, update: dict[str, Any], on_message: MessageHandler) -> None:
        """Start a handler task per message, in arrival order."""
        message = update.get("message")
        if not message:
            return
        text = message.get("text") or ""
        if not text.strip():
            return
        chat_id = str(message["chat"]["id"])

        task = asyncio.create_task(on_message(chat_id, text), name=f"message-{chat_id}")
        self._inflight.add(task)
        task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Message handler failed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Messenger protocol
    # ------------------------------------------------------------------

    async def send_text(self, recipient: str, text: str) -> bool:
        try:
            for i, chunk in enumerate(split_message(text)):
                if i:
                    await asyncio.sleep(0.3)  # Rate limit
                await self._tg("sendMessage", {"chat_id": recipient, "text": chunk})
        except DeliveryError as e:
            logger.warning("Send to %s failed: %s", recipient, e)
            return False
        return True

    async def send_progress(self, recipient: str, text: str) -> ProgressHandle | None:
        try:
            result = await self._tg("sendMessage", {"chat_id": recipient, "text": text[:TG_MAX_LEN]})
        except DeliveryError as e:
            logger.warning("Progress message to %s failed: %s", recipient, e)
            return None
        if isinstance(result, dict) and "message_id" in result:
            return ProgressHandle(recipient=recipient, message_id=result["message_id"])
        return None

    async def update_progress(self, handle: ProgressHandle, text: str) -> bool:
        if len(text) > TG_MAX_LEN:
            return False
        try:
            await self._tg("editMessageText", {
                "chat_id": handle.recipient,
                "message_id": handle.message_id,
                "text": text,
            })
        except DeliveryError as e:
            logger.debug("Progress edit failed: %s", e)
            return False
        return True

    async def send_typing(self, recipient: str) -> None:
        try:
            await self._tg("sendChatAction", {"chat_id": recipient, "action": "typing"})
        except DeliveryError:
            pass  # Cosmetic only

    # ------------------------------------------------------------------

    async def _tg(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        read_timeout: float | None = None,
    ) -> Any:
        """Call the Bot API; raises DeliveryError on transport or API errors."""
        kwargs: dict[str, Any] = {"json": params or {}}
        if read_timeout is not None:
            kwargs["timeout"] = httpx.Timeout(connect=10, read=read_timeout, write=10, pool=10)
        try:
            response = await self._http.post(f"{self._api}/{method}", **kwargs)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DeliveryError(f"{method}: {e}") from e
        if not data.get("ok"):
            logger.warning("Telegram API error: %s", data)
            raise DeliveryError(f"{method}: {data.get('description', 'unknown error')}")
        return data.get("result", {})

    async def close(self) -> None:
        """Cancel in-flight handlers and close the HTTP client."""
        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        await self._http.aclose()
