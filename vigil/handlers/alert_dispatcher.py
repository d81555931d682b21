"""Alert Dispatcher -- relays the alert mailbox to the single alert recipient.

Each sweep claims whatever is pending, sends it as one message and only
then commits (clears) it. A failed send leaves the alerts in flight for
the next sweep, so delivery is at-least-once.
"""

from __future__ import annotations

import logging

from vigil.config import Settings
from vigil.errors import PersistenceError
from vigil.messenger import Messenger
from vigil.state.mailbox import AlertMailbox

logger = logging.getLogger(__name__)


class AlertDispatcher:
    def __init__(self, mailbox: AlertMailbox, messenger: Messenger, settings: Settings) -> None:
        self._mailbox = mailbox
        self._messenger = messenger
        self._settings = settings

    def format_alert(self, alerts: str) -> str:
        return f"\U0001f514 {self._settings.assistant_name}:\n\n{alerts}"

    async def sweep(self) -> bool:
        """Deliver pending alerts. Returns True if a message was sent."""
        recipient = self._settings.alert_recipient
        if not recipient:
            logger.error("[Alert] No alert recipient configured")
            return False

        try:
            alerts = await self._mailbox.claim()
        except PersistenceError:
            logger.exception("[Alert] Cannot read mailbox")
            return False
        if not alerts:
            return False

        delivered = await self._messenger.send_text(recipient, self.format_alert(alerts))
        if not delivered:
            logger.warning("[Alert] Delivery failed, keeping %d chars for retry", len(alerts))
            return False

        try:
            await self._mailbox.commit()
        except PersistenceError:
            # Will be resent on the next sweep.
            logger.exception("[Alert] Sent but could not clear mailbox")
        logger.info("[Alert] Sent to %s", recipient)
        return True
