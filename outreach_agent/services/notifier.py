"""Out-of-band delivery of the scheduling link.

When a reply proposes a meeting, the counterparty gets a one-line SMS with
the booking link.  Delivery is best-effort: exactly one attempt, and the
outcome is turned into a sentence the agent appends to its reply so the
link is never lost, even when the message could not be sent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal

from outreach_agent.config import SCHEDULING_LINK
from outreach_agent.services.session_store import SessionKind, SessionStore
from outreach_agent.services.telephony import TelephonyClient, TelephonyError

logger = logging.getLogger(__name__)

NotificationStatus = Literal["sent", "failed", "no_contact"]


@dataclass(frozen=True)
class NotificationResult:
    status: NotificationStatus
    detail: str = ""

    @property
    def sent(self) -> bool:
        return self.status == "sent"


class AppointmentNotifier:
    """Sends the booking link to whoever is on the other end of a session."""

    def __init__(
        self,
        store: SessionStore,
        telephony: TelephonyClient,
        scheduling_link: str = SCHEDULING_LINK,
    ) -> None:
        self._store = store
        self._telephony = telephony
        self.scheduling_link = scheduling_link

    def message_body(self) -> str:
        return f"Here is the link to schedule a meeting: {self.scheduling_link}"

    async def _resolve_contact(self, session_key: str, kind: SessionKind) -> str | None:
        contact = self._store.contact_for(session_key, kind)
        if contact or kind is not SessionKind.CALL:
            return contact
        # Calls we did not place ourselves: ask Twilio where the call went
        return await asyncio.to_thread(self._telephony.get_call_destination, session_key)

    async def notify(self, session_key: str, kind: SessionKind) -> NotificationResult:
        """Attempt delivery once; never raises for delivery problems."""
        try:
            contact = await self._resolve_contact(session_key, kind)
            if not contact:
                logger.info("No contact address for session %s, link shared inline", session_key)
                return NotificationResult("no_contact")
            await asyncio.to_thread(self._telephony.send_sms, contact, self.message_body())
        except TelephonyError as exc:
            logger.error("Scheduling link delivery failed for %s: %s", session_key, exc)
            return NotificationResult("failed", str(exc))

        logger.info("Scheduling link sent for session %s", session_key)
        return NotificationResult("sent", contact)

    def acknowledgement(self, result: NotificationResult) -> str:
        """Sentence to append to the reply for a given delivery outcome."""
        if result.status == "sent":
            return "I've also sent you an SMS with the booking link."
        if result.status == "failed":
            return (
                "I tried to send you an SMS, but there was an error. "
                f"You can schedule a meeting here: {self.scheduling_link}"
            )
        return f"You can schedule a meeting here: {self.scheduling_link}"
