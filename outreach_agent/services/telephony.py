"""Thin wrapper around the Twilio REST API.

Covers the three operations the agent needs: placing an outbound call,
looking up who a call was placed to, and sending an SMS.  The Twilio SDK is
synchronous; async callers go through ``asyncio.to_thread``.

Nothing here retries.  Outbound messages in particular must be attempted at
most once per request, so a failure surfaces immediately as
:class:`TelephonyError`.
"""

from __future__ import annotations

import logging
import threading
import time

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from outreach_agent.config import TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER
from outreach_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

# Statuses after which Twilio sends no more webhooks for a call
TERMINAL_CALL_STATUSES = frozenset({"completed", "busy", "failed", "no-answer", "canceled"})


class TelephonyError(Exception):
    """Raised when Twilio is unconfigured or a Twilio API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TelephonyClient:
    """Places calls and sends messages from the configured Twilio number."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        *,
        client: Client | None = None,
    ):
        self._account_sid = account_sid or TWILIO_ACCOUNT_SID
        self._auth_token = auth_token or TWILIO_AUTH_TOKEN
        self._from_number = from_number or TWILIO_PHONE_NUMBER
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(
            (self._client or (self._account_sid and self._auth_token)) and self._from_number
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _get_client(self) -> Client:
        if not self.is_configured:
            raise TelephonyError("Twilio is not configured (missing account SID, token or number)")
        if self._client is None:
            self._client = Client(self._account_sid, self._auth_token)
        return self._client

    def _call_api(self, operation: str, fn, *args, **kwargs):
        """Run one Twilio SDK call, translating errors and recording metrics."""
        t0 = time.perf_counter()
        try:
            result = fn(*args, **kwargs)
        except (TwilioException, OSError) as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "twilio", operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise TelephonyError(
                f"Twilio {operation} failed: {exc}",
                status_code=getattr(exc, "status", None),
            ) from exc
        metrics.record_success("twilio", operation, latency_ms=(time.perf_counter() - t0) * 1000)
        return result

    # ── Public API methods ───────────────────────────────────────────

    def create_call(self, to: str, *, answer_url: str, status_url: str) -> str:
        """Dial *to* and point Twilio's call-control webhooks at us.

        Returns the new call's SID.
        """
        client = self._get_client()
        call = self._call_api(
            "create_call",
            client.calls.create,
            to=to,
            from_=self._from_number,
            url=answer_url,
            method="POST",
            status_callback=status_url,
            status_callback_method="POST",
            status_callback_event=["completed"],
            machine_detection="Enable",
        )
        logger.info("Placed call %s to %s", call.sid, to)
        return call.sid

    def get_call_destination(self, call_sid: str) -> str | None:
        """Return the number a call was placed to."""
        client = self._get_client()
        call = self._call_api("fetch_call", client.calls(call_sid).fetch)
        return call.to

    def send_sms(self, to: str, body: str) -> str:
        """Send a single SMS.  Returns the message SID."""
        client = self._get_client()
        message = self._call_api(
            "send_sms",
            client.messages.create,
            body=body,
            from_=self._from_number,
            to=to,
        )
        logger.info("SMS %s sent to %s", message.sid, to)
        return message.sid


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: TelephonyClient | None = None
_client_lock = threading.Lock()


def get_telephony_client() -> TelephonyClient:
    """Return a module-level TelephonyClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = TelephonyClient()
    return _client
