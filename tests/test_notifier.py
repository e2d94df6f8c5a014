"""Tests for scheduling-link delivery and the Twilio wrapper."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from twilio.base.exceptions import TwilioRestException

from outreach_agent.services.notifier import AppointmentNotifier, NotificationResult
from outreach_agent.services.session_store import SessionKind, SessionStore
from outreach_agent.services.telephony import TelephonyClient, TelephonyError

LINK = "https://calendly.com/example/30min"


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def telephony():
    return MagicMock(spec=TelephonyClient)


@pytest.fixture
def notifier(store, telephony):
    return AppointmentNotifier(store, telephony, scheduling_link=LINK)


# ── AppointmentNotifier ──────────────────────────────────────────────


class TestNotify:
    def test_sends_link_to_known_contact(self, store, telephony, notifier):
        store.open("call-1", SessionKind.CALL, contact="+15550001111")
        result = asyncio.run(notifier.notify("call-1", SessionKind.CALL))

        assert result.sent
        telephony.send_sms.assert_called_once_with(
            "+15550001111", f"Here is the link to schedule a meeting: {LINK}",
        )

    def test_looks_up_call_destination_when_contact_unknown(self, store, telephony, notifier):
        store.open("CA123", SessionKind.CALL)
        telephony.get_call_destination.return_value = "+15552223333"

        result = asyncio.run(notifier.notify("CA123", SessionKind.CALL))

        assert result.sent
        telephony.get_call_destination.assert_called_once_with("CA123")
        assert telephony.send_sms.call_args[0][0] == "+15552223333"

    def test_web_session_without_contact(self, store, telephony, notifier):
        store.open("web-1", SessionKind.WEB)
        result = asyncio.run(notifier.notify("web-1", SessionKind.WEB))

        assert result.status == "no_contact"
        telephony.get_call_destination.assert_not_called()
        telephony.send_sms.assert_not_called()

    def test_send_failure_is_reported_not_raised(self, store, telephony, notifier):
        store.open("call-1", SessionKind.CALL, contact="+15550001111")
        telephony.send_sms.side_effect = TelephonyError("Twilio send_sms failed: boom")

        result = asyncio.run(notifier.notify("call-1", SessionKind.CALL))

        assert result.status == "failed"
        assert "boom" in result.detail
        telephony.send_sms.assert_called_once()  # no retry

    def test_lookup_failure_is_reported(self, store, telephony, notifier):
        store.open("CA123", SessionKind.CALL)
        telephony.get_call_destination.side_effect = TelephonyError("not configured")

        assert asyncio.run(notifier.notify("CA123", SessionKind.CALL)).status == "failed"

    def test_web_session_sharing_a_call_sid(self, store, telephony, notifier):
        store.open("CA123", SessionKind.CALL, contact="+15550001111")
        store.open("CA123", SessionKind.WEB)

        result = asyncio.run(notifier.notify("CA123", SessionKind.WEB))

        assert result.status == "no_contact"
        telephony.send_sms.assert_not_called()


class TestAcknowledgement:
    def test_sent(self, notifier):
        ack = notifier.acknowledgement(NotificationResult("sent"))
        assert ack == "I've also sent you an SMS with the booking link."

    def test_failed_includes_link(self, notifier):
        ack = notifier.acknowledgement(NotificationResult("failed", "boom"))
        assert ack.startswith("I tried to send you an SMS, but there was an error.")
        assert LINK in ack

    def test_no_contact_includes_link(self, notifier):
        ack = notifier.acknowledgement(NotificationResult("no_contact"))
        assert ack == f"You can schedule a meeting here: {LINK}"


# ── TelephonyClient ──────────────────────────────────────────────────


class TestTelephonyClient:
    def _client(self, twilio=None):
        return TelephonyClient("AC123", "token", "+15550000000", client=twilio or MagicMock())

    def test_unconfigured_client_raises(self, monkeypatch):
        for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
            monkeypatch.setattr(f"outreach_agent.services.telephony.{name}", None)
        client = TelephonyClient()
        assert not client.is_configured
        with pytest.raises(TelephonyError, match="not configured"):
            client.send_sms("+15550001111", "hi")

    def test_create_call_points_webhooks_at_us(self):
        twilio = MagicMock()
        twilio.calls.create.return_value.sid = "CA999"
        sid = self._client(twilio).create_call(
            "+15550001111",
            answer_url="https://agent.example.com/api/voice/answer",
            status_url="https://agent.example.com/api/voice/status",
        )

        assert sid == "CA999"
        kwargs = twilio.calls.create.call_args[1]
        assert kwargs["to"] == "+15550001111"
        assert kwargs["from_"] == "+15550000000"
        assert kwargs["url"] == "https://agent.example.com/api/voice/answer"
        assert kwargs["status_callback"] == "https://agent.example.com/api/voice/status"
        assert kwargs["machine_detection"] == "Enable"

    def test_send_sms(self):
        twilio = MagicMock()
        twilio.messages.create.return_value.sid = "SM1"
        assert self._client(twilio).send_sms("+15550001111", "hello") == "SM1"
        twilio.messages.create.assert_called_once_with(
            body="hello", from_="+15550000000", to="+15550001111",
        )

    def test_api_error_becomes_telephony_error(self):
        twilio = MagicMock()
        twilio.messages.create.side_effect = TwilioRestException(
            400, "https://api.twilio.com", msg="Invalid 'To' number",
        )
        with pytest.raises(TelephonyError) as exc_info:
            self._client(twilio).send_sms("bogus", "hello")
        assert exc_info.value.status_code == 400

    def test_get_call_destination(self):
        twilio = MagicMock()
        twilio.calls.return_value.fetch.return_value.to = "+15552223333"
        assert self._client(twilio).get_call_destination("CA1") == "+15552223333"
        twilio.calls.assert_called_once_with("CA1")
