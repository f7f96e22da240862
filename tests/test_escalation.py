"""
Tests for escalation alerts.
"""

from unittest.mock import MagicMock

import httpx
import pytest

from app import escalation
from app.config import ConfigurationError, Settings
from app.escalation import AlertService, EscalationNotifier, build_alert_message
from app.store import CheckinStore
from conversations import Contact


def make_store_with_session(transcript: str = "I need help", contact: Contact = None):
    store = CheckinStore()
    if contact is not None:
        store.add_contact(contact)
    session = store.ensure_session("CA1", contact_id=contact.id if contact else None)
    session.append_chunk(transcript)
    session.finalize(
        needs_escalation=True,
        escalation_reason="Keyword-based concern detected",
        sentiment="negative",
        risk_level="high",
        keywords=["help"],
    )
    return store, session


CONTACT = Contact(
    id="c-1",
    name="Margaret",
    number_to_call="+61400000001",
    escalation_name="Tom",
    escalation_number="+61400000002",
)


class TestAlertMessage:

    def test_message_fields(self):
        _, session = make_store_with_session()

        body = build_alert_message(session, CONTACT)

        assert "for Margaret" in body
        assert "Call ID: CA1" in body
        assert "Risk Level: high" in body
        assert "Reason: Keyword-based concern detected" in body
        assert 'Transcript: "I need help"' in body

    def test_long_transcript_is_truncated(self):
        _, session = make_store_with_session("word " * 100)

        body = build_alert_message(session)

        assert '..."' in body

    def test_no_transcript(self):
        store = CheckinStore()
        session = store.ensure_session("CA2")
        session.finalize(needs_escalation=True, escalation_reason="No response to initial greeting")

        body = build_alert_message(session)

        assert "No transcript available" in body
        assert "Reason: No response to initial greeting" in body


class TestAlertService:

    def test_contact_escalation_number_wins(self):
        store, session = make_store_with_session(contact=CONTACT)
        twilio = MagicMock()
        service = AlertService(store, twilio, fallback_number="+61499999999")

        recipient = service.send_alert(session)

        assert recipient == "+61400000002"
        assert twilio.send_sms.call_args.args[0] == "+61400000002"

    def test_fallback_number(self):
        store, session = make_store_with_session()
        service = AlertService(store, MagicMock(), fallback_number="+61499999999")

        assert service.resolve_recipient(session) == "+61499999999"

    def test_no_recipient_raises(self):
        store, session = make_store_with_session()
        twilio = MagicMock()
        service = AlertService(store, twilio, fallback_number=None)

        with pytest.raises(ConfigurationError):
            service.send_alert(session)
        twilio.send_sms.assert_not_called()


class _FailingClient:
    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def get(self, url):
        raise httpx.ConnectError("connection refused")


class _RecordingClient(_FailingClient):
    urls = []

    async def get(self, url):
        self.urls.append(url)
        return httpx.Response(200, text="ok")


class TestEscalationNotifier:

    def test_alert_url(self):
        notifier = EscalationNotifier(Settings(webhook_base_url="https://example.test"))

        assert notifier.alert_url("abc-123") == "https://example.test/alert?checkinId=abc-123"

    @pytest.mark.asyncio
    async def test_notify_fetches_alert_endpoint(self, monkeypatch):
        monkeypatch.setattr(escalation.httpx, "AsyncClient", _RecordingClient)
        _RecordingClient.urls = []
        notifier = EscalationNotifier(Settings(webhook_base_url="https://example.test"))

        await notifier.notify("abc-123")

        assert _RecordingClient.urls == ["https://example.test/alert?checkinId=abc-123"]

    @pytest.mark.asyncio
    async def test_notify_swallows_errors(self, monkeypatch):
        monkeypatch.setattr(escalation.httpx, "AsyncClient", _FailingClient)
        notifier = EscalationNotifier(Settings(webhook_base_url="https://example.test"))

        await notifier.notify("abc-123")
