"""
Escalation delivery.

Two halves:
1. EscalationNotifier - fire-and-forget fetch of the /alert endpoint with the
   check-in id. Runs as a background task after the TwiML response is sent;
   failures are logged and never retried.
2. AlertService - backs the /alert endpoint: composes the alert SMS and sends
   it to the contact's escalation number or the fallback alert number.
"""

import logging
from typing import Optional

import httpx

from conversations import Contact

from .config import ConfigurationError, Settings, get_settings
from .store import CheckinSession, CheckinStore, get_checkin_store
from .twilio_service import TwilioService, get_twilio_service

logger = logging.getLogger(__name__)

TRANSCRIPT_EXCERPT_CHARS = 200


class EscalationNotifier:
    """Triggers alert delivery for a check-in without blocking the call."""

    def __init__(self, settings: Optional[Settings] = None, timeout_seconds: float = 10.0):
        self.settings = settings or get_settings()
        self.timeout_seconds = timeout_seconds

    def alert_url(self, checkin_id: str) -> str:
        return self.settings.build_url("/alert", {"checkinId": checkin_id})

    async def notify(self, checkin_id: str) -> None:
        """Fetch the alert endpoint. Errors are logged only."""
        url = self.alert_url(checkin_id)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url)
            if response.status_code >= 400:
                logger.error(
                    f"Escalation for checkin {checkin_id} failed: "
                    f"HTTP {response.status_code} {response.text[:200]}"
                )
            else:
                logger.info(f"Escalation dispatched for checkin {checkin_id}")
        except Exception as e:
            logger.error(f"Escalation error for checkin {checkin_id}: {e}")


def build_alert_message(session: CheckinSession, contact: Optional[Contact] = None) -> str:
    """Compose the escalation SMS body."""
    who = f" for {contact.name}" if contact else ""
    if session.transcript:
        excerpt = session.transcript[:TRANSCRIPT_EXCERPT_CHARS]
        if len(session.transcript) > TRANSCRIPT_EXCERPT_CHARS:
            excerpt += "..."
        transcript_line = f'Transcript: "{excerpt}"'
    else:
        transcript_line = "No transcript available"

    return (
        "Daily Check-In Alert\n\n"
        f"A concern was detected in today's check-in call{who}.\n\n"
        f"Call ID: {session.call_id}\n"
        f"Time: {session.started_at.strftime('%Y-%m-%d %H:%M UTC')}\n"
        f"Sentiment: {session.sentiment or 'N/A'}\n"
        f"Risk Level: {session.risk_level or 'N/A'}\n"
        f"Reason: {session.escalation_reason or 'No specific reason provided'}\n\n"
        f"{transcript_line}\n\n"
        "Please follow up with the person as soon as possible."
    )


class AlertService:
    """Sends escalation SMS messages for check-ins."""

    def __init__(
        self,
        store: CheckinStore,
        twilio: TwilioService,
        fallback_number: Optional[str] = None,
    ):
        self.store = store
        self.twilio = twilio
        self.fallback_number = fallback_number

    def resolve_recipient(self, session: CheckinSession) -> Optional[str]:
        contact = self.store.get_contact(session.contact_id)
        if contact and contact.escalation_number:
            return contact.escalation_number
        return self.fallback_number

    def send_alert(self, session: CheckinSession) -> str:
        """Send the alert SMS and return the recipient number.

        Raises:
            ConfigurationError: If no recipient is configured or Twilio is not configured
        """
        recipient = self.resolve_recipient(session)
        if not recipient:
            raise ConfigurationError("No escalation number: set ALERT_CONTACT_NUMBER or a contact escalation number")

        contact = self.store.get_contact(session.contact_id)
        self.twilio.send_sms(recipient, build_alert_message(session, contact))
        logger.info(f"Alert sent for checkin {session.id} to {recipient}")
        return recipient


_escalation_notifier: Optional[EscalationNotifier] = None
_alert_service: Optional[AlertService] = None


def get_escalation_notifier() -> EscalationNotifier:
    """Get or create the EscalationNotifier singleton."""
    global _escalation_notifier
    if _escalation_notifier is None:
        _escalation_notifier = EscalationNotifier()
    return _escalation_notifier


def get_alert_service() -> AlertService:
    """Get or create the AlertService singleton."""
    global _alert_service
    if _alert_service is None:
        _alert_service = AlertService(
            store=get_checkin_store(),
            twilio=get_twilio_service(),
            fallback_number=get_settings().alert_contact_number,
        )
    return _alert_service
