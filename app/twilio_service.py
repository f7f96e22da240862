"""
Twilio Service - telephony gateway for check-in calls.

This service:
1. Places outbound check-in calls via the Twilio REST API
2. Sends escalation SMS messages
3. Generates TwiML (speak, listen, hang up) for webhook responses

The REST client is created once from settings. Missing credentials are
reported at construction and raise ConfigurationError on first use, so
call placement never silently degrades.

Python 3.9 compatible - uses typing.Dict, typing.List, typing.Optional
"""

import logging
import re
from typing import Optional

from twilio.rest import Client as TwilioClient

from .config import ConfigurationError, Settings, get_settings

logger = logging.getLogger(__name__)


DEFAULT_VOICE = "Polly.Joanna"


def validate_phone_e164(phone: Optional[str]) -> bool:
    """
    Validate E.164 phone format: starts with +, followed by digits only.
    Examples: +61731824583, +14155551234
    """
    if not phone:
        return False
    pattern = r'^\+[1-9]\d{6,14}$'
    return bool(re.match(pattern, phone))


# ============================================================
# TwiML generation
# ============================================================

def _escape_xml(text: str) -> str:
    """Escape text for XML."""
    return (
        text
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def twiml(*verbs: str) -> str:
    """Wrap verbs in a TwiML Response document."""
    body = "".join(verbs)
    return f'<?xml version="1.0" encoding="UTF-8"?><Response>{body}</Response>'


def say(text: str, voice: str = DEFAULT_VOICE, slow: bool = False) -> str:
    """Speak text. slow=True wraps it in SSML prosody for a slower rate."""
    content = _escape_xml(text)
    if slow:
        content = f'<prosody rate="slow">{content}</prosody>'
    return f'<Say voice="{_escape_xml(voice)}">{content}</Say>'


def gather(
    action: str,
    timeout: int = 10,
    speech_timeout: str = "auto",
    partial_result_callback: Optional[str] = None,
) -> str:
    """Open one speech listening window.

    actionOnEmptyResult makes Twilio post to the action URL even when
    nothing was recognized, so silence reaches the dialogue engine.
    """
    attrs = (
        f'input="speech" action="{_escape_xml(action)}" method="POST" '
        f'timeout="{int(timeout)}" speechTimeout="{_escape_xml(speech_timeout)}" '
        f'actionOnEmptyResult="true"'
    )
    if partial_result_callback:
        attrs += (
            f' partialResultCallback="{_escape_xml(partial_result_callback)}"'
            f' partialResultCallbackMethod="POST"'
        )
    return f"<Gather {attrs}></Gather>"


def hangup() -> str:
    return "<Hangup/>"


def hangup_twiml() -> str:
    """A bare hangup document, used whenever a turn cannot be handled."""
    return twiml(hangup())


# ============================================================
# REST client wrapper
# ============================================================

class TwilioService:
    """Service for placing calls and sending SMS via Twilio."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[TwilioClient] = None):
        """Initialize Twilio client from settings.

        Does NOT raise when credentials are missing; operations that need
        the REST API raise ConfigurationError instead.
        """
        settings = settings or get_settings()
        self.phone_number = settings.twilio_phone_number
        self.voice = settings.tts_voice
        self.client: Optional[TwilioClient] = client

        if self.client is None and settings.twilio_configured:
            self.client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
            logger.info(f"TwilioService configured with phone: {self.phone_number}")
        elif self.client is None:
            logger.warning("TwilioService: Twilio credentials not configured - calls and SMS will fail")

    @property
    def is_configured(self) -> bool:
        """Check if Twilio is properly configured."""
        return self.client is not None and bool(self.phone_number)

    def _require_client(self) -> TwilioClient:
        if not self.is_configured:
            raise ConfigurationError(
                "Twilio not configured: set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER"
            )
        return self.client

    def place_call(self, to: str, webhook_url: str) -> str:
        """Start an outbound call.

        Args:
            to: Destination number in E.164 format
            webhook_url: Voice webhook Twilio requests when the call connects

        Returns:
            Twilio Call SID

        Raises:
            ConfigurationError: If Twilio not configured
            Exception: If Twilio API call fails
        """
        client = self._require_client()
        logger.info(f"Starting Twilio call to {to}")

        call = client.calls.create(
            to=to,
            from_=self.phone_number,
            url=webhook_url,
            method="POST",
            machine_detection="Enable",
            record=False,
        )

        logger.info(f"Twilio call started: SID={call.sid}, status={call.status}")
        return call.sid

    def send_sms(self, to: str, body: str) -> str:
        """Send an SMS and return the message SID."""
        client = self._require_client()
        message = client.messages.create(to=to, from_=self.phone_number, body=body)
        logger.info(f"SMS sent to {to}: SID={message.sid}")
        return message.sid

    def say(self, text: str, slow: bool = False) -> str:
        """Say verb using the configured voice."""
        return say(text, voice=self.voice, slow=slow)


# Singleton instance (created lazily)
_twilio_service: Optional[TwilioService] = None


def get_twilio_service() -> TwilioService:
    """Get or create the TwilioService singleton."""
    global _twilio_service
    if _twilio_service is None:
        _twilio_service = TwilioService()
    return _twilio_service
