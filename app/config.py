"""
Runtime configuration read from environment variables.

Values are loaded once (after python-dotenv has populated the
environment in main.py) and cached. Tests that change the environment
must call get_settings.cache_clear().
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional
from urllib.parse import urlencode

from engine.turns import ListeningPolicy


class ConfigurationError(RuntimeError):
    """Raised when a required credential or setting is missing."""


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def normalize_base_url(url: str) -> str:
    """Add a scheme if missing and drop any trailing slash."""
    url = url.strip()
    if not url.startswith("http://") and not url.startswith("https://"):
        url = f"https://{url}"
    return url.rstrip("/")


def mask_secret(value: Optional[str]) -> str:
    """Mask a secret showing only the last 4 chars."""
    if not value:
        return "(not set)"
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


@dataclass(frozen=True)
class Settings:
    """Application settings."""

    # LLM (OpenAI or any OpenAI-compatible endpoint)
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: Optional[str] = None
    llm_timeout_seconds: float = 8.0

    # Telephony
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    webhook_base_url: str = "http://localhost:8000"
    tts_voice: str = "Polly.Joanna"

    # Who gets called and who gets alerted
    person_number: Optional[str] = None
    alert_contact_number: Optional[str] = None
    cron_secret: Optional[str] = None
    contacts_file: Optional[str] = None
    default_conversation_set: str = "current"

    # Listening loop
    max_chunks: int = 5
    max_follow_ups: int = 2
    long_response_words: int = 90
    long_response_chars: int = 450
    listen_timeout_seconds: int = 10
    probe_timeout_seconds: int = 2

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 8.0),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID") or None,
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN") or None,
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER") or None,
            webhook_base_url=normalize_base_url(os.getenv("WEBHOOK_BASE_URL", "http://localhost:8000")),
            tts_voice=os.getenv("TTS_VOICE", "Polly.Joanna"),
            person_number=os.getenv("PERSON_NUMBER") or None,
            alert_contact_number=os.getenv("ALERT_CONTACT_NUMBER") or None,
            cron_secret=os.getenv("CRON_SECRET") or None,
            contacts_file=os.getenv("CONTACTS_FILE") or None,
            default_conversation_set=os.getenv("DEFAULT_CONVERSATION_SET", "current"),
            max_chunks=_env_int("MAX_CHUNKS", 5),
            max_follow_ups=_env_int("MAX_FOLLOW_UPS", 2),
            long_response_words=_env_int("LONG_RESPONSE_WORDS", 90),
            long_response_chars=_env_int("LONG_RESPONSE_CHARS", 450),
            listen_timeout_seconds=_env_int("LISTEN_TIMEOUT_SECONDS", 10),
            probe_timeout_seconds=_env_int("PROBE_TIMEOUT_SECONDS", 2),
        )

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    def listening_policy(self) -> ListeningPolicy:
        return ListeningPolicy(
            max_chunks=self.max_chunks,
            max_follow_ups=self.max_follow_ups,
            long_response_words=self.long_response_words,
            long_response_chars=self.long_response_chars,
            listen_timeout_seconds=self.listen_timeout_seconds,
            probe_timeout_seconds=self.probe_timeout_seconds,
        )

    def build_url(self, path: str, params: Optional[Dict[str, str]] = None) -> str:
        """Build an absolute callback URL under WEBHOOK_BASE_URL."""
        url = f"{self.webhook_base_url}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings.from_env()
