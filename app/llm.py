"""
OpenAI client shared by the risk analyzer and follow-up generator.

Any OpenAI-compatible endpoint works (set OPENAI_BASE_URL, e.g. DeepSeek).
The client is built once; a missing key fails fast.
"""

import logging
from typing import Optional

from openai import AsyncOpenAI

from .config import ConfigurationError, Settings, get_settings, mask_secret

logger = logging.getLogger(__name__)


def create_openai_client(settings: Settings) -> AsyncOpenAI:
    """Build the async client.

    Retries are disabled: callers are on a live phone call and fall back
    to deterministic heuristics instead of waiting.
    """
    if not settings.openai_api_key:
        raise ConfigurationError(
            "OPENAI_API_KEY is required. Set it in .env or as an environment variable."
        )

    kwargs = {
        "api_key": settings.openai_api_key,
        "timeout": settings.llm_timeout_seconds,
        "max_retries": 0,
    }
    if settings.openai_base_url:
        kwargs["base_url"] = settings.openai_base_url

    logger.info(
        f"OpenAI client configured: model={settings.openai_model}, "
        f"key={mask_secret(settings.openai_api_key)}, "
        f"base_url={settings.openai_base_url or 'default'}"
    )
    return AsyncOpenAI(**kwargs)


_openai_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """Get or create the shared AsyncOpenAI client."""
    global _openai_client
    if _openai_client is None:
        _openai_client = create_openai_client(get_settings())
    return _openai_client
