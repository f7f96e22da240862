"""
Follow-up Generator - produces the next spoken prompt on a check-in call.

The LLM is asked to open with a short reflective validation of what the
caller just said, then ask one gentle question. If the LLM fails for any
reason the deterministic reflective-validation builder is used instead,
so the call always has something to say next.

Python 3.9 compatible - uses typing.Optional
"""

import asyncio
import logging
from typing import Optional

from openai import AsyncOpenAI

from conversations import get_tone_guidance
from engine.heuristics import GENERIC_FOLLOW_UP, fallback_follow_up

from .config import get_settings
from .llm import get_openai_client

logger = logging.getLogger(__name__)


FOLLOW_UP_SYSTEM_PROMPT = """You are a kind, patient voice assistant making a daily wellbeing check-in phone call.
Your reply will be read aloud by text-to-speech.

Rules:
- ALWAYS begin with a brief reflective validation that paraphrases the person's last statement,
  switching first person to second person. Example: "I'm tired" -> "It sounds like you're tired."
- Then ask ONE gentle, open question to keep them talking about how they are doing.
- Use 1-2 short sentences in total.
- Never give medical advice, never mention AI, systems, or prompts.
- Plain text only: no quotes, lists, emojis or markdown.

Tone: {tone}"""


def clean_prompt(content: str) -> str:
    """Trim, strip wrapping quotes, and ensure terminal punctuation."""
    text = content.strip().strip('"').strip("'").strip()
    if text and text[-1] not in ".?!":
        text = f"{text}."
    return text


class FollowUpGenerator:
    """Generates follow-up prompts from the transcript so far."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 8.0,
    ):
        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def next_prompt(self, transcript: Optional[str], conversation_set_name: Optional[str] = None) -> str:
        """Return the next prompt to speak. Never raises.

        Args:
            transcript: Accumulated transcript so far
            conversation_set_name: Selects tone guidance (formal/casual/personalized/balanced)
        """
        if not transcript or not transcript.strip():
            return GENERIC_FOLLOW_UP

        try:
            content = await asyncio.wait_for(
                self._request_prompt(transcript, conversation_set_name),
                timeout=self.timeout_seconds,
            )
            prompt = clean_prompt(content or "")
            if not prompt:
                raise ValueError("Empty response from follow-up model")
            logger.info(f"Follow-up generated: {prompt[:100]}")
            return prompt

        except asyncio.TimeoutError:
            logger.warning(f"next_prompt: LLM timed out after {self.timeout_seconds}s, using reflective fallback")
        except Exception as e:
            logger.warning(f"next_prompt: LLM follow-up failed ({e}), using reflective fallback")

        return fallback_follow_up(transcript)

    async def _request_prompt(self, transcript: str, conversation_set_name: Optional[str]) -> Optional[str]:
        system_prompt = FOLLOW_UP_SYSTEM_PROMPT.replace("{tone}", get_tone_guidance(conversation_set_name))
        user_message = f"""Conversation so far (the person's words):
{transcript}

What should you say next?"""

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            temperature=0.7,
            max_tokens=150,
        )
        return response.choices[0].message.content


# Singleton instance (created lazily)
_follow_up_generator: Optional[FollowUpGenerator] = None


def get_follow_up_generator() -> FollowUpGenerator:
    """Get or create the FollowUpGenerator singleton."""
    global _follow_up_generator
    if _follow_up_generator is None:
        settings = get_settings()
        _follow_up_generator = FollowUpGenerator(
            client=get_openai_client(),
            model=settings.openai_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    return _follow_up_generator
