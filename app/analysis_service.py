"""
Risk Analyzer - scores a check-in transcript via OpenAI.

This service:
1. Returns a fixed neutral result for empty transcripts (no API call)
2. Calls OpenAI once with a JSON-only contract and normalizes the reply
3. Falls back to a deterministic keyword scan on ANY failure
   (exception, timeout, empty reply, invalid JSON)

It never raises and never persists; the caller stores the result.

Python 3.9 compatible - uses typing.Dict, typing.List, typing.Optional
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from engine.heuristics import (
    KEYWORD_CONCERN_REASON,
    MAX_KEYWORDS,
    dedupe_keywords,
    extract_keywords,
    find_concern_keywords,
)

from .config import get_settings
from .llm import get_openai_client
from .models import AnalysisResult, RiskLevel, Sentiment

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_REASON = "Concern detected in conversation"

ANALYSIS_SYSTEM_PROMPT = "You are a wellbeing analysis assistant. Always respond with valid JSON only."

ANALYSIS_PROMPT = """Analyze the following conversation transcript from a daily wellbeing check-in call.
Respond with a JSON object containing:
- sentiment: "positive", "neutral", or "negative"
- risk_level: "low", "medium", or "high"
- keywords: array of important keywords/phrases (max 10)
- needs_escalation: boolean
- escalation_reason: string (only if needs_escalation is true, otherwise null)

Escalation rules:
- Escalate if sentiment is negative AND risk_level is medium or high
- Escalate if keywords suggest: depression, suicidal thoughts, self-harm, severe anxiety, isolation, medical emergency
- Escalate if the person seems confused, disoriented, or unable to communicate clearly
- Escalate if there's mention of not taking medication or missing important appointments
- Do NOT escalate for normal sadness, minor concerns, or typical daily frustrations

Transcript: {transcript}

Respond ONLY with valid JSON, no additional text."""


def format_analysis_prompt(transcript: str) -> str:
    # str.replace, not format: transcripts may contain braces
    return ANALYSIS_PROMPT.replace("{transcript}", transcript)


def empty_analysis() -> AnalysisResult:
    return AnalysisResult(source="empty")


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    """Return the first present key (models mix snake_case and camelCase)."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def normalize_analysis(data: Dict[str, Any]) -> AnalysisResult:
    """
    Coerce a model reply into an AnalysisResult.

    Missing or unknown values default to neutral/low/[]/False. When the
    model asks for escalation without a reason, a generic reason is used
    rather than rejecting the reply.
    """
    try:
        sentiment = Sentiment(str(_pick(data, "sentiment") or "").lower())
    except ValueError:
        sentiment = Sentiment.NEUTRAL

    try:
        risk_level = RiskLevel(str(_pick(data, "risk_level", "riskLevel") or "").lower())
    except ValueError:
        risk_level = RiskLevel.LOW

    raw_keywords = _pick(data, "keywords")
    keywords = dedupe_keywords(raw_keywords, MAX_KEYWORDS) if isinstance(raw_keywords, list) else []

    raw_escalation = _pick(data, "needs_escalation", "needsEscalation")
    if isinstance(raw_escalation, str):
        needs_escalation = raw_escalation.strip().lower() == "true"
    else:
        needs_escalation = bool(raw_escalation)

    reason = _pick(data, "escalation_reason", "escalationReason")
    if needs_escalation:
        reason = str(reason).strip() if reason else ""
        reason = reason or DEFAULT_ESCALATION_REASON
    else:
        reason = None

    return AnalysisResult(
        sentiment=sentiment,
        riskLevel=risk_level,
        keywords=keywords,
        needsEscalation=needs_escalation,
        escalationReason=reason,
        source="llm",
    )


def keyword_fallback_analysis(transcript: str) -> AnalysisResult:
    """Deterministic analysis used when the LLM path fails."""
    concerns = find_concern_keywords(transcript)
    has_concern = bool(concerns)
    if has_concern:
        logger.warning(f"Keyword fallback matched concern terms: {concerns}")
    return AnalysisResult(
        sentiment=Sentiment.NEGATIVE if has_concern else Sentiment.NEUTRAL,
        riskLevel=RiskLevel.HIGH if has_concern else RiskLevel.LOW,
        keywords=extract_keywords(transcript),
        needsEscalation=has_concern,
        escalationReason=KEYWORD_CONCERN_REASON if has_concern else None,
        source="fallback",
    )


class RiskAnalyzer:
    """Analyzes check-in transcripts for wellbeing risk."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 8.0,
    ):
        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def analyze(self, transcript: Optional[str]) -> AnalysisResult:
        """Analyze a transcript. Never raises.

        Args:
            transcript: Accumulated transcript text (may be empty)

        Returns:
            AnalysisResult from the LLM or from the keyword fallback
        """
        if not transcript or not transcript.strip():
            return empty_analysis()

        try:
            content = await asyncio.wait_for(
                self._request_analysis(transcript),
                timeout=self.timeout_seconds,
            )
            if not content:
                raise ValueError("Empty response from analysis model")

            data = json.loads(content)
            if not isinstance(data, dict):
                raise ValueError("Analysis response is not a JSON object")

            result = normalize_analysis(data)
            logger.info(
                f"Transcript analyzed: sentiment={result.sentiment.value}, "
                f"risk={result.riskLevel.value}, escalate={result.needsEscalation}"
            )
            return result

        except asyncio.TimeoutError:
            logger.warning(f"analyze: LLM timed out after {self.timeout_seconds}s, using keyword fallback")
        except Exception as e:
            logger.warning(f"analyze: LLM analysis failed ({e}), using keyword fallback")

        return keyword_fallback_analysis(transcript)

    async def _request_analysis(self, transcript: str) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": format_analysis_prompt(transcript)},
            ],
            temperature=0.3,
            max_tokens=500,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content


# Singleton instance (created lazily)
_risk_analyzer: Optional[RiskAnalyzer] = None


def get_risk_analyzer() -> RiskAnalyzer:
    """Get or create the RiskAnalyzer singleton."""
    global _risk_analyzer
    if _risk_analyzer is None:
        settings = get_settings()
        _risk_analyzer = RiskAnalyzer(
            client=get_openai_client(),
            model=settings.openai_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    return _risk_analyzer
