"""
Tests for transcript risk analysis.

These tests verify that:
1. Empty transcripts return a neutral result without an API call
2. LLM replies are normalized (snake_case or camelCase, bad values defaulted)
3. Escalation always carries a reason
4. Any LLM failure falls back to the keyword scan
"""

import asyncio
import json
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.analysis_service import (
    DEFAULT_ESCALATION_REASON,
    RiskAnalyzer,
    format_analysis_prompt,
    keyword_fallback_analysis,
    normalize_analysis,
)
from app.models import RiskLevel, Sentiment
from engine.heuristics import KEYWORD_CONCERN_REASON


CONCERNING = "I'm really struggling and thinking about hurting myself"


def mock_openai_response(content: str) -> AsyncMock:
    """Create a mock OpenAI response."""
    mock_completion = AsyncMock()
    mock_completion.choices = [
        AsyncMock(message=AsyncMock(content=content))
    ]
    return mock_completion


def make_analyzer(reply: Any = None, error: Exception = None, timeout_seconds: float = 5.0) -> RiskAnalyzer:
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        content = reply if isinstance(reply, str) or reply is None else json.dumps(reply)
        client.chat.completions.create = AsyncMock(return_value=mock_openai_response(content))
    return RiskAnalyzer(client=client, model="gpt-4o-mini", timeout_seconds=timeout_seconds)


class TestEmptyTranscript:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transcript", [None, "", "   "])
    async def test_no_api_call(self, transcript):
        analyzer = make_analyzer({"sentiment": "negative"})

        result = await analyzer.analyze(transcript)

        assert result.sentiment == Sentiment.NEUTRAL
        assert result.riskLevel == RiskLevel.LOW
        assert result.keywords == []
        assert result.needsEscalation is False
        assert result.escalationReason is None
        assert result.source == "empty"
        analyzer.client.chat.completions.create.assert_not_called()


class TestLLMPath:

    @pytest.mark.asyncio
    async def test_snake_case_reply(self):
        analyzer = make_analyzer({
            "sentiment": "negative",
            "risk_level": "high",
            "keywords": ["lonely", "Lonely", "not eating"],
            "needs_escalation": True,
            "escalation_reason": "Isolation and not eating",
        })

        result = await analyzer.analyze("I've been lonely and not eating")

        assert result.sentiment == Sentiment.NEGATIVE
        assert result.riskLevel == RiskLevel.HIGH
        assert result.keywords == ["lonely", "not eating"]
        assert result.needsEscalation is True
        assert result.escalationReason == "Isolation and not eating"
        assert result.source == "llm"

    @pytest.mark.asyncio
    async def test_request_shape(self):
        analyzer = make_analyzer({"sentiment": "positive"})

        await analyzer.analyze("Lovely day")

        kwargs = analyzer.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Transcript: Lovely day" in kwargs["messages"][1]["content"]

    def test_camel_case_reply(self):
        result = normalize_analysis({
            "sentiment": "Positive",
            "riskLevel": "LOW",
            "needsEscalation": False,
        })

        assert result.sentiment == Sentiment.POSITIVE
        assert result.riskLevel == RiskLevel.LOW

    def test_invalid_values_default(self):
        result = normalize_analysis({"sentiment": "ecstatic", "risk_level": 5, "keywords": "lonely"})

        assert result.sentiment == Sentiment.NEUTRAL
        assert result.riskLevel == RiskLevel.LOW
        assert result.keywords == []

    def test_escalation_without_reason_gets_default(self):
        result = normalize_analysis({"needs_escalation": True, "escalation_reason": "  "})

        assert result.needsEscalation is True
        assert result.escalationReason == DEFAULT_ESCALATION_REASON

    def test_reason_dropped_without_escalation(self):
        result = normalize_analysis({"needs_escalation": False, "escalation_reason": "nothing"})

        assert result.escalationReason is None

    def test_string_boolean(self):
        assert normalize_analysis({"needs_escalation": "true"}).needsEscalation is True
        assert normalize_analysis({"needs_escalation": "false"}).needsEscalation is False

    def test_keywords_capped(self):
        result = normalize_analysis({"keywords": [f"k{i}" for i in range(20)]})

        assert len(result.keywords) == 10

    def test_prompt_tolerates_braces(self):
        prompt = format_analysis_prompt("I said {hello} to {name}")

        assert "Transcript: I said {hello} to {name}" in prompt


class TestFallback:

    @pytest.mark.asyncio
    async def test_llm_error_uses_keyword_scan(self):
        analyzer = make_analyzer(error=RuntimeError("upstream 500"))

        result = await analyzer.analyze(CONCERNING)

        assert result.source == "fallback"
        assert result.needsEscalation is True
        assert result.escalationReason == KEYWORD_CONCERN_REASON
        assert result.sentiment == Sentiment.NEGATIVE
        assert result.riskLevel == RiskLevel.HIGH
        assert "struggling" in result.keywords

    @pytest.mark.asyncio
    async def test_invalid_json_uses_keyword_scan(self):
        analyzer = make_analyzer("Sure! Here is my analysis: not json")

        result = await analyzer.analyze(CONCERNING)

        assert result.source == "fallback"
        assert result.needsEscalation is True

    @pytest.mark.asyncio
    async def test_non_object_json_uses_keyword_scan(self):
        analyzer = make_analyzer("[1, 2, 3]")

        result = await analyzer.analyze("Fine thanks")

        assert result.source == "fallback"

    @pytest.mark.asyncio
    async def test_empty_reply_uses_keyword_scan(self):
        analyzer = make_analyzer("")

        result = await analyzer.analyze("Fine thanks")

        assert result.source == "fallback"
        assert result.needsEscalation is False

    @pytest.mark.asyncio
    async def test_timeout_uses_keyword_scan(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        analyzer = make_analyzer(error=None, timeout_seconds=0.01)
        analyzer.client.chat.completions.create = AsyncMock(side_effect=slow)

        result = await analyzer.analyze("I need help")

        assert result.source == "fallback"
        assert result.needsEscalation is True

    def test_benign_fallback(self):
        result = keyword_fallback_analysis("Went for a walk in the garden this morning")

        assert result.needsEscalation is False
        assert result.escalationReason is None
        assert result.sentiment == Sentiment.NEUTRAL
        assert result.riskLevel == RiskLevel.LOW
        assert result.keywords == ["went", "walk", "garden", "morning"]
