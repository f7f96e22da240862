"""
Pydantic models for the check-in API.
Python 3.9 compatible - uses typing.List, typing.Optional
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnalysisResult(BaseModel):
    """Outcome of transcript risk analysis.

    needsEscalation=True always carries a non-null escalationReason.
    """
    sentiment: Sentiment = Sentiment.NEUTRAL
    riskLevel: RiskLevel = RiskLevel.LOW
    keywords: List[str] = Field(default_factory=list)
    needsEscalation: bool = False
    escalationReason: Optional[str] = None
    source: str = "llm"  # "llm", "fallback" or "empty"


# ============================================================
# Call placement
# ============================================================

class CallStartRequest(BaseModel):
    """Request to place a check-in call.

    Destination precedence: phoneE164, then the contact's number,
    then PERSON_NUMBER.
    """
    contactId: Optional[str] = None
    phoneE164: Optional[str] = None
    conversationSetName: Optional[str] = None


class CallStartResponse(BaseModel):
    success: bool
    callId: str
    checkinId: str
    message: str


class DailyCheckinResponse(BaseModel):
    success: bool
    callIds: List[str]
    failures: List[str] = Field(default_factory=list)
    message: str
    timestamp: datetime


# ============================================================
# Check-in records
# ============================================================

class CheckinResponse(BaseModel):
    """Public view of a CheckinSession."""
    id: str
    callId: str
    startedAt: datetime
    transcript: Optional[str] = None
    responded: bool = False
    sentiment: Optional[Sentiment] = None
    riskLevel: Optional[RiskLevel] = None
    keywords: Optional[List[str]] = None
    needsEscalation: bool = False
    escalationReason: Optional[str] = None
    contactId: Optional[str] = None
    conversationSetName: Optional[str] = None
    callStatus: Optional[str] = None
    finalized: bool = False


# ============================================================
# Ad-hoc analysis and alerts
# ============================================================

class AnalysisRequest(BaseModel):
    transcript: str = Field(..., min_length=1)


class AnalysisResponse(BaseModel):
    success: bool
    analysis: AnalysisResult


class AlertResponse(BaseModel):
    success: bool
    message: str
    recipient: Optional[str] = None
