"""
Deterministic text heuristics used when the LLM is unavailable.

Two families live here:
1. Risk fallback: concern keyword scan and first-occurrence keyword extraction
2. Follow-up fallback: reflective validation ("It sounds like you're tired.")
   plus a canned continuation question

Everything in this module is pure and synchronous.
"""
import re
from typing import List, Optional, Tuple


# =============================================================================
# RISK FALLBACK
# =============================================================================

# Case-insensitive substring match. The self-harm phrasings extend the
# single-word list so that first-person statements are not missed.
CONCERN_KEYWORDS = [
    "depressed",
    "suicide",
    "self-harm",
    "emergency",
    "help",
    "hurt myself",
    "hurting myself",
    "kill myself",
    "end my life",
]

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "i", "you", "he", "she", "it", "we", "they", "is", "are",
    "was", "were", "be", "been", "have", "has", "had", "do", "does", "did",
    "will", "would", "could", "should", "may", "might", "can", "this", "that",
    "these", "those", "just", "really", "about", "from", "what", "there",
    "their", "then", "than", "when", "very", "much", "also", "some",
}

MAX_KEYWORDS = 10

KEYWORD_CONCERN_REASON = "Keyword-based concern detected"


def find_concern_keywords(transcript: str) -> List[str]:
    """Return the concern keywords present in the transcript."""
    lowered = transcript.lower()
    return [kw for kw in CONCERN_KEYWORDS if kw in lowered]


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    """
    Pull simple keywords from free text.

    Tokens longer than 3 characters that are not stop-words, unique,
    in order of first occurrence, capped at `limit`.
    """
    keywords: List[str] = []
    for raw in text.lower().split():
        word = raw.strip(".,!?;:\"'()[]{}")
        if len(word) <= 3 or word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def dedupe_keywords(values: List[str], limit: int = MAX_KEYWORDS) -> List[str]:
    """Deduplicate (case-insensitive) while preserving order."""
    seen = set()
    result: List[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        cleaned = value.strip()
        key = cleaned.lower()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
        if len(result) >= limit:
            break
    return result


# =============================================================================
# REFLECTIVE VALIDATION
# =============================================================================

# Ordered: the first rule that matches is the only one applied.
PRONOUN_FLIPS: List[Tuple[str, str]] = [
    (r"\bI'm\b", "you're"),
    (r"\bI am\b", "you are"),
    (r"\bI've\b", "you've"),
    (r"\bI feel\b", "you feel"),
    (r"\bI was\b", "you were"),
    (r"\bI have\b", "you have"),
    (r"\bI had\b", "you had"),
    (r"\bI\b", "you"),
]

GENERIC_FOLLOW_UP = "Can you tell me a bit more about how you're doing today?"

POSITIVE_CONTINUATION = "Is there anything specific on your mind today?"
NEGATIVE_CONTINUATION = "Can you tell me a bit more about what's been going on?"
NEUTRAL_CONTINUATION = "Is there anything else you'd like to talk about?"

_NEGATIVE_CUES = re.compile(r"\b(bad|not good|struggling)\b", re.IGNORECASE)
_POSITIVE_CUES = re.compile(r"\b(good|fine|okay)\b", re.IGNORECASE)


def last_statement(transcript: str) -> str:
    """Return the last sentence of the last non-empty line."""
    lines = [line.strip() for line in transcript.splitlines() if line.strip()]
    if not lines:
        return ""
    sentences = [s.strip() for s in re.split(r"[.!?]+", lines[-1]) if s.strip()]
    if not sentences:
        return ""
    return sentences[-1].lstrip(" \t\"'`,;:-").strip()


def flip_pronouns(statement: str) -> str:
    """Flip first person to second person using the first matching rule."""
    for pattern, replacement in PRONOUN_FLIPS:
        regex = re.compile(pattern, re.IGNORECASE)
        if regex.search(statement):
            return regex.sub(replacement, statement)
    return statement


def build_reflective_validation(transcript: str) -> Optional[str]:
    """
    Paraphrase the caller's last statement back to them.

    "I'm tired" -> "It sounds like you're tired."
    Returns None when there is nothing to reflect.
    """
    statement = last_statement(transcript)
    if not statement:
        return None
    flipped = flip_pronouns(statement).rstrip(" ,;:-\"'")
    if not flipped:
        return None
    flipped = flipped[0].lower() + flipped[1:]
    return f"It sounds like {flipped}."


def pick_continuation(statement: str) -> str:
    """Choose a canned continuation by simple keyword presence."""
    if _NEGATIVE_CUES.search(statement):
        return NEGATIVE_CONTINUATION
    if _POSITIVE_CUES.search(statement):
        return POSITIVE_CONTINUATION
    return NEUTRAL_CONTINUATION


def fallback_follow_up(transcript: str) -> str:
    """Build the next prompt without an LLM."""
    if not transcript or not transcript.strip():
        return GENERIC_FOLLOW_UP
    validation = build_reflective_validation(transcript)
    continuation = pick_continuation(last_statement(transcript) or transcript)
    if validation:
        return f"{validation} {continuation}"
    return continuation
