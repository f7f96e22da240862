"""
Conversation engine - turn planner and text heuristics.
"""
from .turns import (
    MAX_CHUNKS,
    MAX_FOLLOW_UPS,
    NO_RESPONSE_REASON,
    DialogueTurnContext,
    ListeningPolicy,
    TurnAction,
    TurnDecision,
    decide_turn,
    is_probable_cutoff,
)
from .heuristics import (
    KEYWORD_CONCERN_REASON,
    build_reflective_validation,
    dedupe_keywords,
    extract_keywords,
    fallback_follow_up,
    find_concern_keywords,
    flip_pronouns,
)

__all__ = [
    "MAX_CHUNKS",
    "MAX_FOLLOW_UPS",
    "NO_RESPONSE_REASON",
    "DialogueTurnContext",
    "ListeningPolicy",
    "TurnAction",
    "TurnDecision",
    "decide_turn",
    "is_probable_cutoff",
    "KEYWORD_CONCERN_REASON",
    "build_reflective_validation",
    "dedupe_keywords",
    "extract_keywords",
    "fallback_follow_up",
    "find_concern_keywords",
    "flip_pronouns",
]
