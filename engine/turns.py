"""
Deterministic turn-taking planner for check-in calls.

This module is the SINGLE SOURCE OF TRUTH for what happens after each
listening window closes. It decides whether to:
- keep listening on the same question (chain another window)
- ask the next follow-up question
- close the call (analysis + closing remark)
- end the call cold because nothing was ever heard

NO LLM calls, storage or markup happen here. The caller applies the
transcript update first and then asks for a decision.

Conceptual states (derived from the turn context, never stored):
AwaitingGreetingResponse -> Chaining(chunk) -> AwaitingFollowUp(question)
-> Closing -> Terminated
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Optional
import logging

logger = logging.getLogger(__name__)


MAX_CHUNKS = 5
MAX_FOLLOW_UPS = 2

NO_RESPONSE_REASON = "No response to initial greeting"


class TurnAction(str, Enum):
    """Possible outcomes of a listening window."""
    IGNORE_PARTIAL = "IGNORE_PARTIAL"
    CHAIN = "CHAIN"
    ASK_FOLLOW_UP = "ASK_FOLLOW_UP"
    CLOSE = "CLOSE"
    END_NO_RESPONSE = "END_NO_RESPONSE"


@dataclass
class ListeningPolicy:
    """
    Tunable limits for the listening loop.

    The long-response thresholds approximate "the recognizer cut the
    speaker off" versus "the speaker paused". They are a heuristic, not a
    classifier.
    """
    max_chunks: int = MAX_CHUNKS
    max_follow_ups: int = MAX_FOLLOW_UPS
    long_response_words: int = 90
    long_response_chars: int = 450
    listen_timeout_seconds: int = 10
    probe_timeout_seconds: int = 2


@dataclass(frozen=True)
class DialogueTurnContext:
    """
    Position in the script, echoed back by the provider on each callback.

    question_index: 0 is the greeting turn, then one per follow-up
    chunk_index: listening window counter within one question
    is_partial: interim recognizer hint, advisory only
    """
    question_index: int = 0
    chunk_index: int = 0
    is_partial: bool = False

    @classmethod
    def from_query(
        cls,
        params: Mapping[str, str],
        policy: Optional[ListeningPolicy] = None,
    ) -> "DialogueTurnContext":
        """
        Build a context from callback URL query parameters.

        Values are untrusted: garbage parses as 0 and indices are clamped
        to the policy caps.
        """
        policy = policy or ListeningPolicy()
        question_index = _clamp(_parse_int(params.get("questionIndex")), policy.max_follow_ups)
        chunk_index = _clamp(_parse_int(params.get("chunkIndex")), policy.max_chunks - 1)
        is_partial = str(params.get("partial", "")).lower() == "true"
        return cls(question_index=question_index, chunk_index=chunk_index, is_partial=is_partial)

    def next_chunk(self) -> "DialogueTurnContext":
        return replace(self, chunk_index=self.chunk_index + 1, is_partial=False)

    def next_question(self) -> "DialogueTurnContext":
        return DialogueTurnContext(question_index=self.question_index + 1, chunk_index=0)

    def to_query(self) -> dict:
        return {
            "questionIndex": str(self.question_index),
            "chunkIndex": str(self.chunk_index),
        }


@dataclass
class TurnDecision:
    """Result of a turn decision."""
    action: TurnAction
    context: Optional[DialogueTurnContext] = None
    listen_timeout: Optional[int] = None
    escalation_reason: Optional[str] = None


def _parse_int(value: Optional[str]) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def _clamp(value: int, upper: int) -> int:
    return max(0, min(value, upper))


# =============================================================================
# HEURISTICS
# =============================================================================

def is_probable_cutoff(chunk: str, policy: ListeningPolicy) -> bool:
    """
    Guess whether a first chunk hit the recognizer's hard timeout.

    Long answers are likely to have been truncated mid-sentence, so we
    open a short probe window to catch trailing speech.
    """
    text = chunk.strip()
    return (
        len(text.split()) >= policy.long_response_words
        or len(text) >= policy.long_response_chars
    )


def _advance_or_close(
    context: DialogueTurnContext,
    transcript: str,
    policy: ListeningPolicy,
) -> TurnDecision:
    """Move to the next follow-up if the cap allows, else close."""
    if context.question_index < policy.max_follow_ups and transcript.strip():
        return TurnDecision(
            action=TurnAction.ASK_FOLLOW_UP,
            context=context.next_question(),
            listen_timeout=policy.listen_timeout_seconds,
        )
    return TurnDecision(action=TurnAction.CLOSE)


# =============================================================================
# MAIN DECISION FUNCTION
# =============================================================================

def decide_turn(
    context: DialogueTurnContext,
    speech_result: Optional[str],
    transcript: str,
    policy: Optional[ListeningPolicy] = None,
) -> TurnDecision:
    """
    Decide what to do after a listening window.

    Args:
        context: Turn context from the callback URL
        speech_result: Final recognized text for this window (may be empty)
        transcript: Accumulated transcript AFTER this window's chunk was applied
        policy: Listening limits

    Returns:
        TurnDecision describing the next step
    """
    policy = policy or ListeningPolicy()

    # Partial results never move the state machine
    if context.is_partial:
        return TurnDecision(action=TurnAction.IGNORE_PARTIAL, context=context)

    speech = (speech_result or "").strip()

    if not speech:
        if context.question_index == 0 and not transcript.strip():
            return TurnDecision(
                action=TurnAction.END_NO_RESPONSE,
                escalation_reason=NO_RESPONSE_REASON,
            )
        if context.chunk_index > 0:
            # Chaining ran dry: the speaker finished naturally
            return _advance_or_close(context, transcript, policy)
        if context.question_index == 0:
            return TurnDecision(
                action=TurnAction.END_NO_RESPONSE,
                escalation_reason=NO_RESPONSE_REASON,
            )
        return TurnDecision(action=TurnAction.CLOSE)

    if context.chunk_index == 0:
        if policy.max_chunks > 1 and is_probable_cutoff(speech, policy):
            return TurnDecision(
                action=TurnAction.CHAIN,
                context=context.next_chunk(),
                listen_timeout=policy.probe_timeout_seconds,
            )
        return _advance_or_close(context, transcript, policy)

    if context.chunk_index < policy.max_chunks - 1:
        return TurnDecision(
            action=TurnAction.CHAIN,
            context=context.next_chunk(),
            listen_timeout=policy.listen_timeout_seconds,
        )

    logger.info(
        f"Chunk limit reached (chunkIndex={context.chunk_index}) "
        f"for question {context.question_index}"
    )
    return _advance_or_close(context, transcript, policy)
