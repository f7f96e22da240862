"""
Tests for the deterministic turn planner.

These tests verify that:
1. Silence after the greeting ends the call cold with an escalation reason
2. A long first chunk opens a short probe window
3. Chained windows never exceed MAX_CHUNKS per question
4. Follow-ups stop at MAX_FOLLOW_UPS and the call closes
5. Partial callbacks never move the state machine
6. Untrusted query parameters are parsed and clamped
"""

import pytest

from engine.turns import (
    MAX_CHUNKS,
    MAX_FOLLOW_UPS,
    NO_RESPONSE_REASON,
    DialogueTurnContext,
    ListeningPolicy,
    TurnAction,
    decide_turn,
    is_probable_cutoff,
)


POLICY = ListeningPolicy()

LONG_ANSWER = " ".join(["word"] * 95)


def ctx(question: int, chunk: int, partial: bool = False) -> DialogueTurnContext:
    return DialogueTurnContext(question_index=question, chunk_index=chunk, is_partial=partial)


class TestNoResponse:
    """Silence on the greeting turn."""

    def test_silence_after_greeting_ends_cold(self):
        decision = decide_turn(ctx(0, 0), "", "", POLICY)

        assert decision.action == TurnAction.END_NO_RESPONSE
        assert decision.escalation_reason == NO_RESPONSE_REASON
        assert decision.context is None

    def test_none_speech_result_is_treated_as_silence(self):
        decision = decide_turn(ctx(0, 0), None, "", POLICY)

        assert decision.action == TurnAction.END_NO_RESPONSE

    def test_whitespace_only_speech_is_silence(self):
        decision = decide_turn(ctx(0, 0), "   ", "", POLICY)

        assert decision.action == TurnAction.END_NO_RESPONSE

    def test_silence_on_first_window_of_greeting_ends_even_with_transcript(self):
        """Empty first window of question 0 ends the call regardless of transcript."""
        decision = decide_turn(ctx(0, 0), "", "something heard earlier", POLICY)

        assert decision.action == TurnAction.END_NO_RESPONSE


class TestShortAnswers:
    """Short, complete answers move straight to the next question."""

    def test_short_greeting_answer_asks_first_follow_up(self):
        decision = decide_turn(ctx(0, 0), "I'm doing fine thanks", "I'm doing fine thanks", POLICY)

        assert decision.action == TurnAction.ASK_FOLLOW_UP
        assert decision.context == ctx(1, 0)
        assert decision.listen_timeout == POLICY.listen_timeout_seconds

    def test_short_answer_on_first_follow_up_asks_second(self):
        decision = decide_turn(ctx(1, 0), "Quiet day", "Fine. Quiet day", POLICY)

        assert decision.action == TurnAction.ASK_FOLLOW_UP
        assert decision.context == ctx(2, 0)

    def test_answer_on_last_follow_up_closes(self):
        decision = decide_turn(ctx(MAX_FOLLOW_UPS, 0), "Nothing else", "Fine. Quiet. Nothing else", POLICY)

        assert decision.action == TurnAction.CLOSE

    def test_silence_on_follow_up_closes(self):
        decision = decide_turn(ctx(1, 0), "", "I'm fine", POLICY)

        assert decision.action == TurnAction.CLOSE


class TestChaining:
    """Long answers keep the listening window open on the same question."""

    def test_long_first_chunk_opens_probe_window(self):
        decision = decide_turn(ctx(0, 0), LONG_ANSWER, LONG_ANSWER, POLICY)

        assert decision.action == TurnAction.CHAIN
        assert decision.context == ctx(0, 1)
        assert decision.listen_timeout == POLICY.probe_timeout_seconds

    def test_long_first_chunk_by_characters(self):
        text = "x" * 450

        assert is_probable_cutoff(text, POLICY)
        decision = decide_turn(ctx(1, 0), text, text, POLICY)
        assert decision.action == TurnAction.CHAIN
        assert decision.listen_timeout == POLICY.probe_timeout_seconds

    def test_just_under_thresholds_is_not_cutoff(self):
        text = " ".join(["w"] * 89)

        assert not is_probable_cutoff(text, POLICY)

    def test_speech_in_chained_window_chains_with_full_timeout(self):
        decision = decide_turn(ctx(0, 1), "and another thing", "long... and another thing", POLICY)

        assert decision.action == TurnAction.CHAIN
        assert decision.context == ctx(0, 2)
        assert decision.listen_timeout == POLICY.listen_timeout_seconds

    def test_silence_in_chained_window_advances(self):
        decision = decide_turn(ctx(0, 2), "", "a long answer", POLICY)

        assert decision.action == TurnAction.ASK_FOLLOW_UP
        assert decision.context == ctx(1, 0)

    def test_silence_on_follow_up_chain_moves_to_next_question(self):
        """Question 1, chunk 2, empty speech -> question 2."""
        decision = decide_turn(ctx(1, 2), "", "earlier speech", POLICY)

        assert decision.action == TurnAction.ASK_FOLLOW_UP
        assert decision.context == ctx(2, 0)

    def test_silence_in_chain_on_last_question_closes(self):
        decision = decide_turn(ctx(MAX_FOLLOW_UPS, 1), "", "earlier speech", POLICY)

        assert decision.action == TurnAction.CLOSE

    def test_last_chunk_forces_advance(self):
        decision = decide_turn(ctx(0, MAX_CHUNKS - 1), "still talking", "still talking", POLICY)

        assert decision.action == TurnAction.ASK_FOLLOW_UP
        assert decision.context == ctx(1, 0)

    def test_chain_never_exceeds_max_chunks(self):
        """A speaker who never stops gets at most MAX_CHUNKS windows per question."""
        context = ctx(0, 0)
        transcript = ""
        windows = 0
        decision = None
        while True:
            windows += 1
            speech = LONG_ANSWER
            transcript = f"{transcript} {speech}".strip()
            decision = decide_turn(context, speech, transcript, POLICY)
            if decision.action != TurnAction.CHAIN:
                break
            context = decision.context
            assert windows < 20

        assert windows == MAX_CHUNKS
        assert decision.action == TurnAction.ASK_FOLLOW_UP

    def test_single_window_policy_never_chains(self):
        policy = ListeningPolicy(max_chunks=1)

        decision = decide_turn(ctx(0, 0), LONG_ANSWER, LONG_ANSWER, policy)

        assert decision.action == TurnAction.ASK_FOLLOW_UP


class TestPartialResults:
    """Partial recognizer callbacks are advisory only."""

    @pytest.mark.parametrize("speech", ["", "I am", LONG_ANSWER])
    def test_partial_is_ignored(self, speech):
        context = ctx(0, 0, partial=True)

        decision = decide_turn(context, speech, "", POLICY)

        assert decision.action == TurnAction.IGNORE_PARTIAL
        assert decision.context == context


class TestTurnContext:
    """Parsing the turn context from callback query parameters."""

    def test_missing_params_default_to_zero(self):
        context = DialogueTurnContext.from_query({})

        assert context == ctx(0, 0)

    def test_garbage_params_parse_as_zero(self):
        context = DialogueTurnContext.from_query({"questionIndex": "abc", "chunkIndex": "1.5"})

        assert context == ctx(0, 0)

    def test_indices_are_clamped(self):
        context = DialogueTurnContext.from_query({"questionIndex": "7", "chunkIndex": "99"})

        assert context.question_index == MAX_FOLLOW_UPS
        assert context.chunk_index == MAX_CHUNKS - 1

    def test_negative_indices_are_clamped(self):
        context = DialogueTurnContext.from_query({"questionIndex": "-3", "chunkIndex": "-1"})

        assert context == ctx(0, 0)

    def test_partial_flag(self):
        assert DialogueTurnContext.from_query({"partial": "true"}).is_partial
        assert DialogueTurnContext.from_query({"partial": "TRUE"}).is_partial
        assert not DialogueTurnContext.from_query({"partial": "false"}).is_partial

    def test_to_query_echoes_position(self):
        assert ctx(1, 3).to_query() == {"questionIndex": "1", "chunkIndex": "3"}

    def test_next_question_resets_chunk(self):
        assert ctx(0, 3).next_question() == ctx(1, 0)
