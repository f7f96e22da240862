"""
Dialogue Service - runs the check-in conversation across Twilio webhooks.

Each webhook is stateless: the position in the script arrives as query
parameters on the callback URL (DialogueTurnContext) and the transcript lives
in the CheckinSession. This service:
1. Loads the session and serializes turns per call
2. Applies the speech chunk to the transcript
3. Asks the deterministic planner (engine.turns) what to do next
4. Executes that decision: keep listening, ask a follow-up, close, or hang up
5. Reports which check-in (if any) needs an escalation alert

Closing always persists something and always ends with a hangup, even if
analysis fails.

Python 3.9 compatible - uses typing.Optional, typing.Tuple
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from conversations import Contact, ConversationSet, render_template
from engine.turns import (
    DialogueTurnContext,
    TurnAction,
    TurnDecision,
    decide_turn,
)

from .analysis_service import RiskAnalyzer, get_risk_analyzer
from .config import Settings, get_settings
from .follow_up_service import FollowUpGenerator, get_follow_up_generator
from .store import CheckinSession, CheckinStore, get_checkin_store
from .twilio_service import (
    TwilioService,
    gather,
    get_twilio_service,
    hangup,
    hangup_twiml,
    twiml,
)

logger = logging.getLogger(__name__)


VOICE_PATH = "/call/voice"
GATHER_PATH = "/call/gather"

NON_LIVE_STATUSES = {"no-answer", "busy", "failed", "canceled"}
ANALYSIS_FAILED_REASON = "Analysis failed - manual review needed"


@dataclass
class TurnOutcome:
    """TwiML to return plus the check-in to escalate, if any."""
    twiml: str
    escalate_checkin_id: Optional[str] = None


def _is_machine(answered_by: Optional[str]) -> bool:
    if not answered_by:
        return False
    value = answered_by.lower()
    return value.startswith("machine") or value == "fax"


def _log_turn_summary(
    call_id: str,
    context: DialogueTurnContext,
    decision: TurnDecision,
    chunk_chars: int,
    transcript_chars: int,
) -> None:
    """Single-line summary of each dialogue decision."""
    next_context = decision.context
    logger.info(
        "[TURN] "
        f"call={call_id} "
        f"q={context.question_index} "
        f"chunk={context.chunk_index} "
        f"action={decision.action.value} "
        f"next_q={next_context.question_index if next_context else '-'} "
        f"next_chunk={next_context.chunk_index if next_context else '-'} "
        f"timeout={decision.listen_timeout or '-'} "
        f"chunk_chars={chunk_chars} "
        f"transcript_chars={transcript_chars}"
    )


class DialogueService:
    """Drives check-in calls from Twilio voice and gather webhooks."""

    def __init__(
        self,
        store: CheckinStore,
        twilio: TwilioService,
        analyzer: RiskAnalyzer,
        follow_ups: FollowUpGenerator,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.twilio = twilio
        self.analyzer = analyzer
        self.follow_ups = follow_ups
        self.settings = settings or get_settings()
        self.policy = self.settings.listening_policy()

    # ------------------------------------------------------------------
    # Markup helpers
    # ------------------------------------------------------------------

    def _listen(self, context: DialogueTurnContext, timeout: int) -> str:
        """Open a listening window whose callbacks echo the turn context."""
        params = context.to_query()
        action = self.settings.build_url(GATHER_PATH, params)
        partial = self.settings.build_url(GATHER_PATH, {**params, "partial": "true"})
        return gather(action, timeout=timeout, partial_result_callback=partial)

    def _script_for(self, session: CheckinSession) -> Tuple[ConversationSet, Optional[Contact]]:
        contact = self.store.get_contact(session.contact_id)
        script = self.store.resolve_conversation_set(session.conversation_set_name)
        return script, contact

    def _end_without_closing(self, session: CheckinSession, reason: str) -> TurnOutcome:
        """Escalate and hang up without speaking: nothing was heard."""
        session.responded = False
        escalate = session.finalize(needs_escalation=True, escalation_reason=reason)
        logger.warning(f"Call {session.call_id} ended without response: {reason}")
        return TurnOutcome(
            twiml=hangup_twiml(),
            escalate_checkin_id=session.id if escalate else None,
        )

    # ------------------------------------------------------------------
    # Call answered
    # ------------------------------------------------------------------

    async def handle_call_answered(
        self,
        call_id: str,
        call_status: Optional[str] = None,
        answered_by: Optional[str] = None,
    ) -> TurnOutcome:
        """Greet the person and open the first listening window.

        Non-live calls (no-answer, busy, failed) and answering machines are
        escalated and hung up immediately.
        """
        async with self.store.lock_for(call_id):
            session = self.store.ensure_session(call_id)
            if call_status:
                session.call_status = call_status

            if session.is_finalized:
                logger.info(f"handle_call_answered: call {call_id} already finalized, hanging up")
                return TurnOutcome(twiml=hangup_twiml())

            if call_status in NON_LIVE_STATUSES:
                return self._end_without_closing(session, f"Call {call_status}")

            if _is_machine(answered_by):
                return self._end_without_closing(session, f"Answered by {answered_by}")

            script, contact = self._script_for(session)
            greeting = render_template(script.greeting_template, contact)
            slow = bool(contact and contact.talk_slowly)

            logger.info(
                f"Greeting call {call_id} with set '{script.name}'"
                f"{' (talk slowly)' if slow else ''}"
            )
            return TurnOutcome(
                twiml=twiml(
                    self.twilio.say(greeting, slow=slow),
                    self._listen(DialogueTurnContext(), self.policy.listen_timeout_seconds),
                )
            )

    # ------------------------------------------------------------------
    # Speech turn
    # ------------------------------------------------------------------

    async def handle_speech_turn(
        self,
        call_id: str,
        context: DialogueTurnContext,
        speech_result: Optional[str] = None,
        unstable_speech_result: Optional[str] = None,
    ) -> TurnOutcome:
        """Process one listening window's result."""
        session = self.store.get_by_call_id(call_id)
        if session is None:
            logger.error(f"handle_speech_turn: no checkin found for call {call_id}")
            return TurnOutcome(twiml=hangup_twiml())

        if context.is_partial:
            # Advisory only: no state change, no chunk counted
            logger.debug(f"Partial speech for call {call_id}: {(unstable_speech_result or '')[:80]}")
            return TurnOutcome(twiml=twiml())

        speech = (speech_result or "").strip()
        turn_key = f"{context.question_index}:{context.chunk_index}:{speech}"

        async with self.store.lock_for(call_id):
            if session.is_finalized:
                logger.info(f"handle_speech_turn: call {call_id} already finalized, hanging up")
                return TurnOutcome(twiml=hangup_twiml())

            if session.last_turn_key == turn_key and session.last_response is not None:
                logger.warning(f"Redelivered turn {turn_key!r} for call {call_id}, replaying response")
                return TurnOutcome(twiml=session.last_response)

            transcript = session.append_chunk(speech) if speech else (session.transcript or "")
            decision = decide_turn(context, speech, transcript, self.policy)
            _log_turn_summary(call_id, context, decision, len(speech), len(transcript))

            outcome = await self._apply_decision(session, decision)
            session.last_turn_key = turn_key
            session.last_response = outcome.twiml

        if session.is_finalized:
            self.store.release_lock(call_id)
        return outcome

    async def _apply_decision(self, session: CheckinSession, decision: TurnDecision) -> TurnOutcome:
        if decision.action == TurnAction.IGNORE_PARTIAL:
            return TurnOutcome(twiml=twiml())

        if decision.action == TurnAction.CHAIN:
            # Keep listening on the same question, no new prompt
            return TurnOutcome(twiml=twiml(self._listen(decision.context, decision.listen_timeout)))

        if decision.action == TurnAction.ASK_FOLLOW_UP:
            return await self._ask_follow_up(session, decision)

        if decision.action == TurnAction.END_NO_RESPONSE:
            return self._end_without_closing(session, decision.escalation_reason)

        return await self._close(session)

    async def _ask_follow_up(self, session: CheckinSession, decision: TurnDecision) -> TurnOutcome:
        script, contact = self._script_for(session)
        if script.follow_up_template:
            prompt = render_template(script.follow_up_template, contact)
        else:
            prompt = await self.follow_ups.next_prompt(session.transcript or "", script.name)

        slow = bool(contact and contact.talk_slowly)
        return TurnOutcome(
            twiml=twiml(
                self.twilio.say(prompt, slow=slow),
                self._listen(decision.context, decision.listen_timeout),
            )
        )

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    async def _close(self, session: CheckinSession) -> TurnOutcome:
        """Analyze once, persist, speak the closing line, hang up."""
        escalate_id: Optional[str] = None
        try:
            analysis = await self.analyzer.analyze(session.transcript or "")
            if session.finalize_with_analysis(analysis) and analysis.needsEscalation:
                escalate_id = session.id
            logger.info(
                f"Checkin {session.id} closed: source={analysis.source}, "
                f"risk={analysis.riskLevel.value}, escalate={analysis.needsEscalation}"
            )
        except Exception:
            logger.exception(f"Closing analysis failed for call {session.call_id}")
            if session.finalize(needs_escalation=True, escalation_reason=ANALYSIS_FAILED_REASON):
                escalate_id = session.id

        script, contact = self._script_for(session)
        closing = render_template(script.closing_template, contact)
        slow = bool(contact and contact.talk_slowly)
        return TurnOutcome(
            twiml=twiml(self.twilio.say(closing, slow=slow), hangup()),
            escalate_checkin_id=escalate_id,
        )


# Singleton instance (created lazily)
_dialogue_service: Optional[DialogueService] = None


def get_dialogue_service() -> DialogueService:
    """Get or create the DialogueService singleton."""
    global _dialogue_service
    if _dialogue_service is None:
        _dialogue_service = DialogueService(
            store=get_checkin_store(),
            twilio=get_twilio_service(),
            analyzer=get_risk_analyzer(),
            follow_ups=get_follow_up_generator(),
        )
    return _dialogue_service
