"""
Check-in session store.

Holds one CheckinSession per phone call, keyed by the provider's Call SID,
plus the contact directory and any custom conversation sets. Storage is
in-process and does not survive a restart.

Every webhook turn for a call runs under that call's lock so a redelivered
or overlapping callback cannot interleave transcript updates.

Python 3.9 compatible - uses typing.Dict, typing.List, typing.Optional
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from conversations import (
    CONVERSATION_SETS,
    Contact,
    ConversationSet,
)

from .config import get_settings
from .models import AnalysisResult, CheckinResponse

logger = logging.getLogger(__name__)


@dataclass
class CheckinSession:
    """State for a single check-in call."""
    call_id: str  # Twilio Call SID
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=datetime.utcnow)

    # Accumulated speech, space-joined chunks
    transcript: Optional[str] = None
    responded: bool = False

    # Terminal analysis fields, written once
    sentiment: Optional[str] = None
    risk_level: Optional[str] = None
    keywords: Optional[List[str]] = None
    needs_escalation: bool = False
    escalation_reason: Optional[str] = None
    finalized_at: Optional[datetime] = None

    # Weak references
    contact_id: Optional[str] = None
    conversation_set_name: Optional[str] = None

    call_status: str = "queued"

    # One-entry cache for redelivered webhook turns
    last_turn_key: Optional[str] = None
    last_response: Optional[str] = None

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None

    def append_chunk(self, chunk: str) -> str:
        """Append a speech chunk and mark the session as responded."""
        chunk = chunk.strip()
        if chunk:
            self.transcript = f"{self.transcript} {chunk}".strip() if self.transcript else chunk
            self.responded = True
        return self.transcript or ""

    def finalize(
        self,
        *,
        needs_escalation: bool,
        escalation_reason: Optional[str],
        sentiment: Optional[str] = None,
        risk_level: Optional[str] = None,
        keywords: Optional[List[str]] = None,
    ) -> bool:
        """Write the terminal fields.

        Returns False (and changes nothing) if the session was already
        finalized by an earlier turn.
        """
        if self.is_finalized:
            logger.warning(f"Checkin {self.id} (call {self.call_id}) already finalized, ignoring update")
            return False
        if needs_escalation and not escalation_reason:
            escalation_reason = "Concern detected in conversation"
        self.sentiment = sentiment
        self.risk_level = risk_level
        self.keywords = keywords
        self.needs_escalation = needs_escalation
        self.escalation_reason = escalation_reason if needs_escalation else None
        self.finalized_at = datetime.utcnow()
        return True

    def finalize_with_analysis(self, analysis: AnalysisResult) -> bool:
        return self.finalize(
            needs_escalation=analysis.needsEscalation,
            escalation_reason=analysis.escalationReason,
            sentiment=analysis.sentiment.value,
            risk_level=analysis.riskLevel.value,
            keywords=list(analysis.keywords),
        )

    def to_response(self) -> CheckinResponse:
        return CheckinResponse(
            id=self.id,
            callId=self.call_id,
            startedAt=self.started_at,
            transcript=self.transcript,
            responded=self.responded,
            sentiment=self.sentiment,
            riskLevel=self.risk_level,
            keywords=self.keywords,
            needsEscalation=self.needs_escalation,
            escalationReason=self.escalation_reason,
            contactId=self.contact_id,
            conversationSetName=self.conversation_set_name,
            callStatus=self.call_status,
            finalized=self.is_finalized,
        )


class CheckinStore:
    """In-memory store for check-in sessions, contacts and conversation sets."""

    def __init__(self, default_conversation_set: str = "current"):
        self.default_conversation_set = default_conversation_set
        self._sessions: Dict[str, CheckinSession] = {}  # keyed by call_id
        self._ids: Dict[str, str] = {}  # checkin id -> call_id
        self._locks: Dict[str, asyncio.Lock] = {}
        self._contacts: Dict[str, Contact] = {}
        self._conversation_sets: Dict[str, ConversationSet] = dict(CONVERSATION_SETS)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def ensure_session(
        self,
        call_id: str,
        *,
        contact_id: Optional[str] = None,
        conversation_set_name: Optional[str] = None,
    ) -> CheckinSession:
        """Fetch the session for a call or create one if it does not yet exist."""
        session = self._sessions.get(call_id)
        if session is None:
            session = CheckinSession(
                call_id=call_id,
                contact_id=contact_id,
                conversation_set_name=conversation_set_name,
            )
            self._sessions[call_id] = session
            self._ids[session.id] = call_id
            logger.info(f"Checkin {session.id} created for call {call_id}")
            return session

        if contact_id is not None and session.contact_id is None:
            session.contact_id = contact_id
        if conversation_set_name is not None and session.conversation_set_name is None:
            session.conversation_set_name = conversation_set_name
        return session

    def get_by_call_id(self, call_id: str) -> Optional[CheckinSession]:
        return self._sessions.get(call_id)

    def get(self, checkin_id: str) -> Optional[CheckinSession]:
        call_id = self._ids.get(checkin_id)
        if call_id is None:
            return None
        return self._sessions.get(call_id)

    def list_recent(self, limit: int = 50) -> List[CheckinSession]:
        sessions = sorted(self._sessions.values(), key=lambda s: s.started_at, reverse=True)
        return sessions[:limit]

    def lock_for(self, call_id: str) -> asyncio.Lock:
        """Return the per-call lock serializing webhook turns."""
        lock = self._locks.get(call_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[call_id] = lock
        return lock

    def release_lock(self, call_id: str) -> None:
        """Drop the lock of a finished call."""
        lock = self._locks.get(call_id)
        if lock is not None and not lock.locked():
            del self._locks[call_id]

    def clear(self) -> None:
        self._sessions.clear()
        self._ids.clear()
        self._locks.clear()

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def add_contact(self, contact: Contact) -> Contact:
        self._contacts[contact.id] = contact
        return contact

    def get_contact(self, contact_id: Optional[str]) -> Optional[Contact]:
        if not contact_id:
            return None
        return self._contacts.get(contact_id)

    def list_contacts(self) -> List[Contact]:
        return sorted(self._contacts.values(), key=lambda c: c.name)

    def load_contacts(self, path: str) -> int:
        """Seed the contact directory from a JSON list of contact objects."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"Contacts file {path} must contain a JSON list")
        for item in data:
            self.add_contact(Contact.from_dict(item))
        logger.info(f"Loaded {len(data)} contacts from {path}")
        return len(data)

    # ------------------------------------------------------------------
    # Conversation sets
    # ------------------------------------------------------------------

    def add_conversation_set(self, conversation_set: ConversationSet) -> ConversationSet:
        self._conversation_sets[conversation_set.name] = conversation_set
        return conversation_set

    def has_conversation_set(self, name: str) -> bool:
        return name in self._conversation_sets

    def resolve_conversation_set(self, name: Optional[str]) -> ConversationSet:
        """Return the named set, falling back to the default set."""
        if name and name in self._conversation_sets:
            return self._conversation_sets[name]
        if name:
            logger.warning(f"Unknown conversation set '{name}', using '{self.default_conversation_set}'")
        return self._conversation_sets.get(
            self.default_conversation_set, CONVERSATION_SETS["current"]
        )


# Singleton instance (created lazily)
_checkin_store: Optional[CheckinStore] = None


def get_checkin_store() -> CheckinStore:
    """Get or create the CheckinStore singleton."""
    global _checkin_store
    if _checkin_store is None:
        settings = get_settings()
        _checkin_store = CheckinStore(default_conversation_set=settings.default_conversation_set)
        if settings.contacts_file:
            _checkin_store.load_contacts(settings.contacts_file)
    return _checkin_store
