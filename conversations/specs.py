"""
Contact and ConversationSet definitions.

This module defines the declarative scripts used on a check-in call.
A ConversationSet bundles the greeting, follow-up and closing templates;
the dialogue engine renders them against the Contact being called.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


DEFAULT_CONVERSATION_SET = "current"


@dataclass
class Contact:
    """
    A person who receives check-in calls.

    Attributes:
        id: Directory identifier
        name: Name spoken in personalized greetings
        number_to_call: Destination number in E.164 format
        organisation: Organisation that can be escalated to
        talk_slowly: Speak prompts at a slower rate
        escalation_name: Person to notify when a concern is detected
        escalation_number: Number that receives the escalation SMS
    """
    id: str
    name: str
    number_to_call: str
    organisation: Optional[str] = None
    talk_slowly: bool = False
    escalation_name: Optional[str] = None
    escalation_number: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contact":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            number_to_call=data["number_to_call"],
            organisation=data.get("organisation"),
            talk_slowly=bool(data.get("talk_slowly", False)),
            escalation_name=data.get("escalation_name"),
            escalation_number=data.get("escalation_number"),
        )


@dataclass
class ConversationSet:
    """
    A named script bundle.

    follow_up_template=None means follow-up prompts come from the
    follow-up generator (LLM, then reflective validation).
    """
    name: str
    greeting_template: str
    closing_template: str
    follow_up_template: Optional[str] = None
    description: Optional[str] = None


# =============================================================================
# BUILT-IN CONVERSATION SETS
# =============================================================================

CURRENT_SET = ConversationSet(
    name="current",
    description="Simple, straightforward check-in",
    greeting_template="Hello! This is your daily check-in call. How are you feeling today?",
    follow_up_template=None,
    closing_template="Thanks for chatting with me today. Take care and have a good day.",
)

PERSONALIZED_SET = ConversationSet(
    name="personalized",
    description="Personalized greeting with name and organisation mention",
    greeting_template=(
        "Hello {name}, this is an automated call to see how you're doing. "
        "If needed, we can escalate to {organisation}. How are you feeling today?"
    ),
    follow_up_template=None,
    closing_template="Thanks for chatting with me today, {name}. Take care and have a good day.",
)

FORMAL_SET = ConversationSet(
    name="formal",
    description="Professional and formal tone",
    greeting_template="Good day. This is an automated wellbeing check-in call. How are you doing today?",
    follow_up_template=None,
    closing_template="Thank you for your time. We appreciate you taking this call. Have a pleasant day.",
)

CASUAL_SET = ConversationSet(
    name="casual",
    description="Friendly and casual tone",
    greeting_template="Hey there! Just calling to check in and see how you're doing today. What's going on?",
    follow_up_template=None,
    closing_template="Alright, thanks for chatting! Take it easy and have a great day!",
)

CONVERSATION_SETS: Dict[str, ConversationSet] = {
    s.name: s for s in (CURRENT_SET, PERSONALIZED_SET, FORMAL_SET, CASUAL_SET)
}


# Tone guidance handed to the follow-up generator, keyed by set name.
# Unknown or custom set names use "balanced".
TONE_GUIDANCE: Dict[str, str] = {
    "formal": "Use a polite, professional and formal tone. Avoid slang and contractions where possible.",
    "casual": "Use a relaxed, friendly and casual tone, like a neighbour checking in.",
    "personalized": "Use a warm, personal tone, as someone who knows the person and cares about them.",
    "balanced": "Use a warm but neutral tone that is neither overly formal nor overly casual.",
}


def get_tone_guidance(conversation_set_name: Optional[str]) -> str:
    """Return the tone guidance string for a conversation set name."""
    if conversation_set_name and conversation_set_name in TONE_GUIDANCE:
        return TONE_GUIDANCE[conversation_set_name]
    return TONE_GUIDANCE["balanced"]


def get_conversation_set(name: Optional[str]) -> Optional[ConversationSet]:
    """Look up a built-in conversation set by name."""
    if not name:
        return None
    return CONVERSATION_SETS.get(name)


def list_conversation_sets() -> List[ConversationSet]:
    """Return the built-in conversation sets in declaration order."""
    return list(CONVERSATION_SETS.values())
