"""
Conversation sets, contacts and template rendering.
"""
from .specs import (
    DEFAULT_CONVERSATION_SET,
    CONVERSATION_SETS,
    TONE_GUIDANCE,
    Contact,
    ConversationSet,
    get_conversation_set,
    get_tone_guidance,
    list_conversation_sets,
)
from .templates import (
    TEMPLATE_VARIABLES,
    render_template,
)

__all__ = [
    "DEFAULT_CONVERSATION_SET",
    "CONVERSATION_SETS",
    "TONE_GUIDANCE",
    "Contact",
    "ConversationSet",
    "get_conversation_set",
    "get_tone_guidance",
    "list_conversation_sets",
    "TEMPLATE_VARIABLES",
    "render_template",
]
