"""
Template rendering for conversation sets.

Supports {name}, {organisation}, {escalation_name} and {escalation_number}.
Rendering is pure: the same template and contact always give the same text.
"""
from typing import Dict, Optional

from .specs import Contact

TEMPLATE_VARIABLES = ("name", "organisation", "escalation_name", "escalation_number")


def template_values(contact: Optional[Contact]) -> Dict[str, str]:
    """Map each template variable to its value (blank when missing)."""
    if contact is None:
        return {var: "" for var in TEMPLATE_VARIABLES}
    return {var: getattr(contact, var, None) or "" for var in TEMPLATE_VARIABLES}


def render_template(template: str, contact: Optional[Contact]) -> str:
    """Substitute contact fields into a template and trim the result.

    Plain replacement is used rather than str.format so that stray braces
    in admin-authored templates never raise.
    """
    rendered = template
    for var, value in template_values(contact).items():
        rendered = rendered.replace("{" + var + "}", value)
    return rendered.strip()
