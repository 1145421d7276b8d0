"""Personas and the text conventions they share."""

from .personas import Persona, PersonaRegistry, MEMORY_PERSONA_KEY
from .mentions import extract_mentioned_personas, extract_mentions_from_text
from .response_utils import clean_reply_parts, strip_begin_marker, truncate_impersonation

__all__ = [
    "Persona",
    "PersonaRegistry",
    "MEMORY_PERSONA_KEY",
    "extract_mentioned_personas",
    "extract_mentions_from_text",
    "clean_reply_parts",
    "strip_begin_marker",
    "truncate_impersonation",
]
