"""Post-processing of persona replies."""

import re
from typing import List, Iterable

from schemas.messages import MessagePart


def _marker_pattern(persona_name: str) -> re.Pattern:
    return re.compile(
        r"\$\$\$\s*" + re.escape(persona_name) + r"\s+BEGIN\s+\$\$\$\s*\n?",
        re.IGNORECASE
    )


def strip_begin_marker(text: str, persona_name: str) -> str:
    """Remove every "$$$ NAME BEGIN $$$" sentinel the model echoed for itself."""
    if not text or not persona_name:
        return text
    cleaned = _marker_pattern(persona_name).sub("", text)
    if cleaned != text:
        cleaned = cleaned.lstrip("\n")
    return cleaned


def truncate_impersonation(text: str, persona_name: str, all_names: Iterable[str]) -> str:
    """
    Cut the reply at the first sentinel of another persona.

    A model occasionally keeps writing as someone else after finishing its own
    turn; everything from that point on is dropped.
    """
    if not text:
        return text

    earliest = -1
    for name in all_names:
        if name == persona_name:
            continue
        match = _marker_pattern(name).search(text)
        if match and (earliest == -1 or match.start() < earliest):
            earliest = match.start()

    if earliest == -1:
        return text
    return text[:earliest].strip()


def clean_reply_parts(
    parts: List[MessagePart],
    persona_name: str,
    all_names: Iterable[str]
) -> List[MessagePart]:
    """
    Apply sentinel cleanup to the non-thought text parts of a reply.

    Text parts left blank by the cleanup are dropped.
    """
    names = list(all_names)
    cleaned = []
    for part in parts:
        if part.text is None or part.thought:
            cleaned.append(part)
            continue
        text = truncate_impersonation(part.text, persona_name, names)
        text = strip_begin_marker(text, persona_name)
        if not text.strip():
            continue
        cleaned.append(part.model_copy(update={"text": text}) if text != part.text else part)
    return cleaned
