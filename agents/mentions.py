"""@mention extraction."""

import re
from typing import Dict, List, Iterable

from schemas.messages import MessagePart

MENTION_PATTERN = re.compile(r"@([a-z0-9_]+)", re.IGNORECASE)


def extract_mentioned_personas(
    parts: Iterable[MessagePart],
    mention_map: Dict[str, str]
) -> List[str]:
    """
    Extract persona keys mentioned in message parts.

    Hidden and thought parts are ignored. Unknown names are ignored.

    Args:
        parts: Message parts to scan
        mention_map: Lowercase display name to persona key

    Returns:
        Distinct persona keys in order of first mention
    """
    found: List[str] = []
    for part in parts:
        if part is None or part.hide or part.thought or not part.text:
            continue
        for match in MENTION_PATTERN.finditer(part.text):
            key = mention_map.get(match.group(1).lower())
            if key and key not in found:
                found.append(key)
    return found


def extract_mentions_from_text(text: str, mention_map: Dict[str, str]) -> List[str]:
    """Same as extract_mentioned_personas for a plain string."""
    return extract_mentioned_personas([MessagePart(text=text or "")], mention_map)
