"""Helpers for mutating conversation history."""

from typing import List, Iterable, Optional

from schemas.messages import ConversationMessage, generate_part_uuid, now_ms


def append_message(history: List[ConversationMessage], message: ConversationMessage) -> List[ConversationMessage]:
    """
    Append a message, stamping its parts.

    Parts get a fresh uuid when missing, and the message timestamp as both
    timestamp and last_update.

    Returns:
        New history list
    """
    parts = [
        part.model_copy(update={
            "uuid": part.uuid or generate_part_uuid(),
            "timestamp": message.timestamp,
            "last_update": message.timestamp,
        })
        for part in message.parts
    ]
    return history + [message.model_copy(update={"parts": parts})]


def filter_deleted_messages(history: Iterable[ConversationMessage]) -> List[ConversationMessage]:
    return [message for message in history if not message.deleted]


def delete_messages(history: List[ConversationMessage], timestamps: Iterable[int]) -> List[ConversationMessage]:
    """Soft-delete the messages with the given timestamps."""
    targets = set(timestamps)
    return [
        message.model_copy(update={"deleted": True}) if message.timestamp in targets else message
        for message in history
    ]


def update_message_part(
    history: List[ConversationMessage],
    part_uuid: str,
    text: str,
    now: Optional[int] = None
) -> List[ConversationMessage]:
    """
    Edit the text of one part.

    Only text and last_update change; the part keeps its uuid and timestamp.

    Raises:
        KeyError: If no text part has the uuid
    """
    stamp = now if now is not None else now_ms()
    updated = []
    found = False
    for message in history:
        parts = []
        changed = False
        for part in message.parts:
            if part.uuid == part_uuid and part.text is not None:
                part = part.model_copy(update={"text": text, "last_update": stamp})
                changed = found = True
            parts.append(part)
        updated.append(message.model_copy(update={"parts": parts}) if changed else message)

    if not found:
        raise KeyError(f"No text part with uuid {part_uuid}")
    return updated
