"""Tracking of uploaded attachment handles and their expiry."""

import re
import logging
from typing import Optional, List, Callable

from schemas.messages import ConversationMessage, MessagePart, now_ms
from memory.sqlite_store import SQLiteMemoryStore
from memory.models import TrackedFile

logger = logging.getLogger(__name__)

EXPIRED_PLACEHOLDER = "expired content"

_FILE_URI_PATTERN = re.compile(r"/files/([^/?]+)")
# e.g. "You do not have permission to access the File 3pkmvw1slxx8 or it may not exist."
_FILE_ERROR_PATTERN = re.compile(r"File\s+([a-zA-Z0-9]+)")


def extract_file_id(file_uri: Optional[str]) -> Optional[str]:
    """Extract the file ID from an upload handle URI."""
    if not file_uri:
        return None
    match = _FILE_URI_PATTERN.search(file_uri)
    return match.group(1) if match else None


def extract_file_id_from_error(error_message: Optional[str]) -> Optional[str]:
    """Extract the file ID named by a 403 error message."""
    if not error_message:
        return None
    match = _FILE_ERROR_PATTERN.search(error_message)
    return match.group(1) if match else None


class AttachmentTracker:
    """
    Remembers when each attachment handle was uploaded.

    Handles are valid for a fixed TTL after upload. A handle that is not
    tracked at all is treated as expired, since nothing proves it is still
    alive on the service side.
    """

    def __init__(
        self,
        store: SQLiteMemoryStore,
        ttl_ms: int = 12 * 60 * 60 * 1000,
        clock: Callable[[], int] = now_ms
    ):
        """
        Initialize tracker.

        Args:
            store: Store holding the uploaded_files table
            ttl_ms: Handle time-to-live in milliseconds (default: 12 hours)
            clock: Returns the current time in epoch milliseconds
        """
        self.store = store
        self.ttl_ms = ttl_ms
        self.clock = clock

    def track(self, file_uri: str, upload_time: Optional[int] = None):
        """Record a freshly uploaded handle."""
        file_id = extract_file_id(file_uri)
        if not file_id:
            logger.warning(f"Could not extract file ID from URI: {file_uri}")
            return

        self.store.track_file(TrackedFile(
            file_id=file_id,
            file_uri=file_uri,
            upload_time=upload_time if upload_time is not None else self.clock()
        ))

    def is_expired(self, file_id: str) -> bool:
        tracked = self.store.get_tracked_file(file_id)
        if tracked is None:
            return True
        return self.clock() - tracked.upload_time > self.ttl_ms

    def is_uri_expired(self, file_uri: Optional[str]) -> bool:
        file_id = extract_file_id(file_uri)
        return file_id is None or self.is_expired(file_id)

    def mark_expired(self, file_id: str):
        """Forget a handle the service reported as gone."""
        logger.warning(f"Marking file {file_id} as expired")
        self.store.delete_tracked_file(file_id)

    def clean_expired(self) -> List[str]:
        """Drop every handle past its TTL. Returns the removed IDs."""
        now = self.clock()
        expired = [
            tracked.file_id for tracked in self.store.list_tracked_files()
            if now - tracked.upload_time > self.ttl_ms
        ]
        for file_id in expired:
            self.store.delete_tracked_file(file_id)
        return expired

    def expire_part(self, part: MessagePart) -> MessagePart:
        """Replace an attachment part with the expiry placeholder if its handle is dead."""
        if part.attachment is None or not part.attachment.file_uri:
            return part
        if not self.is_uri_expired(part.attachment.file_uri):
            return part
        return MessagePart(
            uuid=part.uuid,
            timestamp=part.timestamp,
            last_update=self.clock(),
            text=EXPIRED_PLACEHOLDER
        )

    def remove_expired_from_messages(
        self,
        messages: List[ConversationMessage]
    ) -> List[ConversationMessage]:
        """
        Replace expired attachment parts with placeholder text.

        Args:
            messages: Conversation messages

        Returns:
            New list; unchanged messages are returned as-is
        """
        cleaned = []
        for message in messages:
            parts = [self.expire_part(part) for part in message.parts]
            if any(new is not old for new, old in zip(parts, message.parts)):
                cleaned.append(message.model_copy(update={"parts": parts}))
            else:
                cleaned.append(message)
        return cleaned
