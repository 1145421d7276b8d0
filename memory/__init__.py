"""Memory system for conversation persistence and compression."""

from .models import Conversation, TrackedFile
from .sqlite_store import SQLiteMemoryStore, SummaryOrderError

__all__ = [
    "Conversation",
    "TrackedFile",
    "SQLiteMemoryStore",
    "SummaryOrderError",
]
