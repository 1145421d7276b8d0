"""Memory data models."""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from schemas.messages import ConversationMessage


class Conversation(BaseModel):
    """A persisted conversation."""
    conversation_id: str
    title: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    messages: List[ConversationMessage] = Field(default_factory=list)


class TrackedFile(BaseModel):
    """An uploaded attachment handle and when it was uploaded."""
    file_id: str
    file_uri: str
    upload_time: int  # Epoch milliseconds
