"""Pydantic schemas for the persona chat engine."""

from .messages import (
    AttachmentRef,
    ConversationMessage,
    MessagePart,
    PartKind,
    Speaker,
    ToolCall,
    ToolResponse,
)
from .tasks import RoleRequestTask, TaskOutcome, TaskStatus

__all__ = [
    "AttachmentRef",
    "ConversationMessage",
    "MessagePart",
    "PartKind",
    "Speaker",
    "ToolCall",
    "ToolResponse",
    "RoleRequestTask",
    "TaskOutcome",
    "TaskStatus",
]
