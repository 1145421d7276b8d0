"""Role request task schemas."""

import uuid
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

from scheduler.cancellation import CancellationSource, CancellationToken
from .messages import ConversationMessage


class TaskStatus(str, Enum):
    """Lifecycle state of a role request task."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RoleRequestTask(BaseModel):
    """One request for one persona to respond."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    persona: str
    trigger_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    snapshot: List[ConversationMessage] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.QUEUED
    cancellation: CancellationSource = Field(default_factory=CancellationSource, exclude=True)

    @property
    def dedupe_key(self) -> Optional[str]:
        if self.trigger_id is None:
            return None
        return f"{self.trigger_id}:{self.persona}"

    @property
    def token(self) -> CancellationToken:
        return self.cancellation.token

    @property
    def cancelled(self) -> bool:
        return self.cancellation.cancelled


class TaskOutcome(BaseModel):
    """Terminal result of a task."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    task_id: str
    persona: str
    status: TaskStatus
    messages: List[ConversationMessage] = Field(default_factory=list)
    error: Optional[Exception] = None
