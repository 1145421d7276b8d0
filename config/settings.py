"""Application settings."""

import os
from typing import Optional
from pydantic import BaseModel


class Settings(BaseModel):
    """Application configuration settings."""

    # Completion service
    api_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    api_key: Optional[str] = None
    api_key_header: str = "x-goog-api-key"
    model: str = "gemini-2.5-flash"
    summarization_model: str = "gemini-2.5-flash-lite"
    request_timeout: int = 300  # Seconds; a hung call only blocks its own task
    thinking_enabled: bool = True

    # Persistence
    db_path: str = "data/conversations.db"
    conversation_id: Optional[str] = None

    # Scheduling
    max_concurrent_requests: int = 3
    max_retry_depth: int = 3

    # Attachments
    attachment_ttl_hours: int = 12

    # Memory compression
    token_threshold: int = 100000
    recent_messages_count: int = 10
    min_messages_between_summaries: int = 5
    age_threshold_seconds: int = 60 * 60 * 24

    # Personas
    personas_path: Optional[str] = None  # Defaults to config/personas.yaml
    default_persona: str = "general"
    custom_system_prompt: str = ""

    # Follow-up questions after all personas go idle
    follow_up_enabled: bool = False

    # Logging
    verbose: bool = False

    def __init__(self, **data):
        # Auto-load API key from environment if not provided
        if "api_key" not in data or data["api_key"] is None:
            data["api_key"] = os.environ.get("GEMINI_API_KEY")

        if "api_base_url" not in data and os.environ.get("GEMINI_API_BASE_URL"):
            data["api_base_url"] = os.environ["GEMINI_API_BASE_URL"]

        super().__init__(**data)

    @property
    def attachment_ttl_ms(self) -> int:
        """Attachment time-to-live in milliseconds."""
        return self.attachment_ttl_hours * 60 * 60 * 1000
