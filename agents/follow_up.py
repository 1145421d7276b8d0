"""Follow-up question suggestions."""

import json
import logging
from typing import List

from llm.base_client import BaseLLMClient, Outcome
from llm.errors import ApiError, ErrorCategory
from llm.generation_config import SAFETY_SETTINGS, get_generation_config
from schemas.messages import ConversationMessage

logger = logging.getLogger(__name__)

FOLLOW_UP_SYSTEM_PROMPT = "You are a helpful assistant that generates follow-up questions as a JSON array of strings."
FOLLOW_UP_REQUEST = (
    "Put yourself in the user's point of view, and predict up to 3 follow-up questions "
    "the user might ask based on the conversation so far. "
    "Return the questions as a JSON array of strings, with each question as a separate string element."
)
MAX_QUESTIONS = 3


class FollowUpQuestionGenerator:
    """Predicts what the user might ask next."""

    def __init__(self, llm_client: BaseLLMClient, model: str = "gemini-2.5-flash-lite"):
        self.llm_client = llm_client
        self.model = model

    @staticmethod
    def build_contents(history: List[ConversationMessage]) -> List[dict]:
        """Text-only turns: no thoughts, hidden parts, attachments or tool traffic."""
        contents = []
        for message in history:
            if message.deleted:
                continue
            parts = [
                {"text": part.text} for part in message.parts
                if part.text and not part.thought and not part.hide
            ]
            if parts:
                contents.append({"role": message.speaker.value, "parts": parts})
        return contents

    def generate(self, history: List[ConversationMessage]) -> List[str]:
        """
        Generate up to three follow-up questions.

        Args:
            history: Conversation so far

        Returns:
            Questions, possibly empty

        Raises:
            ApiError: On service failures and non-STOP finish reasons
        """
        contents = self.build_contents(history)
        if not contents:
            return []

        request_body = {
            "systemInstruction": {"role": "system", "parts": [{"text": FOLLOW_UP_SYSTEM_PROMPT}]},
            "contents": contents + [{"role": "user", "parts": [{"text": FOLLOW_UP_REQUEST}]}],
            "safetySettings": SAFETY_SETTINGS,
            "generationConfig": get_generation_config("followUpQuestions", thinking_enabled=False),
        }

        response = self.llm_client.generate(self.model, request_body)
        candidate = response.candidate
        if response.outcome != Outcome.SUCCESS:
            raise ApiError(
                f"API request finished with reason: {candidate.finish_reason}. "
                f"Message: {candidate.finish_message}",
                category=ErrorCategory.RESPONSE_ERROR
            )

        text = "".join(p.text for p in candidate.message_parts() if p.text and not p.thought)
        return parse_questions(text)


def parse_questions(text: str) -> List[str]:
    """Parse a JSON array of strings, tolerating junk around it."""
    if not text:
        return []

    start, end = text.find("["), text.rfind("]")
    if start == -1 or end <= start:
        logger.warning("Follow-up response is not a JSON array")
        return []

    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse follow-up questions: {e}")
        return []

    questions = [q.strip() for q in parsed if isinstance(q, str) and q.strip()]
    return questions[:MAX_QUESTIONS]
