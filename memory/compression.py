"""Background memory compression of long conversations."""

import asyncio
import json
import logging
import math
from datetime import datetime
from typing import List, Optional, Callable

from agents.personas import PersonaRegistry
from agents.prompts import build_summary_instruction
from llm.base_client import BaseLLMClient
from llm.errors import ValidationError
from llm.generation_config import get_generation_config
from schemas.messages import ConversationMessage, MessagePart, Speaker, now_ms
from .merge import merge_summaries
from .sqlite_store import SQLiteMemoryStore

logger = logging.getLogger(__name__)

SUMMARY_REQUEST_TEMPLATE = (
    "Please summarize the following conversation segment:\n\n{conversation}\n\n"
    "Provide a concise summary that captures the essential information."
)

CompressionListener = Callable[[str, List[ConversationMessage]], None]


def estimate_token_count(text: Optional[str]) -> int:
    """Rough token estimate: 1.3 tokens per whitespace-separated word."""
    if not text:
        return 0
    return math.ceil(len(text.split()) * 1.3)


def calculate_conversation_token_count(messages: List[ConversationMessage]) -> int:
    total = 0
    for message in messages:
        for part in message.parts:
            if part.text:
                total += estimate_token_count(part.text)
            elif part.tool_response is not None and part.tool_response.result:
                total += estimate_token_count(json.dumps(part.tool_response.result, default=str))
    return total


def format_segment(segment: List[ConversationMessage]) -> str:
    """Render a segment as "Speaker: text" paragraphs for the summarizer."""
    lines = []
    for message in segment:
        speaker = "User" if message.speaker == Speaker.USER else (message.persona_name or "Assistant")
        texts = []
        for part in message.parts:
            if part.text:
                texts.append(part.text)
            elif part.tool_response is not None:
                texts.append(f"Function Response: {json.dumps(part.tool_response.result, default=str)}")
            elif part.attachment is not None:
                texts.append("[Image/File]")
        content = " ".join(t for t in texts if t.strip())
        lines.append(f"{speaker}: {content}")
    return "\n\n".join(lines)


class MemoryCompressionEngine:
    """
    Summarizes old parts of a conversation in the background.

    At most one compression runs at a time; triggers arriving meanwhile are
    skipped and picked up again by a later trigger. Summaries are appended
    to the store's summary log and the compressed view is published to
    listeners. Failures leave history untouched.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        store: SQLiteMemoryStore,
        personas: PersonaRegistry,
        model: str = "gemini-2.5-flash-lite",
        token_threshold: int = 100000,
        recent_messages_count: int = 10,
        min_messages_between_summaries: int = 5,
        age_threshold_seconds: int = 60 * 60 * 24,
        clock: Callable[[], int] = now_ms
    ):
        """
        Initialize compression engine.

        Args:
            llm_client: Completion client used for summarization
            store: Store holding the summary log
            personas: Persona registry (the hidden memory persona writes summaries)
            model: Summarization model
            token_threshold: Estimated token count that triggers compression
            recent_messages_count: Messages always kept verbatim
            min_messages_between_summaries: Smallest segment worth summarizing
            age_threshold_seconds: Age of the oldest message that triggers compression
            clock: Returns the current time in epoch milliseconds
        """
        self.llm_client = llm_client
        self.store = store
        self.personas = personas
        self.model = model
        self.token_threshold = token_threshold
        self.recent_messages_count = recent_messages_count
        self.min_messages_between_summaries = min_messages_between_summaries
        self.age_threshold_seconds = age_threshold_seconds
        self.clock = clock
        self.listeners: List[CompressionListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def summary_name(self) -> str:
        return self.personas.memory_persona.name

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: CompressionListener):
        self.listeners.append(listener)

    def is_summary_message(self, message: ConversationMessage) -> bool:
        return message.speaker == Speaker.MODEL and message.persona_name == self.summary_name

    def compressed_view(self, conversation_id: str, history: List[ConversationMessage]) -> List[ConversationMessage]:
        """History with stored summaries spliced in."""
        return merge_summaries(history, self.store.get_summaries(conversation_id))

    def should_compress(self, messages: List[ConversationMessage]) -> bool:
        if not messages:
            return False

        token_count = calculate_conversation_token_count(messages)
        logger.debug(f"Current conversation token count: {token_count}")
        if token_count > self.token_threshold:
            logger.info("Token threshold exceeded, scheduling background memory compression")
            return True

        oldest = min(message.timestamp for message in messages)
        if (self.clock() - oldest) / 1000 > self.age_threshold_seconds:
            logger.info("Found messages older than age threshold, scheduling background memory compression")
            return True

        return False

    def select_segment(
        self,
        conversation_id: str,
        messages: List[ConversationMessage]
    ) -> Optional[List[ConversationMessage]]:
        """
        Pick the messages to summarize from a compressed view.

        Returns:
            The segment, or None when there is nothing worth summarizing
        """
        summaries = self.store.get_summaries(conversation_id)
        latest_point = max((s.timestamp for s in summaries), default=None)

        end = max(len(messages) - self.recent_messages_count, 0)
        start = 0
        if latest_point is not None:
            for index, message in enumerate(messages[:end]):
                if message.timestamp == latest_point and self.is_summary_message(message):
                    start = index + 1
        segment = messages[start:end]

        if len(segment) < self.min_messages_between_summaries:
            logger.info("Not enough messages to compress")
            return None

        end_timestamp = segment[-1].timestamp
        if any(s.timestamp >= end_timestamp for s in summaries):
            logger.info("Messages have already been summarized")
            return None

        if all(self.is_summary_message(m) for m in segment):
            logger.info("Messages to summarize already contain only summaries")
            return None

        return segment

    def summarize(self, segment: List[ConversationMessage]) -> str:
        """
        Ask the completion service for a summary of a segment.

        Raises:
            ApiError: On service failures
            ValidationError: When the response carries no summary text
        """
        segment_time = datetime.fromtimestamp(segment[-1].timestamp / 1000)
        request_body = {
            "systemInstruction": build_summary_instruction(self.personas.memory_persona, now=segment_time),
            "contents": [{
                "role": "user",
                "parts": [{"text": SUMMARY_REQUEST_TEMPLATE.format(conversation=format_segment(segment))}],
            }],
            "generationConfig": get_generation_config("summarization", thinking_enabled=False),
        }

        response = self.llm_client.generate(self.model, request_body)
        texts = [part.text for part in response.candidate.message_parts() if part.text and not part.thought]
        if not texts:
            raise ValidationError("Invalid response format for summarization")
        return "\n".join(texts)

    async def compress(
        self,
        conversation_id: str,
        messages: List[ConversationMessage]
    ) -> Optional[List[ConversationMessage]]:
        """
        Summarize the eligible segment of a compressed view and commit it.

        Returns:
            The new compressed view, or None when nothing was summarized
        """
        segment = self.select_segment(conversation_id, messages)
        if segment is None:
            return None

        logger.info(f"Summarizing {len(segment)} messages of conversation {conversation_id}")
        summary_text = await asyncio.to_thread(self.summarize, segment)

        summary = ConversationMessage(
            speaker=Speaker.MODEL,
            persona_name=self.summary_name,
            parts=[MessagePart(text=summary_text, timestamp=segment[-1].timestamp)],
            timestamp=segment[-1].timestamp
        )
        self.store.append_summary(conversation_id, summary)

        recent = messages[-self.recent_messages_count:] if self.recent_messages_count else []
        prior = [m for m in messages if self.is_summary_message(m) and m not in recent]
        compressed = prior + [summary] + recent

        logger.info("Memory compression successful, created and stored summary")
        for listener in self.listeners:
            try:
                listener(conversation_id, compressed)
            except Exception as e:
                logger.error(f"Compression listener failed: {e}")
        return compressed

    def maybe_compress(self, conversation_id: str, history: List[ConversationMessage]) -> Optional[asyncio.Task]:
        """
        Start a background compression when one is due.

        Must be called from a running event loop. Never blocks the caller.

        Returns:
            The background task, or None when nothing was started
        """
        messages = self.compressed_view(conversation_id, history)
        if not self.should_compress(messages):
            return None

        if self.running:
            logger.info("Memory compression already running in background, skipping")
            return None

        self._task = asyncio.create_task(self._run(conversation_id, messages))
        return self._task

    async def _run(self, conversation_id: str, messages: List[ConversationMessage]):
        try:
            await self.compress(conversation_id, messages)
        except Exception as e:
            logger.error(f"Error in background memory compression: {e}")

    async def wait(self):
        """Wait for the running compression, if any."""
        if self._task is not None:
            await self._task
