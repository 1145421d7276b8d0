"""Chat session orchestrator wiring personas, pipeline, scheduler and memory."""

import asyncio
import logging
import mimetypes
import uuid
from typing import Optional, List, Callable

from config.settings import Settings
from agents.follow_up import FollowUpQuestionGenerator
from agents.mentions import extract_mentions_from_text
from agents.personas import PersonaRegistry
from attachments.tracker import AttachmentTracker
from attachments.upload_service import FileUploadService
from llm.base_client import BaseLLMClient
from llm.errors import build_user_facing_error_message
from llm.gemini_client import GeminiClient
from memory.compression import MemoryCompressionEngine
from memory.conversation import append_message, delete_messages, filter_deleted_messages, update_message_part
from memory.sqlite_store import SQLiteMemoryStore
from pipeline.content_preparer import ContentPreparer
from pipeline.tool_loop import ToolExecutionLoop
from pipeline.tools import build_default_registry
from scheduler.role_scheduler import RoleRequestScheduler, TaskHandle
from schemas.messages import AttachmentRef, ConversationMessage, MessagePart, Speaker, now_ms
from schemas.tasks import RoleRequestTask, TaskOutcome

logger = logging.getLogger(__name__)


class ChatOrchestrator:
    """One conversation with a room of personas."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm_client: Optional[BaseLLMClient] = None,
        store: Optional[SQLiteMemoryStore] = None,
        on_message: Optional[Callable[[ConversationMessage], None]] = None,
        on_error: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Application settings
            llm_client: Completion client (default: GeminiClient from settings)
            store: Persistent store (default: SQLite at settings.db_path)
            on_message: Receives every message appended by a persona task
            on_error: Receives user-facing error messages
        """
        self.settings = settings or Settings()
        self.on_message = on_message
        self.on_error = on_error

        self.store = store or SQLiteMemoryStore(db_path=self.settings.db_path)
        self.personas = PersonaRegistry.from_yaml(self.settings.personas_path)

        self.tracker = AttachmentTracker(self.store, ttl_ms=self.settings.attachment_ttl_ms)
        expired = self.tracker.clean_expired()
        if expired:
            logger.info(f"Forgot {len(expired)} expired attachment handles")

        self.uploader = FileUploadService(
            base_url=self.settings.api_base_url,
            api_key=self.settings.api_key,
            api_key_header=self.settings.api_key_header,
            tracker=self.tracker,
            timeout=self.settings.request_timeout
        )
        self.llm_client = llm_client or GeminiClient(
            base_url=self.settings.api_base_url,
            api_key=self.settings.api_key,
            api_key_header=self.settings.api_key_header,
            timeout=self.settings.request_timeout
        )
        logger.info(f"Completion client initialized: {self.llm_client.get_provider_name()} ({self.settings.model})")

        self.tool_loop = ToolExecutionLoop(
            llm_client=self.llm_client,
            preparer=ContentPreparer(self.personas, self.tracker, self.uploader),
            personas=self.personas,
            tools=build_default_registry(self.store),
            store=self.store,
            tracker=self.tracker,
            model=self.settings.model,
            max_retries=self.settings.max_retry_depth,
            thinking_enabled=self.settings.thinking_enabled,
            custom_prompt=self.settings.custom_system_prompt
        )
        self.scheduler = RoleRequestScheduler(
            loop=self.tool_loop,
            personas=self.personas,
            max_concurrent=self.settings.max_concurrent_requests,
            on_message=self._handle_message,
            on_error=self._handle_error,
            on_contents_updated=self._handle_contents_updated,
            on_idle=self._handle_idle,
            on_dispatch=self._handle_dispatch
        )
        self.compression = MemoryCompressionEngine(
            llm_client=self.llm_client,
            store=self.store,
            personas=self.personas,
            model=self.settings.summarization_model,
            token_threshold=self.settings.token_threshold,
            recent_messages_count=self.settings.recent_messages_count,
            min_messages_between_summaries=self.settings.min_messages_between_summaries,
            age_threshold_seconds=self.settings.age_threshold_seconds
        )
        self.compression.add_listener(self._handle_compressed)
        self.follow_up = FollowUpQuestionGenerator(self.llm_client, model=self.settings.summarization_model)

        self.conversation_id = self._init_conversation(self.settings.conversation_id)
        self.history: List[ConversationMessage] = self.store.load_messages(self.conversation_id)
        self.errors: List[str] = []
        self.follow_up_questions: List[str] = []
        self._follow_up_task: Optional[asyncio.Task] = None

    def _init_conversation(self, conversation_id: Optional[str]) -> str:
        """Load or create the conversation."""
        if conversation_id and self.store.get_conversation(conversation_id):
            return conversation_id

        new_id = conversation_id or str(uuid.uuid4())
        self.store.create_conversation(new_id)
        logger.info(f"Created new conversation: {new_id}")
        return new_id

    def request_view(self) -> List[ConversationMessage]:
        """Live history with stored summaries spliced in."""
        return self.compression.compressed_view(self.conversation_id, filter_deleted_messages(self.history))

    def build_user_message(self, text: str, attachments: Optional[List[str]] = None) -> ConversationMessage:
        """
        Build a user turn, uploading its attachments.

        Attachments are stored as remote handles, so each file is uploaded
        once no matter how many requests later include it. Blocks on the
        network.

        Raises:
            ApiError: With category file_upload when an upload fails
        """
        stamp = now_ms()
        parts = []
        if text:
            parts.append(MessagePart(text=text, timestamp=stamp))
        for path in attachments or []:
            mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
            file_uri = self.uploader.upload_file(path, mime_type)
            parts.append(MessagePart(attachment=AttachmentRef(mime_type=mime_type, file_uri=file_uri), timestamp=stamp))
        return ConversationMessage(speaker=Speaker.USER, parts=parts, timestamp=stamp)

    def submit_message(self, message: ConversationMessage, persona: Optional[str] = None) -> List[TaskHandle]:
        """
        Append a user turn and schedule the personas it addresses.

        Mentioned personas respond; without mentions the given persona (or
        the default persona) does. Must be called from the event loop.

        Args:
            message: User turn, typically from build_user_message
            persona: Persona key to address when nothing is mentioned

        Returns:
            Handles of the scheduled tasks
        """
        self._append(message)
        self.follow_up_questions = []

        targets = extract_mentions_from_text(message.visible_text(), self.personas.mention_map())
        if not targets:
            targets = [persona or self.settings.default_persona]

        snapshot = self.request_view()
        trigger_id = str(message.timestamp)
        return [self.scheduler.schedule(key, trigger_id=trigger_id, snapshot=snapshot) for key in targets]

    async def send(
        self,
        text: str,
        attachments: Optional[List[str]] = None,
        persona: Optional[str] = None
    ) -> List[TaskOutcome]:
        """Submit a user turn and wait until every persona is idle."""
        message = await asyncio.to_thread(self.build_user_message, text, attachments)
        handles = self.submit_message(message, persona)
        await self.scheduler.wait_idle()
        if self._follow_up_task is not None:
            await self._follow_up_task
        return [await handle.result() for handle in handles]

    def edit_part(self, part_uuid: str, text: str):
        self.history = update_message_part(self.history, part_uuid, text)
        self.store.save_messages(self.conversation_id, self.history)

    def delete_message(self, timestamp: int):
        self.history = delete_messages(self.history, [timestamp])
        self.store.save_messages(self.conversation_id, self.history)

    async def shutdown(self):
        """Cancel persona work and wait for background jobs to drain."""
        self.scheduler.cancel_all()
        await self.scheduler.wait_idle()
        await self.compression.wait()

    def _append(self, message: ConversationMessage):
        self.history = append_message(self.history, message)
        self.store.append_message(self.conversation_id, self.history[-1])

    def _handle_message(self, task: RoleRequestTask, message: ConversationMessage):
        self._append(message)
        if self.on_message:
            self.on_message(self.history[-1])

    def _handle_error(self, task: RoleRequestTask, error: Exception):
        message = build_user_facing_error_message(error)
        persona = self.personas.get(task.persona)
        self.errors.append(f"{persona.name if persona else task.persona}: {message}")
        if self.on_error:
            self.on_error(self.errors[-1])

    def _handle_contents_updated(self, task: RoleRequestTask, cleaned: List[ConversationMessage]):
        # The cleaned snapshot may be compressed; expiry is re-applied to the full history instead
        self.history = self.tracker.remove_expired_from_messages(self.history)
        self.store.save_messages(self.conversation_id, self.history)

    def _handle_dispatch(self, task: RoleRequestTask):
        self.compression.maybe_compress(self.conversation_id, filter_deleted_messages(self.history))

    def _handle_compressed(self, conversation_id: str, compressed: List[ConversationMessage]):
        logger.info(f"Conversation {conversation_id} compressed to {len(compressed)} messages")

    def _handle_idle(self):
        if not self.settings.follow_up_enabled:
            return
        if self._follow_up_task is not None and not self._follow_up_task.done():
            return
        self._follow_up_task = asyncio.create_task(self._generate_follow_ups())

    async def _generate_follow_ups(self):
        snapshot = filter_deleted_messages(self.history)
        try:
            questions = await asyncio.to_thread(self.follow_up.generate, snapshot)
        except Exception as e:
            logger.error(f"Failed to generate follow-up questions: {e}")
            return
        # A newer user turn makes these stale
        if snapshot and self.history and snapshot[-1].timestamp != self.history[-1].timestamp:
            return
        self.follow_up_questions = questions
