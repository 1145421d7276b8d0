"""Tool execution loop driving one persona request to completion."""

import asyncio
import logging
from typing import List, Optional, Dict, Any, Callable
from pydantic import BaseModel, Field

from agents.personas import Persona, PersonaRegistry
from agents.prompts import build_system_instruction, with_continuation, MALFORMED_CALL_TEXT
from agents.response_utils import clean_reply_parts
from attachments.tracker import AttachmentTracker, extract_file_id_from_error
from llm.base_client import BaseLLMClient, CompletionResponse, FinishReason, Outcome
from llm.errors import ApiError, ErrorCategory, MaxRetriesExceeded
from llm.gemini_client import classify_api_error
from llm.generation_config import SAFETY_SETTINGS, get_generation_config
from memory.sqlite_store import SQLiteMemoryStore
from scheduler.cancellation import CancellationSource, CancellationToken
from schemas.messages import ConversationMessage, MessagePart, Speaker, ToolResponse
from .content_preparer import ContentPreparer
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ConversationMessage], None]
ContentsCallback = Callable[[List[ConversationMessage]], None]


class LoopOutcome(BaseModel):
    """Result of a tool execution loop."""
    messages: List[ConversationMessage] = Field(default_factory=list)  # Everything emitted, in order
    replies: List[ConversationMessage] = Field(default_factory=list)  # Persona reply messages only
    retries_used: int = 0
    tool_rounds: int = 0


class ToolExecutionLoop:
    """
    Runs completion rounds for one persona until it stops calling tools.

    Each round prepares the working history, sends it and inspects the
    finish reason. Tool calls are executed sequentially and their results
    appended as a user turn before the next round. Malformed function calls
    and expired attachment handles are retried against one shared budget.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        preparer: ContentPreparer,
        personas: PersonaRegistry,
        tools: ToolRegistry,
        store: Optional[SQLiteMemoryStore] = None,
        tracker: Optional[AttachmentTracker] = None,
        model: str = "gemini-2.5-flash",
        max_retries: int = 3,
        thinking_enabled: bool = True,
        custom_prompt: str = ""
    ):
        """
        Initialize tool execution loop.

        Args:
            llm_client: Completion client
            preparer: Converts history into wire contents
            personas: Persona registry
            tools: Every available tool; each persona sees its own subset
            store: Store providing memories and the co-edited document
            tracker: Attachment tracker, required to recover from expired handles
            model: Completion model
            max_retries: Retries allowed after the initial call (default: 3)
            thinking_enabled: Whether to request model thoughts
            custom_prompt: User-defined system prompt
        """
        self.llm_client = llm_client
        self.preparer = preparer
        self.personas = personas
        self.tools = tools
        self.store = store
        self.tracker = tracker
        self.model = model
        self.max_retries = max_retries
        self.thinking_enabled = thinking_enabled
        self.custom_prompt = custom_prompt

    def tool_specs(self, persona: Persona) -> List[Dict[str, Any]]:
        """Tools section of a request for a persona."""
        specs: List[Dict[str, Any]] = []
        declarations = self.tools.subset(persona.function_declarations).declarations()
        if declarations:
            specs.append({"functionDeclarations": declarations})
        for builtin in persona.builtin_tools:
            specs.append({builtin: {}})
        return specs

    def build_request(
        self,
        history: List[ConversationMessage],
        persona: Persona,
        tools_enabled: bool = True
    ) -> Dict[str, Any]:
        """
        Build a generateContent request body.

        Uploads local attachments, so it blocks on the network.
        """
        memories = self.store.get_all_memories() if self.store else {}
        document = self.store.get_document() if self.store else ""

        body = {
            "systemInstruction": build_system_instruction(
                persona,
                self.personas,
                memories=memories,
                document_content=document,
                custom_prompt=self.custom_prompt
            ),
            "contents": with_continuation(self.preparer.prepare(history, persona.key)),
            "safetySettings": SAFETY_SETTINGS,
            "generationConfig": get_generation_config("default", self.thinking_enabled),
        }

        if tools_enabled:
            specs = self.tool_specs(persona)
            if specs:
                body["tools"] = specs
        return body

    def _spend_retry(self, retries: int, cause: str) -> int:
        if retries >= self.max_retries:
            logger.error(f"Retry budget exhausted after {retries} retries: {cause}")
            raise MaxRetriesExceeded(retries, cause)
        logger.warning(f"Retrying ({retries + 1}/{self.max_retries}): {cause}")
        return retries + 1

    async def run(
        self,
        history: List[ConversationMessage],
        persona_key: str,
        tools_enabled: bool = True,
        token: Optional[CancellationToken] = None,
        on_message: Optional[MessageCallback] = None,
        on_contents_updated: Optional[ContentsCallback] = None
    ) -> LoopOutcome:
        """
        Run the loop for one persona.

        Args:
            history: Conversation snapshot the request answers
            persona_key: Responding persona
            tools_enabled: Whether tools are offered to the model
            token: Cancellation token, checked after every await
            on_message: Called for every emitted message (replies and tool results)
            on_contents_updated: Called with the cleaned history after expired
                attachments were stripped

        Returns:
            LoopOutcome with the emitted messages

        Raises:
            ApiError: On fatal service errors and fatal finish reasons
            MaxRetriesExceeded: When the retry budget is exhausted
            ValidationError: When the history cannot be sent
            TaskCancelled: When the token is cancelled
        """
        persona = self.personas.require(persona_key)
        token = token or CancellationSource().token
        persona_tools = self.tools.subset(persona.function_declarations)
        can_call = tools_enabled and persona.can_use_functions
        all_names = [p.name for p in self.personas.all()]

        working = list(history)
        outcome = LoopOutcome()

        def emit(message: ConversationMessage):
            token.raise_if_cancelled()
            working.append(message)
            outcome.messages.append(message)
            if on_message:
                on_message(message)

        while True:
            token.raise_if_cancelled()
            request_body = await asyncio.to_thread(self.build_request, working, persona, tools_enabled)
            token.raise_if_cancelled()

            try:
                response: CompletionResponse = await asyncio.to_thread(
                    self.llm_client.generate, self.model, request_body
                )
            except ApiError as e:
                token.raise_if_cancelled()
                if classify_api_error(e) != Outcome.RETRYABLE or self.tracker is None:
                    raise
                outcome.retries_used = self._spend_retry(outcome.retries_used, e.message)
                working = self._drop_expired_file(working, e, on_contents_updated)
                continue

            token.raise_if_cancelled()
            candidate = response.candidate
            logger.info(f"Finish reason for {persona.name}: {candidate.finish_reason}")

            if response.outcome == Outcome.RETRYABLE:
                outcome.retries_used = self._spend_retry(
                    outcome.retries_used, FinishReason.MALFORMED_FUNCTION_CALL.value
                )
                # Corrective turns steer the retry and are never emitted
                working.append(ConversationMessage(
                    speaker=Speaker.USER,
                    parts=[MessagePart(text=MALFORMED_CALL_TEXT)]
                ))
                continue

            if response.outcome == Outcome.FATAL:
                raise ApiError(
                    f"API request finished with reason: {candidate.finish_reason}. "
                    f"Message: {candidate.finish_message}",
                    category=ErrorCategory.RESPONSE_ERROR,
                    details={"finishReason": candidate.finish_reason}
                )

            parts = candidate.message_parts()
            call_parts = [p for p in parts if p.tool_call is not None]
            reply_parts = clean_reply_parts(
                [p for p in parts if p.tool_call is None and p.tool_response is None],
                persona.name,
                all_names
            )
            if call_parts and can_call:
                reply_parts = reply_parts + call_parts
            elif call_parts:
                logger.warning(f"Persona {persona_key} requested function calls but may not execute them")

            if reply_parts:
                reply = ConversationMessage(speaker=Speaker.MODEL, persona_name=persona.name, parts=reply_parts)
                emit(reply)
                outcome.replies.append(reply)

            if not (call_parts and can_call):
                return outcome

            results = []
            for part in call_parts:
                token.raise_if_cancelled()
                call = part.tool_call
                logger.info(f"Executing function {call.name}")
                payload = await asyncio.to_thread(persona_tools.execute, call.name, call.args)
                results.append(MessagePart(tool_response=ToolResponse(name=call.name, result=payload)))

            emit(ConversationMessage(speaker=Speaker.USER, parts=results))
            outcome.tool_rounds += 1

    def _drop_expired_file(
        self,
        working: List[ConversationMessage],
        error: ApiError,
        on_contents_updated: Optional[ContentsCallback]
    ) -> List[ConversationMessage]:
        file_id = extract_file_id_from_error(error.message)
        logger.warning(f"File {file_id} expired (403 error), marking as expired and retrying")
        self.tracker.mark_expired(file_id)
        cleaned = self.tracker.remove_expired_from_messages(working)
        if on_contents_updated:
            on_contents_updated(cleaned)
        return cleaned
