"""Test doubles shared by the test modules."""

import asyncio
from typing import List, Dict, Any, Optional

from llm.base_client import BaseLLMClient, CompletionResponse, Candidate
from pipeline.tool_loop import LoopOutcome
from schemas.messages import ConversationMessage, MessagePart, Speaker


def make_response(parts: List[Dict[str, Any]], finish_reason: str = "STOP", finish_message: Optional[str] = None):
    return CompletionResponse(candidates=[
        Candidate(parts=parts, finish_reason=finish_reason, finish_message=finish_message)
    ])


def text_response(text: str) -> CompletionResponse:
    return make_response([{"text": text}])


def call_response(name: str, args: Optional[Dict[str, Any]] = None) -> CompletionResponse:
    return make_response([{"functionCall": {"name": name, "args": args or {}}}])


def malformed_response() -> CompletionResponse:
    return make_response([], finish_reason="MALFORMED_FUNCTION_CALL")


class FakeLLMClient(BaseLLMClient):
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.requests: List[Dict[str, Any]] = []
        self.models: List[str] = []

    def generate(self, model: str, request_body: Dict[str, Any]) -> CompletionResponse:
        self.models.append(model)
        self.requests.append(request_body)
        if not self.responses:
            raise AssertionError("No more fake responses queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get_provider_name(self) -> str:
        return "fake"


def user_message(text: str, timestamp: int) -> ConversationMessage:
    return ConversationMessage.user_text(text, timestamp=timestamp)


def model_message(text: str, timestamp: int, persona_name: str = "Adrien") -> ConversationMessage:
    return ConversationMessage(
        speaker=Speaker.MODEL,
        persona_name=persona_name,
        parts=[MessagePart(text=text, timestamp=timestamp)],
        timestamp=timestamp
    )


class FakeLoop:
    """
    Stands in for ToolExecutionLoop in scheduler tests.

    Replies are configured per persona key. When a persona is gated, its
    runs block until the gate is released.
    """

    def __init__(self, personas, replies: Optional[Dict[str, str]] = None):
        self.personas = personas
        self.replies = replies or {}
        self.errors: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[Dict[str, Any]] = []
        self.active = 0
        self.max_active = 0
        self._clock = 1000

    def gate(self, persona_key: str) -> asyncio.Event:
        self.gates[persona_key] = asyncio.Event()
        return self.gates[persona_key]

    async def run(self, history, persona_key, tools_enabled=True, token=None, on_message=None,
                  on_contents_updated=None) -> LoopOutcome:
        self.calls.append({"persona": persona_key, "history": list(history)})
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if persona_key in self.gates:
                await self.gates[persona_key].wait()
            else:
                await asyncio.sleep(0)
            if token is not None:
                token.raise_if_cancelled()
            if persona_key in self.errors:
                raise self.errors[persona_key]

            self._clock += 1
            reply = model_message(
                self.replies.get(persona_key, f"reply from {persona_key}"),
                timestamp=self._clock,
                persona_name=self.personas.require(persona_key).name
            )
            if on_message:
                on_message(reply)
            return LoopOutcome(messages=[reply], replies=[reply])
        finally:
            self.active -= 1
