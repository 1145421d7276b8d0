"""Base completion client interface."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from schemas.messages import MessagePart


class FinishReason(str, Enum):
    """Finish reasons the pipeline distinguishes. Anything else is OTHER."""
    STOP = "STOP"
    MAX_TOKENS = "MAX_TOKENS"
    MALFORMED_FUNCTION_CALL = "MALFORMED_FUNCTION_CALL"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FinishReason":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class Outcome(str, Enum):
    """Classification of a single exchange."""
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


class Candidate(BaseModel):
    """One candidate of a completion response."""
    parts: List[Dict[str, Any]] = Field(default_factory=list)
    finish_reason: Optional[str] = None
    finish_message: Optional[str] = None

    @property
    def reason(self) -> FinishReason:
        return FinishReason.parse(self.finish_reason)

    def message_parts(self) -> List[MessagePart]:
        """Response parts converted to message parts."""
        converted = [MessagePart.from_wire(part) for part in self.parts]
        return [part for part in converted if part is not None]


class CompletionResponse(BaseModel):
    """Response from the completion service."""
    candidates: List[Candidate]
    usage_metadata: Optional[Dict[str, Any]] = None

    @property
    def candidate(self) -> Candidate:
        return self.candidates[0]

    @property
    def outcome(self) -> Outcome:
        return classify_finish_reason(self.candidate.reason)


def classify_finish_reason(reason: FinishReason) -> Outcome:
    """STOP succeeds, a malformed call can be retried, everything else is fatal."""
    if reason == FinishReason.STOP:
        return Outcome.SUCCESS
    if reason == FinishReason.MALFORMED_FUNCTION_CALL:
        return Outcome.RETRYABLE
    return Outcome.FATAL


class BaseLLMClient(ABC):
    """Abstract base class for completion clients."""

    @abstractmethod
    def generate(self, model: str, request_body: Dict[str, Any]) -> CompletionResponse:
        """
        Send one completion request.

        Args:
            model: Model identifier
            request_body: Request with systemInstruction, contents, tools,
                safetySettings and generationConfig

        Returns:
            CompletionResponse with at least one candidate

        Raises:
            ApiError: On non-2xx responses and network failures
            ValidationError: When the response carries no candidates
        """
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the name of the completion provider."""
        pass
