"""Completion service client layer."""

from .errors import ApiError, ErrorCategory, MaxRetriesExceeded, ValidationError
from .base_client import BaseLLMClient, Candidate, CompletionResponse, FinishReason, Outcome
from .generation_config import get_generation_config
from .gemini_client import GeminiClient

__all__ = [
    "ApiError",
    "ErrorCategory",
    "MaxRetriesExceeded",
    "ValidationError",
    "BaseLLMClient",
    "Candidate",
    "CompletionResponse",
    "FinishReason",
    "Outcome",
    "get_generation_config",
    "GeminiClient",
]
