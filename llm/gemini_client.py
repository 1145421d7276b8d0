"""Gemini generateContent client."""

import logging
from typing import Optional, Dict, Any
import requests

from .base_client import BaseLLMClient, CompletionResponse, Candidate, Outcome
from .errors import ApiError, ErrorCategory, ValidationError
from attachments.tracker import extract_file_id_from_error

logger = logging.getLogger(__name__)


class GeminiClient(BaseLLMClient):
    """Client for the Gemini generateContent endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        api_key_header: str = "x-goog-api-key",
        timeout: int = 300
    ):
        """
        Initialize Gemini client.

        Args:
            base_url: API base URL (e.g., https://generativelanguage.googleapis.com/v1beta)
            api_key: API key (sent in api_key_header)
            api_key_header: Header carrying the key; gateways use their own
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.api_key_header = api_key_header
        self.timeout = timeout

        if not self.api_key:
            logger.warning("No Gemini API key provided")

    def _get_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers[self.api_key_header] = self.api_key
        return headers

    def generate(self, model: str, request_body: Dict[str, Any]) -> CompletionResponse:
        """Send one generateContent request."""
        url = f"{self.base_url}/models/{model}:generateContent"

        try:
            response = requests.post(
                url,
                json=request_body,
                headers=self._get_headers(),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Network error calling {model}: {e}")
            raise ApiError(
                str(e) or "Network or unexpected error occurred",
                category=ErrorCategory.NETWORK
            ) from e

        if response.status_code != 200:
            raise self._error_from_response(response)

        try:
            payload = response.json() if response.text.strip() else {}
        except ValueError as e:
            raise ApiError(
                f"Response is not valid JSON: {e}",
                category=ErrorCategory.RESPONSE_ERROR,
                status=response.status_code
            ) from e

        return self.parse_response(payload)

    @staticmethod
    def parse_response(payload: Dict[str, Any]) -> CompletionResponse:
        """
        Parse a generateContent payload.

        Raises:
            ValidationError: If there are no candidates
        """
        raw_candidates = payload.get("candidates") or []
        if not raw_candidates:
            raise ValidationError("No candidates in response", details={"response": payload})

        candidates = [
            Candidate(
                parts=(raw.get("content") or {}).get("parts") or [],
                finish_reason=raw.get("finishReason"),
                finish_message=raw.get("finishMessage")
            )
            for raw in raw_candidates
        ]

        usage = payload.get("usageMetadata")
        if usage:
            logger.info(
                f"Token Usage: Prompt={usage.get('promptTokenCount')}, "
                f"Candidates={usage.get('candidatesTokenCount')}, "
                f"Thoughts={usage.get('thoughtsTokenCount')}, "
                f"Total={usage.get('totalTokenCount')}"
            )

        return CompletionResponse(candidates=candidates, usage_metadata=usage)

    @staticmethod
    def _error_from_response(response: requests.Response) -> ApiError:
        message = ""
        details: Dict[str, Any] = {}
        try:
            body = response.json()
            error = (body.get("error") if isinstance(body, dict) else None) or {}
            message = error.get("message") or response.text
            details = error
        except ValueError:
            message = response.text or "Unknown error occurred"

        logger.error(f"API request failed ({response.status_code}): {message}")
        return ApiError(
            f"API request failed: {message}",
            category=ErrorCategory.RESPONSE_ERROR,
            status=response.status_code,
            details=details
        )

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "gemini"


def classify_api_error(error: ApiError) -> Outcome:
    """A 403 naming a file handle can be retried without it; the rest is fatal."""
    if error.status == 403 and extract_file_id_from_error(error.message):
        return Outcome.RETRYABLE
    return Outcome.FATAL
