"""Error taxonomy for the completion pipeline."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCategory(str, Enum):
    """Category of an API failure."""
    RESPONSE_ERROR = "response_error"
    NETWORK = "network"
    FILE_UPLOAD = "file_upload"
    UNKNOWN = "unknown"


class ValidationError(Exception):
    """Malformed or empty input. Raised locally and never retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ApiError(Exception):
    """Failure talking to the completion or upload service."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.status = status
        self.details = details or {}

    def __repr__(self) -> str:
        return f"ApiError(category={self.category.value}, status={self.status}, message={self.message!r})"


class MaxRetriesExceeded(Exception):
    """The shared retry budget of a request was exhausted."""

    def __init__(self, retries: int, last_cause: Optional[str] = None):
        message = f"Hit max retry ({retries} retries)"
        if last_cause:
            message += f": {last_cause}"
        super().__init__(message)
        self.retries = retries
        self.last_cause = last_cause


def build_user_facing_error_message(error: Exception) -> str:
    """
    Build a short, user-facing message for a failed request.

    Args:
        error: Exception raised by the pipeline

    Returns:
        Message suitable for display in the chat
    """
    if isinstance(error, ValidationError):
        return f"Invalid input: {error.message}"

    if isinstance(error, MaxRetriesExceeded):
        return f"The model kept failing after {error.retries} retries. Please try again."

    if isinstance(error, ApiError):
        if error.category == ErrorCategory.RESPONSE_ERROR:
            message = f"Service error: {error.message}"
            if error.status in (401, 403):
                message += " - Please check your API key"
        elif error.category == ErrorCategory.NETWORK:
            message = f"Network error: {error.message or 'Please check your internet connection'}"
        elif error.category == ErrorCategory.FILE_UPLOAD:
            message = f"File upload error: {error.message}"
        else:
            message = error.message

        if error.status:
            message += f" (Status: {error.status})"
        return message

    return f"{error or 'Failed to send message'} (Status: Unknown)"
