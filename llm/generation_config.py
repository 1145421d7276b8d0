"""Generation settings per request type."""

import copy
from typing import Dict, Any

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]

_NO_THINKING = {"includeThoughts": False, "thinkingBudget": 0}

GENERATION_CONFIGS: Dict[str, Dict[str, Any]] = {
    "default": {
        "temperature": 1,
        "topP": 0.95,
        "topK": 64,
        "responseMimeType": "text/plain",
        "thinkingConfig": {"includeThoughts": True, "thinkingBudget": -1},  # -1 = adaptive
    },
    "summarization": {
        "temperature": 1,
        "topP": 0.95,
        "topK": 64,
        "responseMimeType": "text/plain",
        "thinkingConfig": _NO_THINKING,
    },
    "followUpQuestions": {
        "temperature": 1,
        "topP": 0.95,
        "topK": 64,
        "maxOutputTokens": 1024,
        "responseMimeType": "application/json",
        "responseJsonSchema": {
            "type": "array",
            "items": {"type": "string"},
            "maxItems": 3,
        },
        "thinkingConfig": _NO_THINKING,
    },
}


def get_generation_config(request_type: str = "default", thinking_enabled: bool = True) -> Dict[str, Any]:
    """
    Get the generation config for a request type.

    Args:
        request_type: One of GENERATION_CONFIGS (unknown types use "default")
        thinking_enabled: When False, thinking is switched off for every type

    Returns:
        A fresh copy that callers may modify
    """
    config = copy.deepcopy(GENERATION_CONFIGS.get(request_type, GENERATION_CONFIGS["default"]))
    if not thinking_enabled:
        config["thinkingConfig"] = dict(_NO_THINKING)
    return config
