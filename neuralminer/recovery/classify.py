"""
Map raw exceptions to a FailureKind.

This is the only place where failures are recognised by sniffing error
messages. Exception types that identify a kind on their own are checked
first; after that the message rules apply in order and the first match wins:

1. timeouts
2. external API / rate limiting
3. parsing (JSON, syntax)
4. validation
5. model / LLM errors
6. anything else
"""

import json
import re

from pydantic import ValidationError

from neuralminer.recovery.failures import FailureKind

_MESSAGE_RULES: list[tuple[FailureKind, re.Pattern[str]]] = [
    (FailureKind.TIMEOUT_ERROR, re.compile(r"timeout|timed out")),
    # Standalone "api" only
    (FailureKind.EXTERNAL_API_ERROR, re.compile(r"(?<![a-z])api(?![a-z])|rate limit")),
    (FailureKind.PARSING_ERROR, re.compile(r"parse|json|syntax")),
    (FailureKind.VALIDATION_ERROR, re.compile(r"validation")),
    (FailureKind.MODEL_ERROR, re.compile(r"model|llm|openai")),
]


def classify_error(error: BaseException | str | None) -> FailureKind:
    """Classify an exception (or bare error message) into a FailureKind."""
    if error is None:
        return FailureKind.UNKNOWN_ERROR

    if isinstance(error, str):
        name, message = "", error.lower()
    else:
        name, message = type(error).__name__, str(error).lower()

    if isinstance(error, TimeoutError) or name == "TimeoutError":
        return FailureKind.TIMEOUT_ERROR
    if isinstance(error, json.JSONDecodeError):
        return FailureKind.PARSING_ERROR
    if isinstance(error, ValidationError) or "ValidationError" in name:
        return FailureKind.VALIDATION_ERROR
    if "LLMError" in name:
        return FailureKind.MODEL_ERROR

    for kind, pattern in _MESSAGE_RULES:
        if pattern.search(message):
            return kind

    return FailureKind.UNKNOWN_ERROR
