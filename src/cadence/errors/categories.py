"""
Error categorization for readable error reports.
"""

from enum import Enum
from typing import Tuple

from .exceptions import (
    InvalidTransition,
    AlreadyStarted,
    TaskCancelled,
    MistakeLimitExceeded,
    TurnLimitExceeded,
    ToolParseError,
)


class ErrorCategory(Enum):
    """Categories of errors that can surface through on_error"""
    CANCELLED = "cancelled"
    STATE = "state"
    LIMIT = "limit"
    TOOL = "tool"
    PARSE = "parse"
    API = "api"
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "authentication"
    INTERNAL = "internal"


def categorize_error(error: Exception) -> Tuple[ErrorCategory, str]:
    """
    Categorize an error and provide a short explanation.

    Engine exceptions are matched by type. Anything raised by a collaborator
    (AI service, tool executor, callbacks) is matched on its message.

    Args:
        error: The exception to categorize

    Returns:
        Tuple of (ErrorCategory, explanation)
    """
    if isinstance(error, TaskCancelled):
        return ErrorCategory.CANCELLED, "Task was cancelled"
    if isinstance(error, (InvalidTransition, AlreadyStarted)):
        return ErrorCategory.STATE, "Task lifecycle was used incorrectly"
    if isinstance(error, MistakeLimitExceeded):
        return (
            ErrorCategory.LIMIT,
            "The model repeatedly answered without using any tool",
        )
    if isinstance(error, TurnLimitExceeded):
        return ErrorCategory.LIMIT, "Task reached its turn limit without completing"
    if isinstance(error, ToolParseError):
        return ErrorCategory.PARSE, "Streamed tool arguments were not valid JSON"

    error_str = str(error).lower()
    error_type = type(error).__name__

    # Authentication errors
    if "401" in error_str or "unauthorized" in error_str or "api key" in error_str:
        return ErrorCategory.AUTH, "Authentication failed - please check your API keys"

    # Timeout errors
    if "timeout" in error_str or "timed out" in error_str or error_type in ("TimeoutError", "ReadTimeout"):
        return ErrorCategory.TIMEOUT, "Operation timed out - the model or a tool took too long"

    # Network errors
    if isinstance(error, ConnectionError) or any(
        keyword in error_str for keyword in ["connection", "network", "unreachable"]
    ):
        return ErrorCategory.NETWORK, "Network error - the AI service could not be reached"

    # Rate limit errors
    if "429" in error_str or "rate limit" in error_str:
        return ErrorCategory.API, "Rate limit exceeded - too many requests"

    # API errors
    if any(code in error_str for code in ["400", "404", "500", "502", "503", "529"]):
        return ErrorCategory.API, "API error - the service returned an error"

    # Tool errors
    if "tool" in error_str:
        return ErrorCategory.TOOL, "Tool execution failed"

    return ErrorCategory.INTERNAL, "An unexpected error occurred"
