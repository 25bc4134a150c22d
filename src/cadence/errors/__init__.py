"""
Error types and formatting for Cadence.
"""

from .exceptions import (
    TaskError,
    InvalidTransition,
    AlreadyStarted,
    TaskCancelled,
    MistakeLimitExceeded,
    TurnLimitExceeded,
    ToolParseError,
)
from .categories import ErrorCategory, categorize_error
from .formatter import ErrorFormatter, format_error_for_user

__all__ = [
    "TaskError",
    "InvalidTransition",
    "AlreadyStarted",
    "TaskCancelled",
    "MistakeLimitExceeded",
    "TurnLimitExceeded",
    "ToolParseError",
    "ErrorCategory",
    "categorize_error",
    "ErrorFormatter",
    "format_error_for_user",
]
