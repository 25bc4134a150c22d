"""
Exception taxonomy for the task execution engine.

Two of these are programmer errors raised straight out of the public
surface (InvalidTransition, AlreadyStarted). The rest are raised inside the
turn loop and turned into state changes plus an on_error notification.
"""

from typing import Any, Optional


class TaskError(Exception):
    """Base class for all engine errors"""

    def __init__(self, message: str, code: str = "TASK_ERROR", details: Optional[Any] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class InvalidTransition(TaskError):
    """Raised when a status change is not in the transition table"""

    def __init__(self, old: Any, new: Any, allowed: Optional[list] = None):
        allowed = allowed or []
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        super().__init__(
            f"Invalid status transition: {old.value} -> {new.value}. "
            f"Allowed transitions: {allowed_str}",
            code="INVALID_TRANSITION",
        )
        self.old = old
        self.new = new


class AlreadyStarted(TaskError):
    """Raised when start() is called more than once on the same task"""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} has already been started", code="ALREADY_STARTED")
        self.task_id = task_id


class TaskCancelled(TaskError):
    """Raised inside the loop when the abort flag is observed"""

    def __init__(self, message: str = "Task was cancelled"):
        super().__init__(message, code="TASK_CANCELLED")


class MistakeLimitExceeded(TaskError):
    """Too many consecutive turns without a tool invocation"""

    def __init__(self, count: int, limit: int):
        super().__init__(
            f"Maximum consecutive mistakes reached ({count}/{limit}): "
            "the model produced no tool use",
            code="MISTAKE_LIMIT",
        )
        self.count = count
        self.limit = limit


class TurnLimitExceeded(TaskError):
    """The configured max_turns was reached without completion"""

    def __init__(self, limit: int):
        super().__init__(
            f"Task stopped: reached maximum turn limit ({limit})",
            code="TURN_LIMIT",
        )
        self.limit = limit


class ToolParseError(TaskError):
    """Streamed tool arguments did not form valid JSON"""

    def __init__(self, tool_use_id: str, tool_name: str, buffer: str, cause: Optional[Exception] = None):
        preview = buffer[:200] + "..." if len(buffer) > 200 else buffer
        super().__init__(
            f"Failed to parse tool input for {tool_name} ({tool_use_id}): {cause} | buffer={preview!r}",
            code="TOOL_PARSE_ERROR",
        )
        self.tool_use_id = tool_use_id
        self.tool_name = tool_name
        self.buffer = buffer
