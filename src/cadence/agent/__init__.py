"""
Agent module - Task execution engine.
"""

from .task import (
    TaskOrchestrator,
    TaskConfig,
    TaskCallbacks,
)
from .state import (
    TaskState,
    TaskStatus,
    TaskPhase,
    TaskRecord,
    TaskSnapshot,
)
from .history import (
    HistoryStore,
    TruncationRange,
    TruncationStrategy,
    next_truncation_range,
)
from .stream import (
    StreamDecoder,
    ToolInvocation,
    ToolUseAccumulator,
)


__all__ = [
    "TaskOrchestrator",
    "TaskConfig",
    "TaskCallbacks",
    "TaskState",
    "TaskStatus",
    "TaskPhase",
    "TaskRecord",
    "TaskSnapshot",
    "HistoryStore",
    "TruncationRange",
    "TruncationStrategy",
    "next_truncation_range",
    "StreamDecoder",
    "ToolInvocation",
    "ToolUseAccumulator",
]
