"""
TaskState - lifecycle state machine for a single task.

Tracks status (validated against a transition table), phase (free-form,
for progress reporting), the consecutive-mistake counter and the
cooperative abort flag. Every status or phase change appends a snapshot to
a bounded observability log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import InvalidTransition

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    """Task lifecycle status"""
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskPhase(Enum):
    """What the task is doing right now; not subject to the transition table"""
    INITIALIZING = "initializing"
    EXECUTING = "executing"
    STREAMING = "streaming"
    TOOL_EXECUTING = "tool_executing"
    CLEANUP = "cleanup"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})

VALID_TRANSITIONS: Dict[TaskStatus, List[TaskStatus]] = {
    TaskStatus.CREATED: [TaskStatus.RUNNING, TaskStatus.CANCELLED],
    TaskStatus.RUNNING: [
        TaskStatus.PAUSED,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    ],
    TaskStatus.PAUSED: [TaskStatus.RUNNING, TaskStatus.CANCELLED],
    TaskStatus.COMPLETED: [],
    TaskStatus.FAILED: [],
    TaskStatus.CANCELLED: [],
}

DEFAULT_MAX_CONSECUTIVE_MISTAKES = 3


@dataclass(frozen=True)
class TaskSnapshot:
    """Point-in-time view of the state, appended on every change"""
    status: TaskStatus
    phase: TaskPhase
    consecutive_mistakes: int
    abort_requested: bool
    timestamp: str


@dataclass(frozen=True)
class TaskRecord:
    """Externally visible summary of a task"""
    id: str
    correlation_id: str
    status: TaskStatus
    phase: TaskPhase
    consecutive_mistakes: int
    abort_requested: bool


class TaskState:
    """
    State machine for one task.

    All methods are synchronous: within a single event loop they cannot be
    interleaved, so no lock is needed here.
    """

    MAX_SNAPSHOTS = 100

    def __init__(self, max_consecutive_mistakes: int = DEFAULT_MAX_CONSECUTIVE_MISTAKES):
        if max_consecutive_mistakes < 1:
            raise ValueError("max_consecutive_mistakes must be at least 1")

        self.max_consecutive_mistakes = max_consecutive_mistakes

        self._status = TaskStatus.CREATED
        self._phase = TaskPhase.INITIALIZING
        self._consecutive_mistakes = 0
        self._abort = False

        # Streaming progress flags (informational)
        self.is_streaming = False
        self.is_waiting_for_first_chunk = False
        self.last_tool_name: Optional[str] = None

        self._snapshots: List[TaskSnapshot] = []
        self._create_snapshot()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def phase(self) -> TaskPhase:
        return self._phase

    @property
    def consecutive_mistakes(self) -> int:
        return self._consecutive_mistakes

    @property
    def abort_requested(self) -> bool:
        return self._abort

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def can_transition(old: TaskStatus, new: TaskStatus) -> bool:
        return new in VALID_TRANSITIONS[old]

    def set_status(self, status: TaskStatus) -> None:
        """
        Move to a new status.

        Raises:
            InvalidTransition: if the edge is not allowed; status is unchanged
        """
        old = self._status
        if not self.can_transition(old, status):
            raise InvalidTransition(old, status, VALID_TRANSITIONS[old])

        self._status = status
        self._create_snapshot()
        logger.info(f"Task status: {old.value} -> {status.value}")

    def set_phase(self, phase: TaskPhase) -> None:
        if phase is self._phase:
            return
        self._phase = phase
        self._create_snapshot()
        logger.debug(f"Task phase: {phase.value}")

    def set_state(self, status: TaskStatus, phase: TaskPhase) -> None:
        """Set status and phase together (status is validated first)"""
        old = self._status
        if not self.can_transition(old, status):
            raise InvalidTransition(old, status, VALID_TRANSITIONS[old])

        self._status = status
        self._phase = phase
        self._create_snapshot()
        logger.info(f"Task status: {old.value} -> {status.value} (phase: {phase.value})")

    # ------------------------------------------------------------------
    # Mistakes
    # ------------------------------------------------------------------

    def record_turn(self, tool_invocations: int) -> int:
        """
        Account for one finished turn.

        A turn with no tool invocation is a mistake; any invocation resets
        the counter.

        Returns:
            The counter after the update
        """
        if tool_invocations > 0:
            self._consecutive_mistakes = 0
        else:
            self._consecutive_mistakes += 1
            logger.warning(
                f"Turn produced no tool use "
                f"({self._consecutive_mistakes}/{self.max_consecutive_mistakes})"
            )
        return self._consecutive_mistakes

    def record_tool_use(self, tool_name: str) -> None:
        self.last_tool_name = tool_name
        self._consecutive_mistakes = 0

    def increment_mistakes(self) -> int:
        self._consecutive_mistakes += 1
        return self._consecutive_mistakes

    def has_reached_max_mistakes(self) -> bool:
        return self._consecutive_mistakes >= self.max_consecutive_mistakes

    # ------------------------------------------------------------------
    # Abort
    # ------------------------------------------------------------------

    def request_abort(self) -> bool:
        """
        Raise the abort flag.

        Returns:
            True if this call raised it, False if it was already set
        """
        if self._abort:
            return False
        self._abort = True
        self._create_snapshot()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_active(self) -> bool:
        return self._status in (TaskStatus.RUNNING, TaskStatus.PAUSED)

    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATUSES

    def can_execute(self) -> bool:
        return self._status is TaskStatus.RUNNING and not self._abort

    def record(self, task_id: str, correlation_id: str) -> TaskRecord:
        return TaskRecord(
            id=task_id,
            correlation_id=correlation_id,
            status=self._status,
            phase=self._phase,
            consecutive_mistakes=self._consecutive_mistakes,
            abort_requested=self._abort,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "status": self._status.value,
            "phase": self._phase.value,
            "is_streaming": self.is_streaming,
            "abort": self._abort,
            "consecutive_mistakes": self._consecutive_mistakes,
            "last_tool_name": self.last_tool_name,
        }

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _create_snapshot(self) -> None:
        self._snapshots.append(TaskSnapshot(
            status=self._status,
            phase=self._phase,
            consecutive_mistakes=self._consecutive_mistakes,
            abort_requested=self._abort,
            timestamp=datetime.now(timezone.utc).isoformat(),
        ))
        if len(self._snapshots) > self.MAX_SNAPSHOTS:
            del self._snapshots[0]

    def snapshots(self) -> List[TaskSnapshot]:
        return list(self._snapshots)

    def latest_snapshot(self) -> TaskSnapshot:
        return self._snapshots[-1]
