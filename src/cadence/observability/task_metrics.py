"""
Task Metrics - per-task counters for the turn loop.

Each orchestrator owns one TaskMetrics instance; nothing is shared between
tasks.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass
class TaskMetrics:
    """
    Counters for one task's execution.

    These help answer questions like:
    - How many turns did the task take?
    - Which tools were used, and how often did they fail?
    - How often were streamed tool arguments unusable?
    """

    turns: int = 0
    stream_chunks: int = 0
    tool_calls_by_name: Counter = field(default_factory=Counter)
    tool_failures: int = 0
    parse_failures: int = 0
    dropped_deltas: int = 0
    incomplete_invocations: int = 0
    mistakes: int = 0
    max_consecutive_mistakes_seen: int = 0
    compressions: int = 0

    def record_turn(self) -> None:
        self.turns += 1

    def record_chunk(self) -> None:
        self.stream_chunks += 1

    def record_tool_call(self, tool_name: str, success: bool) -> None:
        """
        Record one dispatched tool call.

        Args:
            tool_name: Name of the tool
            success: Whether the executor reported success
        """
        self.tool_calls_by_name[tool_name] += 1
        if not success:
            self.tool_failures += 1
        logger.debug(f"Recorded tool call: {tool_name} (success={success})")

    def record_decoder_losses(self, parse_failures: int, dropped_deltas: int, incomplete: int) -> None:
        self.parse_failures += parse_failures
        self.dropped_deltas += dropped_deltas
        self.incomplete_invocations += incomplete

    def record_mistake(self, consecutive: int) -> None:
        self.mistakes += 1
        self.max_consecutive_mistakes_seen = max(self.max_consecutive_mistakes_seen, consecutive)

    def record_compression(self) -> None:
        self.compressions += 1

    @property
    def total_tool_calls(self) -> int:
        return sum(self.tool_calls_by_name.values())

    def get_summary(self) -> Dict[str, Any]:
        """
        Get comprehensive metrics summary.

        Returns:
            Dict with all metrics
        """
        return {
            "turns": self.turns,
            "stream_chunks": self.stream_chunks,
            "tool_calls": dict(self.tool_calls_by_name),
            "total_tool_calls": self.total_tool_calls,
            "tool_failures": self.tool_failures,
            "tool_failure_rate": (
                self.tool_failures / self.total_tool_calls
                if self.total_tool_calls > 0 else 0
            ),
            "parse_failures": self.parse_failures,
            "dropped_deltas": self.dropped_deltas,
            "incomplete_invocations": self.incomplete_invocations,
            "mistakes": self.mistakes,
            "max_consecutive_mistakes_seen": self.max_consecutive_mistakes_seen,
            "compressions": self.compressions,
        }

    def get_formatted_summary(self) -> str:
        """
        Get human-readable metrics summary.

        Returns:
            Formatted string for logging or display
        """
        summary = self.get_summary()

        report = "Task Metrics Summary\n"
        report += "=" * 50 + "\n\n"

        report += f"Turns: {summary['turns']} ({summary['stream_chunks']} stream chunks)\n\n"

        report += "Tools:\n"
        for tool_name, count in summary["tool_calls"].items():
            report += f"  - {tool_name}: {count}\n"
        report += f"  Total: {summary['total_tool_calls']}\n"
        report += f"  Failure rate: {summary['tool_failure_rate']:.1%}\n\n"

        report += "Stream decoding:\n"
        report += f"  - Parse failures: {summary['parse_failures']}\n"
        report += f"  - Dropped deltas: {summary['dropped_deltas']}\n"
        report += f"  - Incomplete invocations: {summary['incomplete_invocations']}\n\n"

        report += "Mistakes:\n"
        report += f"  - Total: {summary['mistakes']}\n"
        report += f"  - Longest streak: {summary['max_consecutive_mistakes_seen']}\n"

        return report
