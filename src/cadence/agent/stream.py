"""
StreamDecoder - turns streamed response chunks into display content and
completed tool invocations.

Tool arguments arrive as raw partial-JSON fragments spread over many
chunks. ToolUseAccumulator buffers them per invocation id and parses the
buffer once the invocation is complete. Completion is implicit: a delta for
a known id that carries no argument fragment ends that invocation. A
fragment boundary and a finished call look the same on the wire, so a
stream that pauses between fragments with an empty delta ends the call
early; parse failure then drops it.

ReasoningAccumulator keeps "thinking" text on its own channel.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ToolParseError
from ..messages import ContentBlock, StreamChunk, TextBlock, ToolUseBlock, ToolUseDelta

logger = logging.getLogger(__name__)


@dataclass
class PendingToolInvocation:
    """A tool invocation whose arguments are still streaming"""
    id: str
    name: str
    raw_argument_buffer: str = ""
    complete: bool = False


@dataclass(frozen=True)
class ToolInvocation:
    """A completed, successfully parsed tool invocation"""
    id: str
    name: str
    input: Dict[str, Any]

    def to_block(self) -> ToolUseBlock:
        return ToolUseBlock(id=self.id, name=self.name, input=self.input)


@dataclass
class DecodedChunk:
    """What one chunk produced"""
    content: Tuple[ContentBlock, ...] = ()
    invocations: List[ToolInvocation] = field(default_factory=list)
    reasoning: Optional[str] = None
    is_last: bool = False


class ToolUseAccumulator:
    """
    Buffers tool-use deltas per id until each invocation is complete.

    Ids are unique within one turn: once an id has been completed (or
    dropped), further deltas for it are ignored until reset().
    """

    def __init__(self):
        self._pending: Dict[str, PendingToolInvocation] = {}
        self._finished_ids: set = set()
        self.parse_errors: List[ToolParseError] = []
        self.dropped_deltas = 0

    def process(self, delta: ToolUseDelta) -> None:
        """Apply one delta to the pending set"""
        if not delta.id:
            logger.warning(f"Tool use delta without id ignored (name={delta.name!r})")
            self.dropped_deltas += 1
            return

        if delta.id in self._finished_ids:
            logger.warning(f"Tool use delta for finished invocation {delta.id} ignored")
            self.dropped_deltas += 1
            return

        pending = self._pending.get(delta.id)

        if pending is None:
            if not delta.name:
                logger.warning(f"Tool use delta missing name for id: {delta.id}")
                self.dropped_deltas += 1
                return
            pending = PendingToolInvocation(id=delta.id, name=delta.name)
            self._pending[delta.id] = pending
            logger.debug(f"Tool invocation started: {delta.name} ({delta.id})")
            if delta.input:
                pending.raw_argument_buffer += delta.input
            return

        if delta.input:
            pending.raw_argument_buffer += delta.input
        else:
            pending.complete = True

    def mark_complete(self, tool_use_id: str) -> bool:
        """Explicitly complete an invocation (for streams with an end marker)"""
        pending = self._pending.get(tool_use_id)
        if pending is None:
            return False
        pending.complete = True
        return True

    def drain_completed(self) -> List[ToolInvocation]:
        """
        Parse and remove every complete invocation, in arrival order.

        Invocations whose buffer is not a JSON object are logged and dropped.
        An empty buffer is read as no arguments.
        """
        completed = []

        for tool_use_id in [i for i, p in self._pending.items() if p.complete]:
            pending = self._pending.pop(tool_use_id)
            self._finished_ids.add(tool_use_id)

            try:
                arguments = self._parse_arguments(pending.raw_argument_buffer)
            except ValueError as e:
                error = ToolParseError(pending.id, pending.name, pending.raw_argument_buffer, e)
                self.parse_errors.append(error)
                logger.warning(str(error))
                continue

            completed.append(ToolInvocation(id=pending.id, name=pending.name, input=arguments))

        return completed

    def drop_incomplete(self) -> List[PendingToolInvocation]:
        """Remove and return invocations that never completed"""
        dropped = [p for p in self._pending.values() if not p.complete]
        for pending in dropped:
            del self._pending[pending.id]
            self._finished_ids.add(pending.id)
            logger.warning(
                f"Stream ended before tool invocation {pending.name} ({pending.id}) completed; "
                f"dropping {len(pending.raw_argument_buffer)} buffered chars"
            )
        return dropped

    def pending(self) -> List[PendingToolInvocation]:
        return [PendingToolInvocation(**vars(p)) for p in self._pending.values()]

    def all_complete(self) -> bool:
        return all(p.complete for p in self._pending.values())

    def reset(self) -> None:
        self._pending.clear()
        self._finished_ids.clear()
        self.parse_errors = []
        self.dropped_deltas = 0

    @staticmethod
    def _parse_arguments(buffer: str) -> Dict[str, Any]:
        if not buffer.strip():
            return {}
        # json.JSONDecodeError is a ValueError
        arguments = json.loads(buffer)
        if not isinstance(arguments, dict):
            raise ValueError(f"expected a JSON object, got {type(arguments).__name__}")
        return arguments


class ReasoningAccumulator:
    """Collects streamed reasoning ("thinking") text"""

    def __init__(self):
        self._parts: List[str] = []

    def add(self, text: Optional[str]) -> None:
        if text:
            self._parts.append(text)

    @property
    def content(self) -> str:
        return "".join(self._parts)

    def has_reasoning(self) -> bool:
        return bool(self._parts)

    def reset(self) -> None:
        self._parts = []


class StreamDecoder:
    """
    Online decoder for one turn's stream.

    consume() is called once per chunk and returns the blocks to display
    right away plus any invocations that became ready. Each invocation is
    returned exactly once.
    """

    def __init__(self):
        self.tool_uses = ToolUseAccumulator()
        self.reasoning = ReasoningAccumulator()
        self._content: List[ContentBlock] = []
        self._timeline: List[ContentBlock] = []
        self._completed = False
        self.request_id: Optional[str] = None
        self.chunks_seen = 0

    def consume(self, chunk: StreamChunk) -> DecodedChunk:
        self.chunks_seen += 1

        self._content.extend(chunk.content)
        self._timeline.extend(chunk.content)

        if chunk.reasoning:
            self.reasoning.add(chunk.reasoning)

        if chunk.tool_use_delta is not None:
            self.tool_uses.process(chunk.tool_use_delta)

        if chunk.is_last:
            self._completed = True

        invocations = self.tool_uses.drain_completed()
        self._timeline.extend(inv.to_block() for inv in invocations)

        return DecodedChunk(
            content=chunk.content,
            invocations=invocations,
            reasoning=chunk.reasoning,
            is_last=chunk.is_last,
        )

    def finish(self) -> List[PendingToolInvocation]:
        """
        Close the turn: anything still pending is dropped.

        Returns:
            The dropped invocations
        """
        return self.tool_uses.drop_incomplete()

    def has_completed(self) -> bool:
        return self._completed

    def accumulated_content(self) -> List[ContentBlock]:
        """Every content block seen this turn, in order"""
        return list(self._content)

    def assistant_content(self) -> List[ContentBlock]:
        """
        The turn's reply as stored in history: adjacent text fragments joined,
        tool_use blocks placed where their invocation completed.
        """
        merged: List[ContentBlock] = []
        for block in self._timeline:
            if isinstance(block, TextBlock) and merged and isinstance(merged[-1], TextBlock):
                merged[-1] = TextBlock(merged[-1].text + block.text)
            else:
                merged.append(block)
        return [b for b in merged if not (isinstance(b, TextBlock) and not b.text)]

    def pending_invocations(self) -> List[PendingToolInvocation]:
        return self.tool_uses.pending()

    def all_invocations_complete(self) -> bool:
        return self.tool_uses.all_complete()

    def reset(self) -> None:
        """Reset this decoder and its accumulators for a new turn"""
        self.tool_uses.reset()
        self.reasoning.reset()
        self._content = []
        self._timeline = []
        self._completed = False
        self.request_id = None
        self.chunks_seen = 0
