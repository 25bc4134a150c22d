"""
HistoryStore - dual conversation history with context-window compression.

Keeps two lists behind a single asyncio.Lock:

- the API history, sent to the model (ConversationMessage)
- the UI history, for display (DisplayMessage)

Compression never deletes from the API history. A truncation range marks
a window that is left out of the view sent to the model, while the
underlying messages stay available for inspection.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from ..messages import (
    ConversationMessage,
    DisplayMessage,
    Role,
    ToolUseBlock,
    estimate_tokens,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 10000

# Index 0 and 1 are the seed user/assistant pair and are never truncated
PRESERVED_PREFIX = 2


class TruncationRange(NamedTuple):
    """Inclusive [start, end] window of API history excluded from the view"""
    start: int
    end: int


class TruncationStrategy(Enum):
    """How much of the remaining history a compression step drops"""
    NONE = "none"
    LAST_TWO = "lastTwo"
    HALF = "half"
    QUARTER = "quarter"


@dataclass(frozen=True)
class MessageStats:
    total_messages: int
    user_messages: int
    assistant_messages: int
    tool_calls: int
    estimated_tokens: int


def next_truncation_range(
    strategy: TruncationStrategy,
    total_count: int,
    prior_range_end: Optional[int] = None,
) -> TruncationRange:
    """
    Compute the next window to drop from the model-facing view.

    The new range starts right after the prior one (or after the seed
    pair). Its end depends on the strategy:

    - NONE: N - 2
    - LAST_TWO: N - 5
    - HALF: floor(N / 2)
    - QUARTER: floor(3N / 4)

    The end is clamped to be at least the start and at least 2. Callers
    merge this with the prior range and persist it with
    ``set_truncation_range``.
    """
    strategy = TruncationStrategy(strategy)
    start = prior_range_end + 1 if prior_range_end is not None else PRESERVED_PREFIX

    if strategy is TruncationStrategy.NONE:
        end = total_count - 2
    elif strategy is TruncationStrategy.LAST_TWO:
        end = total_count - 5
    elif strategy is TruncationStrategy.HALF:
        end = total_count // 2
    else:
        end = (total_count * 3) // 4

    end = max(end, start, PRESERVED_PREFIX)
    return TruncationRange(start, end)


def merge_truncation_range(
    prior: Optional[TruncationRange],
    new: TruncationRange,
) -> TruncationRange:
    """Extend a prior range with a new one (the prior start is kept)"""
    if prior is None:
        return TruncationRange(*new)
    return TruncationRange(min(prior.start, new.start), max(prior.end, new.end))


class HistoryStore:
    """
    Concurrency-safe dual history for one task.

    Mutations take the lock for their full duration. asyncio.Lock wakes
    waiters in FIFO order, so mutations are applied in call-arrival order.
    Getters return copies.
    """

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES):
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")

        self.max_messages = max_messages
        self._lock = asyncio.Lock()
        self._api_history: List[ConversationMessage] = []
        self._ui_history: List[DisplayMessage] = []
        self._truncation_range: Optional[TruncationRange] = None

    # ------------------------------------------------------------------
    # API history
    # ------------------------------------------------------------------

    async def append(self, message: ConversationMessage) -> int:
        """
        Append one message to the API history.

        Returns:
            Index of the appended message after any eviction
        """
        async with self._lock:
            self._api_history.append(message)
            self._evict(self._api_history)
            return len(self._api_history) - 1

    async def overwrite(self, history: List[ConversationMessage]) -> None:
        """Replace the whole API history (newest max_messages are kept)"""
        async with self._lock:
            self._api_history = list(history)[-self.max_messages:]

    def get_history(self) -> List[ConversationMessage]:
        return copy.deepcopy(self._api_history)

    def __len__(self) -> int:
        return len(self._api_history)

    async def get_truncated_view(self) -> List[ConversationMessage]:
        """
        History as sent to the model.

        The first two messages, then everything strictly after the end of
        the truncation range. Without a range, the full history.
        """
        async with self._lock:
            if self._truncation_range is None:
                view = self._api_history[:]
            else:
                end = self._truncation_range.end
                view = self._api_history[:PRESERVED_PREFIX] + self._api_history[end + 1:]
            return copy.deepcopy(view)

    # ------------------------------------------------------------------
    # UI history
    # ------------------------------------------------------------------

    async def append_ui(self, message: DisplayMessage) -> DisplayMessage:
        """
        Append a display message.

        A missing timestamp or history_index is filled in; the stored copy
        is returned.
        """
        async with self._lock:
            stored = copy.deepcopy(message)
            if stored.timestamp is None:
                stored.timestamp = now_ms()
            if stored.history_index is None:
                stored.history_index = len(self._api_history)
            self._ui_history.append(stored)
            self._evict(self._ui_history)
            return copy.deepcopy(stored)

    async def update_ui(self, index: int, **changes: Any) -> bool:
        """Patch fields of one display message; out-of-range is a no-op"""
        async with self._lock:
            if not 0 <= index < len(self._ui_history):
                return False
            self._ui_history[index] = replace(self._ui_history[index], **changes)
            return True

    async def delete_ui(self, index: int) -> bool:
        async with self._lock:
            if not 0 <= index < len(self._ui_history):
                return False
            del self._ui_history[index]
            return True

    async def overwrite_ui(self, messages: List[DisplayMessage]) -> None:
        async with self._lock:
            self._ui_history = copy.deepcopy(list(messages))[-self.max_messages:]

    def get_ui_history(self) -> List[DisplayMessage]:
        return copy.deepcopy(self._ui_history)

    # ------------------------------------------------------------------
    # Compression bookkeeping
    # ------------------------------------------------------------------

    def get_truncation_range(self) -> Optional[TruncationRange]:
        return self._truncation_range

    async def set_truncation_range(self, value: Optional[TruncationRange]) -> None:
        """
        Persist the truncation range (None clears it).

        Raises:
            ValueError: if the range would cut into the seed pair or is reversed
        """
        if value is not None:
            value = TruncationRange(*value)
            if value.start < PRESERVED_PREFIX:
                raise ValueError(
                    f"Truncation range must start at or after index {PRESERVED_PREFIX}, got {value.start}"
                )
            if value.end < value.start:
                raise ValueError(f"Truncation range end {value.end} is before start {value.start}")

        async with self._lock:
            self._truncation_range = value
        logger.debug(f"Truncation range set to {value}")

    def next_truncation_range(self, strategy: TruncationStrategy = TruncationStrategy.HALF) -> TruncationRange:
        """next_truncation_range() for the current length and range"""
        prior_end = self._truncation_range.end if self._truncation_range else None
        return next_truncation_range(strategy, len(self._api_history), prior_end)

    async def compress(self, strategy: TruncationStrategy = TruncationStrategy.HALF) -> TruncationRange:
        """Compute the next range, merge it with the current one and persist it"""
        merged = merge_truncation_range(self._truncation_range, self.next_truncation_range(strategy))
        await self.set_truncation_range(merged)
        logger.info(
            f"History compressed ({TruncationStrategy(strategy).value}): "
            f"excluding [{merged.start}, {merged.end}] of {len(self._api_history)} messages"
        )
        return merged

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        async with self._lock:
            self._api_history = []
            self._ui_history = []
            self._truncation_range = None

    def stats(self) -> MessageStats:
        user = assistant = tool_calls = 0
        for message in self._api_history:
            if message.role is Role.USER:
                user += 1
            elif message.role is Role.ASSISTANT:
                assistant += 1
                if not isinstance(message.content, str):
                    tool_calls += sum(1 for b in message.content if isinstance(b, ToolUseBlock))

        return MessageStats(
            total_messages=len(self._api_history),
            user_messages=user,
            assistant_messages=assistant,
            tool_calls=tool_calls,
            estimated_tokens=estimate_tokens(self._api_history),
        )

    def summary(self) -> Dict[str, Any]:
        rng = self._truncation_range
        return {
            "api_messages": len(self._api_history),
            "ui_messages": len(self._ui_history),
            "truncation_range": f"[{rng.start}, {rng.end}]" if rng else "none",
            "estimated_tokens": estimate_tokens(self._api_history),
        }

    def _evict(self, items: list) -> None:
        overflow = len(items) - self.max_messages
        if overflow > 0:
            del items[:overflow]
