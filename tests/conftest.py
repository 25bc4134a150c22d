"""Shared pytest fixtures and fakes for the task engine."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from cadence.agent import TaskCallbacks
from cadence.llm import AIService
from cadence.messages import StreamChunk, TextBlock, ToolUseDelta
from cadence.tools import IToolExecutor, ToolResult


def text_chunk(text: str, partial: bool = True) -> StreamChunk:
    return StreamChunk(content=(TextBlock(text),), partial=partial)


def tool_call_chunks(tool_use_id: str, name: str, args: Optional[Dict[str, Any]] = None) -> List[StreamChunk]:
    """Open, one argument fragment, empty terminator"""
    chunks = [StreamChunk(tool_use_delta=ToolUseDelta(id=tool_use_id, name=name), partial=True)]
    if args:
        chunks.append(StreamChunk(tool_use_delta=ToolUseDelta(id=tool_use_id, input=json.dumps(args)), partial=True))
    chunks.append(StreamChunk(tool_use_delta=ToolUseDelta(id=tool_use_id), partial=True))
    return chunks


def last_chunk() -> StreamChunk:
    return StreamChunk(is_last=True)


def completion_turn(result: str = "done", tool_use_id: str = "done_1") -> List[StreamChunk]:
    return tool_call_chunks(tool_use_id, "attempt_completion", {"result": result}) + [last_chunk()]


class ScriptedAIService(AIService):
    """
    Plays back one scripted turn per stream() call.

    A turn is a list of StreamChunk objects; an Exception instance in the
    list is raised at that point. When the script runs out, the last turn
    is repeated.
    """

    def __init__(self, turns: List[List[Any]]):
        self.turns = turns
        self.requests: List[list] = []
        self.before_chunk = None

    async def stream(self, history):
        self.requests.append(list(history))
        index = min(len(self.requests) - 1, len(self.turns) - 1)
        for item in self.turns[index]:
            if self.before_chunk is not None:
                await self.before_chunk(len(self.requests), item)
            if isinstance(item, Exception):
                raise item
            await asyncio.sleep(0)
            yield item


class RecordingToolExecutor(IToolExecutor):
    """Records calls and returns canned results (default: success echoing the name)"""

    def __init__(self, results: Optional[Dict[str, Any]] = None):
        self.results = results or {}
        self.calls: List[tuple] = []

    async def execute(self, name: str, args: Dict[str, Any]) -> ToolResult:
        self.calls.append((name, args))
        await asyncio.sleep(0)
        result = self.results.get(name)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return ToolResult.ok(f"{name} ok")
        return result


class CallbackRecorder:
    """Collects every callback invocation for assertions"""

    def __init__(self):
        self.states = []
        self.messages = []
        self.stream = []
        self.errors = []

    async def on_state_change(self, status):
        self.states.append(status)

    async def on_message_update(self, message):
        self.messages.append(message)

    async def on_stream_content(self, content, partial):
        self.stream.append((content, partial))

    async def on_error(self, error):
        self.errors.append(error)

    def callbacks(self, **overrides) -> TaskCallbacks:
        hooks = dict(
            on_state_change=self.on_state_change,
            on_message_update=self.on_message_update,
            on_stream_content=self.on_stream_content,
            on_error=self.on_error,
        )
        hooks.update(overrides)
        return TaskCallbacks(**hooks)

    @property
    def streamed_text(self) -> str:
        return "".join(
            block.text for content, _ in self.stream for block in content if isinstance(block, TextBlock)
        )


@pytest.fixture
def recorder():
    return CallbackRecorder()


@pytest.fixture
def executor():
    return RecordingToolExecutor()


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Keep host configuration out of tests"""
    for var in (
        "ANTHROPIC_API_KEY",
        "LLM_PROVIDER",
        "LLM_MODEL_ID",
        "LLM_API_KEY",
        "OLLAMA_BASE_URL",
        "OLLAMA_TIMEOUT",
        "CADENCE_MAX_CONSECUTIVE_MISTAKES",
        "CADENCE_MAX_TURNS",
        "CADENCE_MAX_MESSAGES",
        "CADENCE_COMPLETION_TOOL",
        "CADENCE_CONTEXT_TOKEN_LIMIT",
        "CADENCE_COMPRESSION_STRATEGY",
    ):
        monkeypatch.delenv(var, raising=False)
