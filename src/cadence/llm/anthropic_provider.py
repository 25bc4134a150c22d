"""
Anthropic (Claude) AI service.
"""

import os
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import anthropic

from .provider import BaseLLMProvider, ModelInfo, ModelProvider
from ..messages import (
    ConversationMessage,
    FileBlock,
    ImageBlock,
    StreamChunk,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    ToolUseDelta,
)
from ..utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class AnthropicService(BaseLLMProvider):
    """
    Streams Claude replies as StreamChunk objects.

    Raw Messages API events map onto the tool-use delta protocol:
    ``content_block_start`` (tool_use) opens an invocation with its id and
    name, each ``input_json_delta`` appends a fragment, and
    ``content_block_stop`` sends the empty delta that completes it.
    """

    MODELS = {
        "claude-sonnet-4-20250514": ModelInfo(
            id="claude-sonnet-4-20250514",
            name="Claude Sonnet 4",
            provider=ModelProvider.ANTHROPIC,
            context_window=200000,
        ),
        "claude-3-5-sonnet-20241022": ModelInfo(
            id="claude-3-5-sonnet-20241022",
            name="Claude 3.5 Sonnet",
            provider=ModelProvider.ANTHROPIC,
            context_window=200000,
        ),
        "claude-3-5-haiku-20241022": ModelInfo(
            id="claude-3-5-haiku-20241022",
            name="Claude 3.5 Haiku",
            provider=ModelProvider.ANTHROPIC,
            context_window=200000,
        ),
    }

    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        client: Any = None,
        **kwargs: Any,
    ):
        """
        Initialize Anthropic service.

        Args:
            model_id: Claude model ID
            api_key: Anthropic API key (or from ANTHROPIC_API_KEY env var)
            client: Pre-built AsyncAnthropic client (skips key lookup)
            **kwargs: system_prompt, tools, temperature, max_tokens
        """
        super().__init__(model_id, api_key, **kwargs)

        if client is not None:
            self.client = client
        else:
            self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
            if not self.api_key:
                raise ValueError("Anthropic API key required (set ANTHROPIC_API_KEY env var)")
            self.client = anthropic.AsyncAnthropic(api_key=self.api_key)

        logger.info(f"Anthropic service initialized with model: {self.model_id}")

    @property
    def model_info(self) -> ModelInfo:
        """Get model information"""
        return self.MODELS.get(
            self.model_id,
            ModelInfo(
                id=self.model_id,
                name=self.model_id,
                provider=ModelProvider.ANTHROPIC,
                context_window=200000,
            )
        )

    def _build_params(self, history: List[ConversationMessage]) -> Dict[str, Any]:
        system_prompt, messages = self._split_system(history)
        params = {
            "model": self.model_id,
            "messages": self._format_messages(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if system_prompt:
            params["system"] = system_prompt
        if self.tools:
            params["tools"] = self.tools
            logger.debug(f"Request includes {len(self.tools)} tools")
        return params

    @retry_with_backoff()
    async def _open_stream(self, params: Dict[str, Any]) -> Any:
        return await self.client.messages.create(stream=True, **params)

    async def stream(self, history: List[ConversationMessage]) -> AsyncIterator[StreamChunk]:
        """Stream a reply, translating raw events into chunks"""
        params = self._build_params(history)
        logger.debug(f"Opening stream with {len(params['messages'])} messages, max_tokens={self.max_tokens}")

        # content block index -> tool_use id, for this stream only
        block_ids: Dict[int, str] = {}
        saw_last = False

        events = await self._open_stream(params)
        try:
            async for event in events:
                chunk = self._translate_event(event, block_ids)
                if chunk is None:
                    continue
                saw_last = saw_last or chunk.is_last
                yield chunk
        finally:
            await events.close()

        if not saw_last:
            yield StreamChunk(is_last=True)

    def _translate_event(self, event: Any, block_ids: Dict[int, str]) -> Optional[StreamChunk]:
        """Map one raw stream event onto a StreamChunk (None to skip it)"""
        event_type = getattr(event, "type", None)

        if event_type == "content_block_start":
            block = event.content_block
            if getattr(block, "type", None) == "tool_use":
                block_ids[event.index] = block.id
                return StreamChunk(tool_use_delta=ToolUseDelta(id=block.id, name=block.name), partial=True)
            if getattr(block, "type", None) == "text" and getattr(block, "text", ""):
                return StreamChunk(content=(TextBlock(block.text),), partial=True)
            return None

        if event_type == "content_block_delta":
            delta = event.delta
            delta_type = getattr(delta, "type", None)
            if delta_type == "text_delta":
                return StreamChunk(content=(TextBlock(delta.text),), partial=True)
            if delta_type == "input_json_delta":
                # An empty fragment would read as end-of-invocation
                if not delta.partial_json:
                    return None
                tool_use_id = block_ids.get(event.index)
                return StreamChunk(
                    tool_use_delta=ToolUseDelta(id=tool_use_id, input=delta.partial_json),
                    partial=True,
                )
            if delta_type == "thinking_delta":
                return StreamChunk(reasoning=delta.thinking, partial=True)
            return None

        if event_type == "content_block_stop":
            tool_use_id = block_ids.pop(event.index, None)
            if tool_use_id is None:
                return None
            return StreamChunk(tool_use_delta=ToolUseDelta(id=tool_use_id), partial=True)

        if event_type == "message_delta":
            stop_reason = getattr(getattr(event, "delta", None), "stop_reason", None)
            if stop_reason:
                logger.debug(f"Response stop_reason={stop_reason}")
            usage = getattr(event, "usage", None)
            if usage is not None:
                logger.debug(f"Token usage: output={getattr(usage, 'output_tokens', None)}")
            return None

        if event_type == "message_stop":
            return StreamChunk(is_last=True)

        return None

    def _format_messages(self, messages: List[ConversationMessage]) -> List[Dict[str, Any]]:
        """Convert history into Messages API format"""
        formatted = []
        for message in messages:
            if isinstance(message.content, str):
                formatted.append({"role": message.role.value, "content": message.content})
                continue

            blocks = []
            for block in message.content:
                if isinstance(block, TextBlock):
                    blocks.append({"type": "text", "text": block.text})
                elif isinstance(block, ToolUseBlock):
                    blocks.append({"type": "tool_use", "id": block.id, "name": block.name, "input": block.input})
                elif isinstance(block, ToolResultBlock):
                    blocks.append({
                        "type": "tool_result",
                        "tool_use_id": block.tool_use_id,
                        "content": self._result_to_text(block.output),
                        "is_error": block.is_error,
                    })
                elif isinstance(block, ImageBlock):
                    blocks.append({"type": "image", "source": {"type": "url", "url": block.source}})
                elif isinstance(block, FileBlock):
                    body = block.content if block.content is not None else ""
                    blocks.append({"type": "text", "text": f'<file path="{block.path}">\n{body}\n</file>'})
            formatted.append({"role": message.role.value, "content": blocks})
        return formatted
