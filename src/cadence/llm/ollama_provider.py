"""
Ollama AI service for local models.
"""

import os
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

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


class OllamaService(BaseLLMProvider):
    """
    Streams replies from an Ollama server's /api/chat endpoint.

    Ollama sends newline-delimited JSON and delivers each tool call whole.
    A tool call is replayed as three deltas (open with name, one argument
    fragment, empty terminator) so it goes through the same accumulation
    path as incrementally streamed calls.

    Note: Tool calling support varies by model
    """

    DEFAULT_MODEL = "qwen2.5-coder:7b"

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ):
        """
        Initialize Ollama service.

        Args:
            model_id: Ollama model name (e.g., "llama3.1:8b", "qwen2.5-coder:7b")
            base_url: Ollama server URL (or OLLAMA_BASE_URL)
            api_key: Optional API key (not usually needed for local Ollama)
            timeout: Read timeout in seconds. If None, reads OLLAMA_TIMEOUT (default: 1800).
                     0 means no read timeout.
            client: Pre-built httpx client (tests inject a MockTransport here)
            **kwargs: system_prompt, tools, temperature, max_tokens
        """
        super().__init__(model_id, api_key, **kwargs)
        self.base_url = base_url or os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")

        if timeout is None:
            timeout_str = os.getenv("OLLAMA_TIMEOUT", "1800")
            try:
                timeout = float(timeout_str)
            except ValueError:
                logger.warning(f"Invalid OLLAMA_TIMEOUT value: {timeout_str}, using default 1800")
                timeout = 1800.0

        timeout_config = httpx.Timeout(
            connect=10.0,
            read=None if timeout == 0 else timeout,
            write=30.0,
            pool=10.0
        )

        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout_config, headers=headers
        )
        self._call_counter = 0

        logger.info(f"Ollama service initialized: {self.base_url} ({self.model_id})")

    @property
    def model_info(self) -> ModelInfo:
        """Get model information"""
        model_lower = self.model_id.lower()
        return ModelInfo(
            id=self.model_id,
            name=self.model_id,
            provider=ModelProvider.OLLAMA,
            context_window=32768 if "32k" in model_lower else 8192,
            supports_tools=any(name in model_lower for name in ["qwen2.5", "qwen3", "llama3.1", "llama3.2"]),
            supports_streaming=True
        )

    def _build_request(self, history: List[ConversationMessage]) -> Dict[str, Any]:
        system_prompt, messages = self._split_system(history)
        formatted = self._format_messages(messages)
        if system_prompt:
            formatted.insert(0, {"role": "system", "content": system_prompt})

        request_data = {
            "model": self.model_id,
            "messages": formatted,
            "stream": True,
            "options": {"temperature": self.temperature, "num_predict": self.max_tokens},
        }
        if self.tools:
            request_data["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool.get("description", ""),
                        "parameters": tool.get("input_schema", {"type": "object", "properties": {}}),
                    },
                }
                for tool in self.tools
            ]
        return request_data

    @retry_with_backoff()
    async def _open_stream(self, request_data: Dict[str, Any]) -> httpx.Response:
        request = self.client.build_request("POST", "/api/chat", json=request_data)
        response = await self.client.send(request, stream=True)
        if response.is_error:
            await response.aread()
            await response.aclose()
            response.raise_for_status()
        return response

    async def stream(self, history: List[ConversationMessage]) -> AsyncIterator[StreamChunk]:
        """Stream a reply, one or more chunks per NDJSON line"""
        request_data = self._build_request(history)
        response = await self._open_stream(request_data)

        saw_last = False
        try:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed stream line: {line[:200]}")
                    continue
                if "error" in data:
                    raise RuntimeError(f"Ollama stream error: {data['error']}")
                for chunk in self._translate_line(data):
                    saw_last = saw_last or chunk.is_last
                    yield chunk
        finally:
            await response.aclose()

        if not saw_last:
            yield StreamChunk(is_last=True)

    def _translate_line(self, data: Dict[str, Any]) -> List[StreamChunk]:
        """Map one decoded NDJSON object onto chunks"""
        chunks = []
        message = data.get("message") or {}

        text = message.get("content")
        if text:
            chunks.append(StreamChunk(content=(TextBlock(text),), partial=True))

        thinking = message.get("thinking")
        if thinking:
            chunks.append(StreamChunk(reasoning=thinking, partial=True))

        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            name = function.get("name")
            arguments = function.get("arguments", {})
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)

            self._call_counter += 1
            call_id = call.get("id") or f"call_{self._call_counter}"

            chunks.append(StreamChunk(tool_use_delta=ToolUseDelta(id=call_id, name=name), partial=True))
            if arguments:
                chunks.append(StreamChunk(tool_use_delta=ToolUseDelta(id=call_id, input=arguments), partial=True))
            chunks.append(StreamChunk(tool_use_delta=ToolUseDelta(id=call_id), partial=True))

        if data.get("done"):
            if data.get("eval_count") is not None:
                logger.debug(
                    f"Token usage: input={data.get('prompt_eval_count')}, output={data.get('eval_count')}"
                )
            chunks.append(StreamChunk(is_last=True))

        return chunks

    def _format_messages(self, messages: List[ConversationMessage]) -> List[Dict[str, Any]]:
        """Convert history into Ollama chat format (tool results become role=tool)"""
        formatted = []
        for message in messages:
            if isinstance(message.content, str):
                formatted.append({"role": message.role.value, "content": message.content})
                continue

            text_parts = []
            images = []
            tool_calls = []
            for block in message.content:
                if isinstance(block, TextBlock):
                    text_parts.append(block.text)
                elif isinstance(block, FileBlock):
                    body = block.content if block.content is not None else ""
                    text_parts.append(f'<file path="{block.path}">\n{body}\n</file>')
                elif isinstance(block, ImageBlock):
                    images.append(block.source)
                elif isinstance(block, ToolUseBlock):
                    tool_calls.append({"function": {"name": block.name, "arguments": block.input}})
                elif isinstance(block, ToolResultBlock):
                    formatted.append({"role": "tool", "content": self._result_to_text(block.output)})

            if text_parts or tool_calls or images:
                entry = {"role": message.role.value, "content": "\n".join(text_parts)}
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                if images:
                    entry["images"] = images
                formatted.append(entry)
        return formatted

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
