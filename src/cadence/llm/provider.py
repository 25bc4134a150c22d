"""
AI service abstraction layer.

The agent loop only needs one capability from a model backend: stream a
reply to a conversation as StreamChunk objects. Provider adapters translate
their SDK's streaming events into that shape.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from enum import Enum

from ..messages import ConversationMessage, Role, StreamChunk


class ModelProvider(Enum):
    """Supported LLM providers"""
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


@dataclass
class ModelInfo:
    """Information about a specific model"""
    id: str  # Provider-side model name
    name: str
    provider: ModelProvider
    context_window: int  # In tokens
    supports_tools: bool = True
    supports_streaming: bool = True


class AIService(ABC):
    """
    Streaming model backend used by the orchestrator.

    A stream must eventually yield a chunk with ``is_last=True``. Retries,
    timeouts and authentication are the service's business.
    """

    @abstractmethod
    def stream(self, history: List[ConversationMessage]) -> AsyncIterator[StreamChunk]:
        """
        Stream a reply to ``history``.

        Yields:
            StreamChunk objects, the last one with is_last=True
        """
        pass


class BaseLLMProvider(AIService):
    """
    Base implementation with common functionality.

    Subclasses implement provider-specific streaming.
    """

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str] = None,
        system_prompt: str = "",
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
    ):
        self.model_id = model_id
        self.api_key = api_key
        self.system_prompt = system_prompt
        self.tools = list(tools or [])
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._validate_config()

    @property
    @abstractmethod
    def model_info(self) -> ModelInfo:
        """Get information about the model"""
        pass

    def _validate_config(self) -> None:
        """Validate provider configuration"""
        if not self.model_id:
            raise ValueError("model_id is required")

    def _split_system(self, history: List[ConversationMessage]) -> Tuple[str, List[ConversationMessage]]:
        """Pull system-role messages out of the history and into the system prompt"""
        system_parts = [self.system_prompt] if self.system_prompt else []
        rest = []
        for message in history:
            if message.role is Role.SYSTEM:
                system_parts.append(
                    message.content if isinstance(message.content, str)
                    else "\n".join(getattr(b, "text", "") for b in message.content)
                )
            else:
                rest.append(message)
        return "\n\n".join(p for p in system_parts if p), rest

    @staticmethod
    def _result_to_text(content: Any) -> str:
        if isinstance(content, str):
            return content
        return json.dumps(content, default=str)

    def supports_tools(self) -> bool:
        """Whether this provider supports tool calling"""
        return self.model_info.supports_tools
