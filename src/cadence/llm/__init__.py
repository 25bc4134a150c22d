"""
LLM module - AI service contract and provider adapters.
"""

from .provider import (
    AIService,
    BaseLLMProvider,
    ModelInfo,
    ModelProvider,
)
from .anthropic_provider import AnthropicService
from .ollama_provider import OllamaService


def create_ai_service(
    provider_type: str = "ollama",
    model_id: str = None,
    api_key: str = None,
    **kwargs
) -> AIService:
    """
    Factory function to create an AI service.

    Args:
        provider_type: Type of provider ("anthropic", "ollama")
        model_id: Model identifier
        api_key: API key (if required)
        **kwargs: system_prompt, tools, temperature, max_tokens, and
                  provider-specific arguments (base_url, timeout, client)

    Returns:
        AIService instance

    Raises:
        ValueError: If provider_type is unknown
    """
    provider_type = provider_type.lower()

    if provider_type == "anthropic":
        return AnthropicService(
            model_id=model_id or AnthropicService.DEFAULT_MODEL,
            api_key=api_key,
            **kwargs
        )

    elif provider_type == "ollama":
        return OllamaService(
            model_id=model_id or OllamaService.DEFAULT_MODEL,
            api_key=api_key,
            **kwargs
        )

    else:
        raise ValueError(
            f"Unknown provider type: {provider_type}. "
            f"Supported: anthropic, ollama"
        )


__all__ = [
    "AIService",
    "BaseLLMProvider",
    "ModelInfo",
    "ModelProvider",
    "AnthropicService",
    "OllamaService",
    "create_ai_service",
]
