"""Provider clients, the model registry and the provider factory."""

from __future__ import annotations

from .anthropic_provider import AnthropicProvider
from .base import BaseHttpProvider, LLMProvider
from .factory import (
    SUPPORTED_PROVIDERS,
    check_readiness,
    create_provider,
    create_provider_from_config,
    provider_help,
)
from .gemini_provider import GeminiProvider
from .model_registry import ModelRegistry, model_registry
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseHttpProvider",
    "GeminiProvider",
    "LLMProvider",
    "ModelRegistry",
    "OllamaProvider",
    "OpenAIProvider",
    "SUPPORTED_PROVIDERS",
    "check_readiness",
    "create_provider",
    "create_provider_from_config",
    "model_registry",
    "provider_help",
]
