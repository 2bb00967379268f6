"""
Provider Factory

Builds provider instances from a name or from a ConfigStore, and checks
readiness before a provider is swapped in. The factory holds no state; the
caller caches the instance it gets back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from .. import config as cfg
from ..config import ConfigStore
from ..errors import ConfigurationError
from .anthropic_provider import AnthropicProvider
from .base import BaseHttpProvider, LLMProvider
from .gemini_provider import GeminiProvider
from .model_registry import ModelRegistry, model_registry
from .ollama_provider import REACHABILITY_TIMEOUT_SECONDS, OllamaProvider
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

Runner = Callable[[Awaitable[Any]], Any]

_PROVIDER_CLASSES: dict[str, type[BaseHttpProvider]] = {
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
}

SUPPORTED_PROVIDERS: tuple[str, ...] = tuple(sorted(_PROVIDER_CLASSES))
CLOUD_PROVIDERS: tuple[str, ...] = tuple(
    name for name, klass in sorted(_PROVIDER_CLASSES.items()) if klass.requires_api_key
)


def normalize_provider_name(name: str) -> str:
    return name.lower().strip()


def is_supported(name: str) -> bool:
    return normalize_provider_name(name) in _PROVIDER_CLASSES


def require_supported(name: str) -> str:
    """Normalize ``name``, raising ConfigurationError if it is not supported."""
    normalized = normalize_provider_name(name)
    if normalized not in _PROVIDER_CLASSES:
        raise ConfigurationError(
            f"Unknown provider: '{normalized}'. Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return normalized


def _provider_class(name: str) -> type[BaseHttpProvider]:
    return _PROVIDER_CLASSES[require_supported(name)]


def create_provider(
    name: str,
    *,
    registry: ModelRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseHttpProvider:
    """Create a provider instance by name.

    Raises:
        ConfigurationError: If ``name`` is not a supported provider.
    """
    provider_class = _provider_class(name)
    return provider_class(registry=registry, transport=transport)


def create_provider_from_config(
    store: ConfigStore,
    *,
    registry: ModelRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LLMProvider:
    """Create the active provider and copy every config key into it."""
    name = store.get_or_else(cfg.PROVIDER, cfg.DEFAULT_PROVIDER)
    provider = create_provider(name, registry=registry, transport=transport)
    provider.load_config(store.to_dict())
    logger.info(f"Created {provider.provider_name} provider")
    return provider


def _configured_api_key(name: str, config: Mapping[str, str]) -> str | None:
    for key in (cfg.api_key_name(name), cfg.API_KEY):
        value = config.get(key)
        if value and value.strip():
            return value
    return None


def check_readiness(
    name: str,
    config: Mapping[str, str],
    *,
    run: Runner = asyncio.run,
    registry: ModelRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """
    Verify that provider ``name`` could be used with ``config`` right now.

    Cloud providers need a non-empty namespaced (or legacy) API key. The
    local server must answer a short reachability probe; ``run`` executes the
    probe coroutine synchronously.

    Raises:
        ConfigurationError: Naming the missing key or the unreachable URL.
    """
    provider_class = _provider_class(name)
    normalized = provider_class.provider_name

    if provider_class.requires_api_key:
        if _configured_api_key(normalized, config) is None:
            raise ConfigurationError(
                f"{normalized} is not ready: missing API key. Set '{cfg.api_key_name(normalized)}' "
                f"in your config file or call set-api-key."
            )
        return

    provider = provider_class(registry=registry, transport=transport)
    provider.load_config(config)

    async def _probe() -> bool:
        try:
            if isinstance(provider, OllamaProvider):
                return await provider.check_reachable(REACHABILITY_TIMEOUT_SECONDS)
            return True
        finally:
            await provider.aclose()

    if not run(_probe()):
        raise ConfigurationError(
            f"{normalized} is not ready: server not reachable at {provider.base_url()}. "
            f"Start it with 'ollama serve' or set '{cfg.base_url_name(normalized)}'."
        )


def provider_help(name: str, registry: ModelRegistry | None = None) -> str:
    """Setup instructions for one provider."""
    provider_class = _provider_class(name)
    registry = registry or model_registry
    normalized = provider_class.provider_name
    default_model = registry.default_model(normalized)

    lines = [f"=== {normalized} ==="]
    if provider_class.requires_api_key:
        lines.append(f"Requires an API key: set '{cfg.api_key_name(normalized)}' (or call set-api-key).")
    else:
        lines.append("No API key required; the local server must be running.")
    lines.append(f"Default base URL: {provider_class.default_base_url}")
    lines.append(f"Default model: {default_model}")
    lines.append(f"Supported models: {registry.get_model_list_for_display(normalized)}")
    if provider_class.setup_hint:
        lines.append(provider_class.setup_hint)
    lines.append("")
    lines.append("Example config file:")
    lines.append(f"  provider={normalized}")
    lines.append(f"  model={default_model}")
    if provider_class.requires_api_key:
        lines.append(f"  {cfg.api_key_name(normalized)}=<your key>")
    else:
        lines.append(f"  {cfg.base_url_name(normalized)}={provider_class.default_base_url}")
    return "\n".join(lines)
