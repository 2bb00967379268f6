"""
Model registry.

Single source of truth for which model identifiers each provider accepts.
Models come from the bundled ``models.yaml`` and, optionally, from a user
``models-override.yaml`` whose provider sections replace the bundled sections
wholesale.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

BUNDLED_MODELS_PATH = os.path.join(os.path.dirname(__file__), "models.yaml")
OVERRIDE_FILENAMES = ("models-override.yaml", "models-override.yml")

# Stable, recommended defaults. Independent of the YAML files.
DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "gemini": "gemini-1.5-flash",
    "ollama": "llama3.2",
}


@dataclass(frozen=True)
class ProviderModels:
    """Models known for one provider."""

    provider: str
    models: frozenset[str]
    is_override: bool = False


# Minimal set used when the bundled YAML cannot be loaded
FALLBACK_CONFIG: dict[str, ProviderModels] = {
    "openai": ProviderModels("openai", frozenset({"gpt-4o", "gpt-4o-mini", "gpt-4", "gpt-3.5-turbo"})),
    "anthropic": ProviderModels(
        "anthropic",
        frozenset(
            {
                "claude-3-5-sonnet-20241022",
                "claude-3-5-sonnet-latest",
                "claude-3-5-haiku-20241022",
                "claude-3-5-haiku-latest",
            }
        ),
    ),
    "gemini": ProviderModels("gemini", frozenset({"gemini-1.5-pro", "gemini-1.5-flash", "gemini-2.0-flash-exp"})),
    "ollama": ProviderModels("ollama", frozenset({"llama3.2", "llama3.1", "mistral", "phi4"})),
}


def _normalize(provider: str) -> str:
    return provider.lower().strip()


def parse_model_config(content: str, is_override: bool = False) -> dict[str, ProviderModels]:
    """
    Parse YAML model configuration content.

    Expected structure::

        openai:
          - gpt-4o
          - gpt-4o-mini
        anthropic:
          - claude-3-5-sonnet-latest

    Raises:
        ConfigurationError: If the YAML is invalid or a section is malformed.
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse model YAML: {e}") from e

    if not isinstance(data, dict) or not data:
        raise ConfigurationError(
            "Model configuration must be a non-empty mapping of provider names to model lists"
        )

    config: dict[str, ProviderModels] = {}
    for provider, models in cast(dict[Any, Any], data).items():
        name = _normalize(str(provider))
        if not isinstance(models, list) or not models:
            raise ConfigurationError(f"Provider '{name}' must have a non-empty list of models")
        if not all(isinstance(m, str) and m.strip() for m in models):
            raise ConfigurationError(f"Provider '{name}' has a model entry that is not a string")
        config[name] = ProviderModels(name, frozenset(m.strip() for m in models), is_override)
    return config


def display_model_list(models: Iterable[str], limit: int = 10) -> str:
    ordered = sorted(models)
    if not ordered:
        return "No models available"
    if len(ordered) <= limit:
        return ", ".join(ordered)
    return f"{', '.join(ordered[:limit])}, ... ({len(ordered)} total)"


class ModelRegistry:
    """
    Thread-safe, explicitly resettable registry of supported models.

    The registry initializes itself lazily on first use; ``reset()`` returns it
    to the uninitialized state, which is mainly useful for test isolation.
    """

    def __init__(self, bundled_path: str | os.PathLike[str] = BUNDLED_MODELS_PATH) -> None:
        self._bundled_path = bundled_path
        self._lock = threading.RLock()
        self._bundled: dict[str, ProviderModels] = {}
        self._override: dict[str, ProviderModels] = {}
        self._providers: dict[str, ProviderModels] = {}
        self._initialized = False
        self._override_source: str | None = None

    def init(self) -> None:
        """Load the bundled configuration. Safe to call more than once."""
        with self._lock:
            if self._initialized:
                return
            try:
                with open(self._bundled_path, encoding="utf-8") as f:
                    self._bundled = parse_model_config(f.read())
            except (OSError, ConfigurationError) as e:
                logger.warning(f"Failed to load bundled model config: {e}")
                logger.warning("Using fallback hardcoded model registry")
                self._bundled = dict(FALLBACK_CONFIG)
            self._providers = {**self._bundled, **self._override}
            self._initialized = True

    def reset(self) -> None:
        """Drop all loaded state, including any override."""
        with self._lock:
            self._bundled = {}
            self._override = {}
            self._providers = {}
            self._initialized = False
            self._override_source = None

    def _ensure_initialized(self) -> dict[str, ProviderModels]:
        with self._lock:
            if not self._initialized:
                self.init()
            return self._providers

    # ---------- overrides ----------

    def load_override_file(self, path: str | os.PathLike[str]) -> str:
        """
        Load an override file. Its sections replace the bundled sections for
        the providers it names; a previously loaded override is discarded.

        Returns:
            A message naming how many custom models were loaded.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        try:
            content = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Cannot read model override file {path}: {e}") from e
        override = parse_model_config(content, is_override=True)

        with self._lock:
            self._ensure_initialized()
            self._override = override
            self._providers = {**self._bundled, **override}
            self._override_source = str(path)

        custom_count = sum(len(pm.models) for pm in override.values())
        message = f"Loaded {custom_count} custom models from override config"
        logger.info(f"{message} ({path}; providers: {', '.join(sorted(override))})")
        return message

    def load_override(self, directory: str | os.PathLike[str]) -> str | None:
        """Load ``models-override.yaml`` from ``directory`` if present."""
        for filename in OVERRIDE_FILENAMES:
            candidate = Path(directory) / filename
            if candidate.is_file():
                return self.load_override_file(candidate)
        return None

    @contextmanager
    def rollback_on_error(self) -> Iterator[ModelRegistry]:
        """Put the current override back if the body of the ``with`` raises."""
        with self._lock:
            self._ensure_initialized()
            saved = (self._override, self._providers, self._override_source)
        try:
            yield self
        except Exception:
            with self._lock:
                self._override, self._providers, self._override_source = saved
            logger.debug("Model override changes rolled back")
            raise

    @property
    def override_source(self) -> str | None:
        return self._override_source

    # ---------- lookups ----------

    def get_supported_models(self, provider: str) -> frozenset[str]:
        pm = self._ensure_initialized().get(_normalize(provider))
        return pm.models if pm else frozenset()

    def is_valid_model(self, provider: str, model: str) -> bool:
        return model in self.get_supported_models(provider)

    def get_all_providers(self) -> set[str]:
        return set(self._ensure_initialized())

    def is_provider_custom(self, provider: str) -> bool:
        pm = self._ensure_initialized().get(_normalize(provider))
        return bool(pm and pm.is_override)

    def is_custom_model(self, provider: str, model: str) -> bool:
        pm = self._ensure_initialized().get(_normalize(provider))
        return bool(pm and pm.is_override and model in pm.models)

    @staticmethod
    def default_model(provider: str) -> str:
        try:
            return DEFAULT_MODELS[_normalize(provider)]
        except KeyError as e:
            raise ConfigurationError(f"Unknown provider: {provider}") from e

    def get_model_list_for_display(self, provider: str) -> str:
        """User-friendly model list for error messages."""
        return display_model_list(self.get_supported_models(provider))

    def format_model_list(self, active_provider: str, active_model: str) -> str:
        """Format every provider's models with [ACTIVE] and [custom] markers."""
        providers = self._ensure_initialized()
        active = _normalize(active_provider)
        lines = ["=== Available Models ==="]
        for provider in sorted(providers):
            pm = providers[provider]
            lines.append("")
            lines.append(f"--- {provider} ---")
            for model in sorted(pm.models):
                markers = ""
                if provider == active and model == active_model:
                    markers += " [ACTIVE]"
                if pm.is_override:
                    markers += " [custom]"
                lines.append(f"  {model}{markers}")
        lines.append("")
        lines.append(f"Currently using: {active} / {active_model}")
        return "\n".join(lines) + "\n"


# Process-wide registry used when no explicit instance is passed around
model_registry = ModelRegistry()
