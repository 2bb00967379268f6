"""Configuration management for the LLM core."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Common configuration keys
PROVIDER = "provider"
API_KEY = "api_key"
MODEL = "model"
BASE_URL = "base_url"
TEMPERATURE = "temperature"
MAX_TOKENS = "max_tokens"
TIMEOUT_SECONDS = "timeout_seconds"

# Logging keys
LOG_LEVEL = "log_level"
LOG_LLM_REPLIES = "log_llm_replies"
LOG_HTTP_REQUESTS = "log_http_requests"

# Default values
DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = "0.7"
DEFAULT_MAX_TOKENS = "1000"

# Environment variables seeding the per-provider API keys
ENV_API_KEYS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def api_key_name(provider: str) -> str:
    """Provider-namespaced API key, e.g. ``anthropic_api_key``."""
    return f"{provider.lower().strip()}_api_key"


def base_url_name(provider: str) -> str:
    """Provider-namespaced base URL key, e.g. ``ollama_base_url``."""
    return f"{provider.lower().strip()}_base_url"


def load_env() -> None:
    """Load environment variables from .env file."""
    load_dotenv()


def _mask(value: str) -> str:
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***"


class ConfigStore:
    """
    Thread-safe string key/value configuration with change notification.

    Every mutation swaps in a fresh dict under the lock, so readers always see
    a consistent snapshot. Subscribers are notified with a copy of the new map
    after the lock is released.
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._config: dict[str, str] = dict(initial or {})
        self._lock = threading.RLock()
        self._config_change_callbacks: list[Callable[[dict[str, str]], None]] = []

    @classmethod
    def with_defaults(cls, environ: Mapping[str, str] | None = None) -> ConfigStore:
        """Create a store holding the built-in defaults.

        API keys found in the environment are stored under their namespaced
        key so several providers can be pre-configured at once.
        """
        env = os.environ if environ is None else environ
        defaults = {
            PROVIDER: DEFAULT_PROVIDER,
            MODEL: DEFAULT_MODEL,
            TEMPERATURE: DEFAULT_TEMPERATURE,
            MAX_TOKENS: DEFAULT_MAX_TOKENS,
        }
        for provider, env_key in ENV_API_KEYS.items():
            value = env.get(env_key)
            if value:
                defaults[api_key_name(provider)] = value
        return cls(defaults)

    # ---------- observers ----------

    def subscribe_to_changes(self, callback: Callable[[dict[str, str]], None]) -> None:
        """Subscribe to configuration change events.

        Args:
            callback: Function to call when config changes. Receives a copy of
                the new config as argument.
        """
        with self._lock:
            if callback not in self._config_change_callbacks:
                self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(self, callback: Callable[[dict[str, str]], None]) -> None:
        with self._lock:
            if callback in self._config_change_callbacks:
                self._config_change_callbacks.remove(callback)

    def _notify_config_change(self, snapshot: dict[str, str]) -> None:
        """Notify all registered observers of configuration changes."""
        with self._lock:
            callbacks = list(self._config_change_callbacks)
        for callback in callbacks:
            try:
                callback(dict(snapshot))
            except Exception as e:
                logger.error(f"Error in config change callback: {e}")

    def _swap(self, new_config: dict[str, str]) -> None:
        with self._lock:
            self._config = new_config
        self._notify_config_change(new_config)

    # ---------- mutation ----------

    def set(self, key: str, value: str) -> None:
        with self._lock:
            new_config = dict(self._config)
            new_config[key] = str(value)
        self._swap(new_config)

    def remove(self, key: str) -> str | None:
        with self._lock:
            if key not in self._config:
                return None
            new_config = dict(self._config)
            removed = new_config.pop(key)
        self._swap(new_config)
        return removed

    def clear(self) -> None:
        self._swap({})

    def load_from_map(self, new_config: Mapping[str, str]) -> None:
        """Replace all configuration with ``new_config``."""
        self._swap({k: str(v) for k, v in new_config.items()})

    def update_from_map(self, new_config: Mapping[str, str]) -> None:
        """Merge ``new_config`` into the existing configuration."""
        with self._lock:
            merged = dict(self._config)
            merged.update({k: str(v) for k, v in new_config.items()})
        self._swap(merged)

    # ---------- access ----------

    def get(self, key: str) -> str | None:
        return self._config.get(key)

    def get_or_else(self, key: str, default: str) -> str:
        return self._config.get(key, default)

    def contains(self, key: str) -> bool:
        return key in self._config

    def __contains__(self, key: object) -> bool:
        return key in self._config

    def keys(self) -> set[str]:
        return set(self._config)

    def to_dict(self) -> dict[str, str]:
        return dict(self._config)

    def get_float(self, key: str, default: float | None = None) -> float | None:
        raw = self._config.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return float(raw)
        except ValueError as e:
            raise ConfigurationError(f"Configuration key '{key}' must be a number, got '{raw}'") from e

    def get_int(self, key: str, default: int | None = None) -> int | None:
        raw = self._config.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Configuration key '{key}' must be an integer, got '{raw}'"
            ) from e

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self._config.get(key)
        if raw is None:
            return default
        normalized = raw.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
        raise ConfigurationError(f"Configuration key '{key}' must be true or false, got '{raw}'")

    def validate_required(self, required_keys: Iterable[str]) -> None:
        """Raise ConfigurationError if any of ``required_keys`` is absent."""
        missing = sorted(set(required_keys) - set(self._config))
        if missing:
            raise ConfigurationError(f"Missing required configuration keys: {', '.join(missing)}")

    def summary(self) -> str:
        """Printable summary with credentials masked."""
        parts = []
        for key, value in sorted(self._config.items()):
            lowered = key.lower()
            if "key" in lowered or "secret" in lowered:
                value = _mask(value)
            parts.append(f"{key}={value}")
        return ", ".join(parts)


# ---------- key=value config files ----------


def _parse_line(line: str) -> tuple[str, str]:
    equal_index = line.find("=")
    if equal_index == -1:
        raise ValueError(f"Missing '=' separator in line: {line}")
    key = line[:equal_index].strip()
    if not key:
        raise ValueError(f"Missing key in line: {line}")
    # Empty values are allowed
    return key, line[equal_index + 1 :].strip()


def parse_config_lines(lines: Iterable[str]) -> dict[str, str]:
    """Parse ``key=value`` lines, skipping blanks and ``#`` comments."""
    config: dict[str, str] = {}
    for line_number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            key, value = _parse_line(stripped)
        except ValueError as e:
            raise ConfigurationError(f"Error parsing line {line_number}: {e}") from e
        config[key] = value
    return config


def resolve_config_path(
    path: str | os.PathLike[str],
    project_dir: str | os.PathLike[str] | None = None,
) -> Path:
    """Find a config file: as given, then next to the host project, then in cwd."""
    candidate = Path(path).expanduser()
    tried = [candidate]
    if candidate.is_file():
        return candidate
    if not candidate.is_absolute():
        if project_dir is not None:
            in_project = Path(project_dir) / candidate
            tried.append(in_project)
            if in_project.is_file():
                return in_project
        in_cwd = Path.cwd() / candidate
        tried.append(in_cwd)
        if in_cwd.is_file():
            return in_cwd
    locations = ", ".join(str(p) for p in tried)
    raise ConfigurationError(f"Configuration file not found: {path} (looked in: {locations})")


def load_config_file(path: str | os.PathLike[str]) -> dict[str, str]:
    """Load a ``key=value`` configuration file.

    Raises:
        ConfigurationError: If the file is unreadable, is not UTF-8 or a line
            is malformed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return parse_config_lines(f.read().splitlines())
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration file: {path} ({e})") from e
