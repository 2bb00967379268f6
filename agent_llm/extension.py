"""
LLM Extension

The primitive surface the host calls into. One ``LLMExtension`` owns the
configuration store, the cached provider, per-caller history and the
background runner; every primitive either returns a value or raises an
``LLMError`` with a message the host can show as is.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import random
import threading
import weakref
from collections.abc import Callable, Coroutine, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, get_args

import httpx

from . import config as cfg
from .chat.choice import build_choice_prompt, resolve_choice
from .chat.models import ChatMessage, ProviderStatus, Role
from .chat.runner import AsyncRunner, ChatHandle
from .clients.base import LLMProvider
from .clients.factory import (
    SUPPORTED_PROVIDERS,
    check_readiness,
    create_provider,
    create_provider_from_config,
    provider_help,
    require_supported,
)
from .clients.model_registry import ModelRegistry, display_model_list, model_registry
from .clients.ollama_provider import REACHABILITY_TIMEOUT_SECONDS
from .config import ConfigStore, load_config_file, load_env, resolve_config_path
from .errors import ConfigurationError, InvalidInputError, LLMError
from .history import CallerHistoryManager
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)

# Upper bound on any blocking probe (readiness, live model listing)
PROBE_TIMEOUT_SECONDS = REACHABILITY_TIMEOUT_SECONDS + 2.0
CLOSE_TIMEOUT_SECONDS = 5.0

_ROLES = frozenset(get_args(Role))

ReadinessCheck = Callable[..., None]
ProviderFactory = Callable[..., LLMProvider]


class LLMExtension:
    """Chat primitives for many short-lived host callers."""

    def __init__(
        self,
        store: ConfigStore | None = None,
        registry: ModelRegistry | None = None,
        history: CallerHistoryManager | None = None,
        runner: AsyncRunner | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        readiness_check: ReadinessCheck = check_readiness,
        provider_factory: ProviderFactory = create_provider_from_config,
        rng: random.Random | None = None,
    ) -> None:
        if store is None:
            load_env()
            store = ConfigStore.with_defaults()
        self.store = store
        self.registry = registry or model_registry
        self.history_manager = history or CallerHistoryManager()
        self.runner = runner or AsyncRunner()
        self._transport = transport
        self._readiness_check = readiness_check
        self._provider_factory = provider_factory
        self._rng = rng or random.Random()

        self._provider: LLMProvider | None = None
        self._provider_lock = threading.RLock()
        self._chat_lock = threading.Lock()
        self._project_dir: Path | None = None

        self.store.subscribe_to_changes(self._on_config_change)
        self._apply_logging_config()

    # ---------- provider lifecycle ----------

    def _on_config_change(self, _snapshot: dict[str, str]) -> None:
        with self._provider_lock:
            old, self._provider = self._provider, None
        if old is not None:
            logger.debug(f"Configuration changed; dropping cached {old.provider_name} provider")
            self._close_provider(old)
        self._apply_logging_config()

    def _close_provider(self, provider: LLMProvider) -> None:
        # Clients only ever exist on the runner's loop; the provider defers
        # the close until its in-flight requests are done.
        if not self.runner.running:
            return
        name = provider.provider_name

        def _log_close_failure(future: concurrent.futures.Future[None]) -> None:
            if future.cancelled():
                return
            error = future.exception()
            if error is not None:
                logger.warning(f"⚠️ Error closing {name} provider: {error}")

        self.runner.submit(provider.aclose()).add_done_callback(_log_close_failure)

    def _apply_logging_config(self) -> None:
        level = self.store.get(cfg.LOG_LEVEL)
        features: dict[str, dict[str, bool]] = {}
        if cfg.LOG_LLM_REPLIES in self.store:
            features["chat"] = {"llm_replies": self.store.get_bool(cfg.LOG_LLM_REPLIES)}
        if cfg.LOG_HTTP_REQUESTS in self.store:
            features["connection"] = {"http_requests": self.store.get_bool(cfg.LOG_HTTP_REQUESTS)}
        if level is not None or features:
            configure_logging(level, features)

    def _ensure_provider(self) -> LLMProvider:
        with self._provider_lock:
            if self._provider is None:
                provider = self._provider_factory(
                    self.store, registry=self.registry, transport=self._transport
                )
                provider.validate_config()
                self._provider = provider
            return self._provider

    def _run_probe(self, coro: Coroutine[Any, Any, Any]) -> Any:
        return self.runner.run(coro, timeout=PROBE_TIMEOUT_SECONDS)

    def _check_ready(self, provider: str, config: Mapping[str, str]) -> None:
        self._readiness_check(
            provider,
            config,
            run=self._run_probe,
            registry=self.registry,
            transport=self._transport,
        )

    def _supported_models(self, provider: str, config: Mapping[str, str]) -> frozenset[str]:
        probe = create_provider(provider, registry=self.registry, transport=self._transport)
        probe.load_config(config)

        async def _collect() -> frozenset[str]:
            try:
                return await probe.available_models()
            finally:
                await probe.aclose()

        return self._run_probe(_collect())

    def _active_provider_name(self) -> str:
        return self.store.get_or_else(cfg.PROVIDER, cfg.DEFAULT_PROVIDER)

    # ---------- config primitives ----------

    def set_provider(self, name: str) -> None:
        """
        Switch the active provider after checking it is ready to use.

        The current model is kept when the new provider supports it and is
        otherwise reset to the provider's default.
        """
        provider = require_supported(name)
        candidate = self.store.to_dict()
        candidate[cfg.PROVIDER] = provider
        self._check_ready(provider, candidate)

        updates = {cfg.PROVIDER: provider}
        current_model = self.store.get(cfg.MODEL)
        if not current_model or current_model not in self._supported_models(provider, candidate):
            updates[cfg.MODEL] = self.registry.default_model(provider)
            logger.info(f"Model reset to {updates[cfg.MODEL]} for {provider}")
        self.store.update_from_map(updates)
        logger.info(f"Active provider set to {provider}")

    def set_api_key(self, key: str) -> None:
        """Store ``key`` as the active provider's namespaced API key."""
        if not key or not key.strip():
            raise ConfigurationError("API key must not be empty")
        provider = self._active_provider_name()
        self.store.set(cfg.api_key_name(provider), key.strip())
        logger.info(f"API key updated for {provider}")

    def set_model(self, name: str) -> None:
        """
        Select ``name`` for the active provider.

        Raises:
            ConfigurationError: If the provider does not support the model;
                the active model is left unchanged.
        """
        provider = self._active_provider_name()
        model = name.strip()
        supported = self._supported_models(provider, self.store.to_dict())
        if model not in supported:
            raise ConfigurationError(
                f"Model '{model}' is not supported by {provider}. "
                f"Supported models: {display_model_list(supported)}"
            )
        self.store.set(cfg.MODEL, model)
        logger.info(f"Active model set to {provider}/{model}")

    def load_config(self, path: str | os.PathLike[str]) -> None:
        """
        Replace the whole configuration with the contents of a ``key=value`` file.

        A ``models-override.yaml`` next to the file is loaded first so the
        file may select a custom model. Nothing changes, neither the store nor
        the model registry, unless the provider, model and readiness checks
        all pass.
        """
        resolved = resolve_config_path(path, self._project_dir)
        values = load_config_file(resolved)

        with self.registry.rollback_on_error():
            self.registry.load_override(resolved.parent)

            provider = require_supported(values.get(cfg.PROVIDER, cfg.DEFAULT_PROVIDER))
            values[cfg.PROVIDER] = provider
            model = values.get(cfg.MODEL)
            if model:
                supported = self._supported_models(provider, values)
                if model not in supported:
                    raise ConfigurationError(
                        f"Invalid model '{model}' for provider {provider} in {resolved}. "
                        f"Supported models: {display_model_list(supported)}"
                    )
            self._check_ready(provider, values)

        self.store.load_from_map(values)
        logger.info(f"✅ Loaded configuration from {resolved} ({len(values)} keys)")

    def set_project_dir(self, path: str | os.PathLike[str]) -> str | None:
        """Remember the host project directory and load its model override, if any."""
        self._project_dir = Path(path)
        return self.registry.load_override(self._project_dir)

    def load_model_override(self, path: str | os.PathLike[str]) -> str:
        return self.registry.load_override_file(path)

    # ---------- chat primitives ----------

    @staticmethod
    def _check_caller(caller: Any) -> None:
        try:
            weakref.ref(caller)
        except TypeError:
            raise InvalidInputError(
                f"Caller of type {type(caller).__name__} cannot hold a conversation"
            ) from None

    def _timeout_for(self, provider: LLMProvider) -> float:
        timeout = self.store.get_float(cfg.TIMEOUT_SECONDS)
        return provider.default_timeout if timeout is None else timeout

    def chat_async(self, caller: Any, text: str) -> ChatHandle:
        """
        Record ``text`` as the caller's next user message and start the
        request immediately. The reply is collected with ``resolve``.
        """
        self._check_caller(caller)
        provider = self._ensure_provider()
        user_message = ChatMessage.user(text)

        with self._chat_lock:
            messages = [*self.history_manager.get(caller), user_message]
            self.history_manager.append(caller, user_message)

        future = self.runner.submit(provider.chat_messages(messages))
        return ChatHandle(
            future,
            caller,
            user_message,
            self.history_manager,
            provider=provider.provider_name,
            model=provider.get_config(cfg.MODEL) or provider.default_model,
            default_timeout=self._timeout_for(provider),
        )

    def resolve(self, handle: ChatHandle, timeout: float | None = None) -> str:
        return handle.resolve(timeout)

    def chat(self, caller: Any, text: str) -> str:
        """Send ``text`` and block until the reply arrives or times out."""
        return self.chat_async(caller, text).resolve()

    def choose(self, caller: Any, prompt: str, choices: Sequence[Any]) -> str:
        """
        Ask the model to pick one of ``choices`` and always return one of them.

        Provider failures are logged and fall back to a random option.
        """
        options = [str(choice) for choice in choices]
        if not options:
            raise InvalidInputError("choose needs at least one choice")
        self._check_caller(caller)

        try:
            reply = self.chat(caller, build_choice_prompt(prompt, options))
        except LLMError as e:
            logger.warning(f"Choice request failed, falling back to a random option: {e}")
            reply = ""
        return resolve_choice(reply, options, self._rng)

    # ---------- history primitives ----------

    def history(self, caller: Any) -> list[tuple[str, str]]:
        self._check_caller(caller)
        return [message.as_pair() for message in self.history_manager.get(caller)]

    def set_history(self, caller: Any, pairs: Iterable[Sequence[str]]) -> None:
        """
        Replace the caller's history with ``(role, content)`` pairs.

        Raises:
            InvalidInputError: If a pair is malformed or names an unknown role.
        """
        self._check_caller(caller)
        messages: list[ChatMessage] = []
        for index, pair in enumerate(pairs):
            if isinstance(pair, str) or not isinstance(pair, Sequence) or len(pair) != 2:
                raise InvalidInputError(
                    f"History entry {index} must be a [role, content] pair, got {pair!r}"
                )
            role, content = pair
            if not isinstance(role, str) or role not in _ROLES:
                raise InvalidInputError(
                    f"History entry {index} has unknown role '{role}'; "
                    f"expected one of {', '.join(sorted(_ROLES))}"
                )
            messages.append(ChatMessage(role=role, content=str(content)))
        self.history_manager.set(caller, messages)

    def clear_history(self, caller: Any) -> None:
        self._check_caller(caller)
        self.history_manager.clear(caller)

    def clear_all(self) -> None:
        """Global reset: forget every caller's conversation."""
        self.history_manager.clear_all()

    # ---------- discovery primitives ----------

    def provider_status(self) -> list[ProviderStatus]:
        active = self._active_provider_name()
        snapshot = self.store.to_dict()
        statuses = []
        for name in SUPPORTED_PROVIDERS:
            try:
                self._check_ready(name, snapshot)
                ready, detail = True, "ready"
            except LLMError as e:
                ready, detail = False, str(e)
            statuses.append(ProviderStatus(name=name, ready=ready, active=name == active, detail=detail))
        return statuses

    def providers(self) -> list[str]:
        """Providers that could be used right now."""
        return [status.name for status in self.provider_status() if status.ready]

    def providers_all(self) -> list[str]:
        return list(SUPPORTED_PROVIDERS)

    def provider_help(self, name: str) -> str:
        return provider_help(name, registry=self.registry)

    def models(self) -> list[str]:
        """Models the active provider accepts, sorted."""
        return sorted(self._supported_models(self._active_provider_name(), self.store.to_dict()))

    def list_models(self) -> str:
        provider, model = self.active()
        return self.registry.format_model_list(provider, model)

    def active(self) -> tuple[str, str]:
        provider = self._active_provider_name()
        return provider, self.store.get_or_else(cfg.MODEL, self.registry.default_model(provider))

    def config(self) -> str:
        """Masked configuration summary."""
        return self.store.summary()

    # ---------- shutdown ----------

    def close(self) -> None:
        self.store.unsubscribe_from_changes(self._on_config_change)
        with self._provider_lock:
            provider, self._provider = self._provider, None
        if provider is not None and self.runner.running:
            try:
                self.runner.run(provider.aclose(), timeout=CLOSE_TIMEOUT_SECONDS)
            except LLMError as e:
                logger.warning(f"Error closing {provider.provider_name} provider: {e}")
        self.runner.shutdown()

    def __enter__(self) -> LLMExtension:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
