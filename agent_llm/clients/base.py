"""
Provider contract and shared HTTP implementation.

``LLMProvider`` is the normalized contract every provider honours.
``BaseHttpProvider`` owns request dispatch, config defaulting, credential
lookup and error wrapping, leaving subclasses to describe only where the
credential goes, how messages map onto the wire, and how the reply is
unwrapped.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from .. import config as cfg
from ..chat.models import ChatMessage, ChatRequest, ChatResponse
from ..config import ConfigStore
from ..errors import ConfigurationError, LLMTimeoutError, NetworkError, ParseError
from ..logging_utils import log_http_request
from .model_registry import ModelRegistry, model_registry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class LLMProvider(ABC):
    """Abstract interface for all LLM providers."""

    provider_name: str

    @property
    @abstractmethod
    def default_model(self) -> str: ...

    @property
    def default_timeout(self) -> float:
        return DEFAULT_TIMEOUT_SECONDS

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send ``request`` and return the parsed response."""

    @abstractmethod
    async def chat_messages(self, messages: Sequence[ChatMessage]) -> ChatMessage:
        """Send ``messages`` using configured defaults; return the first reply."""

    @abstractmethod
    def set_config(self, key: str, value: str) -> None: ...

    @abstractmethod
    def get_config(self, key: str) -> str | None: ...

    @abstractmethod
    def validate_config(self) -> None:
        """Raise ConfigurationError with an actionable reason if unusable."""

    @abstractmethod
    def supports_model(self, model: str) -> bool: ...

    def load_config(self, values: Mapping[str, str]) -> None:
        for key, value in values.items():
            self.set_config(key, value)

    def request_timeout(self) -> float:
        raw = self.get_config(cfg.TIMEOUT_SECONDS)
        if raw is None or not raw.strip():
            return self.default_timeout
        try:
            return float(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Configuration key '{cfg.TIMEOUT_SECONDS}' must be a number, got '{raw}'"
            ) from e

    async def aclose(self) -> None:
        """Release network resources. Default providers hold none."""


class BaseHttpProvider(LLMProvider):
    """
    Base class for HTTP-based providers.

    Each call carries its own payload and headers; the only state shared
    between concurrent calls is the pooled ``httpx.AsyncClient``, so one
    instance can serve every caller at once.
    """

    default_base_url: str = ""
    default_max_tokens: str = cfg.DEFAULT_MAX_TOKENS
    requires_api_key: bool = True
    setup_hint: str = ""

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registry = registry or model_registry
        self._transport = transport
        self._config = ConfigStore()
        self.client: httpx.AsyncClient | None = None
        self._active_requests = 0
        self._close_pending = False
        self._initialize_defaults()

    def _initialize_defaults(self) -> None:
        self._config.update_from_map(
            {
                cfg.PROVIDER: self.provider_name,
                cfg.MODEL: self.default_model,
                cfg.TEMPERATURE: cfg.DEFAULT_TEMPERATURE,
                cfg.MAX_TOKENS: self.default_max_tokens,
            }
        )

    # ---------- provider-specific hooks ----------

    @abstractmethod
    def build_url(self, request: ChatRequest) -> httpx.URL | str: ...

    @abstractmethod
    def build_headers(self) -> dict[str, str]: ...

    @abstractmethod
    def build_wire_request(self, request: ChatRequest) -> dict[str, Any]: ...

    @abstractmethod
    def parse_wire_response(self, payload: dict[str, Any], model: str) -> ChatResponse: ...

    # ---------- config ----------

    @property
    def default_model(self) -> str:
        return self._registry.default_model(self.provider_name)

    def set_config(self, key: str, value: str) -> None:
        self._config.set(key, value)

    def get_config(self, key: str) -> str | None:
        return self._config.get(key)

    def config_summary(self) -> str:
        return f"{self.provider_name} Provider - {self._config.summary()}"

    @property
    def api_key_config_key(self) -> str:
        return cfg.api_key_name(self.provider_name)

    @property
    def base_url_config_key(self) -> str:
        return cfg.base_url_name(self.provider_name)

    def api_key(self) -> str | None:
        """Namespaced key first, legacy ``api_key`` second."""
        for key in (self.api_key_config_key, cfg.API_KEY):
            value = self._config.get(key)
            if value and value.strip():
                return value.strip()
        return None

    def base_url(self) -> str:
        for key in (self.base_url_config_key, cfg.BASE_URL):
            value = self._config.get(key)
            if value and value.strip():
                return value.strip().rstrip("/")
        return self.default_base_url.rstrip("/")

    def validate_config(self) -> None:
        if self.requires_api_key and self.api_key() is None:
            raise ConfigurationError(
                f"{self.provider_name} requires an API key. Set '{self.api_key_config_key}' "
                f"in your config file or call set-api-key."
            )

    def supports_model(self, model: str) -> bool:
        return self._registry.is_valid_model(self.provider_name, model)

    async def available_models(self) -> frozenset[str]:
        """Models this provider accepts right now."""
        return self._registry.get_supported_models(self.provider_name)

    # ---------- chat ----------

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.validate_config()

        url = self.build_url(request)
        headers = self.build_headers()
        payload = self.build_wire_request(request)

        response = await self._send("POST", url, headers=headers, json=payload)

        if not response.is_success:
            body = response.text
            logger.error(f"{self.provider_name} returned HTTP {response.status_code}: {body[:500]}")
            raise NetworkError(
                self.provider_name,
                f"HTTP {response.status_code} from {self.provider_name}: {body}",
                status_code=response.status_code,
            )

        raw_body = response.text
        try:
            data = json.loads(raw_body)
        except ValueError as e:
            logger.error(f"Invalid JSON from {self.provider_name}: {e}")
            raise ParseError(
                self.provider_name, f"Failed to parse {self.provider_name} response: {e}", raw_body
            ) from e

        try:
            if not isinstance(data, dict):
                raise TypeError(f"expected a JSON object, got {type(data).__name__}")
            return self.parse_wire_response(data, request.model)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"Unexpected response format from {self.provider_name}: {e!r}")
            raise ParseError(
                self.provider_name,
                f"Failed to parse {self.provider_name} response: {e!r}",
                raw_body,
            ) from e

    async def chat_messages(self, messages: Sequence[ChatMessage]) -> ChatMessage:
        model = self._config.get_or_else(cfg.MODEL, self.default_model)
        try:
            request = ChatRequest(
                model=model,
                messages=list(messages),
                max_tokens=self._config.get_int(cfg.MAX_TOKENS),
                temperature=self._config.get_float(cfg.TEMPERATURE),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid request parameters for {self.provider_name}: {e}") from e

        response = await self.chat(request)
        message = response.first_message
        if message is None:
            raise ParseError(self.provider_name, f"No response message received from {self.provider_name}")
        return message

    # ---------- transport ----------

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=self.default_timeout,
                http2=True,
                trust_env=False,
                transport=self._transport,
            )
        return self.client

    async def _send(
        self,
        method: str,
        url: httpx.URL | str,
        *,
        timeout: float | None = None,
        log_failures: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one HTTP request, translating transport failures."""
        client = self._get_client()
        request_timeout = timeout if timeout is not None else self.request_timeout()
        path = httpx.URL(url).path
        log_failure = logger.error if log_failures else logger.debug

        self._active_requests += 1
        start_time = time.monotonic()
        try:
            response = await client.request(method, url, timeout=request_timeout, **kwargs)
        except httpx.TimeoutException as e:
            log_failure(f"{self.provider_name} request timed out after {request_timeout}s")
            raise LLMTimeoutError(
                f"[{self.provider_name}] no response within {request_timeout}s"
            ) from e
        except httpx.HTTPError as e:
            log_failure(f"HTTP error talking to {self.provider_name}: {e}")
            raise NetworkError(
                self.provider_name, f"Request to {self.base_url()} failed: {e!s}"
            ) from e
        finally:
            self._active_requests -= 1
            if self._active_requests == 0 and self._close_pending:
                await self._close_client()

        duration_ms = (time.monotonic() - start_time) * 1000
        log_http_request(self.provider_name, method, path, response.status_code, duration_ms)
        return response

    async def _close_client(self) -> None:
        self._close_pending = False
        if self.client is not None:
            client, self.client = self.client, None
            await client.aclose()
            logger.debug(f"Closed HTTP client for {self.provider_name}")

    async def aclose(self) -> None:
        """Close the HTTP client once no request is in flight."""
        if self._active_requests > 0:
            logger.info(
                f"⏸️  Deferring {self.provider_name} client close; "
                f"{self._active_requests} request(s) in flight"
            )
            self._close_pending = True
            return
        await self._close_client()

    async def __aenter__(self):
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()
