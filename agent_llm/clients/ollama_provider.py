"""
Ollama provider for a local model server.

No credential is needed. Local models can take a while to load, so the
default timeout is longer than for cloud providers. Besides chat, the
provider can probe the server and list the models it has installed.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from ..chat.models import ChatMessage, ChatRequest, ChatResponse, Choice
from ..errors import LLMError
from .base import BaseHttpProvider

logger = logging.getLogger(__name__)

REACHABILITY_TIMEOUT_SECONDS = 1.0
DEFAULT_OLLAMA_TIMEOUT_SECONDS = 120.0


class OllamaProvider(BaseHttpProvider):
    provider_name = "ollama"
    default_base_url = "http://localhost:11434"
    default_max_tokens = "2048"
    requires_api_key = False
    setup_hint = "Install Ollama from https://ollama.com, run 'ollama serve' and 'ollama pull <model>'"

    @property
    def default_timeout(self) -> float:
        return DEFAULT_OLLAMA_TIMEOUT_SECONDS

    def build_url(self, request: ChatRequest) -> str:
        return f"{self.base_url()}/api/chat"

    def build_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_wire_request(self, request: ChatRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "stream": False,
        }
        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if options:
            payload["options"] = options
        return payload

    def parse_wire_response(self, payload: dict[str, Any], model: str) -> ChatResponse:
        message = payload["message"]
        content = message["content"]
        if not isinstance(content, str):
            raise TypeError("'message.content' is not a string")

        finish_reason = payload.get("done_reason")
        if not finish_reason:
            finish_reason = "stop" if payload.get("done") else "length"

        return ChatResponse(
            id=f"ollama-{int(time.time() * 1000)}",
            model=payload.get("model", model),
            # Local servers echo arbitrary roles; the reply is always the assistant's
            choices=[Choice(index=0, message=ChatMessage.assistant(content), finish_reason=finish_reason)],
        )

    async def _get_tags(self, timeout: float) -> httpx.Response:
        return await self._send(
            "GET", f"{self.base_url()}/api/tags", timeout=timeout, log_failures=False
        )

    async def check_reachable(self, timeout: float = REACHABILITY_TIMEOUT_SECONDS) -> bool:
        """Lightweight probe of the local server, used only for readiness checks."""
        try:
            response = await self._get_tags(timeout)
        except LLMError as e:
            logger.debug(f"Ollama not reachable at {self.base_url()}: {e}")
            return False
        return response.is_success

    async def list_installed_models(self, timeout: float = REACHABILITY_TIMEOUT_SECONDS) -> set[str]:
        """Models the server reports as installed; empty when unavailable."""
        try:
            response = await self._get_tags(timeout)
            response.raise_for_status()
            entries = response.json().get("models", [])
        except (LLMError, httpx.HTTPError, ValueError, AttributeError) as e:
            logger.debug(f"Could not list installed Ollama models: {e}")
            return set()

        models: set[str] = set()
        for entry in entries:
            name = entry.get("name") if isinstance(entry, dict) else None
            if not name:
                continue
            models.add(name)
            if name.endswith(":latest"):
                models.add(name.removesuffix(":latest"))
        return models

    async def available_models(self) -> frozenset[str]:
        """Installed models when the server reports any, else the static list."""
        installed = await self.list_installed_models()
        if installed:
            return frozenset(installed)
        return await super().available_models()
