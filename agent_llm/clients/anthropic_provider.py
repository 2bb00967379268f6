"""
Anthropic provider.

Differs from the OpenAI shape in three ways: the key travels in ``x-api-key``
next to a pinned ``anthropic-version`` header, system messages are hoisted out
of the message array into a top-level ``system`` field, and ``max_tokens`` is
mandatory.
"""

from __future__ import annotations

from typing import Any

from ..chat.models import ChatMessage, ChatRequest, ChatResponse, Choice
from .base import BaseHttpProvider

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_ANTHROPIC_MAX_TOKENS = 4000


class AnthropicProvider(BaseHttpProvider):
    provider_name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    default_max_tokens = str(DEFAULT_ANTHROPIC_MAX_TOKENS)
    setup_hint = "Create a key at https://console.anthropic.com/settings/keys"

    def build_url(self, request: ChatRequest) -> str:
        return f"{self.base_url()}/messages"

    def build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key() or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def build_wire_request(self, request: ChatRequest) -> dict[str, Any]:
        system_parts = [m.content for m in request.messages if m.role == "system"]
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in request.messages
                if m.role != "system"
            ],
            "max_tokens": request.max_tokens or DEFAULT_ANTHROPIC_MAX_TOKENS,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if request.temperature is not None:
            # Anthropic caps temperature at 1.0
            payload["temperature"] = min(request.temperature, 1.0)
        return payload

    def parse_wire_response(self, payload: dict[str, Any], model: str) -> ChatResponse:
        blocks = payload["content"]
        texts = [block["text"] for block in blocks if block.get("type", "text") == "text"]
        if not texts:
            raise KeyError("no text block in 'content'")

        message = ChatMessage.assistant("".join(texts))
        return ChatResponse(
            id=payload["id"],
            model=payload.get("model", model),
            choices=[Choice(index=0, message=message, finish_reason=payload.get("stop_reason") or "stop")],
        )
