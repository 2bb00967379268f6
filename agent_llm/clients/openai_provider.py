"""OpenAI provider: Bearer auth, flat message array, ``choices[]`` response."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from ..chat.models import ChatMessage, ChatRequest, ChatResponse, Choice
from .base import BaseHttpProvider


class OpenAIProvider(BaseHttpProvider):
    provider_name = "openai"
    default_base_url = "https://api.openai.com/v1"
    setup_hint = "Create a key at https://platform.openai.com/api-keys"

    def build_url(self, request: ChatRequest) -> str:
        return f"{self.base_url()}/chat/completions"

    def build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key()}",
            "Content-Type": "application/json",
        }

    def build_wire_request(self, request: ChatRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    def parse_wire_response(self, payload: dict[str, Any], model: str) -> ChatResponse:
        choices = []
        for index, choice in enumerate(payload["choices"]):
            message = choice["message"]
            choices.append(
                Choice(
                    index=choice.get("index", index),
                    # content is null for refusals and tool-only replies
                    message=ChatMessage(role=message["role"], content=message.get("content") or ""),
                    finish_reason=choice.get("finish_reason") or "stop",
                )
            )

        created = payload.get("created")
        return ChatResponse(
            id=payload["id"],
            created_at=datetime.fromtimestamp(created, UTC) if created else datetime.now(UTC),
            model=payload.get("model", model),
            choices=choices,
        )
