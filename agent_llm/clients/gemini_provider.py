"""
Google Gemini provider.

The key is sent as the ``key`` query parameter and the model is part of the
path. Gemini only knows ``user`` and ``model`` roles, so assistant turns are
remapped to ``model`` and everything else is sent as ``user``.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from ..chat.models import ChatMessage, ChatRequest, ChatResponse, Choice
from .base import BaseHttpProvider


class GeminiProvider(BaseHttpProvider):
    provider_name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    default_max_tokens = "2048"
    setup_hint = "Create a key at https://aistudio.google.com/app/apikey"

    def build_url(self, request: ChatRequest) -> httpx.URL:
        return httpx.URL(
            f"{self.base_url()}/models/{request.model}:generateContent",
            params={"key": self.api_key() or ""},
        )

    def build_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_wire_request(self, request: ChatRequest) -> dict[str, Any]:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in request.messages
        ]
        payload: dict[str, Any] = {"contents": contents}

        generation_config: dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    def parse_wire_response(self, payload: dict[str, Any], model: str) -> ChatResponse:
        candidate = payload["candidates"][0]
        parts = candidate["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)

        return ChatResponse(
            # Gemini doesn't return an id
            id=payload.get("responseId") or f"gemini-{int(time.time() * 1000)}",
            model=payload.get("modelVersion", model),
            choices=[
                Choice(
                    index=0,
                    message=ChatMessage.assistant(text),
                    finish_reason=candidate.get("finishReason") or "STOP",
                )
            ],
        )
