#!/usr/bin/env python3
"""Wire-level tests for the HTTP providers, using httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from agent_llm.chat.models import ChatMessage, ChatRequest
from agent_llm.clients.anthropic_provider import ANTHROPIC_VERSION, AnthropicProvider
from agent_llm.clients.gemini_provider import GeminiProvider
from agent_llm.clients.model_registry import ModelRegistry
from agent_llm.clients.ollama_provider import OllamaProvider
from agent_llm.clients.openai_provider import OpenAIProvider
from agent_llm.errors import ConfigurationError, LLMTimeoutError, NetworkError, ParseError
from agent_llm.logging_utils import configure_logging

OPENAI_REPLY = {
    "id": "chatcmpl-123",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o-mini",
    "choices": [
        {"index": 0, "message": {"role": "assistant", "content": "Hello!"}, "finish_reason": "stop"}
    ],
}


def make_provider(provider_class, handler, **config):
    provider = provider_class(registry=ModelRegistry(), transport=httpx.MockTransport(handler))
    provider.load_config(config)
    return provider


class Recorder:
    """MockTransport handler that remembers requests and replays one response."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


# ---------- OpenAI ----------


async def test_openai_request_and_response():
    recorder = Recorder(httpx.Response(200, json=OPENAI_REPLY))
    provider = make_provider(OpenAIProvider, recorder, openai_api_key="sk-test")

    reply = await provider.chat_messages([ChatMessage.system("Be brief"), ChatMessage.user("Hi")])

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url == "https://api.openai.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert recorder.body == {
        "model": "gpt-4o-mini",
        "messages": [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Hi"},
        ],
        "max_tokens": 1000,
        "temperature": 0.7,
    }
    assert reply == ChatMessage.assistant("Hello!")
    await provider.aclose()


async def test_openai_full_response_and_null_content():
    payload = dict(OPENAI_REPLY)
    payload["choices"] = [
        {"index": 0, "message": {"role": "assistant", "content": None}, "finish_reason": "length"}
    ]
    provider = make_provider(OpenAIProvider, Recorder(httpx.Response(200, json=payload)), api_key="legacy")

    response = await provider.chat(ChatRequest(model="gpt-4o", messages=[ChatMessage.user("Hi")]))

    assert response.id == "chatcmpl-123"
    assert response.first_content == ""
    assert response.choices[0].finish_reason == "length"
    assert response.created_at.year == 2023


async def test_legacy_key_and_base_url_apply_to_active_provider():
    recorder = Recorder(httpx.Response(200, json=OPENAI_REPLY))
    provider = make_provider(
        OpenAIProvider, recorder, api_key="legacy-key", base_url="http://proxy.local/v1/"
    )

    await provider.chat_messages([ChatMessage.user("Hi")])

    assert recorder.requests[0].url == "http://proxy.local/v1/chat/completions"
    assert recorder.requests[0].headers["Authorization"] == "Bearer legacy-key"


async def test_missing_key_fails_before_any_request():
    recorder = Recorder(httpx.Response(200, json=OPENAI_REPLY))
    provider = make_provider(OpenAIProvider, recorder)

    with pytest.raises(ConfigurationError, match="openai_api_key"):
        await provider.chat_messages([ChatMessage.user("Hi")])
    assert recorder.requests == []


# ---------- Anthropic ----------


async def test_anthropic_hoists_system_messages():
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "id": "msg_01",
                "type": "message",
                "role": "assistant",
                "model": "claude-3-5-haiku-latest",
                "content": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}],
                "stop_reason": "end_turn",
            },
        )
    )
    provider = make_provider(
        AnthropicProvider, recorder, anthropic_api_key="sk-ant", temperature="1.5"
    )

    response = await provider.chat(
        ChatRequest(
            model="claude-3-5-haiku-latest",
            messages=[
                ChatMessage.system("Rule one"),
                ChatMessage.user("Hello"),
                ChatMessage.system("Rule two"),
            ],
            temperature=1.5,
        )
    )

    request = recorder.requests[0]
    assert request.url == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant"
    assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
    assert "Authorization" not in request.headers
    assert recorder.body == {
        "model": "claude-3-5-haiku-latest",
        "messages": [{"role": "user", "content": "Hello"}],
        "max_tokens": 4000,
        "system": "Rule one\n\nRule two",
        "temperature": 1.0,
    }
    assert response.first_content == "Hi there"
    assert response.choices[0].finish_reason == "end_turn"


# ---------- Gemini ----------


async def test_gemini_key_in_query_and_role_mapping():
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "candidates": [
                    {"content": {"role": "model", "parts": [{"text": "Bonjour"}]}, "finishReason": "STOP"}
                ]
            },
        )
    )
    provider = make_provider(GeminiProvider, recorder, gemini_api_key="g-key")

    reply = await provider.chat_messages(
        [ChatMessage.system("Speak French"), ChatMessage.user("Hi"), ChatMessage.assistant("Salut")]
    )

    request = recorder.requests[0]
    assert request.url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
    assert request.url.params["key"] == "g-key"
    assert [c["role"] for c in recorder.body["contents"]] == ["user", "user", "model"]
    assert recorder.body["contents"][0]["parts"] == [{"text": "Speak French"}]
    assert recorder.body["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 2048}
    assert reply.content == "Bonjour"


async def test_http_log_lines_never_include_the_query_string(caplog):
    caplog.set_level(logging.INFO, logger="agent_llm")
    configure_logging("INFO", {"connection": {"http_requests": True}})
    recorder = Recorder(
        httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})
    )
    provider = make_provider(GeminiProvider, recorder, gemini_api_key="secret-gemini-key")

    await provider.chat_messages([ChatMessage.user("Hi")])

    assert "🔌 HTTP POST" in caplog.text
    assert "secret-gemini-key" not in caplog.text


# ---------- Ollama ----------


async def test_ollama_needs_no_key():
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "model": "llama3.2",
                "message": {"role": "assistant", "content": "hey"},
                "done": True,
                "done_reason": "stop",
            },
        )
    )
    provider = make_provider(OllamaProvider, recorder)

    reply = await provider.chat_messages([ChatMessage.user("Hi")])

    request = recorder.requests[0]
    assert request.url == "http://localhost:11434/api/chat"
    assert "Authorization" not in request.headers
    assert recorder.body == {
        "model": "llama3.2",
        "messages": [{"role": "user", "content": "Hi"}],
        "stream": False,
        "options": {"temperature": 0.7, "num_predict": 2048},
    }
    assert reply.content == "hey"
    assert provider.request_timeout() == 120.0


async def test_ollama_reachability_and_installed_models():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(
            200, json={"models": [{"name": "llama3.2:latest"}, {"name": "mistral:7b"}]}
        )

    provider = make_provider(OllamaProvider, handler, ollama_base_url="http://gpu-box:11434")

    assert await provider.check_reachable()
    installed = await provider.list_installed_models()
    assert installed == {"llama3.2:latest", "llama3.2", "mistral:7b"}
    assert await provider.available_models() == frozenset(installed)


async def test_ollama_unreachable_falls_back_to_static_models():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_provider(OllamaProvider, handler)

    assert not await provider.check_reachable()
    assert await provider.list_installed_models() == set()
    assert "llama3.2" in await provider.available_models()


# ---------- error taxonomy ----------


async def test_non_success_status_is_a_network_error():
    recorder = Recorder(httpx.Response(401, text='{"error": "invalid api key"}'))
    provider = make_provider(OpenAIProvider, recorder, openai_api_key="sk-bad")

    with pytest.raises(NetworkError) as exc_info:
        await provider.chat_messages([ChatMessage.user("Hi")])

    error = exc_info.value
    assert error.provider == "openai"
    assert error.status_code == 401
    assert "invalid api key" in str(error)


async def test_invalid_json_is_a_parse_error_with_raw_body():
    recorder = Recorder(httpx.Response(200, text="<html>gateway oops</html>"))
    provider = make_provider(AnthropicProvider, recorder, anthropic_api_key="sk-ant")

    with pytest.raises(ParseError) as exc_info:
        await provider.chat_messages([ChatMessage.user("Hi")])

    assert exc_info.value.raw_body == "<html>gateway oops</html>"
    assert "<html>gateway oops</html>" in str(exc_info.value)


@pytest.mark.parametrize(
    "payload",
    [
        {"unexpected": True},
        {"id": "x", "choices": []},
        {"id": "x", "choices": [{"message": {"role": "user", "content": "echo"}}]},
        [1, 2, 3],
    ],
)
async def test_unexpected_shapes_are_parse_errors(payload):
    provider = make_provider(
        OpenAIProvider, Recorder(httpx.Response(200, json=payload)), openai_api_key="sk"
    )

    with pytest.raises(ParseError):
        await provider.chat_messages([ChatMessage.user("Hi")])


async def test_connection_failure_is_a_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_provider(GeminiProvider, handler, gemini_api_key="g")

    with pytest.raises(NetworkError) as exc_info:
        await provider.chat_messages([ChatMessage.user("Hi")])
    assert exc_info.value.status_code is None


async def test_timeout_is_distinct_from_network_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    provider = make_provider(OpenAIProvider, handler, openai_api_key="sk", timeout_seconds="2")

    assert provider.request_timeout() == 2.0
    with pytest.raises(LLMTimeoutError):
        await provider.chat_messages([ChatMessage.user("Hi")])


async def test_close_waits_for_in_flight_requests():
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return httpx.Response(200, json=OPENAI_REPLY)

    provider = make_provider(OpenAIProvider, handler, openai_api_key="sk")
    task = asyncio.create_task(provider.chat_messages([ChatMessage.user("Hi")]))
    await asyncio.sleep(0.01)

    await provider.aclose()
    assert provider.client is not None

    release.set()
    reply = await task
    assert reply.content == "Hello!"
    assert provider.client is None


def test_supports_model_follows_registry():
    provider = AnthropicProvider(registry=ModelRegistry())
    assert provider.supports_model("claude-3-5-haiku-latest")
    assert not provider.supports_model("gpt-4o")
    assert provider.default_model == "claude-3-5-haiku-latest"
    assert "anthropic_api_key" not in provider.config_summary()
