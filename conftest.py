"""Shared fixtures: an in-process provider and isolated registries/stores."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from collections.abc import Sequence

import pytest

from agent_llm.chat.models import ChatMessage, ChatRequest, ChatResponse
from agent_llm.chat.runner import AsyncRunner
from agent_llm.clients.base import LLMProvider
from agent_llm.clients.model_registry import ModelRegistry
from agent_llm.config import ConfigStore
from agent_llm.extension import LLMExtension
from agent_llm.logging_utils import PACKAGE_LOGGER, reset_logging_features

CHOICE_MARKER = "You must respond with EXACTLY ONE"


class DeterministicTestProvider(LLMProvider):
    """
    Answers without touching the network.

    Choice prompts are answered with the first numbered option; anything
    else is echoed back as ``stub:<last user message>``. A ``delay_seconds``
    config key slows every reply down.
    """

    provider_name = "test"

    def __init__(self) -> None:
        self._config: dict[str, str] = {}
        self.requests: list[ChatRequest] = []

    @property
    def default_model(self) -> str:
        return "test-model"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        delay = float(self._config.get("delay_seconds", "0"))
        if delay:
            await asyncio.sleep(delay)

        last_user = next((m.content for m in reversed(request.messages) if m.role == "user"), "")
        if CHOICE_MARKER in last_user:
            match = re.search(r"^1\. (.+)$", last_user, re.MULTILINE)
            reply = match.group(1) if match else ""
        else:
            reply = f"stub:{last_user}"
        return ChatResponse.simple("test-1", request.model, ChatMessage.assistant(reply))

    async def chat_messages(self, messages: Sequence[ChatMessage]) -> ChatMessage:
        request = ChatRequest(model=self._config.get("model", self.default_model), messages=list(messages))
        response = await self.chat(request)
        return response.choices[0].message

    def set_config(self, key: str, value: str) -> None:
        self._config[key] = value

    def get_config(self, key: str) -> str | None:
        return self._config.get(key)

    def validate_config(self) -> None:
        pass

    def supports_model(self, model: str) -> bool:
        return True


class Caller:
    """Stand-in for a host execution unit; plain objects are weak-referenceable."""

    def __init__(self, name: str = "turtle") -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"Caller({self.name!r})"


def always_ready(name, config, **kwargs) -> None:
    return None


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging_features()
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.NOTSET)


@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry()


@pytest.fixture
def store() -> ConfigStore:
    return ConfigStore.with_defaults(environ={})


@pytest.fixture
def runner():
    runner = AsyncRunner(name="agent-llm-test-loop")
    yield runner
    runner.shutdown()


@pytest.fixture
def created_providers() -> list[DeterministicTestProvider]:
    return []


@pytest.fixture
def extension(store, registry, runner, created_providers):
    def factory(config_store, **kwargs):
        provider = DeterministicTestProvider()
        provider.load_config(config_store.to_dict())
        created_providers.append(provider)
        return provider

    ext = LLMExtension(
        store=store,
        registry=registry,
        runner=runner,
        readiness_check=always_ready,
        provider_factory=factory,
        rng=random.Random(7),
    )
    yield ext
    ext.close()
