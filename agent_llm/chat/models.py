"""
Chat Data Models

Normalized request/response types shared by every provider. Each provider maps
these onto its own wire format and back, so nothing outside ``agent_llm.clients``
ever sees a provider-specific payload.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["system", "user", "assistant"]


# ==============================================================================
# CORE CHAT MESSAGES
# ==============================================================================


class ChatMessage(BaseModel):
    """One message in a conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(role="assistant", content=content)

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role="system", content=content)

    def as_pair(self) -> tuple[str, str]:
        return self.role, self.content


# ==============================================================================
# REQUEST/RESPONSE MODELS
# ==============================================================================


class ChatRequest(BaseModel):
    """A chat completion request, built fresh for every call."""

    model: str
    messages: list[ChatMessage]
    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)


class Choice(BaseModel):
    """One response alternative returned by a provider."""

    index: int = 0
    message: ChatMessage
    finish_reason: str = "stop"


class ChatResponse(BaseModel):
    """A complete chat response. Only the first choice is consumed."""

    id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    model: str
    choices: list[Choice] = Field(default_factory=list)

    @model_validator(mode="after")
    def _first_choice_is_assistant(self) -> ChatResponse:
        if self.choices and self.choices[0].message.role != "assistant":
            raise ValueError(
                f"First response message must have role 'assistant', "
                f"got '{self.choices[0].message.role}'"
            )
        return self

    @property
    def first_message(self) -> ChatMessage | None:
        return self.choices[0].message if self.choices else None

    @property
    def first_content(self) -> str | None:
        message = self.first_message
        return message.content if message else None

    @classmethod
    def simple(cls, id: str, model: str, message: ChatMessage) -> ChatResponse:
        """Create a response holding a single ``stop`` choice."""
        return cls(id=id, model=model, choices=[Choice(index=0, message=message)])


# ==============================================================================
# DISCOVERY MODELS
# ==============================================================================


class ProviderStatus(BaseModel):
    """Readiness of one provider, as reported to the host."""

    name: str
    ready: bool
    active: bool = False
    detail: str = ""

    def as_list(self) -> list[str | bool]:
        return [self.name, self.ready, self.active, self.detail]
