"""
agent-llm

Provider-agnostic chat core for hosts that run many short-lived callers.
"""

from __future__ import annotations

from .chat.models import ChatMessage, ChatRequest, ChatResponse, Choice, ProviderStatus
from .chat.runner import AsyncRunner, ChatHandle
from .config import ConfigStore
from .errors import (
    ConfigurationError,
    InvalidInputError,
    LLMError,
    LLMTimeoutError,
    NetworkError,
    ParseError,
    ProviderError,
)
from .extension import LLMExtension
from .history import CallerHistoryManager

__version__ = "0.1.0"

__all__ = [
    "AsyncRunner",
    "CallerHistoryManager",
    "ChatHandle",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "Choice",
    "ConfigStore",
    "ConfigurationError",
    "InvalidInputError",
    "LLMError",
    "LLMExtension",
    "LLMTimeoutError",
    "NetworkError",
    "ParseError",
    "ProviderError",
    "ProviderStatus",
]
