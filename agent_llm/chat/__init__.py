"""
Chat Module

Normalized message types, the background runner that executes chat turns,
and constrained-choice resolution.
"""

from __future__ import annotations

from .choice import build_choice_prompt, resolve_choice
from .models import ChatMessage, ChatRequest, ChatResponse, Choice, ProviderStatus

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "Choice",
    "ProviderStatus",
    "build_choice_prompt",
    "resolve_choice",
]
