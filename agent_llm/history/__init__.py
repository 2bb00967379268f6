"""Per-caller conversation history."""

from __future__ import annotations

from .caller_history import CallerHistoryManager

__all__ = ["CallerHistoryManager"]
