"""
Caller History Manager

Keeps one conversation per caller. Entries are keyed weakly, so a caller
that the host destroys takes its history with it and the manager never
keeps a caller alive.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Iterable
from typing import Any

from ..chat.models import ChatMessage

logger = logging.getLogger(__name__)


class CallerHistoryManager:
    """Per-caller message lists, isolated from each other."""

    def __init__(self) -> None:
        self._histories: weakref.WeakKeyDictionary[Any, list[ChatMessage]] = (
            weakref.WeakKeyDictionary()
        )
        self._lock = threading.Lock()

    def get(self, caller: Any) -> list[ChatMessage]:
        """Return a copy of the caller's history, creating it on first access."""
        with self._lock:
            history = self._histories.get(caller)
            if history is None:
                history = self._histories[caller] = []
            return list(history)

    def set(self, caller: Any, messages: Iterable[ChatMessage]) -> None:
        with self._lock:
            self._histories[caller] = list(messages)

    def append(self, caller: Any, message: ChatMessage) -> None:
        with self._lock:
            self._histories.setdefault(caller, []).append(message)

    def insert_after(self, caller: Any, anchor: ChatMessage, message: ChatMessage) -> bool:
        """
        Insert ``message`` right after ``anchor`` (matched by identity).

        Returns False when the caller has no history or ``anchor`` is no
        longer in it, in which case nothing is inserted.
        """
        with self._lock:
            history = self._histories.get(caller)
            if history is None:
                return False
            for index, existing in enumerate(history):
                if existing is anchor:
                    history.insert(index + 1, message)
                    return True
            return False

    def clear(self, caller: Any) -> None:
        with self._lock:
            self._histories.pop(caller, None)

    def clear_all(self) -> None:
        """Forget every caller's history."""
        with self._lock:
            count = len(self._histories)
            self._histories.clear()
        logger.debug(f"Cleared conversation history for {count} caller(s)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._histories)
