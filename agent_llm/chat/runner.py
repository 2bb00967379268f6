"""
Async Execution Wrapper

Host callers are synchronous, so provider coroutines run on a private event
loop in a background thread. Work is scheduled the moment it is submitted;
the caller collects the result later through a ``ChatHandle``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import weakref
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any, TypeVar

from ..errors import LLMError, LLMTimeoutError, ProviderError
from ..logging_utils import log_llm_reply
from .models import ChatMessage

if TYPE_CHECKING:
    from ..history import CallerHistoryManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncRunner:
    """A daemon thread driving one asyncio event loop, started lazily."""

    def __init__(self, name: str = "agent-llm-loop") -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                ready = threading.Event()

                def _run() -> None:
                    asyncio.set_event_loop(loop)
                    loop.call_soon(ready.set)
                    loop.run_forever()

                thread = threading.Thread(target=_run, name=self._name, daemon=True)
                thread.start()
                ready.wait()
                self._loop, self._thread = loop, thread
                logger.debug(f"Started event loop thread '{self._name}'")
            return self._loop

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule ``coro`` immediately and return a future for its result."""
        loop = self._ensure_loop()
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run ``coro`` to completion, blocking for at most ``timeout`` seconds.

        Raises:
            LLMTimeoutError: If no result arrives in time; the work is cancelled.
        """
        future = self.submit(coro)
        try:
            return future.result(timeout)
        except LLMError:
            raise
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise LLMTimeoutError(f"No result within {timeout}s") from e

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the loop and join the thread. The runner restarts on next use."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop, self._thread = None, None
        if loop is None or thread is None:
            return

        async def _cancel_pending() -> None:
            current = asyncio.current_task()
            tasks = [t for t in asyncio.all_tasks() if t is not current]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        try:
            asyncio.run_coroutine_threadsafe(_cancel_pending(), loop).result(timeout)
        except (concurrent.futures.TimeoutError, RuntimeError) as e:
            logger.warning(f"Pending tasks did not finish during shutdown: {e}")
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        loop.close()
        logger.debug(f"Stopped event loop thread '{self._name}'")


class ChatHandle:
    """
    A chat turn that is already running.

    ``resolve`` waits for the reply and records it in the caller's history
    directly after the user message it answers, so handles resolved out of
    order still leave every reply next to its own question.
    """

    def __init__(
        self,
        future: concurrent.futures.Future[ChatMessage],
        caller: Any,
        user_message: ChatMessage,
        history: CallerHistoryManager,
        provider: str = "",
        model: str = "",
        default_timeout: float | None = None,
    ) -> None:
        self._future = future
        self._caller_ref = weakref.ref(caller)
        self._user_message = user_message
        self._history = history
        self._provider = provider
        self._model = model
        self._default_timeout = default_timeout
        self._lock = threading.Lock()
        self._result: str | None = None
        self._error: LLMError | None = None

    @property
    def user_message(self) -> ChatMessage:
        return self._user_message

    def done(self) -> bool:
        return self._future.done()

    def resolve(self, timeout: float | None = None) -> str:
        """
        Wait at most ``timeout`` seconds (or the handle's default timeout)
        for the reply and return its text.

        Resolving again returns the same text (or raises the same error)
        without touching history a second time.

        Raises:
            LLMTimeoutError: If the reply did not arrive in time.
            LLMError: Whatever the provider raised.
        """
        if timeout is None:
            timeout = self._default_timeout
        with self._lock:
            if self._result is not None:
                return self._result
            if self._error is not None:
                raise self._error

            try:
                reply = self._future.result(timeout)
            except LLMError as e:
                # Includes LLMTimeoutError raised by the provider itself
                self._error = e
                raise
            except concurrent.futures.TimeoutError:
                self._future.cancel()
                self._error = LLMTimeoutError(
                    f"No reply from {self._provider or 'provider'} within {timeout}s"
                )
                logger.warning(str(self._error))
                raise self._error from None
            except concurrent.futures.CancelledError:
                self._error = LLMTimeoutError("Chat request was cancelled before a reply arrived")
                raise self._error from None
            except Exception as e:
                logger.error(f"Unexpected error during chat: {e}")
                self._error = ProviderError(self._provider or "unknown", f"Unexpected error: {e}")
                raise self._error from e

            self._result = reply.content
            self._record(reply)
            log_llm_reply(self._provider, self._model, reply.content, "chat")
            return self._result

    def _record(self, reply: ChatMessage) -> None:
        caller = self._caller_ref()
        if caller is None:
            logger.debug("Caller was discarded before its reply arrived; not recording reply")
            return
        if not self._history.insert_after(caller, self._user_message, reply):
            logger.debug("Conversation was reset before the reply arrived; not recording reply")
