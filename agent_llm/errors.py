"""
Error taxonomy for the LLM core.

Every primitive exposed to the host either returns a value or raises one of
these. Provider failures carry the provider name so they can be acted on
without digging through a traceback.
"""

from __future__ import annotations

# Raw bodies can be large HTML error pages; keep messages readable.
MAX_BODY_IN_MESSAGE = 2000


class LLMError(Exception):
    """Base class for all errors raised by agent_llm."""


class ConfigurationError(LLMError):
    """Missing or invalid configuration (provider, credential, model, file)."""


class InvalidInputError(LLMError, ValueError):
    """Malformed input handed in by the host (history pairs, empty choices)."""


class ProviderError(LLMError):
    """A provider call failed after configuration was validated."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class NetworkError(ProviderError):
    """Connection failure or non-success HTTP status."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(provider, message)
        self.status_code = status_code


class ParseError(ProviderError):
    """The provider answered, but with a payload we could not understand."""

    def __init__(self, provider: str, message: str, raw_body: str = "") -> None:
        body = raw_body
        if len(body) > MAX_BODY_IN_MESSAGE:
            body = body[:MAX_BODY_IN_MESSAGE] + "..."
        full = f"{message}\nResponse: {body}" if body else message
        super().__init__(provider, full)
        self.raw_body = raw_body


class LLMTimeoutError(LLMError, TimeoutError):
    """No answer arrived within the allowed time."""
