"""
Logging Utilities

Shared logging configuration with feature control. Operational messages always
go through the module loggers; chatty content logging (LLM replies, per-request
HTTP lines) is gated behind feature flags so it can be switched on at runtime.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "agent_llm"

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Module-to-logger mapping for feature flags
MODULE_FEATURES = {
    "chat": {
        "loggers": ["agent_llm.chat", "agent_llm.extension"],
        "features": ["llm_replies"],
    },
    "connection": {
        "loggers": ["agent_llm.clients"],
        "features": ["http_requests"],
    },
}

_module_features: dict[str, dict[str, bool]] = {}


def configure_logging(
    level: str | None = "WARNING",
    features: dict[str, dict[str, bool]] | None = None,
) -> None:
    """
    Apply a log level to the package logger and store feature flags.

    Child loggers inherit the level, so only the package root is touched.
    Unknown level names fall back to WARNING; ``None`` leaves the level alone.
    """
    if level is not None:
        level_value = LEVEL_MAP.get(level.upper().strip(), logging.WARNING)
        logging.getLogger(PACKAGE_LOGGER).setLevel(level_value)

    for module_name, flags in (features or {}).items():
        known = MODULE_FEATURES.get(module_name, {}).get("features", [])
        unknown = [name for name in flags if name not in known]
        if unknown:
            logger.warning(f"Ignoring unknown logging features for '{module_name}': {unknown}")
        _module_features[module_name] = {k: v for k, v in flags.items() if k in known}


def should_log_feature(module: str, feature: str) -> bool:
    """Check if a specific logging feature is enabled."""
    return _module_features.get(module, {}).get(feature, False)


def reset_logging_features() -> None:
    _module_features.clear()


def log_llm_reply(
    provider: str,
    model: str,
    content: str,
    context: str,
    truncate_length: int = 500,
) -> None:
    """
    Log an LLM reply when the ``chat.llm_replies`` feature is on.

    Args:
        provider: Provider that produced the reply
        model: Model identifier reported for the reply
        content: Reply text
        context: Descriptive context for the log entry
        truncate_length: Maximum number of content characters to log
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    if content and len(content) > truncate_length:
        content = content[:truncate_length] + "..."

    log_parts = [f"LLM Reply ({context}):", f"Content: {content}", f"Model: {provider}/{model}"]
    logging.getLogger("agent_llm.chat").info(" | ".join(log_parts))


def log_http_request(
    provider: str,
    method: str,
    path: str,
    status_code: int | None = None,
    duration_ms: float | None = None,
) -> None:
    """Log HTTP request details if the ``connection.http_requests`` feature is on."""
    if not should_log_feature("connection", "http_requests"):
        return

    message_parts = [f"🔌 HTTP {method} {path} ({provider})"]
    if status_code is not None:
        message_parts.append(f"Status: {status_code}")
    if duration_ms is not None:
        message_parts.append(f"Duration: {duration_ms:.2f}ms")

    logging.getLogger("agent_llm.clients").info(" | ".join(message_parts))
