"""
Contractbook - Structured Logging

structlog on top of the stdlib logging backend. Events are snake_case names
with keyword context; credentials are masked before anything is rendered,
including explorer API keys embedded in URLs.
"""

from __future__ import annotations

import logging
import re
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

SERVICE_NAME = "contractbook-verifier"
SERVICE_VERSION = "0.1.0"

REDACTED = "[REDACTED]"

# Substrings marking a key whose value must never be logged
SENSITIVE_KEY_PARTS = frozenset({
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "bearer",
    "private_key",
    "access_key",
})

_APIKEY_QUERY_PATTERN = re.compile(r"(apikey=)[^&\s]+", re.IGNORECASE)

_NOISY_LOGGERS = ("httpx", "httpcore", "web3", "neo4j", "botocore", "urllib3")

_MAX_DEPTH = 10


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Tag every entry with the service name and version."""
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = SERVICE_VERSION
    return event_dict


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and any(part in key.lower() for part in SENSITIVE_KEY_PARTS)


def _redact(value: Any, depth: int = 0) -> Any:
    if depth > _MAX_DEPTH:
        return value
    if isinstance(value, dict):
        return {k: REDACTED if _is_sensitive(k) else _redact(v, depth + 1) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_redact(item, depth + 1) for item in value]
    if isinstance(value, str):
        return _APIKEY_QUERY_PATTERN.sub(rf"\1{REDACTED}", value)
    return value


def sanitize_sensitive_data(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask credential-looking keys and apikey query parameters."""
    sanitized: EventDict = _redact(event_dict)
    return sanitized


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines instead of the console format
    """
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_service_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.contextvars.merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            sanitize_sensitive_data,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """Attach context (e.g. the CLI command) to every later entry."""
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def log_duration(logger: Any, operation: str, **context: Any) -> Iterator[None]:
    """
    Log ``<operation>_completed`` or ``<operation>_failed`` with its duration.

    Usage:
        with log_duration(logger, "contract_verification", chain="bsc-testnet"):
            result = await engine.verify(...)
    """
    start = time.monotonic()
    try:
        yield
    except Exception as e:
        logger.error(
            f"{operation}_failed",
            duration_ms=round((time.monotonic() - start) * 1000, 2),
            error=str(e),
            **context,
        )
        raise
    logger.info(
        f"{operation}_completed",
        duration_ms=round((time.monotonic() - start) * 1000, 2),
        **context,
    )


__all__ = [
    "add_service_info",
    "bind_context",
    "configure_logging",
    "log_duration",
    "sanitize_sensitive_data",
]
