"""
Civic Federation - Structured Logging

structlog setup for the engine. Console rendering in development, JSON in
production. Proof artifacts, key material and voter identities are
masked before any event reaches a sink.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

SERVICE_NAME = "civic-federation"
SERVICE_VERSION = "1.0.0"

REDACTED = "[REDACTED]"

# Keys compared case-insensitively with underscores removed, so
# ``voter_id`` and ``voterId`` both match.
SENSITIVE_KEYS = frozenset({
    "publickey",
    "privatekey",
    "signingkey",
    "registrationproof",
    "identityproof",
    "competencyproof",
    "chainsignature",
    "encryptedballots",
    "voterid",
    "authorization",
    "apikey",
})

MAX_DEPTH = 8


def _is_sensitive(key: Any) -> bool:
    return str(key).replace("_", "").lower() in SENSITIVE_KEYS


def _mask(value: Any, depth: int) -> Any:
    if depth > MAX_DEPTH:
        return value
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive(k) else _mask(v, depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_mask(item, depth + 1) for item in value]
    return value


# =============================================================================
# Processors
# =============================================================================

def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", SERVICE_VERSION)
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def redact_sensitive_fields(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask proof artifacts, keys and voter ids at any nesting depth."""
    return {
        key: REDACTED if _is_sensitive(key) else _mask(value, 1)
        for key, value in event_dict.items()
    }


# =============================================================================
# Configuration
# =============================================================================

def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    sanitize_logs: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines instead of the console format
        sanitize_logs: Mask sensitive fields
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_service_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if sanitize_logs:
        processors.append(redact_sensitive_fields)
    processors.append(
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level.upper())

    # Node pushes and gateway fetches would otherwise log every request
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# =============================================================================
# Context
# =============================================================================

def bind_context(**kwargs: Any) -> None:
    """Bind values (correlation id, registry ref) onto every later event."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


@contextmanager
def log_duration(
    logger: Any,
    operation: str,
    level: str = "info",
    **extra_context: Any,
) -> Iterator[None]:
    """
    Log ``<operation>_completed`` or ``<operation>_failed`` with elapsed ms.

    Usage:
        with log_duration(logger, "proposal_repository_load", level="debug"):
            proposals, overlays = await repository.load()
    """
    start = time.monotonic()
    try:
        yield
    except Exception as e:
        logger.error(
            f"{operation}_failed",
            duration_ms=round((time.monotonic() - start) * 1000, 2),
            error=str(e),
            **extra_context,
        )
        raise
    getattr(logger, level)(
        f"{operation}_completed",
        duration_ms=round((time.monotonic() - start) * 1000, 2),
        **extra_context,
    )


__all__ = [
    "configure_logging",
    "bind_context",
    "unbind_context",
    "log_duration",
    "redact_sensitive_fields",
]
