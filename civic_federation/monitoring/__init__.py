"""
Civic Federation - Monitoring Module

Structured logging configuration and helpers.
"""

from .logging import (
    bind_context,
    configure_logging,
    log_duration,
    redact_sensitive_fields,
    unbind_context,
)

__all__ = [
    "configure_logging",
    "bind_context",
    "unbind_context",
    "log_duration",
    "redact_sensitive_fields",
]
