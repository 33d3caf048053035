"""
Contractbook Monitoring

Structured logging configuration and helpers.
"""

from contractbook.monitoring.logging import (
    bind_context,
    configure_logging,
    log_duration,
)

__all__ = [
    "configure_logging",
    "bind_context",
    "log_duration",
]
