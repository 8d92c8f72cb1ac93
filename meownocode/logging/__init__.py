"""Structured logging for meownocode.

Built on structlog with a stdlib bridge:
- Human-readable console output for development, JSON for production
- Context propagation across async boundaries (``bind_context``)
- Per-module log level control and file rotation
- Credentials in storage configs are masked before rendering

Quick Start:
    >>> from meownocode.logging import configure_logging, LogConfig, LogLevel
    >>> configure_logging(LogConfig(level=LogLevel.DEBUG))
    >>> logger = get_logger(__name__)
    >>> logger.info("Created memo", memo_id="1700000000000-abc", backend="localdb")
"""
import structlog

from .config import (
    LogConfig,
    LogFormat,
    LogLevel,
    configure_logging,
    ensure_configured,
    is_configured,
)
from .context import bind_context, clear_context, get_context, unbind_context


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring defaults on first use.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.
    """
    ensure_configured()
    return structlog.get_logger(name)


__all__ = [
    # Configuration
    "LogConfig",
    "LogFormat",
    "LogLevel",
    "configure_logging",
    "is_configured",
    # Logger
    "get_logger",
    # Context management
    "bind_context",
    "unbind_context",
    "clear_context",
    "get_context",
]
