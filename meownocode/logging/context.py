"""Context management for structured logging.

Values bound here ride along on every log entry emitted from the current
async context. The storage manager binds the active ``storage_type`` once it
is ready, so adapter logs can be traced back to the backend that served them.
"""
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("meownocode_log_context", default={})


def bind_context(**kwargs: Any) -> None:
    """Bind key-value pairs to the current logging context.

    Example:
        >>> from meownocode.logging import bind_context
        >>> bind_context(storage_type="localdb", user_id="default")
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from the current logging context."""
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


def clear_context() -> None:
    """Clear all bound context values."""
    _log_context.set({})


def get_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()
