"""structlog processors used by the meownocode logging pipeline."""
from typing import Any

from .context import get_context

# Config keys that must never reach a log line verbatim.
SENSITIVE_KEYS = frozenset({
    "api_key",
    "secret_access_key",
    "access_key_id",
    "connection_string",
    "password",
})


def inject_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add values bound via ``bind_context()`` without overriding explicit ones."""
    for key, value in get_context().items():
        if key not in event_dict:
            event_dict[key] = value
    return event_dict


def add_logger_name(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add a ``logger`` field naming the module that produced the event."""
    record = event_dict.get("_record")
    if record is not None:
        event_dict["logger"] = record.name
    elif hasattr(logger, "name"):
        event_dict["logger"] = logger.name
    return event_dict


def mask_secrets(value: Any) -> Any:
    """Copy of ``value`` with credential entries of nested dicts set to ``***``."""
    if isinstance(value, dict):
        return {
            k: ("***" if k in SENSITIVE_KEYS and v else mask_secrets(v))
            for k, v in value.items()
        }
    return value


def redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask credentials in top-level keys and in nested storage config dicts.

    Adapters log their config when they connect; S3 keys, API tokens and
    Postgres DSNs are replaced by ``***``.
    """
    for key, value in list(event_dict.items()):
        if key in SENSITIVE_KEYS and value:
            event_dict[key] = "***"
        elif isinstance(value, dict):
            event_dict[key] = mask_secrets(value)
    return event_dict

