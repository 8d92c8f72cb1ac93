"""User notifications and in-process application events.

``Notifier`` is what the storage layer uses to tell the user something
happened (the toast role in a UI). ``EventBus`` lets other parts of the
application react to data, storage and settings changes.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from .logging import get_logger

logger = get_logger(__name__)

DATA_CHANGED = "app:dataChanged"
STORAGE_CHANGED = "app:storageChanged"
SETTINGS_CHANGED = "app:settingsChanged"


@runtime_checkable
class Notifier(Protocol):
    """Protocol for user-facing notifications."""

    def success(self, message: str, **details: Any) -> None: ...

    def info(self, message: str, **details: Any) -> None: ...

    def warning(self, message: str, **details: Any) -> None: ...

    def error(self, message: str, **details: Any) -> None: ...


class LoggingNotifier:
    """Default notifier: writes notifications to the structured log."""

    def __init__(self, logger_name: str = "meownocode.notifications"):
        self._logger = get_logger(logger_name)

    def success(self, message: str, **details: Any) -> None:
        self._logger.info(message, notification="success", **details)

    def info(self, message: str, **details: Any) -> None:
        self._logger.info(message, notification="info", **details)

    def warning(self, message: str, **details: Any) -> None:
        self._logger.warning(message, notification="warning", **details)

    def error(self, message: str, **details: Any) -> None:
        self._logger.error(message, notification="error", **details)


@dataclass
class RecordingNotifier:
    """Keeps ``(level, message)`` pairs; used by tests."""
    messages: list[tuple[str, str]] = field(default_factory=list)

    def success(self, message: str, **details: Any) -> None:
        self.messages.append(("success", message))

    def info(self, message: str, **details: Any) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str, **details: Any) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str, **details: Any) -> None:
        self.messages.append(("error", message))

    def levels(self) -> list[str]:
        return [level for level, _ in self.messages]


@dataclass(frozen=True)
class AppEvent:
    name: str
    detail: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[AppEvent], Any]


class EventBus:
    """Named in-process events.

    Handlers may be plain functions or coroutine functions. A failing handler
    is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, name: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``name``; returns an unsubscribe callable."""
        self._handlers.setdefault(name, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def dispatch(self, name: str, **detail: Any) -> AppEvent:
        event = AppEvent(name=name, detail=detail)
        for handler in list(self._handlers.get(name, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("Event handler failed", event_name=name, exc_info=True)
        return event
