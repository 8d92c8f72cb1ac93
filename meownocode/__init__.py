"""
MeowNocode storage layer

One asynchronous interface for memos, attachments and user settings over
interchangeable backends: browser-style local files, SQLite, Cloudflare
Workers, Supabase/Postgres, S3 and memory.

Main exports:
    - AppContext: Owns the store, factory, manager and data service
    - AppConfig: Settings read from MEOWNOCODE_* environment variables
    - DataService: Memo CRUD with notifications and change events
    - StorageManager: Active-backend selection, fallback and migration

Example:
    >>> from meownocode import AppConfig, AppContext
    >>> async with AppContext.from_config(AppConfig.from_env()) as ctx:
    ...     memo = await ctx.data_service.create_memo({"content": "hello"})
    ...     await ctx.data_service.switch_storage_type("memory")
"""

__version__ = "0.1.0"

from .config import AppConfig
from .context import AppContext
from .events import (
    DATA_CHANGED,
    SETTINGS_CHANGED,
    STORAGE_CHANGED,
    AppEvent,
    EventBus,
    LoggingNotifier,
    Notifier,
    RecordingNotifier,
)
from .service import DataService
from .storage import (
    Memo,
    Attachment,
    UserSettings,
    StorageType,
    StorageFactory,
    StorageManager,
    StorageError,
)

__all__ = [
    "__version__",
    # Wiring
    "AppConfig",
    "AppContext",
    "DataService",
    # Events and notifications
    "AppEvent",
    "EventBus",
    "Notifier",
    "LoggingNotifier",
    "RecordingNotifier",
    "DATA_CHANGED",
    "STORAGE_CHANGED",
    "SETTINGS_CHANGED",
    # Storage
    "Memo",
    "Attachment",
    "UserSettings",
    "StorageType",
    "StorageFactory",
    "StorageManager",
    "StorageError",
]
