"""Storage module for meownocode.

This module provides one storage abstraction over several backends:
- Entity dataclasses (Memo, Attachment, UserSettings)
- The abstract StorageAdapter interface
- Implementations for browser-style local files, SQLite, Cloudflare,
  Supabase/Postgres, S3 and memory
- StorageFactory to build adapters by type and StorageManager to own the
  active one

Usage:
    from meownocode.storage import StorageFactory, StorageManager, FileLocalStore

    manager = StorageManager(StorageFactory(), FileLocalStore("./data/local_storage.json"))
    await manager.initialize()

    memo = await manager.create_memo({"content": "hello", "tags": ["inbox"]})
    pinned = await manager.get_pinned_memos()

    # Move everything to S3
    await manager.switch_storage_type("s3", {"bucket": "my-notes"})

Extending:
    from meownocode.storage import StorageAdapter

    class MyAdapter(StorageAdapter):
        async def initialize(self): ...
        async def create_memo(self, data): ...
        # ... implement other abstract methods
"""

# Entity dataclasses and result types
from .base import (
    Attachment,
    BatchOperation,
    BatchResult,
    ExportData,
    ImportResult,
    Memo,
    ValidationResult,
    MAX_CONTENT_LENGTH,
)
from .settings import UserSettings

# Abstract base class
from .base import StorageAdapter

# Configuration
from .config import (
    StorageType,
    StorageConfig,
    BrowserConfig,
    LocalDBConfig,
    CloudflareConfig,
    SupabaseConfig,
    S3Config,
    MemoryConfig,
)

# Exceptions
from .exceptions import (
    StorageError,
    StorageConnectionError,
    StorageNotFoundError,
    StorageValidationError,
    StorageConfigError,
    StorageOperationError,
    StorageRequestError,
    StorageUnavailableError,
)

# Key/value store
from .local_store import LocalStore, FileLocalStore, MemoryLocalStore

# Factory and manager
from .factory import ConnectionTestResult, StorageFactory, StorageTypeInfo, STORAGE_TYPES
from .manager import ManagerState, StorageManager

# Adapter implementations
from .adapters import (
    MemoryStorageAdapter,
    BrowserStorageAdapter,
    LocalDBAdapter,
    CloudflareStorageAdapter,
    SupabaseStorageAdapter,
    S3StorageAdapter,
)

__all__ = [
    # Entities
    "Attachment",
    "BatchOperation",
    "BatchResult",
    "ExportData",
    "ImportResult",
    "Memo",
    "UserSettings",
    "ValidationResult",
    "MAX_CONTENT_LENGTH",
    # Abstract base
    "StorageAdapter",
    # Configuration
    "StorageType",
    "StorageConfig",
    "BrowserConfig",
    "LocalDBConfig",
    "CloudflareConfig",
    "SupabaseConfig",
    "S3Config",
    "MemoryConfig",
    # Exceptions
    "StorageError",
    "StorageConnectionError",
    "StorageNotFoundError",
    "StorageValidationError",
    "StorageConfigError",
    "StorageOperationError",
    "StorageRequestError",
    "StorageUnavailableError",
    # Key/value store
    "LocalStore",
    "FileLocalStore",
    "MemoryLocalStore",
    # Factory and manager
    "ConnectionTestResult",
    "StorageFactory",
    "StorageTypeInfo",
    "STORAGE_TYPES",
    "ManagerState",
    "StorageManager",
    # Adapters
    "MemoryStorageAdapter",
    "BrowserStorageAdapter",
    "LocalDBAdapter",
    "CloudflareStorageAdapter",
    "SupabaseStorageAdapter",
    "S3StorageAdapter",
]
