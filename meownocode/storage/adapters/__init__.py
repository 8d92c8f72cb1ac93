"""Storage adapter implementations.

This module exports all adapter implementations:
- Memory adapter (for testing)
- Browser adapter (local key/value file + blob directory, the fallback)
- LocalDB adapter (single SQLite file, the default)
- Cloudflare adapter (Workers + D1 + R2 HTTP API)
- Supabase adapter (PostgreSQL via asyncpg)
- S3 adapter (S3-compatible object storage)
"""

from .memory import MemoryStorageAdapter
from .browser import BrowserStorageAdapter
from .localdb import LocalDBAdapter
from .cloudflare import CloudflareStorageAdapter
from .postgres import SupabaseStorageAdapter
from .s3 import S3StorageAdapter

__all__ = [
    "MemoryStorageAdapter",
    "BrowserStorageAdapter",
    "LocalDBAdapter",
    "CloudflareStorageAdapter",
    "SupabaseStorageAdapter",
    "S3StorageAdapter",
]
