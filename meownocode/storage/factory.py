"""Storage adapter registry and factory.

The factory maps each ``StorageType`` to its adapter and config classes, builds
and initializes adapters, and caches initialized instances by type and
canonical config so repeated requests share one connection.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any

from .adapters import (
    BrowserStorageAdapter,
    CloudflareStorageAdapter,
    LocalDBAdapter,
    MemoryStorageAdapter,
    S3StorageAdapter,
    SupabaseStorageAdapter,
)
from .base import StorageAdapter, ValidationResult, utc_now_iso
from .config import (
    BaseStorageConfig,
    BrowserConfig,
    CloudflareConfig,
    LocalDBConfig,
    MemoryConfig,
    S3Config,
    StorageType,
    SupabaseConfig,
)
from .exceptions import StorageConfigError
from ..logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StorageTypeInfo:
    """Registry entry describing one backend."""
    type: StorageType
    name: str
    description: str
    adapter_class: type[StorageAdapter]
    config_class: type[BaseStorageConfig]
    requires_config: bool = False
    is_default: bool = False
    disabled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "description": self.description,
            "requires_config": self.requires_config,
            "is_default": self.is_default,
            "disabled": self.disabled,
            "required_fields": list(self.config_class.required_fields),
        }


@dataclass
class ConnectionTestResult:
    """Outcome of ``StorageFactory.test_connection``."""
    type: StorageType | str
    success: bool
    response_time_ms: float | None = None
    stats: dict[str, Any] | None = None
    errors: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value if isinstance(self.type, StorageType) else self.type,
            "success": self.success,
            "response_time_ms": self.response_time_ms,
            "stats": self.stats,
            "errors": list(self.errors),
            "timestamp": self.timestamp,
        }


# Registry mapping
STORAGE_TYPES: dict[StorageType, StorageTypeInfo] = {
    StorageType.BROWSER: StorageTypeInfo(
        type=StorageType.BROWSER,
        name="Browser storage",
        description="Local key/value file plus attachment directory; works offline",
        adapter_class=BrowserStorageAdapter,
        config_class=BrowserConfig,
    ),
    StorageType.LOCAL_DB: StorageTypeInfo(
        type=StorageType.LOCAL_DB,
        name="Local database file",
        description="Single SQLite database file that can be imported and exported",
        adapter_class=LocalDBAdapter,
        config_class=LocalDBConfig,
        requires_config=True,
        is_default=True,
    ),
    StorageType.CLOUDFLARE: StorageTypeInfo(
        type=StorageType.CLOUDFLARE,
        name="Cloudflare",
        description="Workers + D1 + R2 through the MeowNocode Worker API",
        adapter_class=CloudflareStorageAdapter,
        config_class=CloudflareConfig,
        requires_config=True,
    ),
    StorageType.SUPABASE: StorageTypeInfo(
        type=StorageType.SUPABASE,
        name="Supabase",
        description="PostgreSQL database (Supabase or self-hosted)",
        adapter_class=SupabaseStorageAdapter,
        config_class=SupabaseConfig,
        requires_config=True,
    ),
    StorageType.S3: StorageTypeInfo(
        type=StorageType.S3,
        name="S3 compatible storage",
        description="AWS S3, Cloudflare R2 or MinIO bucket",
        adapter_class=S3StorageAdapter,
        config_class=S3Config,
        requires_config=True,
    ),
    StorageType.MEMORY: StorageTypeInfo(
        type=StorageType.MEMORY,
        name="In-memory storage",
        description="Process-local dictionaries; data is lost on exit",
        adapter_class=MemoryStorageAdapter,
        config_class=MemoryConfig,
    ),
}


class StorageFactory:
    """Builds, validates and caches storage adapters.

    Args:
        config_defaults: Per-type values merged under caller config, e.g. a
            ``data_dir`` for the browser backend
        adapter_kwargs: Extra constructor arguments per type, e.g. a
            pre-built HTTP or S3 client
        registry: Type registry; defaults to ``STORAGE_TYPES``

    Example:
        >>> factory = StorageFactory()
        >>> adapter = await factory.create_adapter("localdb", {"db_path": "notes.db"})
    """

    def __init__(
        self,
        config_defaults: dict[StorageType, dict[str, Any]] | None = None,
        adapter_kwargs: dict[StorageType, dict[str, Any]] | None = None,
        registry: dict[StorageType, StorageTypeInfo] | None = None,
    ):
        self.config_defaults = config_defaults or {}
        self.adapter_kwargs = adapter_kwargs or {}
        self.registry = registry if registry is not None else STORAGE_TYPES
        self._adapters: dict[tuple[StorageType, str], StorageAdapter] = {}

    def _type_info(self, storage_type: StorageType | str) -> StorageTypeInfo:
        parsed = StorageType.parse(storage_type)
        info = self.registry.get(parsed)
        if info is None:
            raise StorageConfigError(f"Unsupported storage type: '{parsed.value}'")
        return info

    def build_config(
        self,
        storage_type: StorageType | str,
        config: dict[str, Any] | None = None,
    ) -> BaseStorageConfig:
        """Merge defaults and build the typed config, raising StorageConfigError."""
        info = self._type_info(storage_type)
        if info.disabled:
            raise StorageConfigError(f"Storage type {info.name} is not available")
        merged = {**self.config_defaults.get(info.type, {}), **(config or {})}
        return info.config_class.from_dict(merged)

    async def create_adapter(
        self,
        storage_type: StorageType | str,
        config: dict[str, Any] | None = None,
    ) -> StorageAdapter:
        """Create and initialize an adapter, or return the cached one.

        Raises:
            StorageConfigError: if the type or config is invalid
            StorageError: if initialization fails (nothing is cached)
        """
        info = self._type_info(storage_type)
        typed_config = self.build_config(info.type, config)
        cache_key = (info.type, json.dumps(typed_config.to_dict(), sort_keys=True))

        cached = self._adapters.get(cache_key)
        if cached is not None:
            return cached

        adapter = info.adapter_class(typed_config, **self.adapter_kwargs.get(info.type, {}))
        try:
            await adapter.initialize()
        except Exception as e:
            logger.error("Failed to initialize storage adapter", storage_type=info.type.value, error=str(e))
            raise

        self._adapters[cache_key] = adapter
        logger.info("Created storage adapter", storage_type=info.type.value)
        return adapter

    def validate_config(
        self,
        storage_type: StorageType | str,
        config: dict[str, Any] | None = None,
    ) -> ValidationResult:
        """Check type and config without creating anything."""
        try:
            self.build_config(storage_type, config)
        except StorageConfigError as e:
            return ValidationResult(is_valid=False, errors=e.errors)
        return ValidationResult(is_valid=True)

    def get_supported_storage_types(self) -> list[StorageTypeInfo]:
        return list(self.registry.values())

    def get_default_storage_type(self) -> StorageType:
        for info in self.registry.values():
            if info.is_default:
                return info.type
        return StorageType.LOCAL_DB

    async def test_connection(
        self,
        storage_type: StorageType | str,
        config: dict[str, Any] | None = None,
    ) -> ConnectionTestResult:
        """Try to create the adapter and run a health check. Never raises."""
        validation = self.validate_config(storage_type, config)
        if not validation.is_valid:
            return ConnectionTestResult(type=storage_type, success=False, errors=validation.errors)

        try:
            adapter = await self.create_adapter(storage_type, config)
            start = time.perf_counter()
            healthy = await adapter.health_check()
            elapsed_ms = (time.perf_counter() - start) * 1000
            stats = await adapter.get_storage_stats()
        except Exception as e:
            return ConnectionTestResult(type=storage_type, success=False, errors=[str(e)])

        return ConnectionTestResult(
            type=StorageType.parse(storage_type),
            success=healthy,
            response_time_ms=round(elapsed_ms, 2),
            stats=stats,
        )

    async def detect_available_storage_types(self) -> list[dict[str, Any]]:
        """Test every enabled type with its default config."""
        available: list[dict[str, Any]] = []
        for info in self.registry.values():
            if info.disabled:
                continue
            result = await self.test_connection(info.type)
            available.append({
                **info.to_dict(),
                "available": result.success,
                "test_result": result.to_dict(),
            })
        return available

    async def release_adapter(self, adapter: StorageAdapter) -> None:
        """Drop ``adapter`` from the cache and close it."""
        for key, cached in list(self._adapters.items()):
            if cached is adapter:
                del self._adapters[key]
        await adapter.close()

    async def clear_cache(self) -> None:
        """Close and forget every cached adapter."""
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            try:
                await adapter.close()
            except Exception as e:
                logger.warning("Failed to close adapter", adapter=type(adapter).__name__, error=str(e))

    async def destroy(self) -> None:
        await self.clear_cache()
