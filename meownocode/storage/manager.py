"""Storage manager: owns the active adapter.

The manager picks the adapter at startup from the persisted
``storage_config`` record, falls back to the browser backend when the
preferred one cannot start, switches backends at runtime (optionally
migrating memos), and forwards every CRUD call to the active adapter.

Lifecycle::

    UNINITIALIZED --initialize()--> INITIALIZING --> READY (is_fallback?)
          ^                              |
          +---------- failure -----------+

Switching backends while writes are still in flight on the old adapter is
not guarded; callers should wait for pending writes first.
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from .adapters import LocalDBAdapter
from .base import (
    Attachment,
    BatchOperation,
    BatchResult,
    ExportData,
    ImportResult,
    Memo,
    MemoData,
    StorageAdapter,
)
from .config import StorageConfig, StorageType
from .exceptions import StorageConfigError, StorageError, StorageOperationError, StorageUnavailableError
from .factory import ConnectionTestResult, StorageFactory, StorageTypeInfo
from .local_store import LocalStore
from .settings import UserSettings
from ..events import LoggingNotifier, Notifier
from ..logging import bind_context, get_logger, unbind_context
from ..logging.processors import mask_secrets

logger = get_logger(__name__)

CONFIG_KEY = "storage_config"


class ManagerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class StorageManager:
    """Single entry point to whichever backend is active.

    Args:
        factory: Builds and caches adapters
        store: Key/value store holding the persisted ``storage_config``
        notifier: Receives user-facing messages (fallback, migration, switch)
        fallback_type: Backend used when the preferred one fails to start
    """

    def __init__(
        self,
        factory: StorageFactory,
        store: LocalStore,
        notifier: Notifier | None = None,
        fallback_type: StorageType = StorageType.BROWSER,
    ):
        self.factory = factory
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.fallback_type = fallback_type

        self.state = ManagerState.UNINITIALIZED
        self.is_fallback = False
        self._adapter: StorageAdapter | None = None
        self._type: StorageType | None = None
        self._config: dict[str, Any] = {}
        self._init_task: asyncio.Task | None = None

    # -- Queries ------------------------------------------------------------

    @property
    def current_type(self) -> StorageType | None:
        return self._type

    @property
    def current_config(self) -> dict[str, Any]:
        return dict(self._config)

    @property
    def current_adapter(self) -> StorageAdapter | None:
        return self._adapter

    def _type_name(self, storage_type: StorageType) -> str:
        info = self.factory.registry.get(storage_type)
        return info.name if info else storage_type.value

    # -- Config persistence -------------------------------------------------

    async def load_config(self) -> StorageConfig | None:
        """Read the persisted record; missing or corrupt means None."""
        raw = await self.store.get(CONFIG_KEY)
        if raw is None:
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed storage config", value_type=type(raw).__name__)
            return None
        try:
            return StorageConfig.from_dict(raw)
        except StorageConfigError as e:
            logger.warning("Ignoring invalid storage config", error=str(e))
            return None

    async def save_config(self, storage_type: StorageType, config: dict[str, Any]) -> None:
        record = StorageConfig(type=storage_type, config=dict(config))
        await self.store.set(CONFIG_KEY, record.to_dict())

    # -- Initialization -----------------------------------------------------

    async def initialize(self) -> None:
        """Start the preferred backend, falling back if needed.

        Concurrent callers share one initialization; the factory is asked for
        the adapter once. On failure the manager returns to UNINITIALIZED so
        a later call can retry.

        Raises:
            StorageUnavailableError: if neither the preferred nor the
                fallback backend can start
            StorageError: the original error when the preferred backend is
                the fallback backend
        """
        if self._adapter is not None:
            return
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._do_initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
                self.state = ManagerState.UNINITIALIZED
            raise
        # Context set inside the task would not reach the caller
        if self._type is not None:
            bind_context(storage_type=self._type.value)

    async def _do_initialize(self) -> None:
        self.state = ManagerState.INITIALIZING
        saved = await self.load_config()

        target_type = saved.type if saved else self.factory.get_default_storage_type()
        target_config = saved.config if saved else {}
        fallback = False

        try:
            adapter = await self.factory.create_adapter(target_type, target_config)
        except Exception as e:
            if target_type == self.fallback_type:
                raise
            logger.warning(
                "Preferred storage unavailable, falling back",
                storage_type=target_type.value,
                fallback_type=self.fallback_type.value,
                error=str(e),
            )
            try:
                adapter = await self.factory.create_adapter(self.fallback_type, {})
            except Exception as fallback_error:
                logger.error("Fallback storage unavailable", error=str(fallback_error))
                raise StorageUnavailableError("No storage backend is available") from fallback_error
            target_type, target_config, fallback = self.fallback_type, {}, True
            self.notifier.warning(
                f"Primary storage unavailable, switched to {self._type_name(target_type)}",
                storage_type=target_type.value,
            )

        if saved is None or saved.type != target_type:
            await self.save_config(target_type, target_config)

        self._adapter = adapter
        self._type = target_type
        self._config = dict(target_config)
        self.is_fallback = fallback
        self.state = ManagerState.READY

        logger.info("Storage manager ready", storage_type=target_type.value, fallback=fallback)

    async def ensure_initialized(self) -> StorageAdapter:
        if self._adapter is None:
            await self.initialize()
        return self._adapter  # type: ignore[return-value]

    # -- Switching and migration --------------------------------------------

    async def switch_storage_type(
        self,
        new_type: StorageType | str,
        new_config: dict[str, Any] | None = None,
        migrate_data: bool = True,
    ) -> None:
        """Move to another backend, copying memos across when asked."""
        new_config = dict(new_config or {})
        new_adapter: StorageAdapter | None = None
        try:
            new_type = StorageType.parse(new_type)
            logger.info("Switching storage", storage_type=new_type.value)

            validation = self.factory.validate_config(new_type, new_config)
            if not validation.is_valid:
                raise StorageConfigError(validation.errors)

            new_adapter = await self.factory.create_adapter(new_type, new_config)

            old_adapter = self._adapter
            if migrate_data and old_adapter is not None and old_adapter is not new_adapter:
                await self.migrate_data(old_adapter, new_adapter)

            if old_adapter is not None and old_adapter is not new_adapter:
                try:
                    await self.factory.release_adapter(old_adapter)
                except Exception as e:
                    logger.warning("Failed to close previous adapter", error=str(e))

            self._adapter = new_adapter
            self._type = new_type
            self._config = new_config
            self.is_fallback = False
            self.state = ManagerState.READY

            await self.save_config(new_type, new_config)
            bind_context(storage_type=new_type.value)
        except Exception as e:
            logger.error("Storage switch failed", error=str(e))
            if new_adapter is not None and new_adapter is not self._adapter:
                try:
                    await self.factory.release_adapter(new_adapter)
                except Exception as close_error:
                    logger.warning("Failed to close abandoned adapter", error=str(close_error))
            self.notifier.error(f"Failed to switch storage: {e}")
            raise

        self.notifier.success(f"Switched to {self._type_name(new_type)}", storage_type=new_type.value)

    async def migrate_data(
        self,
        source: StorageAdapter,
        target: StorageAdapter,
    ) -> ImportResult | None:
        """Copy every memo from ``source`` into ``target``.

        Returns:
            The import result, or None when there was nothing to migrate.
        """
        self.notifier.info("Migrating data...")
        try:
            exported = await source.export_data()
            if exported.is_empty:
                logger.info("No data to migrate")
                return None
            result = await target.import_data(exported.memos, exported.pinned_memos)
        except Exception as e:
            logger.error("Data migration failed", error=str(e))
            self.notifier.error(f"Data migration failed: {e}")
            raise

        logger.info(
            "Data migration complete",
            successful=result.successful,
            failed=result.failed,
            duplicates=result.duplicates,
        )
        if result.successful > 0:
            self.notifier.success(f"Migrated {result.successful} memos")
        if result.failed > 0:
            self.notifier.warning(f"{result.failed} memos failed to migrate")
        return result

    # -- CRUD facade --------------------------------------------------------

    async def create_memo(self, data: MemoData) -> Memo:
        adapter = await self.ensure_initialized()
        return await adapter.create_memo(data)

    async def get_memos(
        self,
        *,
        pinned: bool | None = None,
        archived: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Memo]:
        adapter = await self.ensure_initialized()
        return await adapter.get_memos(pinned=pinned, archived=archived, limit=limit, offset=offset)

    async def get_pinned_memos(self) -> list[Memo]:
        adapter = await self.ensure_initialized()
        return await adapter.get_pinned_memos()

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        adapter = await self.ensure_initialized()
        return await adapter.update_memo(memo_id, data)

    async def delete_memo(self, memo_id: str) -> None:
        adapter = await self.ensure_initialized()
        await adapter.delete_memo(memo_id)

    async def upload_attachment(
        self,
        filename: str,
        content: bytes,
        *,
        content_type: str | None = None,
        memo_id: str | None = None,
    ) -> Attachment:
        adapter = await self.ensure_initialized()
        return await adapter.upload_attachment(
            filename, content, content_type=content_type, memo_id=memo_id
        )

    async def download_attachment(self, attachment_id: str) -> bytes | None:
        adapter = await self.ensure_initialized()
        return await adapter.download_attachment(attachment_id)

    def get_attachment_url(self, attachment_id: str) -> str:
        if self._adapter is None:
            return ""
        return self._adapter.get_attachment_url(attachment_id)

    async def delete_attachment(self, attachment_id: str) -> None:
        adapter = await self.ensure_initialized()
        await adapter.delete_attachment(attachment_id)

    async def batch_operation(
        self,
        operations: Iterable[BatchOperation | dict[str, Any]],
    ) -> list[BatchResult]:
        adapter = await self.ensure_initialized()
        return await adapter.batch_operation(operations)

    async def import_data(
        self,
        memos: Iterable[MemoData],
        pinned_memos: Iterable[MemoData] = (),
    ) -> ImportResult:
        adapter = await self.ensure_initialized()
        return await adapter.import_data(memos, pinned_memos)

    async def export_data(self) -> ExportData:
        adapter = await self.ensure_initialized()
        return await adapter.export_data()

    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        adapter = await self.ensure_initialized()
        return await adapter.load_settings(user_id)

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        adapter = await self.ensure_initialized()
        return await adapter.save_settings(settings)

    # -- Status -------------------------------------------------------------

    async def get_storage_stats(self) -> dict[str, Any]:
        adapter = await self.ensure_initialized()
        stats = await adapter.get_storage_stats()
        return {
            **stats,
            "current_type": self._type.value if self._type else None,
            "current_config": mask_secrets(self.current_config),
            "is_fallback": self.is_fallback,
            "manager_state": self.state.value,
        }

    async def health_check(self) -> bool:
        if self._adapter is None:
            return False
        return await self._adapter.health_check()

    def get_supported_storage_types(self) -> list[StorageTypeInfo]:
        return self.factory.get_supported_storage_types()

    async def detect_available_storage_types(self) -> list[dict[str, Any]]:
        return await self.factory.detect_available_storage_types()

    async def test_storage_type(
        self,
        storage_type: StorageType | str,
        config: dict[str, Any] | None = None,
    ) -> ConnectionTestResult:
        return await self.factory.test_connection(storage_type, config)

    # -- Local database file passthroughs -----------------------------------

    def get_local_db_adapter(self) -> LocalDBAdapter | None:
        if self._type == StorageType.LOCAL_DB and isinstance(self._adapter, LocalDBAdapter):
            return self._adapter
        return None

    def _require_local_db(self) -> LocalDBAdapter:
        adapter = self.get_local_db_adapter()
        if adapter is None:
            raise StorageOperationError("Database files are only available with local database storage")
        return adapter

    async def import_database_file(self, path: str | Path) -> None:
        await self._require_local_db().import_database_file(path)

    async def export_database_file(self, dest_dir: str | Path) -> Path:
        return await self._require_local_db().export_database_file(dest_dir)

    # -- Teardown -----------------------------------------------------------

    async def close(self) -> None:
        if self._adapter is not None:
            try:
                await self.factory.release_adapter(self._adapter)
            except StorageError as e:
                logger.warning("Failed to close current adapter", error=str(e))

        self._adapter = None
        self._type = None
        self._config = {}
        self._init_task = None
        self.is_fallback = False
        self.state = ManagerState.UNINITIALIZED
        unbind_context("storage_type")

    async def destroy(self) -> None:
        await self.close()
        await self.factory.clear_cache()
