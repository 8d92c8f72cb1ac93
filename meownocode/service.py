"""Application-facing data service.

Wraps the storage manager with user notifications and change events. Reads
degrade to empty results; writes notify and re-raise so the caller can react.
"""

from pathlib import Path
from typing import Any, Iterable

from .events import DATA_CHANGED, SETTINGS_CHANGED, STORAGE_CHANGED, EventBus, Notifier
from .logging import get_logger
from .storage import (
    Attachment,
    BatchOperation,
    BatchResult,
    ExportData,
    ImportResult,
    Memo,
    StorageManager,
    StorageType,
    UserSettings,
)
from .storage.base import MemoData, utc_now_iso

logger = get_logger(__name__)


class DataService:
    """Memo CRUD for the rest of the application.

    Every method waits for the manager to be initialized first. Mutations
    dispatch ``app:dataChanged`` with ``part="storage.<change>"`` so views
    can refresh.
    """

    def __init__(self, manager: StorageManager, notifier: Notifier, events: EventBus):
        self.manager = manager
        self.notifier = notifier
        self.events = events

    async def _data_changed(self, change: str, **detail: Any) -> None:
        await self.events.dispatch(DATA_CHANGED, part=f"storage.{change}", **detail)

    # -- Reads --------------------------------------------------------------

    async def get_memos(
        self,
        *,
        pinned: bool | None = False,
        archived: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Memo]:
        """Unpinned memos by default; ``[]`` if storage fails."""
        try:
            await self.manager.ensure_initialized()
            return await self.manager.get_memos(
                pinned=pinned, archived=archived, limit=limit, offset=offset
            )
        except Exception as e:
            logger.error("Failed to load memos", error=str(e))
            self.notifier.error(f"Failed to load memos: {e}")
            return []

    async def get_pinned_memos(self) -> list[Memo]:
        try:
            await self.manager.ensure_initialized()
            return await self.manager.get_pinned_memos()
        except Exception as e:
            logger.error("Failed to load pinned memos", error=str(e))
            self.notifier.error(f"Failed to load pinned memos: {e}")
            return []

    async def get_all_memos(self) -> list[Memo]:
        return await self.get_memos(pinned=None)

    # -- Mutations ----------------------------------------------------------

    async def create_memo(self, data: MemoData) -> Memo:
        try:
            await self.manager.ensure_initialized()
            memo = await self.manager.create_memo(data)
        except Exception as e:
            logger.error("Failed to create memo", error=str(e))
            self.notifier.error(f"Failed to create memo: {e}")
            raise
        self.notifier.success("Memo saved")
        await self._data_changed("create", memo_id=memo.id)
        return memo

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        try:
            await self.manager.ensure_initialized()
            memo = await self.manager.update_memo(memo_id, data)
        except Exception as e:
            logger.error("Failed to update memo", memo_id=memo_id, error=str(e))
            self.notifier.error(f"Failed to update memo: {e}")
            raise
        self.notifier.success("Memo updated")
        await self._data_changed("update", memo_id=memo_id)
        return memo

    async def delete_memo(self, memo_id: str) -> None:
        try:
            await self.manager.ensure_initialized()
            await self.manager.delete_memo(memo_id)
        except Exception as e:
            logger.error("Failed to delete memo", memo_id=memo_id, error=str(e))
            self.notifier.error(f"Failed to delete memo: {e}")
            raise
        self.notifier.success("Memo deleted")
        await self._data_changed("delete", memo_id=memo_id)

    async def batch_operation(
        self,
        operations: Iterable[BatchOperation | dict[str, Any]],
    ) -> list[BatchResult]:
        try:
            await self.manager.ensure_initialized()
            results = await self.manager.batch_operation(operations)
        except Exception as e:
            logger.error("Batch operation failed", error=str(e))
            self.notifier.error(f"Batch operation failed: {e}")
            raise
        successful = sum(1 for r in results if r.success)
        if successful:
            self.notifier.success(f"{successful} of {len(results)} operations completed")
            await self._data_changed("batch", successful=successful, failed=len(results) - successful)
        return results

    async def import_data(
        self,
        memos: Iterable[MemoData],
        pinned_memos: Iterable[MemoData] = (),
    ) -> ImportResult:
        try:
            await self.manager.ensure_initialized()
            result = await self.manager.import_data(memos, pinned_memos)
        except Exception as e:
            logger.error("Import failed", error=str(e))
            self.notifier.error(f"Import failed: {e}")
            raise
        if result.successful:
            self.notifier.success(f"Imported {result.successful} memos")
            await self._data_changed(
                "import",
                successful=result.successful,
                failed=result.failed,
                duplicates=result.duplicates,
            )
        if result.failed:
            self.notifier.warning(f"{result.failed} memos failed to import")
        return result

    async def import_database_file(self, path: str | Path) -> None:
        try:
            await self.manager.ensure_initialized()
            await self.manager.import_database_file(path)
        except Exception as e:
            logger.error("Database import failed", path=str(path), error=str(e))
            self.notifier.error(f"Database import failed: {e}")
            raise
        self.notifier.success("Database imported")
        await self._data_changed("importDatabase")

    async def export_data(self) -> ExportData:
        await self.manager.ensure_initialized()
        return await self.manager.export_data()

    async def export_database_file(self, dest_dir: str | Path) -> Path:
        await self.manager.ensure_initialized()
        return await self.manager.export_database_file(dest_dir)

    async def upload_attachment(
        self,
        filename: str,
        content: bytes,
        *,
        content_type: str | None = None,
        memo_id: str | None = None,
    ) -> Attachment:
        try:
            await self.manager.ensure_initialized()
            return await self.manager.upload_attachment(
                filename, content, content_type=content_type, memo_id=memo_id
            )
        except Exception as e:
            logger.error("Attachment upload failed", filename=filename, error=str(e))
            self.notifier.error(f"Attachment upload failed: {e}")
            raise

    # -- Storage type -------------------------------------------------------

    async def switch_storage_type(
        self,
        new_type: StorageType | str,
        new_config: dict[str, Any] | None = None,
        migrate_data: bool = True,
    ) -> None:
        # The manager sends its own notifications
        await self.manager.ensure_initialized()
        previous = self.manager.current_type
        await self.manager.switch_storage_type(new_type, new_config, migrate_data)
        await self.events.dispatch(
            STORAGE_CHANGED,
            previous_type=previous.value if previous else None,
            storage_type=self.manager.current_type.value if self.manager.current_type else None,
        )

    async def health_check(self) -> dict[str, Any]:
        """``{healthy, storage_type, timestamp}``; never raises."""
        try:
            await self.manager.ensure_initialized()
            healthy = await self.manager.health_check()
        except Exception as e:
            logger.warning("Health check failed", error=str(e))
            healthy = False
        current = self.manager.current_type
        return {
            "healthy": healthy,
            "storage_type": current.value if current else None,
            "timestamp": utc_now_iso(),
        }

    async def get_storage_info(self) -> dict[str, Any] | None:
        try:
            await self.manager.ensure_initialized()
            return await self.manager.get_storage_stats()
        except Exception as e:
            logger.error("Failed to get storage info", error=str(e))
            return None

    # -- Settings -----------------------------------------------------------

    async def load_settings(self, user_id: str = "default") -> UserSettings:
        """Stored settings, or defaults for a user who has none."""
        await self.manager.ensure_initialized()
        settings = await self.manager.load_settings(user_id)
        return settings or UserSettings(user_id=user_id)

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        try:
            await self.manager.ensure_initialized()
            saved = await self.manager.save_settings(settings)
        except Exception as e:
            logger.error("Failed to save settings", user_id=settings.user_id, error=str(e))
            self.notifier.error(f"Failed to save settings: {e}")
            raise
        await self.events.dispatch(SETTINGS_CHANGED, user_id=saved.user_id)
        return saved

    async def destroy(self) -> None:
        await self.manager.destroy()
