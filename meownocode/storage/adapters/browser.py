"""Browser-style local storage adapter.

Mirrors how the web client keeps data without a server: memo lists in a
localStorage-like key/value file and attachment blobs in a separate directory
(the IndexedDB role). This is the fallback backend, so it needs no
configuration and works offline.

Storage structure::

    {data_dir}/
        local_storage.json      # memos, pinnedMemos, deletedMemoIds, settings
        attachments/
            {attachment_id}_{filename}
"""

from pathlib import Path
from typing import Any, Iterable

import aiofiles
import aiofiles.os

from ..base import (
    Attachment,
    BatchResult,
    BatchOperation,
    ImportResult,
    Memo,
    MemoData,
    StorageAdapter,
    filter_and_sort,
    guess_content_type,
    memo_to_dict,
    utc_now_iso,
)
from ..config import BrowserConfig, StorageType
from ..exceptions import StorageConnectionError, StorageNotFoundError, StorageOperationError
from ..local_store import FileLocalStore, LocalStore
from ..settings import UserSettings
from ...logging import get_logger

logger = get_logger(__name__)

MEMOS_KEY = "memos"
PINNED_KEY = "pinnedMemos"
TOMBSTONES_KEY = "deletedMemoIds"
ATTACHMENTS_KEY = "attachmentIndex"
SETTINGS_KEY_PREFIX = "userSettings:"


class BrowserStorageAdapter(StorageAdapter):
    """Local key/value + blob directory adapter with deletion tombstones.

    Deleting a memo records its id in ``deletedMemoIds``. ``import_data``
    skips tombstoned and already-present ids, so migrating data back into
    this adapter never resurrects a memo the user deleted here.
    """

    storage_type = StorageType.BROWSER

    def __init__(self, config: BrowserConfig | None = None, store: LocalStore | None = None):
        super().__init__()
        self.config = config or BrowserConfig()
        self.data_dir = Path(self.config.data_dir)
        self._attachments_dir = self.data_dir / "attachments"
        self.store = store or FileLocalStore(self.data_dir / "local_storage.json")

    async def initialize(self) -> None:
        if self.initialized:
            return
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._attachments_dir.mkdir(exist_ok=True)
            await self.store.keys()
        except OSError as e:
            raise StorageConnectionError(f"Local storage is not available: {e}") from e

        self.initialized = True
        logger.info("Browser storage adapter ready", data_dir=str(self.data_dir), backend="browser")

    async def health_check(self) -> bool:
        try:
            await self.store.set("__health_check__", "test")
            await self.store.remove("__health_check__")
            return True
        except (OSError, TypeError, ValueError):
            return False

    # -- Local list helpers -------------------------------------------------

    async def _load_list(self, key: str) -> list[Memo]:
        raw = await self.store.get(key, [])
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed memo list", key=key, backend="browser")
            return []
        return [Memo.from_dict(item) for item in raw if isinstance(item, dict)]

    async def _save_list(self, key: str, memos: Iterable[Memo]) -> None:
        await self.store.set(key, [m.to_dict() for m in memos])

    async def get_deleted_memo_ids(self) -> set[str]:
        return set(await self.store.get(TOMBSTONES_KEY, []))

    # -- Memos --------------------------------------------------------------

    async def create_memo(self, data: MemoData) -> Memo:
        memo = self._prepare_create(data)
        await self._ensure_ready()

        memos = await self._load_list(MEMOS_KEY)
        pinned = await self._load_list(PINNED_KEY)
        if any(m.id == memo.id for m in memos + pinned):
            raise StorageOperationError(f"Memo already exists: {memo.id}")

        if memo.pinned:
            pinned.insert(0, memo)
            await self._save_list(PINNED_KEY, pinned)
        else:
            memos.insert(0, memo)
            await self._save_list(MEMOS_KEY, memos)

        logger.debug("Created memo", memo_id=memo.id, pinned=memo.pinned, backend="browser")
        return memo

    async def get_memos(
        self,
        *,
        pinned: bool | None = None,
        archived: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Memo]:
        await self._ensure_ready()
        if pinned is None:
            memos = await self._load_list(MEMOS_KEY) + await self._load_list(PINNED_KEY)
        else:
            memos = await self._load_list(PINNED_KEY if pinned else MEMOS_KEY)
        return filter_and_sort(memos, archived=archived, limit=limit, offset=offset)

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        self._prepare_update(data)
        await self._ensure_ready()

        memos = await self._load_list(MEMOS_KEY)
        pinned = await self._load_list(PINNED_KEY)

        for source_key, source in ((MEMOS_KEY, memos), (PINNED_KEY, pinned)):
            for index, memo in enumerate(source):
                if memo.id != memo_id:
                    continue
                updated = memo.apply_update(data)
                target_key = PINNED_KEY if updated.pinned else MEMOS_KEY
                if target_key == source_key:
                    source[index] = updated
                    await self._save_list(source_key, source)
                else:
                    # Pin state changed: move between the two lists
                    del source[index]
                    target = pinned if target_key == PINNED_KEY else memos
                    target.insert(0, updated)
                    await self._save_list(source_key, source)
                    await self._save_list(target_key, target)
                logger.debug("Updated memo", memo_id=memo_id, backend="browser")
                return updated

        raise StorageNotFoundError("Memo", memo_id)

    async def delete_memo(self, memo_id: str) -> None:
        await self._ensure_ready()
        found = False
        for key in (MEMOS_KEY, PINNED_KEY):
            memos = await self._load_list(key)
            remaining = [m for m in memos if m.id != memo_id]
            if len(remaining) < len(memos):
                found = True
                await self._save_list(key, remaining)

        if not found:
            raise StorageNotFoundError("Memo", memo_id)

        tombstones = await self.get_deleted_memo_ids()
        tombstones.add(memo_id)
        await self.store.set(TOMBSTONES_KEY, sorted(tombstones))
        logger.debug("Deleted memo", memo_id=memo_id, backend="browser")

    # -- Attachments --------------------------------------------------------

    async def _attachment_index(self) -> dict[str, dict[str, Any]]:
        return await self.store.get(ATTACHMENTS_KEY, {})

    async def upload_attachment(
        self,
        filename: str,
        content: bytes,
        *,
        content_type: str | None = None,
        memo_id: str | None = None,
    ) -> Attachment:
        await self._ensure_ready()
        attachment_id = self.generate_id()
        file_path = self._attachments_dir / f"{attachment_id}_{Path(filename).name}"

        async with aiofiles.open(file_path, "wb") as f:
            await f.write(content)

        attachment = Attachment(
            id=attachment_id,
            filename=filename,
            type=content_type or guess_content_type(filename),
            size=len(content),
            url=self.get_attachment_url(attachment_id),
            memo_id=memo_id,
            created_at=utc_now_iso(),
            extras={"is_local": True},
        )
        index = await self._attachment_index()
        index[attachment_id] = attachment.to_dict()
        await self.store.set(ATTACHMENTS_KEY, index)

        logger.info("Stored attachment", attachment_id=attachment_id, filename=filename, backend="browser")
        return attachment

    async def _find_blob(self, attachment_id: str) -> Path | None:
        # Only ids recorded in the index resolve to a blob path
        entry = (await self._attachment_index()).get(attachment_id)
        if not isinstance(entry, dict) or not entry.get("filename"):
            return None
        filename = Path(entry["filename"]).name
        path = self._attachments_dir / f"{attachment_id}_{filename}"
        return path if path.is_file() else None

    async def download_attachment(self, attachment_id: str) -> bytes | None:
        path = await self._find_blob(attachment_id)
        if path is None:
            return None
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    def get_attachment_url(self, attachment_id: str) -> str:
        return f"./local/{attachment_id}"

    async def delete_attachment(self, attachment_id: str) -> None:
        path = await self._find_blob(attachment_id)
        if path is None:
            raise StorageNotFoundError("Attachment", attachment_id)
        await aiofiles.os.remove(path)

        index = await self._attachment_index()
        if index.pop(attachment_id, None) is not None:
            await self.store.set(ATTACHMENTS_KEY, index)
        logger.info("Deleted attachment", attachment_id=attachment_id, backend="browser")

    # -- Settings -----------------------------------------------------------

    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        raw = await self.store.get(f"{SETTINGS_KEY_PREFIX}{user_id}")
        return UserSettings.from_dict(raw) if raw else None

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        settings.touch()
        await self.store.set(f"{SETTINGS_KEY_PREFIX}{settings.user_id}", settings.to_dict())
        return settings

    # -- Import / export ----------------------------------------------------

    async def import_data(
        self,
        memos: Iterable[MemoData],
        pinned_memos: Iterable[MemoData] = (),
    ) -> ImportResult:
        """Merge memos into local storage, skipping known and tombstoned ids."""
        await self._ensure_ready()

        existing_memos = await self._load_list(MEMOS_KEY)
        existing_pinned = await self._load_list(PINNED_KEY)
        seen = {m.id for m in existing_memos} | {m.id for m in existing_pinned}
        tombstones = await self.get_deleted_memo_ids()

        results: list[BatchResult] = []
        duplicates = 0
        for incoming, pinned, target in (
            (memos, False, existing_memos),
            (pinned_memos, True, existing_pinned),
        ):
            for item in incoming:
                op = BatchOperation(type="create", data={**memo_to_dict(item), "pinned": pinned})
                validation = self.validate_memo_data(op.data)
                if not validation.is_valid:
                    results.append(BatchResult(op, success=False, error=", ".join(validation.errors)))
                    continue
                memo = self.normalize_memo_data(op.data)
                if memo.id in seen or memo.id in tombstones:
                    duplicates += 1
                    continue
                seen.add(memo.id)
                target.append(memo)
                results.append(BatchResult(op, success=True, result=memo))

        await self._save_list(MEMOS_KEY, existing_memos)
        await self._save_list(PINNED_KEY, existing_pinned)

        successful = sum(1 for r in results if r.success)
        logger.info(
            "Imported memos",
            successful=successful,
            failed=len(results) - successful,
            duplicates=duplicates,
            backend="browser",
        )
        return ImportResult(
            successful=successful,
            failed=len(results) - successful,
            duplicates=duplicates,
            results=results,
        )

    async def get_storage_stats(self) -> dict[str, Any]:
        stats = await super().get_storage_stats()
        if "error" not in stats:
            try:
                stats["local_storage_bytes"] = await self.store.size_bytes()
                stats["deleted_memo_ids"] = len(await self.get_deleted_memo_ids())
            except OSError as e:
                logger.warning("Failed to measure local storage", error=str(e), backend="browser")
        return stats

    async def clear_all_data(self) -> None:
        """Remove every memo, tombstone and attachment blob."""
        for key in (MEMOS_KEY, PINNED_KEY, TOMBSTONES_KEY, ATTACHMENTS_KEY):
            await self.store.remove(key)
        if self._attachments_dir.exists():
            for path in self._attachments_dir.iterdir():
                if path.is_file():
                    await aiofiles.os.remove(path)
        logger.info("Cleared all local data", backend="browser")
