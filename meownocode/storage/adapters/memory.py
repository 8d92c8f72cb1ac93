"""In-memory storage adapter.

Data lives in Python dicts and disappears with the process. Useful for unit
tests and as a scratch target when migrating between real backends.
"""

from copy import deepcopy
from typing import Any

from ..base import (
    Attachment,
    Memo,
    MemoData,
    StorageAdapter,
    filter_and_sort,
    guess_content_type,
    utc_now_iso,
)
from ..config import MemoryConfig, StorageType
from ..exceptions import StorageNotFoundError, StorageOperationError
from ..settings import UserSettings
from ...logging import get_logger

logger = get_logger(__name__)


class MemoryStorageAdapter(StorageAdapter):
    """Dict-backed adapter. Copies go in and out so callers cannot mutate state."""

    storage_type = StorageType.MEMORY

    def __init__(self, config: MemoryConfig | None = None):
        super().__init__()
        self.config = config or MemoryConfig()
        self._memos: dict[str, Memo] = {}
        self._attachments: dict[str, tuple[Attachment, bytes]] = {}
        self._settings: dict[str, UserSettings] = {}

    async def initialize(self) -> None:
        self.initialized = True

    async def health_check(self) -> bool:
        return True

    async def create_memo(self, data: MemoData) -> Memo:
        memo = self._prepare_create(data)
        await self._ensure_ready()

        if memo.id in self._memos:
            raise StorageOperationError(f"Memo already exists: {memo.id}")
        self._memos[memo.id] = deepcopy(memo)

        logger.debug("Created memo", memo_id=memo.id, backend="memory")
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
        memos = filter_and_sort(
            self._memos.values(),
            pinned=pinned,
            archived=archived,
            limit=limit,
            offset=offset,
        )
        return [deepcopy(m) for m in memos]

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        self._prepare_update(data)
        await self._ensure_ready()

        memo = self._memos.get(memo_id)
        if memo is None:
            raise StorageNotFoundError("Memo", memo_id)
        updated = memo.apply_update(data)
        self._memos[memo_id] = updated

        logger.debug("Updated memo", memo_id=memo_id, backend="memory")
        return deepcopy(updated)

    async def delete_memo(self, memo_id: str) -> None:
        await self._ensure_ready()
        if memo_id not in self._memos:
            raise StorageNotFoundError("Memo", memo_id)
        del self._memos[memo_id]
        for attachment_id, (attachment, _) in list(self._attachments.items()):
            if attachment.memo_id == memo_id:
                del self._attachments[attachment_id]
        logger.debug("Deleted memo", memo_id=memo_id, backend="memory")

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
        attachment = Attachment(
            id=attachment_id,
            filename=filename,
            type=content_type or guess_content_type(filename),
            size=len(content),
            url=self.get_attachment_url(attachment_id),
            memo_id=memo_id,
            created_at=utc_now_iso(),
        )
        self._attachments[attachment_id] = (attachment, bytes(content))
        return deepcopy(attachment)

    async def download_attachment(self, attachment_id: str) -> bytes | None:
        entry = self._attachments.get(attachment_id)
        return entry[1] if entry else None

    def get_attachment_url(self, attachment_id: str) -> str:
        return f"memory://attachment/{attachment_id}"

    async def delete_attachment(self, attachment_id: str) -> None:
        if attachment_id not in self._attachments:
            raise StorageNotFoundError("Attachment", attachment_id)
        del self._attachments[attachment_id]

    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        settings = self._settings.get(user_id)
        return deepcopy(settings) if settings else None

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        saved = deepcopy(settings)
        saved.touch()
        self._settings[saved.user_id] = saved
        return deepcopy(saved)

    def clear(self) -> None:
        """Drop all stored data (useful for test cleanup)."""
        self._memos.clear()
        self._attachments.clear()
        self._settings.clear()
