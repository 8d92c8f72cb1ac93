"""Base abstractions for storage adapters.

This module defines:
1. Entity dataclasses (Memo, Attachment) and the result types returned by
   batch, import and export operations
2. The StorageAdapter abstract base class every backend implements

Entities keep unknown JSON keys in an ``extras`` dict so records written by a
newer client survive a round trip through an older backend.
"""

import asyncio
import mimetypes
import random
import string
import time
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Iterable, Self

from .config import StorageType
from .exceptions import StorageValidationError
from .settings import UserSettings

MAX_CONTENT_LENGTH = 10000

_ID_ALPHABET = string.digits + string.ascii_lowercase


def utc_now_iso() -> str:
    """Current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


# =============================================================================
# Entity Dataclasses
# =============================================================================

@dataclass
class Attachment:
    """A file owned by a memo."""
    id: str
    filename: str
    type: str
    size: int
    url: str
    memo_id: str | None = None
    created_at: str | None = None

    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "id": self.id,
            "filename": self.filename,
            "type": self.type,
            "size": self.size,
            "url": self.url,
            "memoId": self.memo_id,
            "createdAt": self.created_at,
        }
        result.update(self.extras)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        data = dict(data)
        return cls(
            id=str(data.pop("id")),
            filename=data.pop("filename", "") or "",
            type=data.pop("type", "") or "",
            size=int(data.pop("size", 0) or 0),
            url=data.pop("url", "") or "",
            memo_id=data.pop("memoId", data.pop("memo_id", None)),
            created_at=data.pop("createdAt", data.pop("created_at", None)),
            extras=data,
        )


# camelCase (API boundary) and legacy aliases -> dataclass field names
_MEMO_KEY_ALIASES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "timestamp": "created_at",
    "lastModified": "updated_at",
    "is_pinned": "pinned",
    "isArchived": "archived",
}

_MEMO_FIELDS = {
    "id", "content", "tags", "backlinks", "created_at", "updated_at",
    "pinned", "archived", "attachments", "extras",
}

# Fields a caller may change through update_memo
_UPDATABLE_FIELDS = {"content", "tags", "backlinks", "pinned", "archived"}


@dataclass
class Memo:
    """A single note.

    Timestamps are ISO-8601 strings; ``to_dict`` produces the camelCase shape
    used on the wire.
    """
    id: str
    content: str
    tags: list[str] = field(default_factory=list)
    backlinks: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    pinned: bool = False
    archived: bool = False
    attachments: list[Attachment] = field(default_factory=list)

    # User extension point - unknown keys land here
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memo":
        """Build a Memo from API/JSON data, routing unknown keys to extras."""
        known: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for key, value in data.items():
            name = _MEMO_KEY_ALIASES.get(key, key)
            if name in _MEMO_FIELDS:
                # Explicit keys win over legacy aliases
                if key in ("timestamp", "lastModified") and name in known:
                    continue
                known[name] = value
            else:
                extras[key] = value

        if "extras" in known:
            extras.update(known.pop("extras") or {})
        attachments = [
            a if isinstance(a, Attachment) else Attachment.from_dict(a)
            for a in known.pop("attachments", None) or []
        ]
        raw_id = known.pop("id", None)
        return cls(
            id="" if raw_id in (None, "") else str(raw_id),
            content=known.pop("content", "") or "",
            tags=list(known.pop("tags", None) or []),
            backlinks=list(known.pop("backlinks", None) or []),
            created_at=known.pop("created_at", None),
            updated_at=known.pop("updated_at", None),
            pinned=bool(known.pop("pinned", False)),
            archived=bool(known.pop("archived", False)),
            attachments=attachments,
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        result = {
            "id": self.id,
            "content": self.content,
            "tags": list(self.tags),
            "backlinks": list(self.backlinks),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "pinned": self.pinned,
            "archived": self.archived,
            "attachments": [a.to_dict() for a in self.attachments],
        }
        result.update(self.extras)
        return result

    def apply_update(self, data: dict[str, Any]) -> "Memo":
        """Return a copy with ``data`` merged in and ``updated_at`` bumped.

        Unknown keys are merged into ``extras``; ``id`` and ``created_at`` never
        change.
        """
        updated = deepcopy(self)
        for key, value in data.items():
            name = _MEMO_KEY_ALIASES.get(key, key)
            if name in _UPDATABLE_FIELDS:
                if name in ("tags", "backlinks"):
                    value = list(value or [])
                elif name in ("pinned", "archived"):
                    value = bool(value)
                setattr(updated, name, value)
            elif name not in _MEMO_FIELDS:
                updated.extras[key] = value
        updated.updated_at = utc_now_iso()
        return updated


MemoData = Memo | dict[str, Any]


def memo_to_dict(data: MemoData) -> dict[str, Any]:
    return data.to_dict() if isinstance(data, Memo) else dict(data)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        if not self.is_valid:
            raise StorageValidationError(self.errors)


@dataclass
class BatchOperation:
    """One step of a batch: create uses ``data``, update uses ``id`` and
    ``data``, delete uses ``id``."""
    type: str
    id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchOperation":
        return cls(type=data.get("type", ""), id=data.get("id"), data=dict(data.get("data") or {}))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "data": self.data}


@dataclass
class BatchResult:
    operation: BatchOperation
    success: bool
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = self.result.to_dict() if isinstance(self.result, Memo) else self.result
        return {
            **self.operation.to_dict(),
            "success": self.success,
            "result": result,
            "error": self.error,
        }


@dataclass
class ImportResult:
    successful: int
    failed: int
    duplicates: int = 0
    results: list[BatchResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.successful + self.failed + self.duplicates


@dataclass
class ExportData:
    memos: list[Memo]
    pinned_memos: list[Memo]
    exported_at: str
    adapter_type: str

    @property
    def total_count(self) -> int:
        return len(self.memos) + len(self.pinned_memos)

    @property
    def is_empty(self) -> bool:
        return not self.memos and not self.pinned_memos

    def to_dict(self) -> dict[str, Any]:
        return {
            "memos": [m.to_dict() for m in self.memos],
            "pinnedMemos": [m.to_dict() for m in self.pinned_memos],
            "metadata": {
                "exportedAt": self.exported_at,
                "adapterType": self.adapter_type,
                "totalCount": self.total_count,
            },
        }


# =============================================================================
# Abstract Base Class for Adapters
# =============================================================================

class StorageAdapter(ABC):
    """Uniform interface over every memo storage backend.

    Subclasses implement the abstract CRUD, attachment and settings methods.
    Batch, import/export, stats, validation and id generation come for free
    and are built only on the abstract methods, so they behave the same on
    every backend.

    Adapters are async context managers::

        async with LocalDBAdapter(LocalDBConfig(db_path="notes.db")) as adapter:
            memo = await adapter.create_memo({"content": "hello"})
    """

    storage_type: ClassVar[StorageType]

    def __init__(self) -> None:
        self.initialized = False

    # -- Lifecycle ----------------------------------------------------------

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (connect, create schema). Must be idempotent."""
        ...

    async def close(self) -> None:
        """Release resources. Override and call super() if needed."""
        self.initialized = False

    async def __aenter__(self) -> Self:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_ready(self) -> None:
        if not self.initialized:
            await self.initialize()

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the backend is reachable and usable."""
        ...

    # -- Memos --------------------------------------------------------------

    @abstractmethod
    async def create_memo(self, data: MemoData) -> Memo:
        """Validate, normalize and store a new memo.

        Raises:
            StorageValidationError: before any I/O when the data is invalid.
        """
        ...

    @abstractmethod
    async def get_memos(
        self,
        *,
        pinned: bool | None = None,
        archived: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Memo]:
        """List memos newest first, optionally filtered and paginated."""
        ...

    @abstractmethod
    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        """Merge ``data`` into an existing memo and return the result.

        Raises:
            StorageNotFoundError: if the memo does not exist.
        """
        ...

    @abstractmethod
    async def delete_memo(self, memo_id: str) -> None:
        """Delete a memo.

        Raises:
            StorageNotFoundError: if the memo does not exist.
        """
        ...

    async def get_pinned_memos(self) -> list[Memo]:
        return await self.get_memos(pinned=True)

    # -- Attachments --------------------------------------------------------

    @abstractmethod
    async def upload_attachment(
        self,
        filename: str,
        content: bytes,
        *,
        content_type: str | None = None,
        memo_id: str | None = None,
    ) -> Attachment:
        ...

    @abstractmethod
    async def download_attachment(self, attachment_id: str) -> bytes | None:
        ...

    @abstractmethod
    def get_attachment_url(self, attachment_id: str) -> str:
        ...

    @abstractmethod
    async def delete_attachment(self, attachment_id: str) -> None:
        ...

    # -- Settings -----------------------------------------------------------

    @abstractmethod
    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        ...

    @abstractmethod
    async def save_settings(self, settings: UserSettings) -> UserSettings:
        """Upsert the whole settings blob for ``settings.user_id``."""
        ...

    # -- Batch operations ---------------------------------------------------

    async def batch_operation(
        self,
        operations: Iterable[BatchOperation | dict[str, Any]],
    ) -> list[BatchResult]:
        """Run operations one by one, recording each outcome.

        Best effort: a failing item is recorded and the loop moves on. Items
        that already succeeded are not rolled back.
        """
        results: list[BatchResult] = []
        for op in operations:
            if not isinstance(op, BatchOperation):
                op = BatchOperation.from_dict(op)
            try:
                if op.type == "create":
                    result: Any = await self.create_memo(op.data)
                elif op.type == "update":
                    result = await self.update_memo(op.id or "", op.data)
                elif op.type == "delete":
                    result = await self.delete_memo(op.id or "")
                else:
                    raise ValueError(f"Unsupported operation type: {op.type}")
                results.append(BatchResult(operation=op, success=True, result=result))
            except Exception as e:
                results.append(BatchResult(operation=op, success=False, error=str(e)))
        return results

    # -- Import / export ----------------------------------------------------

    async def import_data(
        self,
        memos: Iterable[MemoData],
        pinned_memos: Iterable[MemoData] = (),
    ) -> ImportResult:
        """Create every memo, forcing ``pinned`` from the list it came from.

        No deduplication happens here; backends with unique ids report a
        re-imported memo as a failed item.
        """
        operations = [
            BatchOperation(type="create", data={**memo_to_dict(m), "pinned": False})
            for m in memos
        ]
        operations += [
            BatchOperation(type="create", data={**memo_to_dict(m), "pinned": True})
            for m in pinned_memos
        ]
        results = await self.batch_operation(operations)
        successful = sum(1 for r in results if r.success)
        return ImportResult(
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    async def export_data(self) -> ExportData:
        memos, pinned = await asyncio.gather(
            self.get_memos(pinned=False),
            self.get_pinned_memos(),
        )
        return ExportData(
            memos=memos,
            pinned_memos=pinned,
            exported_at=utc_now_iso(),
            adapter_type=type(self).__name__,
        )

    # -- Stats --------------------------------------------------------------

    async def get_storage_stats(self) -> dict[str, Any]:
        """Summarize the backend; failures are reported in the dict."""
        try:
            memos, pinned = await asyncio.gather(
                self.get_memos(pinned=False),
                self.get_pinned_memos(),
            )
            return {
                "adapter_type": type(self).__name__,
                "total_memos": len(memos),
                "pinned_memos": len(pinned),
                "total_count": len(memos) + len(pinned),
                "initialized": self.initialized,
                "healthy": await self.health_check(),
                "last_checked": utc_now_iso(),
            }
        except Exception as e:
            return {
                "adapter_type": type(self).__name__,
                "error": str(e),
                "healthy": False,
                "last_checked": utc_now_iso(),
            }

    # -- Helpers ------------------------------------------------------------

    def generate_id(self) -> str:
        """Timestamp + random suffix. Not cryptographically unique."""
        suffix = "".join(random.choices(_ID_ALPHABET, k=9))
        return f"{int(time.time() * 1000)}-{suffix}"

    def validate_memo_data(self, data: MemoData, *, partial: bool = False) -> ValidationResult:
        """Check content presence/length and the shape of tags and backlinks.

        With ``partial`` (updates) content is only checked when present.
        """
        data = memo_to_dict(data)
        errors: list[str] = []

        content = data.get("content")
        if content is None or content == "":
            if not partial or "content" in data:
                errors.append("Content is required")
        elif not isinstance(content, str):
            errors.append("Content must be a string")
        elif len(content) > MAX_CONTENT_LENGTH:
            errors.append(f"Content too long (max {MAX_CONTENT_LENGTH} characters)")

        for key in ("tags", "backlinks"):
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, list):
                errors.append(f"{key.capitalize()} must be an array")
            elif not all(isinstance(v, str) for v in value):
                errors.append(f"{key.capitalize()} must contain only strings")

        return ValidationResult(is_valid=not errors, errors=errors)

    def normalize_memo_data(self, data: MemoData) -> Memo:
        """Fill in id and timestamps; fields given by the caller win."""
        memo = deepcopy(data) if isinstance(data, Memo) else Memo.from_dict(data)
        now = utc_now_iso()
        if not memo.id:
            memo.id = self.generate_id()
        memo.created_at = memo.created_at or now
        memo.updated_at = memo.updated_at or memo.created_at
        return memo

    def _prepare_create(self, data: MemoData) -> Memo:
        self.validate_memo_data(data).raise_for_errors()
        return self.normalize_memo_data(data)

    def _prepare_update(self, data: dict[str, Any]) -> None:
        self.validate_memo_data(data, partial=True).raise_for_errors()


def paginate(memos: list[Memo], limit: int | None, offset: int) -> list[Memo]:
    if limit:
        return memos[offset:offset + limit]
    if offset > 0:
        return memos[offset:]
    return memos


def filter_and_sort(
    memos: Iterable[Memo],
    *,
    pinned: bool | None = None,
    archived: bool | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Memo]:
    """Shared query logic for adapters that hold whole memo lists."""
    selected = [
        m for m in memos
        if (pinned is None or m.pinned == pinned)
        and (archived is None or m.archived == archived)
    ]
    selected.sort(key=lambda m: m.created_at or "", reverse=True)
    return paginate(selected, limit, offset)
