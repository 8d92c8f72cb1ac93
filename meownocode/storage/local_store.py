"""Small persistent key/value store, the local equivalent of browser localStorage.

Values are JSON-serializable objects. The storage manager keeps the active
``storage_config`` here and the browser adapter keeps its memo lists and
tombstones here.

Layout of the file-backed store::

    {path}  ->  {"storage_config": {...}, "memos": [...], ...}
"""

import asyncio
import json
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..logging import get_logger

logger = get_logger(__name__)


class LocalStore(ABC):
    """Async key/value store holding JSON values."""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        ...

    async def size_bytes(self) -> int:
        """Approximate serialized size of all values."""
        total = 0
        for key in await self.keys():
            total += len(json.dumps(await self.get(key)))
        return total


class MemoryLocalStore(LocalStore):
    """In-process store for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = deepcopy(initial or {})

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so non-serializable values fail here,
        # the same way they would in the file store
        self._data[key] = json.loads(json.dumps(value))

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)


class FileLocalStore(LocalStore):
    """JSON file store with atomic writes.

    The whole file is read on first access and cached; every write rewrites
    the file through a temp file and an atomic rename. A corrupt file is
    logged and treated as empty rather than blocking startup.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._cache: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache

        if not self.path.exists():
            self._cache = {}
            return self._cache

        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            content = await f.read()
        try:
            data = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning("Local store file is corrupt, starting empty", path=str(self.path), error=str(e))
            data = {}
        if not isinstance(data, dict):
            logger.warning("Local store file is not an object, starting empty", path=str(self.path))
            data = {}
        self._cache = data
        return data

    async def _flush(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, ensure_ascii=False, indent=2))
        # Atomic rename
        await aiofiles.os.replace(temp_file, self.path)

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            data = await self._load()
            if key not in data:
                return default
            return deepcopy(data[key])

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await self._load()
            updated = {**data, key: json.loads(json.dumps(value))}
            await self._flush(updated)
            self._cache = updated

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if key not in data:
                return
            updated = {k: v for k, v in data.items() if k != key}
            await self._flush(updated)
            self._cache = updated

    async def keys(self) -> list[str]:
        async with self._lock:
            return list(await self._load())
