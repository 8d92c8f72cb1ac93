"""SQLite storage adapter.

A single database file holds memos, attachment blobs and settings. The stdlib
``sqlite3`` driver is synchronous, so every call runs through
``asyncio.to_thread`` under one lock (the connection is shared between
threads and SQLite serializes writers anyway).

Storage structure::

    {db_path}
        memos(id, uid UNIQUE, content, tags, backlinks, created_at,
              updated_at, pinned, archived, attachments, extras)
        attachments(id, uid UNIQUE, memo_id, filename, type, size,
                    blob_data, created_at)
        user_settings(user_id PRIMARY KEY, data, updated_at)
"""

import asyncio
import json
import shutil
import sqlite3
from datetime import date
from pathlib import Path
from typing import Any, Callable, TypeVar

from ..base import (
    Attachment,
    Memo,
    MemoData,
    StorageAdapter,
    guess_content_type,
    utc_now_iso,
)
from ..config import LocalDBConfig, StorageType
from ..exceptions import (
    StorageConnectionError,
    StorageNotFoundError,
    StorageOperationError,
    StorageValidationError,
)
from ..settings import UserSettings
from ...logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SQLITE_HEADER = b"SQLite format 3\x00"

SCHEMA = """
CREATE TABLE IF NOT EXISTS memos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uid TEXT UNIQUE NOT NULL,
    content TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    backlinks TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pinned INTEGER NOT NULL DEFAULT 0,
    archived INTEGER NOT NULL DEFAULT 0,
    attachments TEXT NOT NULL DEFAULT '[]',
    extras TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_memos_created_at ON memos(created_at);

CREATE TABLE IF NOT EXISTS attachments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uid TEXT UNIQUE NOT NULL,
    memo_id TEXT,
    filename TEXT NOT NULL,
    type TEXT NOT NULL,
    size INTEGER NOT NULL,
    blob_data BLOB NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_attachments_memo_id ON attachments(memo_id);

CREATE TABLE IF NOT EXISTS user_settings (
    user_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


# =============================================================================
# Row Helpers
# =============================================================================

def _memo_to_row(memo: Memo) -> tuple:
    return (
        memo.id,
        memo.content,
        json.dumps(memo.tags),
        json.dumps(memo.backlinks),
        memo.created_at,
        memo.updated_at,
        int(memo.pinned),
        int(memo.archived),
        json.dumps([a.to_dict() for a in memo.attachments]),
        json.dumps(memo.extras),
    )


def _row_to_memo(row: sqlite3.Row) -> Memo:
    return Memo(
        id=row["uid"],
        content=row["content"],
        tags=json.loads(row["tags"] or "[]"),
        backlinks=json.loads(row["backlinks"] or "[]"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        pinned=bool(row["pinned"]),
        archived=bool(row["archived"]),
        attachments=[Attachment.from_dict(a) for a in json.loads(row["attachments"] or "[]")],
        extras=json.loads(row["extras"] or "{}"),
    )


def is_sqlite_file(path: str | Path) -> bool:
    """True when ``path`` starts with the SQLite 3 file header."""
    try:
        with open(path, "rb") as f:
            return f.read(len(SQLITE_HEADER)) == SQLITE_HEADER
    except OSError:
        return False


# =============================================================================
# Adapter
# =============================================================================

class LocalDBAdapter(StorageAdapter):
    """SQLite-file adapter; the default backend.

    With ``auto_save`` every write is committed immediately. Without it a
    background task commits pending writes every ``save_interval`` seconds,
    and ``close()`` always commits.
    """

    storage_type = StorageType.LOCAL_DB

    def __init__(self, config: LocalDBConfig | None = None):
        super().__init__()
        self.config = config or LocalDBConfig()
        self.db_path = Path(self.config.db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()
        self._dirty = False
        self._save_task: asyncio.Task | None = None

    # -- Connection handling ------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(SCHEMA)
        conn.commit()
        return conn

    async def _run(self, fn: Callable[[sqlite3.Connection], T], *, write: bool = False) -> T:
        """Run ``fn(conn)`` in a worker thread, committing per ``auto_save``."""
        await self._ensure_ready()
        async with self._lock:
            conn = self._conn
            if conn is None:
                raise StorageConnectionError("Database is closed")

            def call() -> T:
                result = fn(conn)
                if write and self.config.auto_save:
                    conn.commit()
                return result

            try:
                result = await asyncio.to_thread(call)
            except sqlite3.IntegrityError as e:
                # Only the failing statement is undone; pending writes stay
                raise StorageOperationError(f"Constraint violated: {e}") from e
            except sqlite3.Error as e:
                raise StorageOperationError(f"Database error: {e}") from e
            if write and not self.config.auto_save:
                self._dirty = True
            return result

    async def _commit(self) -> None:
        if self._conn is not None and self._dirty:
            await asyncio.to_thread(self._conn.commit)
            self._dirty = False
            logger.debug("Committed pending writes", backend="localdb")

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.save_interval)
            async with self._lock:
                try:
                    await self._commit()
                except sqlite3.Error as e:
                    logger.error("Periodic commit failed", error=str(e), backend="localdb")

    async def initialize(self) -> None:
        if self.initialized:
            return
        try:
            self._conn = await asyncio.to_thread(self._open)
        except (sqlite3.Error, OSError) as e:
            raise StorageConnectionError(f"Cannot open database {self.db_path}: {e}") from e

        if not self.config.auto_save and self._save_task is None:
            self._save_task = asyncio.create_task(self._autosave_loop())

        self.initialized = True
        logger.info("Opened SQLite database", db_path=str(self.db_path), backend="localdb")

    async def close(self) -> None:
        if self._save_task is not None:
            self._save_task.cancel()
            try:
                await self._save_task
            except asyncio.CancelledError:
                pass
            self._save_task = None

        async with self._lock:
            if self._conn is not None:
                self._dirty = True
                await self._commit()
                await asyncio.to_thread(self._conn.close)
                self._conn = None
                logger.info("Closed SQLite database", db_path=str(self.db_path), backend="localdb")
        await super().close()

    async def health_check(self) -> bool:
        try:
            await self._run(lambda conn: conn.execute("SELECT 1").fetchone())
            return True
        except Exception:
            logger.warning("Health check failed", backend="localdb", exc_info=True)
            return False

    # -- Memos --------------------------------------------------------------

    async def create_memo(self, data: MemoData) -> Memo:
        memo = self._prepare_create(data)

        def insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO memos (
                    uid, content, tags, backlinks, created_at, updated_at,
                    pinned, archived, attachments, extras
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                _memo_to_row(memo),
            )

        await self._run(insert, write=True)
        logger.debug("Created memo", memo_id=memo.id, backend="localdb")
        return memo

    async def get_memos(
        self,
        *,
        pinned: bool | None = None,
        archived: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Memo]:
        query = "SELECT * FROM memos"
        clauses: list[str] = []
        params: list[Any] = []
        if pinned is not None:
            clauses.append("pinned = ?")
            params.append(int(pinned))
        if archived is not None:
            clauses.append("archived = ?")
            params.append(int(archived))
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"
        if limit:
            query += " LIMIT ? OFFSET ?"
            params += [limit, offset]
        elif offset > 0:
            query += " LIMIT -1 OFFSET ?"
            params.append(offset)

        rows = await self._run(lambda conn: conn.execute(query, params).fetchall())
        return [_row_to_memo(row) for row in rows]

    async def _get_memo(self, memo_id: str) -> Memo:
        row = await self._run(
            lambda conn: conn.execute("SELECT * FROM memos WHERE uid = ?", (memo_id,)).fetchone()
        )
        if row is None:
            raise StorageNotFoundError("Memo", memo_id)
        return _row_to_memo(row)

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        self._prepare_update(data)
        updated = (await self._get_memo(memo_id)).apply_update(data)

        def write(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                UPDATE memos SET
                    content = ?, tags = ?, backlinks = ?, updated_at = ?,
                    pinned = ?, archived = ?, extras = ?
                WHERE uid = ?
                """,
                (
                    updated.content,
                    json.dumps(updated.tags),
                    json.dumps(updated.backlinks),
                    updated.updated_at,
                    int(updated.pinned),
                    int(updated.archived),
                    json.dumps(updated.extras),
                    memo_id,
                ),
            )

        await self._run(write, write=True)
        logger.debug("Updated memo", memo_id=memo_id, backend="localdb")
        return updated

    async def delete_memo(self, memo_id: str) -> None:
        def delete(conn: sqlite3.Connection) -> int:
            cursor = conn.execute("DELETE FROM memos WHERE uid = ?", (memo_id,))
            if cursor.rowcount:
                conn.execute("DELETE FROM attachments WHERE memo_id = ?", (memo_id,))
            return cursor.rowcount

        if not await self._run(delete, write=True):
            raise StorageNotFoundError("Memo", memo_id)
        logger.debug("Deleted memo", memo_id=memo_id, backend="localdb")

    # -- Attachments --------------------------------------------------------

    async def upload_attachment(
        self,
        filename: str,
        content: bytes,
        *,
        content_type: str | None = None,
        memo_id: str | None = None,
    ) -> Attachment:
        attachment = Attachment(
            id=self.generate_id(),
            filename=filename,
            type=content_type or guess_content_type(filename),
            size=len(content),
            url="",
            memo_id=memo_id,
            created_at=utc_now_iso(),
        )
        attachment.url = self.get_attachment_url(attachment.id)

        def insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO attachments (uid, memo_id, filename, type, size, blob_data, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    attachment.id,
                    memo_id,
                    filename,
                    attachment.type,
                    attachment.size,
                    sqlite3.Binary(content),
                    attachment.created_at,
                ),
            )

        await self._run(insert, write=True)
        logger.info("Stored attachment", attachment_id=attachment.id, filename=filename, backend="localdb")
        return attachment

    async def download_attachment(self, attachment_id: str) -> bytes | None:
        row = await self._run(
            lambda conn: conn.execute(
                "SELECT blob_data FROM attachments WHERE uid = ?", (attachment_id,)
            ).fetchone()
        )
        return bytes(row["blob_data"]) if row else None

    def get_attachment_url(self, attachment_id: str) -> str:
        return f"localdb://attachment/{attachment_id}"

    async def delete_attachment(self, attachment_id: str) -> None:
        deleted = await self._run(
            lambda conn: conn.execute(
                "DELETE FROM attachments WHERE uid = ?", (attachment_id,)
            ).rowcount,
            write=True,
        )
        if not deleted:
            raise StorageNotFoundError("Attachment", attachment_id)

    # -- Settings -----------------------------------------------------------

    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        row = await self._run(
            lambda conn: conn.execute(
                "SELECT data FROM user_settings WHERE user_id = ?", (user_id,)
            ).fetchone()
        )
        return UserSettings.from_dict(json.loads(row["data"])) if row else None

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        settings.touch()
        payload = json.dumps(settings.to_dict())
        await self._run(
            lambda conn: conn.execute(
                """
                INSERT INTO user_settings (user_id, data, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (settings.user_id, payload, settings.updated_at),
            ),
            write=True,
        )
        return settings

    # -- Database file operations -------------------------------------------

    async def import_database_file(self, path: str | Path) -> None:
        """Replace the current database with the SQLite file at ``path``.

        Raises:
            StorageValidationError: if ``path`` is not an SQLite database.
        """
        source = Path(path)
        if not await asyncio.to_thread(is_sqlite_file, source):
            raise StorageValidationError(f"Not an SQLite database file: {source}")

        await self.close()
        try:
            await asyncio.to_thread(shutil.copyfile, source, self.db_path)
        except OSError as e:
            raise StorageOperationError(f"Failed to import database: {e}") from e
        await self.initialize()
        logger.info("Imported database file", source=str(source), backend="localdb")

    async def export_database_file(self, dest_dir: str | Path) -> Path:
        """Write a consistent copy of the database to ``<stem>_<YYYY-MM-DD>.db``."""
        dest = Path(dest_dir) / f"{self.db_path.stem}_{date.today().isoformat()}.db"
        dest.parent.mkdir(parents=True, exist_ok=True)

        def backup(conn: sqlite3.Connection) -> None:
            conn.commit()
            target = sqlite3.connect(dest)
            try:
                conn.backup(target)
            finally:
                target.close()

        await self._run(backup)
        self._dirty = False
        logger.info("Exported database file", dest=str(dest), backend="localdb")
        return dest

    async def get_database_info(self) -> dict[str, Any]:
        def counts(conn: sqlite3.Connection) -> tuple[int, int]:
            memos = conn.execute("SELECT COUNT(*) FROM memos").fetchone()[0]
            attachments = conn.execute("SELECT COUNT(*) FROM attachments").fetchone()[0]
            return memos, attachments

        memo_count, attachment_count = await self._run(counts)
        return {
            "db_path": str(self.db_path),
            "size_bytes": self.db_path.stat().st_size if self.db_path.exists() else 0,
            "memo_count": memo_count,
            "attachment_count": attachment_count,
            "auto_save": self.config.auto_save,
            "sqlite_version": sqlite3.sqlite_version,
        }
