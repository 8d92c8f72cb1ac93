"""PostgreSQL (Supabase) storage adapter.

Memos are keyed by the composite ``(memo_id, user_id)`` so several users can
share one database. Attachment content lives in a ``bytea`` column.

Tables:
- memos: typed columns plus JSONB tags/backlinks/attachments/extras
- attachments: metadata plus blob
- user_settings: one JSONB blob per user
"""

import json
from datetime import datetime
from typing import Any

import asyncpg

from ..base import (
    Attachment,
    Memo,
    MemoData,
    StorageAdapter,
    guess_content_type,
    utc_now_iso,
)
from ..config import StorageType, SupabaseConfig
from ..exceptions import StorageConnectionError, StorageNotFoundError, StorageOperationError
from ..settings import UserSettings
from ...logging import get_logger

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS memos (
    memo_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    content TEXT NOT NULL,
    tags JSONB NOT NULL DEFAULT '[]',
    backlinks JSONB NOT NULL DEFAULT '[]',
    attachments JSONB NOT NULL DEFAULT '[]',
    pinned BOOLEAN NOT NULL DEFAULT FALSE,
    archived BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    extras JSONB NOT NULL DEFAULT '{}',
    PRIMARY KEY (memo_id, user_id)
);
CREATE INDEX IF NOT EXISTS idx_memos_user_created ON memos (user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS attachments (
    attachment_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    memo_id TEXT,
    filename TEXT NOT NULL,
    content_type TEXT NOT NULL,
    size INTEGER NOT NULL,
    data BYTEA NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS user_settings (
    user_id TEXT PRIMARY KEY,
    settings JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
"""


# =============================================================================
# Helper Functions
# =============================================================================

def _to_datetime(value: Any) -> datetime | None:
    """Coerce ISO string timestamps to datetime objects."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def _to_iso(value: Any) -> str | None:
    """Format a datetime as ``...Z`` ISO text."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return str(value)


def _to_jsonb(value: Any) -> str:
    return json.dumps(value)


def _from_jsonb(value: Any) -> Any:
    """Deserialize a JSONB column (asyncpg returns text without a codec)."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def memo_to_row_values(memo: Memo, user_id: str) -> tuple:
    """Convert a Memo to the positional values of the INSERT statement."""
    return (
        memo.id,
        user_id,
        memo.content,
        _to_jsonb(memo.tags),
        _to_jsonb(memo.backlinks),
        _to_jsonb([a.to_dict() for a in memo.attachments]),
        memo.pinned,
        memo.archived,
        _to_datetime(memo.created_at),
        _to_datetime(memo.updated_at),
        _to_jsonb(memo.extras),
    )


def row_to_memo(row: Any) -> Memo:
    """Convert a database row (asyncpg.Record or mapping) to a Memo."""
    return Memo(
        id=str(row["memo_id"]),
        content=row["content"],
        tags=_from_jsonb(row["tags"]) or [],
        backlinks=_from_jsonb(row["backlinks"]) or [],
        created_at=_to_iso(row["created_at"]),
        updated_at=_to_iso(row["updated_at"]),
        pinned=bool(row["pinned"]),
        archived=bool(row["archived"]),
        attachments=[Attachment.from_dict(a) for a in _from_jsonb(row["attachments"]) or []],
        extras=_from_jsonb(row["extras"]) or {},
    )


def build_memo_query(
    user_id: str,
    *,
    pinned: bool | None = None,
    archived: bool | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[str, list[Any]]:
    """Build the SELECT for ``get_memos`` with numbered parameters."""
    params: list[Any] = [user_id]
    clauses = ["user_id = $1"]
    if pinned is not None:
        params.append(pinned)
        clauses.append(f"pinned = ${len(params)}")
    if archived is not None:
        params.append(archived)
        clauses.append(f"archived = ${len(params)}")

    query = f"SELECT * FROM memos WHERE {' AND '.join(clauses)} ORDER BY created_at DESC"
    if limit:
        params.append(limit)
        query += f" LIMIT ${len(params)}"
    if offset > 0:
        params.append(offset)
        query += f" OFFSET ${len(params)}"
    return query, params


# =============================================================================
# Adapter Implementation
# =============================================================================

class SupabaseStorageAdapter(StorageAdapter):
    """asyncpg-backed adapter scoped to one ``user_id``."""

    storage_type = StorageType.SUPABASE

    def __init__(self, config: SupabaseConfig):
        super().__init__()
        self.config = config
        self.user_id = config.user_id
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.config.connection_string,
                    min_size=1,
                    max_size=self.config.pool_size,
                )
            except (OSError, asyncpg.PostgresError) as e:
                raise StorageConnectionError(f"Cannot connect to Postgres: {e}") from e
            logger.info("Created PostgreSQL connection pool", max_size=self.config.pool_size, backend="supabase")

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create the connection pool (lazy initialization)."""
        if self._pool is None:
            await self.connect()
        return self._pool  # type: ignore

    async def initialize(self) -> None:
        if self.initialized:
            return
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA)
        self.initialized = True
        logger.info("Supabase storage adapter ready", user_id=self.user_id, backend="supabase")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PostgreSQL connection pool", backend="supabase")
        await super().close()

    async def health_check(self) -> bool:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except (StorageConnectionError, OSError, asyncpg.PostgresError) as e:
            logger.warning("Health check failed", error=str(e), backend="supabase")
            return False

    # -- Memos --------------------------------------------------------------

    async def create_memo(self, data: MemoData) -> Memo:
        memo = self._prepare_create(data)
        await self._ensure_ready()
        pool = await self._get_pool()

        query = """
            INSERT INTO memos (
                memo_id, user_id, content, tags, backlinks, attachments,
                pinned, archived, created_at, updated_at, extras
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
        """
        try:
            async with pool.acquire() as conn:
                await conn.execute(query, *memo_to_row_values(memo, self.user_id))
        except asyncpg.UniqueViolationError as e:
            raise StorageOperationError(f"Memo already exists: {memo.id}") from e

        logger.debug("Created memo", memo_id=memo.id, backend="supabase")
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
        pool = await self._get_pool()
        query, params = build_memo_query(
            self.user_id, pinned=pinned, archived=archived, limit=limit, offset=offset
        )
        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [row_to_memo(row) for row in rows]

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        self._prepare_update(data)
        await self._ensure_ready()
        pool = await self._get_pool()

        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT * FROM memos WHERE memo_id = $1 AND user_id = $2 FOR UPDATE",
                    memo_id,
                    self.user_id,
                )
                if row is None:
                    raise StorageNotFoundError("Memo", memo_id)
                updated = row_to_memo(row).apply_update(data)
                await conn.execute(
                    """
                    UPDATE memos SET
                        content = $3, tags = $4, backlinks = $5, pinned = $6,
                        archived = $7, updated_at = $8, extras = $9
                    WHERE memo_id = $1 AND user_id = $2
                    """,
                    memo_id,
                    self.user_id,
                    updated.content,
                    _to_jsonb(updated.tags),
                    _to_jsonb(updated.backlinks),
                    updated.pinned,
                    updated.archived,
                    _to_datetime(updated.updated_at),
                    _to_jsonb(updated.extras),
                )

        logger.debug("Updated memo", memo_id=memo_id, backend="supabase")
        return updated

    async def delete_memo(self, memo_id: str) -> None:
        await self._ensure_ready()
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    "DELETE FROM memos WHERE memo_id = $1 AND user_id = $2",
                    memo_id,
                    self.user_id,
                )
                await conn.execute(
                    "DELETE FROM attachments WHERE memo_id = $1 AND user_id = $2",
                    memo_id,
                    self.user_id,
                )
        # asyncpg returns the command tag, e.g. "DELETE 1"
        if result.split()[-1] == "0":
            raise StorageNotFoundError("Memo", memo_id)
        logger.debug("Deleted memo", memo_id=memo_id, backend="supabase")

    # -- Attachments --------------------------------------------------------

    async def upload_attachment(
        self,
        filename: str,
        content: bytes,
        *,
        content_type: str | None = None,
        memo_id: str | None = None,
    ) -> Attachment:
        await self._ensure_ready()
        pool = await self._get_pool()
        attachment_id = self.generate_id()
        created_at = utc_now_iso()
        content_type = content_type or guess_content_type(filename)

        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO attachments (
                    attachment_id, user_id, memo_id, filename, content_type,
                    size, data, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                attachment_id,
                self.user_id,
                memo_id,
                filename,
                content_type,
                len(content),
                content,
                _to_datetime(created_at),
            )

        logger.info("Stored attachment", attachment_id=attachment_id, filename=filename, backend="supabase")
        return Attachment(
            id=attachment_id,
            filename=filename,
            type=content_type,
            size=len(content),
            url=self.get_attachment_url(attachment_id),
            memo_id=memo_id,
            created_at=created_at,
        )

    async def download_attachment(self, attachment_id: str) -> bytes | None:
        await self._ensure_ready()
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            data = await conn.fetchval(
                "SELECT data FROM attachments WHERE attachment_id = $1 AND user_id = $2",
                attachment_id,
                self.user_id,
            )
        return bytes(data) if data is not None else None

    def get_attachment_url(self, attachment_id: str) -> str:
        return f"supabase://attachment/{attachment_id}"

    async def delete_attachment(self, attachment_id: str) -> None:
        await self._ensure_ready()
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM attachments WHERE attachment_id = $1 AND user_id = $2",
                attachment_id,
                self.user_id,
            )
        if result.split()[-1] == "0":
            raise StorageNotFoundError("Attachment", attachment_id)

    # -- Settings -----------------------------------------------------------

    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        await self._ensure_ready()
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            raw = await conn.fetchval("SELECT settings FROM user_settings WHERE user_id = $1", user_id)
        data = _from_jsonb(raw)
        return UserSettings.from_dict(data) if data else None

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        await self._ensure_ready()
        pool = await self._get_pool()
        settings.touch()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO user_settings (user_id, settings, updated_at)
                VALUES ($1, $2, $3)
                ON CONFLICT (user_id) DO UPDATE SET
                    settings = EXCLUDED.settings,
                    updated_at = EXCLUDED.updated_at
                """,
                settings.user_id,
                _to_jsonb(settings.to_dict()),
                _to_datetime(settings.updated_at),
            )
        return settings
