"""Cloudflare Workers + D1 + R2 storage adapter.

A thin client of the Worker's REST API. Every call goes through ``request``,
which adds auth, maps non-2xx answers to ``StorageRequestError`` and transport
failures to ``StorageConnectionError``.
"""

from typing import Any, Iterable

import httpx

from ..base import (
    Attachment,
    BatchOperation,
    BatchResult,
    Memo,
    MemoData,
    StorageAdapter,
    guess_content_type,
)
from ..config import CloudflareConfig, StorageType
from ..exceptions import (
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StorageRequestError,
    StorageUnavailableError,
)
from ..settings import UserSettings
from ...logging import get_logger

logger = get_logger(__name__)

API_PREFIX = "/api/v1"


def _unwrap(payload: Any, key: str) -> Any:
    """Accept both ``{key: value}`` envelopes and bare values."""
    if isinstance(payload, dict) and key in payload:
        return payload[key]
    return payload


class CloudflareStorageAdapter(StorageAdapter):
    """HTTP adapter for the MeowNocode Worker API."""

    storage_type = StorageType.CLOUDFLARE

    def __init__(self, config: CloudflareConfig, client: httpx.AsyncClient | None = None):
        """Initialize the adapter.

        Args:
            config: Worker base URL, optional API key and request timeout
            client: Pre-built client (tests pass one with a MockTransport);
                an injected client is not closed by ``close()``
        """
        super().__init__()
        self.config = config
        self.base_url = config.base_url
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily build the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Send one API request and decode the response.

        Returns:
            Decoded JSON for JSON responses, raw bytes otherwise.

        Raises:
            StorageRequestError: on a non-2xx status
            StorageConnectionError: when the Worker cannot be reached
        """
        url = f"{self.base_url}{endpoint}"
        headers: dict[str, str] = {}
        if files is None:
            # Multipart requests need httpx to set the boundary itself
            headers["Content-Type"] = "application/json"
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        try:
            response = await self.client.request(
                method,
                url,
                json=json,
                params=params,
                files=files,
                data=data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("Cloudflare request failed", endpoint=endpoint, error=str(e), backend="cloudflare")
            raise StorageConnectionError(f"Cannot reach {url}: {e}") from e

        if not response.is_success:
            raise StorageRequestError(response.status_code, response.text)

        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.content

    async def initialize(self) -> None:
        if self.initialized:
            return
        if not await self.health_check():
            raise StorageUnavailableError(f"Cloudflare backend is unavailable: {self.base_url}")

        try:
            await self.request(f"{API_PREFIX}/init", "POST")
        except StorageError as e:
            # Schema may already exist
            logger.warning("Database init failed", error=str(e), backend="cloudflare")

        self.initialized = True
        logger.info("Cloudflare storage adapter ready", base_url=self.base_url, backend="cloudflare")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        await super().close()

    async def health_check(self) -> bool:
        try:
            response = await self.request(f"{API_PREFIX}/health")
        except StorageError as e:
            logger.warning("Health check failed", error=str(e), backend="cloudflare")
            return False
        return isinstance(response, dict) and response.get("status") == "ok"

    # -- Memos --------------------------------------------------------------

    async def create_memo(self, data: MemoData) -> Memo:
        memo = self._prepare_create(data)
        await self._ensure_ready()
        result = await self.request(f"{API_PREFIX}/memos", "POST", json=memo.to_dict())
        logger.debug("Created memo", memo_id=memo.id, backend="cloudflare")
        return Memo.from_dict(_unwrap(result, "memo")) if isinstance(result, dict) else memo

    async def get_memos(
        self,
        *,
        pinned: bool | None = None,
        archived: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Memo]:
        await self._ensure_ready()
        params: dict[str, Any] = {}
        if pinned is not None:
            params["pinned"] = str(pinned).lower()
        if archived is not None:
            params["archived"] = str(archived).lower()
        if limit:
            params["limit"] = limit
        if offset > 0:
            params["offset"] = offset

        response = await self.request(f"{API_PREFIX}/memos", params=params or None)
        return [Memo.from_dict(item) for item in _unwrap(response, "memos") or []]

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        self._prepare_update(data)
        await self._ensure_ready()
        try:
            result = await self.request(f"{API_PREFIX}/memos/{memo_id}", "PUT", json=data)
        except StorageRequestError as e:
            if e.status_code == 404:
                raise StorageNotFoundError("Memo", memo_id) from e
            raise
        logger.debug("Updated memo", memo_id=memo_id, backend="cloudflare")
        return Memo.from_dict(_unwrap(result, "memo"))

    async def delete_memo(self, memo_id: str) -> None:
        await self._ensure_ready()
        try:
            await self.request(f"{API_PREFIX}/memos/{memo_id}", "DELETE")
        except StorageRequestError as e:
            if e.status_code == 404:
                raise StorageNotFoundError("Memo", memo_id) from e
            raise
        logger.debug("Deleted memo", memo_id=memo_id, backend="cloudflare")

    async def batch_operation(
        self,
        operations: Iterable[BatchOperation | dict[str, Any]],
    ) -> list[BatchResult]:
        """Use the server-side batch endpoint, falling back to one-by-one."""
        ops = [op if isinstance(op, BatchOperation) else BatchOperation.from_dict(op) for op in operations]
        await self._ensure_ready()
        try:
            response = await self.request(
                f"{API_PREFIX}/memos/batch",
                "POST",
                json={"operations": [op.to_dict() for op in ops]},
            )
            raw_results = _unwrap(response, "results") or []
            results = [
                BatchResult(
                    operation=op,
                    success=bool(raw.get("success")),
                    result=raw.get("result"),
                    error=raw.get("error"),
                )
                for op, raw in zip(ops, raw_results)
            ]
            if len(results) < len(ops):
                logger.warning(
                    "Server batch returned too few results",
                    expected=len(ops),
                    received=len(results),
                    backend="cloudflare",
                )
                # Not retried: the server may have applied them
                results.extend(
                    BatchResult(operation=op, success=False, error="No result returned by server")
                    for op in ops[len(results):]
                )
            return results
        except (StorageError, AttributeError, TypeError) as e:
            logger.warning("Server batch unavailable, running sequentially", error=str(e), backend="cloudflare")
            return await super().batch_operation(ops)

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
        content_type = content_type or guess_content_type(filename)
        result = await self.request(
            f"{API_PREFIX}/attachments",
            "POST",
            files={"file": (filename, content, content_type)},
            data={"memoId": memo_id} if memo_id else None,
        )
        attachment = Attachment.from_dict(_unwrap(result, "attachment"))
        if not attachment.url:
            attachment.url = self.get_attachment_url(attachment.id)
        if memo_id and not attachment.memo_id:
            attachment.memo_id = memo_id

        logger.info("Uploaded attachment", attachment_id=attachment.id, filename=filename, backend="cloudflare")
        return attachment

    async def download_attachment(self, attachment_id: str) -> bytes | None:
        await self._ensure_ready()
        try:
            content = await self.request(f"{API_PREFIX}/attachments/{attachment_id}")
        except StorageRequestError as e:
            if e.status_code == 404:
                return None
            raise
        return content if isinstance(content, bytes) else None

    def get_attachment_url(self, attachment_id: str) -> str:
        return f"{self.base_url}{API_PREFIX}/attachments/{attachment_id}"

    async def delete_attachment(self, attachment_id: str) -> None:
        await self._ensure_ready()
        try:
            await self.request(f"{API_PREFIX}/attachments/{attachment_id}", "DELETE")
        except StorageRequestError as e:
            if e.status_code == 404:
                raise StorageNotFoundError("Attachment", attachment_id) from e
            raise

    # -- Settings -----------------------------------------------------------

    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        await self._ensure_ready()
        try:
            response = await self.request(f"{API_PREFIX}/settings", params={"userId": user_id})
        except StorageRequestError as e:
            if e.status_code == 404:
                return None
            raise
        raw = _unwrap(response, "settings")
        return UserSettings.from_dict(raw) if raw else None

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        await self._ensure_ready()
        settings.touch()
        await self.request(f"{API_PREFIX}/settings", "POST", json=settings.to_dict())
        return settings

    # -- Stats --------------------------------------------------------------

    async def get_storage_stats(self) -> dict[str, Any]:
        stats = await super().get_storage_stats()
        stats["base_url"] = self.base_url
        if "error" not in stats:
            try:
                stats["backend"] = await self.request(f"{API_PREFIX}/stats")
            except StorageError as e:
                logger.warning("Backend stats unavailable", error=str(e), backend="cloudflare")
                stats["backend"] = None
        return stats
