"""S3 storage adapter (AWS S3, Cloudflare R2, MinIO)."""

import asyncio
import json
from pathlib import PurePosixPath
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from ..base import (
    Attachment,
    Memo,
    MemoData,
    StorageAdapter,
    filter_and_sort,
    guess_content_type,
    utc_now_iso,
)
from ..config import S3Config, StorageType
from ..exceptions import StorageConnectionError, StorageNotFoundError, StorageOperationError
from ..settings import UserSettings
from ...logging import get_logger

logger = get_logger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES


class S3StorageAdapter(StorageAdapter):
    """Object-per-record adapter with lazy client initialization.

    Storage structure::

        s3://{bucket}/{prefix}/memos/{memo_id}.json
        s3://{bucket}/{prefix}/attachments/{attachment_id}/{filename}
        s3://{bucket}/{prefix}/settings/{user_id}.json
    """

    storage_type = StorageType.S3

    def __init__(self, config: S3Config, client: Any = None):
        """Initialize S3 adapter.

        Args:
            config: Bucket, region, endpoint and optional credentials
            client: Pre-built boto3 S3 client (tests inject a fake)
        """
        super().__init__()
        self.config = config
        self.bucket = config.bucket
        self.prefix = config.prefix
        self._client = client

    @property
    def client(self):
        """Lazily initialize and return the S3 client.

        Credentials not given in the config are read from the environment,
        including a ``.env`` file if present.
        """
        if self._client is None:
            from dotenv import load_dotenv
            import boto3

            load_dotenv()

            kwargs: dict[str, Any] = {
                "region_name": self.config.region,
                "endpoint_url": self.config.endpoint_url,
            }
            if self.config.access_key_id:
                kwargs["aws_access_key_id"] = self.config.access_key_id
                kwargs["aws_secret_access_key"] = self.config.secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def _key(self, *parts: str) -> str:
        return "/".join(p for p in (self.prefix, *parts) if p)

    def _memo_key(self, memo_id: str) -> str:
        return self._key("memos", f"{memo_id}.json")

    def _attachment_prefix(self, attachment_id: str) -> str:
        return self._key("attachments", attachment_id) + "/"

    def _settings_key(self, user_id: str) -> str:
        return self._key("settings", f"{user_id}.json")

    def _build_public_url(self, key: str) -> str:
        """Build publicly accessible URL for an S3 object."""
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    # -- Low-level object helpers (wrap sync boto3 via asyncio.to_thread) ---

    async def _put_json(self, key: str, payload: dict[str, Any]) -> None:
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            ContentType="application/json",
        )

    async def _get_bytes(self, key: str) -> bytes | None:
        try:
            obj = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise StorageOperationError(f"Failed to read s3://{self.bucket}/{key}: {e}") from e
        return obj["Body"].read()

    async def _get_json(self, key: str) -> dict[str, Any] | None:
        body = await self._get_bytes(key)
        return json.loads(body) if body is not None else None

    async def _exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise StorageOperationError(f"Failed to check s3://{self.bucket}/{key}: {e}") from e

    async def _list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        while True:
            response = await asyncio.to_thread(self.client.list_objects_v2, **kwargs)
            keys.extend(item["Key"] for item in response.get("Contents", []))
            if not response.get("IsTruncated"):
                return keys
            kwargs["ContinuationToken"] = response["NextContinuationToken"]

    async def _delete(self, key: str) -> None:
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)

    # -- Lifecycle ----------------------------------------------------------

    async def initialize(self) -> None:
        if self.initialized:
            return
        try:
            await asyncio.to_thread(self.client.head_bucket, Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise StorageConnectionError(f"Cannot access bucket {self.bucket}: {e}") from e
        self.initialized = True
        logger.info("S3 storage adapter ready", bucket=self.bucket, prefix=self.prefix, backend="s3")

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self.client.head_bucket, Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning("Health check failed", bucket=self.bucket, error=str(e), backend="s3")
            return False

    # -- Memos --------------------------------------------------------------

    async def create_memo(self, data: MemoData) -> Memo:
        memo = self._prepare_create(data)
        await self._ensure_ready()

        key = self._memo_key(memo.id)
        if await self._exists(key):
            raise StorageOperationError(f"Memo already exists: {memo.id}")
        await self._put_json(key, memo.to_dict())

        logger.debug("Created memo", memo_id=memo.id, backend="s3", bucket=self.bucket)
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
        keys = [k for k in await self._list_keys(self._key("memos") + "/") if k.endswith(".json")]
        payloads = await asyncio.gather(*(self._get_json(k) for k in keys))
        memos = [Memo.from_dict(p) for p in payloads if p is not None]
        return filter_and_sort(memos, pinned=pinned, archived=archived, limit=limit, offset=offset)

    async def _load_memo(self, memo_id: str) -> Memo:
        payload = await self._get_json(self._memo_key(memo_id))
        if payload is None:
            raise StorageNotFoundError("Memo", memo_id)
        return Memo.from_dict(payload)

    async def update_memo(self, memo_id: str, data: dict[str, Any]) -> Memo:
        self._prepare_update(data)
        await self._ensure_ready()

        updated = (await self._load_memo(memo_id)).apply_update(data)
        await self._put_json(self._memo_key(memo_id), updated.to_dict())

        logger.debug("Updated memo", memo_id=memo_id, backend="s3", bucket=self.bucket)
        return updated

    async def delete_memo(self, memo_id: str) -> None:
        await self._ensure_ready()
        memo = await self._load_memo(memo_id)

        await self._delete(self._memo_key(memo_id))
        for attachment in memo.attachments:
            for key in await self._list_keys(self._attachment_prefix(attachment.id)):
                await self._delete(key)

        logger.debug("Deleted memo", memo_id=memo_id, backend="s3", bucket=self.bucket)

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
        attachment_id = self.generate_id()
        content_type = content_type or guess_content_type(filename)
        key = self._attachment_prefix(attachment_id) + PurePosixPath(filename).name

        put_kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": content,
            "ContentType": content_type,
        }
        if memo_id:
            put_kwargs["Metadata"] = {"memo-id": memo_id}
        await asyncio.to_thread(self.client.put_object, **put_kwargs)

        logger.info("Stored attachment", attachment_id=attachment_id, filename=filename, backend="s3", bucket=self.bucket)
        return Attachment(
            id=attachment_id,
            filename=filename,
            type=content_type,
            size=len(content),
            url=self._build_public_url(key),
            memo_id=memo_id,
            created_at=utc_now_iso(),
            extras={"s3_bucket": self.bucket, "s3_key": key},
        )

    async def download_attachment(self, attachment_id: str) -> bytes | None:
        await self._ensure_ready()
        keys = await self._list_keys(self._attachment_prefix(attachment_id))
        if not keys:
            return None
        return await self._get_bytes(keys[0])

    def get_attachment_url(self, attachment_id: str) -> str:
        """URL of the attachment's folder; uploads return the exact object URL."""
        return self._build_public_url(self._attachment_prefix(attachment_id))

    async def delete_attachment(self, attachment_id: str) -> None:
        await self._ensure_ready()
        keys = await self._list_keys(self._attachment_prefix(attachment_id))
        if not keys:
            raise StorageNotFoundError("Attachment", attachment_id)
        for key in keys:
            await self._delete(key)
        logger.info("Deleted attachment", attachment_id=attachment_id, backend="s3", bucket=self.bucket)

    # -- Settings -----------------------------------------------------------

    async def load_settings(self, user_id: str = "default") -> UserSettings | None:
        await self._ensure_ready()
        payload = await self._get_json(self._settings_key(user_id))
        return UserSettings.from_dict(payload) if payload else None

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        await self._ensure_ready()
        settings.touch()
        await self._put_json(self._settings_key(settings.user_id), settings.to_dict())
        return settings
