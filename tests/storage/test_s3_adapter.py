"""Tests for the S3 adapter with an in-memory fake client."""
import asyncio
import io

import pytest
from botocore.exceptions import ClientError

from meownocode.storage import (
    S3Config,
    S3StorageAdapter,
    StorageConnectionError,
    StorageNotFoundError,
    StorageOperationError,
    UserSettings,
)


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    """Implements the handful of boto3 S3 calls the adapter uses."""

    def __init__(self, bucket: str = "notes", page_size: int = 2):
        self.bucket = bucket
        self.page_size = page_size
        self.objects: dict[str, dict] = {}
        self.list_calls = 0

    def _check_bucket(self, bucket: str) -> None:
        if bucket != self.bucket:
            raise _client_error("NoSuchBucket", "HeadBucket")

    def head_bucket(self, Bucket):
        self._check_bucket(Bucket)
        return {}

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None):
        self._check_bucket(Bucket)
        self.objects[Key] = {"Body": Body, "ContentType": ContentType, "Metadata": Metadata or {}}
        return {}

    def get_object(self, Bucket, Key):
        self._check_bucket(Bucket)
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key]["Body"])}

    def head_object(self, Bucket, Key):
        self._check_bucket(Bucket)
        if Key not in self.objects:
            raise _client_error("404", "HeadObject")
        return {}

    def list_objects_v2(self, Bucket, Prefix, ContinuationToken=None):
        self._check_bucket(Bucket)
        self.list_calls += 1
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + self.page_size]
        response = {"Contents": [{"Key": k} for k in page]}
        if start + self.page_size < len(keys):
            response["IsTruncated"] = True
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    def delete_object(self, Bucket, Key):
        self._check_bucket(Bucket)
        self.objects.pop(Key, None)
        return {}


@pytest.fixture
def fake():
    return FakeS3Client()


@pytest.fixture
def adapter(fake):
    return S3StorageAdapter(S3Config(bucket="notes", prefix="cats"), client=fake)


def test_memo_objects_and_pagination(adapter, fake):
    async def run():
        for i in range(5):
            await adapter.create_memo({
                "id": f"m{i}",
                "content": f"memo {i}",
                "createdAt": f"2024-01-0{i + 1}T00:00:00.000Z",
            })
        return await adapter.get_memos(limit=2)

    memos = asyncio.run(run())
    assert "cats/memos/m0.json" in fake.objects
    assert [m.id for m in memos] == ["m4", "m3"]
    # Five keys with a page size of two take three list calls
    assert fake.list_calls == 3


def test_duplicate_create_rejected(adapter):
    async def run():
        await adapter.create_memo({"id": "a", "content": "x"})
        await adapter.create_memo({"id": "a", "content": "x"})

    with pytest.raises(StorageOperationError, match="already exists"):
        asyncio.run(run())


def test_update_and_delete(adapter, fake):
    async def run():
        await adapter.create_memo({"id": "a", "content": "x"})
        updated = await adapter.update_memo("a", {"tags": ["kitten"]})
        await adapter.delete_memo("a")
        with pytest.raises(StorageNotFoundError):
            await adapter.delete_memo("a")
        return updated

    assert asyncio.run(run()).tags == ["kitten"]
    assert fake.objects == {}


def test_delete_memo_removes_its_attachments(adapter, fake):
    async def run():
        attachment = await adapter.upload_attachment("whiskers.jpg", b"jpeg", memo_id="a")
        await adapter.create_memo({
            "id": "a",
            "content": "with picture",
            "attachments": [attachment.to_dict()],
        })
        await adapter.delete_memo("a")
        return attachment

    attachment = asyncio.run(run())
    assert attachment.extras["s3_key"] == f"cats/attachments/{attachment.id}/whiskers.jpg"
    assert attachment.url == (
        f"https://notes.s3.us-east-1.amazonaws.com/cats/attachments/{attachment.id}/whiskers.jpg"
    )
    assert fake.objects == {}


def test_attachment_download_and_missing(adapter, fake):
    async def run():
        attachment = await adapter.upload_attachment("a.txt", b"hello", memo_id="m1")
        content = await adapter.download_attachment(attachment.id)
        missing = await adapter.download_attachment("nope")
        with pytest.raises(StorageNotFoundError):
            await adapter.delete_attachment("nope")
        return attachment, content, missing

    attachment, content, missing = asyncio.run(run())
    assert content == b"hello"
    assert missing is None
    assert fake.objects[attachment.extras["s3_key"]]["Metadata"] == {"memo-id": "m1"}


def test_settings_round_trip(adapter):
    async def run():
        await adapter.save_settings(UserSettings(user_id="alice"))
        return await adapter.load_settings("alice"), await adapter.load_settings("bob")

    alice, bob = asyncio.run(run())
    assert alice.user_id == "alice"
    assert bob is None


def test_custom_endpoint_url():
    adapter = S3StorageAdapter(
        S3Config(bucket="notes", endpoint_url="https://r2.example.com/"),
        client=FakeS3Client(),
    )
    assert adapter.get_attachment_url("x") == "https://r2.example.com/notes/meownocode/attachments/x/"


def test_missing_bucket_fails_to_initialize(fake):
    adapter = S3StorageAdapter(S3Config(bucket="elsewhere"), client=fake)
    with pytest.raises(StorageConnectionError):
        asyncio.run(adapter.initialize())
    assert asyncio.run(adapter.health_check()) is False
