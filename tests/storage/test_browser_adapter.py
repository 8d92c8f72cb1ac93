"""Tests for the browser-style local adapter."""
import asyncio

import pytest

from meownocode.storage import (
    BrowserConfig,
    BrowserStorageAdapter,
    StorageNotFoundError,
    StorageOperationError,
    UserSettings,
)


@pytest.fixture
def adapter(tmp_path):
    return BrowserStorageAdapter(BrowserConfig(data_dir=str(tmp_path / "browser")))


def test_pinned_memos_live_in_their_own_list(adapter):
    async def run():
        await adapter.create_memo({"id": "a", "content": "plain"})
        await adapter.create_memo({"id": "b", "content": "pinned", "pinned": True})
        return (
            await adapter.store.get("memos"),
            await adapter.store.get("pinnedMemos"),
        )

    memos, pinned = asyncio.run(run())
    assert [m["id"] for m in memos] == ["a"]
    assert [m["id"] for m in pinned] == ["b"]


def test_update_moves_memo_when_pin_changes(adapter):
    async def run():
        await adapter.create_memo({"id": "a", "content": "plain"})
        await adapter.update_memo("a", {"pinned": True})
        return await adapter.get_memos(pinned=False), await adapter.get_pinned_memos()

    unpinned, pinned = asyncio.run(run())
    assert unpinned == []
    assert [m.id for m in pinned] == ["a"]


def test_delete_records_tombstone_and_blocks_reimport(adapter):
    async def run():
        await adapter.create_memo({"id": "a", "content": "gone soon"})
        await adapter.delete_memo("a")
        result = await adapter.import_data([{"id": "a", "content": "gone soon"}])
        return result, await adapter.get_deleted_memo_ids(), await adapter.get_memos()

    result, tombstones, memos = asyncio.run(run())
    assert tombstones == {"a"}
    assert memos == []
    assert (result.successful, result.failed, result.duplicates) == (0, 0, 1)


def test_import_skips_present_ids_and_reports_invalid(adapter):
    async def run():
        await adapter.create_memo({"id": "a", "content": "here"})
        return await adapter.import_data(
            [{"id": "a", "content": "here"}, {"id": "b", "content": ""}],
            [{"id": "c", "content": "pin me"}],
        )

    result = asyncio.run(run())
    assert result.successful == 1
    assert result.failed == 1
    assert result.duplicates == 1
    assert asyncio.run(adapter.get_pinned_memos())[0].id == "c"


def test_create_rejects_existing_id(adapter):
    async def run():
        await adapter.create_memo({"id": "x", "content": "one", "pinned": True})
        with pytest.raises(StorageOperationError, match="already exists"):
            await adapter.create_memo({"id": "x", "content": "two"})
        batch = await adapter.batch_operation([
            {"type": "create", "data": {"id": "x", "content": "three"}},
        ])
        return batch, await adapter.get_memos()

    batch, memos = asyncio.run(run())
    assert [r.success for r in batch] == [False]
    assert [(m.id, m.content) for m in memos] == [("x", "one")]


def test_delete_missing_raises(adapter):
    with pytest.raises(StorageNotFoundError):
        asyncio.run(adapter.delete_memo("nope"))


def test_attachment_lifecycle(adapter):
    async def run():
        attachment = await adapter.upload_attachment("cat.png", b"\x89PNG", memo_id="a")
        content = await adapter.download_attachment(attachment.id)
        await adapter.delete_attachment(attachment.id)
        after = await adapter.download_attachment(attachment.id)
        return attachment, content, after

    attachment, content, after = asyncio.run(run())
    assert attachment.type == "image/png"
    assert attachment.size == 4
    assert attachment.url == f"./local/{attachment.id}"
    assert content == b"\x89PNG"
    assert after is None


def test_wildcard_attachment_id_matches_nothing(adapter):
    async def run():
        attachment = await adapter.upload_attachment("secret.txt", b"kept")
        for bogus in ("*", "?*", "[a-z]*", "../attachments/*"):
            assert await adapter.download_attachment(bogus) is None
            with pytest.raises(StorageNotFoundError):
                await adapter.delete_attachment(bogus)
        return await adapter.download_attachment(attachment.id)

    assert asyncio.run(run()) == b"kept"


def test_settings_round_trip(adapter):
    async def run():
        assert await adapter.load_settings("alice") is None
        await adapter.save_settings(UserSettings(user_id="alice", pinned_memos=["a"]))
        return await adapter.load_settings("alice")

    loaded = asyncio.run(run())
    assert loaded.pinned_memos == ["a"]
    assert loaded.updated_at is not None


def test_clear_all_data(adapter):
    async def run():
        await adapter.create_memo({"id": "a", "content": "x"})
        await adapter.delete_memo("a")
        await adapter.upload_attachment("note.txt", b"hi")
        await adapter.clear_all_data()
        stats = await adapter.get_storage_stats()
        return stats, list(adapter._attachments_dir.iterdir())

    stats, blobs = asyncio.run(run())
    assert stats["total_count"] == 0
    assert stats["deleted_memo_ids"] == 0
    assert blobs == []
