"""Tests for the shared StorageAdapter behaviour, exercised through the memory adapter."""
import asyncio
import re

import pytest

from meownocode.storage import (
    BatchOperation,
    Memo,
    MemoryStorageAdapter,
    StorageAdapter,
    StorageNotFoundError,
    StorageOperationError,
    StorageValidationError,
)
from meownocode.storage.base import MAX_CONTENT_LENGTH, filter_and_sort, paginate


@pytest.fixture
def adapter():
    return MemoryStorageAdapter()


def memo_data(memo_id: str, created_at: str, **extra):
    return {"id": memo_id, "content": f"memo {memo_id}", "createdAt": created_at, **extra}


class TestValidation:
    def test_content_at_limit_is_valid(self, adapter):
        result = adapter.validate_memo_data({"content": "a" * MAX_CONTENT_LENGTH})
        assert result.is_valid
        assert result.errors == []

    def test_content_over_limit_mentions_limit(self, adapter):
        result = adapter.validate_memo_data({"content": "a" * (MAX_CONTENT_LENGTH + 1)})
        assert not result.is_valid
        assert result.errors == ["Content too long (max 10000 characters)"]

    def test_content_required(self, adapter):
        assert adapter.validate_memo_data({}).errors == ["Content is required"]
        assert adapter.validate_memo_data({"content": ""}).errors == ["Content is required"]

    def test_tags_must_be_list_of_strings(self, adapter):
        result = adapter.validate_memo_data({"content": "x", "tags": "work"})
        assert result.errors == ["Tags must be an array"]

        result = adapter.validate_memo_data({"content": "x", "backlinks": ["a", 1]})
        assert result.errors == ["Backlinks must contain only strings"]

    def test_partial_update_skips_missing_content(self, adapter):
        assert adapter.validate_memo_data({"pinned": True}, partial=True).is_valid
        assert not adapter.validate_memo_data({"content": ""}, partial=True).is_valid

    def test_create_rejects_invalid_before_storing(self, adapter):
        with pytest.raises(StorageValidationError) as exc_info:
            asyncio.run(adapter.create_memo({"content": "a" * (MAX_CONTENT_LENGTH + 1)}))
        assert "max 10000" in str(exc_info.value)
        assert asyncio.run(adapter.get_memos()) == []


class TestNormalization:
    def test_generate_id_format(self, adapter):
        assert re.match(r"^\d{13}-[0-9a-z]{9}$", adapter.generate_id())

    def test_fills_id_and_timestamps(self, adapter):
        memo = adapter.normalize_memo_data({"content": "hello"})
        assert memo.id
        assert memo.created_at
        assert memo.updated_at == memo.created_at

    def test_null_id_gets_generated(self, adapter):
        async def run():
            first = await adapter.create_memo({"id": None, "content": "one"})
            second = await adapter.create_memo({"id": None, "content": "two"})
            return first, second

        first, second = asyncio.run(run())
        assert re.match(r"^\d{13}-[0-9a-z]{9}$", first.id)
        assert first.id != second.id
        assert first.id != "None"

    def test_caller_fields_win(self, adapter):
        memo = adapter.normalize_memo_data(
            {"id": "m1", "content": "x", "createdAt": "2024-01-01T00:00:00.000Z"}
        )
        assert memo.id == "m1"
        assert memo.created_at == "2024-01-01T00:00:00.000Z"

    def test_legacy_timestamp_aliases(self):
        memo = Memo.from_dict({
            "id": "m1",
            "content": "x",
            "timestamp": "2023-05-01T00:00:00.000Z",
            "lastModified": "2023-05-02T00:00:00.000Z",
        })
        assert memo.created_at == "2023-05-01T00:00:00.000Z"
        assert memo.updated_at == "2023-05-02T00:00:00.000Z"

    def test_explicit_keys_beat_legacy_aliases(self):
        memo = Memo.from_dict({
            "id": "m1",
            "content": "x",
            "createdAt": "2024-01-01T00:00:00.000Z",
            "timestamp": "2023-05-01T00:00:00.000Z",
        })
        assert memo.created_at == "2024-01-01T00:00:00.000Z"

    def test_unknown_keys_survive_round_trip(self):
        memo = Memo.from_dict({"id": "m1", "content": "x", "color": "blue"})
        assert memo.extras == {"color": "blue"}
        assert memo.to_dict()["color"] == "blue"


class TestCrud:
    def test_update_merges_and_bumps_updated_at(self, adapter):
        async def run():
            created = await adapter.create_memo(
                memo_data("m1", "2024-01-01T00:00:00.000Z", tags=["a"])
            )
            updated = await adapter.update_memo("m1", {"content": "changed", "mood": "happy"})
            return created, updated

        created, updated = asyncio.run(run())
        assert updated.content == "changed"
        assert updated.tags == ["a"]
        assert updated.extras["mood"] == "happy"
        assert updated.created_at == created.created_at
        assert updated.updated_at > created.updated_at

    def test_update_missing_raises_not_found(self, adapter):
        with pytest.raises(StorageNotFoundError):
            asyncio.run(adapter.update_memo("missing", {"content": "x"}))

    def test_delete_missing_raises_not_found(self, adapter):
        with pytest.raises(StorageNotFoundError):
            asyncio.run(adapter.delete_memo("missing"))

    def test_get_memos_newest_first_with_filters(self, adapter):
        async def run():
            await adapter.create_memo(memo_data("old", "2024-01-01T00:00:00.000Z"))
            await adapter.create_memo(memo_data("new", "2024-03-01T00:00:00.000Z", pinned=True))
            await adapter.create_memo(memo_data("mid", "2024-02-01T00:00:00.000Z", archived=True))
            return (
                await adapter.get_memos(),
                await adapter.get_pinned_memos(),
                await adapter.get_memos(archived=False),
                await adapter.get_memos(limit=1, offset=1),
            )

        all_memos, pinned, active, page = asyncio.run(run())
        assert [m.id for m in all_memos] == ["new", "mid", "old"]
        assert [m.id for m in pinned] == ["new"]
        assert [m.id for m in active] == ["new", "old"]
        assert [m.id for m in page] == ["mid"]

    def test_duplicate_id_rejected(self, adapter):
        async def run():
            await adapter.create_memo(memo_data("m1", "2024-01-01T00:00:00.000Z"))
            await adapter.create_memo(memo_data("m1", "2024-01-01T00:00:00.000Z"))

        with pytest.raises(StorageOperationError, match="already exists"):
            asyncio.run(run())


class TestBatch:
    def test_records_each_outcome_without_rollback(self, adapter):
        ops = [
            {"type": "create", "data": {"id": "a", "content": "first"}},
            {"type": "update", "id": "missing", "data": {"content": "x"}},
            BatchOperation(type="archive", id="a"),
            {"type": "create", "data": {"content": ""}},
            {"type": "delete", "id": "a"},
        ]
        results = asyncio.run(adapter.batch_operation(ops))

        assert [r.success for r in results] == [True, False, False, False, True]
        assert "Memo not found: missing" in results[1].error
        assert results[2].error == "Unsupported operation type: archive"
        assert "Content is required" in results[3].error

    def test_import_forces_pinned_by_list(self, adapter):
        async def run():
            result = await adapter.import_data(
                [{"id": "a", "content": "x", "pinned": True}],
                [{"id": "b", "content": "y"}],
            )
            return result, await adapter.get_memos(pinned=False), await adapter.get_pinned_memos()

        result, unpinned, pinned = asyncio.run(run())
        assert (result.successful, result.failed) == (2, 0)
        assert [m.id for m in unpinned] == ["a"]
        assert [m.id for m in pinned] == ["b"]

    def test_reimport_counts_failures(self, adapter):
        async def run():
            await adapter.import_data([{"id": "a", "content": "x"}])
            return await adapter.import_data([{"id": "a", "content": "x"}, {"id": "b", "content": "y"}])

        result = asyncio.run(run())
        assert result.successful == 1
        assert result.failed == 1
        assert result.successful + result.failed == 2


class TestExportAndStats:
    def test_export_metadata(self, adapter):
        async def run():
            await adapter.create_memo({"content": "one"})
            await adapter.create_memo({"content": "two", "pinned": True})
            return await adapter.export_data()

        exported = asyncio.run(run())
        data = exported.to_dict()
        assert len(data["memos"]) == 1
        assert len(data["pinnedMemos"]) == 1
        assert data["metadata"]["adapterType"] == "MemoryStorageAdapter"
        assert data["metadata"]["totalCount"] == 2

    def test_stats_fold_errors_into_dict(self, adapter):
        async def broken(**kwargs):
            raise RuntimeError("disk on fire")

        adapter.get_memos = broken
        stats = asyncio.run(adapter.get_storage_stats())
        assert stats["healthy"] is False
        assert stats["error"] == "disk on fire"


class TestAbstractContract:
    def test_incomplete_adapter_cannot_be_instantiated(self):
        class Partial(StorageAdapter):
            async def initialize(self):
                pass

        with pytest.raises(TypeError):
            Partial()

    def test_async_context_manager(self):
        async def run():
            adapter = MemoryStorageAdapter()
            async with adapter as entered:
                assert entered.initialized
            return adapter

        assert asyncio.run(run()).initialized is False


class TestListHelpers:
    def test_paginate(self):
        memos = [Memo(id=str(i), content="x") for i in range(5)]
        assert [m.id for m in paginate(memos, 2, 1)] == ["1", "2"]
        assert [m.id for m in paginate(memos, None, 3)] == ["3", "4"]
        assert paginate(memos, None, 0) == memos

    def test_filter_and_sort(self):
        memos = [
            Memo(id="a", content="x", created_at="2024-01-01", pinned=True),
            Memo(id="b", content="x", created_at="2024-02-01"),
        ]
        assert [m.id for m in filter_and_sort(memos)] == ["b", "a"]
        assert [m.id for m in filter_and_sort(memos, pinned=True)] == ["a"]
