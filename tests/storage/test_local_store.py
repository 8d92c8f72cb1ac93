"""Tests for the local key/value stores."""
import asyncio
import json

import pytest

from meownocode.storage import FileLocalStore, MemoryLocalStore


class TestFileLocalStore:
    def test_values_persist_across_instances(self, tmp_path):
        path = tmp_path / "local_storage.json"

        async def run():
            store = FileLocalStore(path)
            await store.set("storage_config", {"type": "browser"})
            await store.set("memos", [{"id": "m1"}])
            await store.remove("memos")
            return await FileLocalStore(path).get("storage_config")

        assert asyncio.run(run()) == {"type": "browser"}
        assert json.loads(path.read_text()) == {"storage_config": {"type": "browser"}}
        assert not (tmp_path / "local_storage.json.tmp").exists()

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "local_storage.json"
        path.write_text("{not json")

        async def run():
            store = FileLocalStore(path)
            return await store.keys(), await store.get("missing", "fallback")

        assert asyncio.run(run()) == ([], "fallback")

    def test_returned_values_are_copies(self, tmp_path):
        async def run():
            store = FileLocalStore(tmp_path / "store.json")
            await store.set("memos", [{"id": "m1"}])
            first = await store.get("memos")
            first.append({"id": "m2"})
            return await store.get("memos")

        assert asyncio.run(run()) == [{"id": "m1"}]

    def test_non_serializable_value_rejected(self, tmp_path):
        store = FileLocalStore(tmp_path / "store.json")
        with pytest.raises(TypeError):
            asyncio.run(store.set("bad", object()))


class TestMemoryLocalStore:
    def test_basic_operations(self):
        async def run():
            store = MemoryLocalStore({"a": 1})
            await store.set("b", [1, 2])
            await store.remove("a")
            return await store.keys(), await store.get("b"), await store.size_bytes()

        keys, value, size = asyncio.run(run())
        assert keys == ["b"]
        assert value == [1, 2]
        assert size == len("[1, 2]")
