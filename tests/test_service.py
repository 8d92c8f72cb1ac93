"""Tests for DataService notifications and change events."""
import asyncio

import pytest

from meownocode.events import DATA_CHANGED, SETTINGS_CHANGED, STORAGE_CHANGED, EventBus, RecordingNotifier
from meownocode.service import DataService
from meownocode.storage import (
    MemoryLocalStore,
    StorageFactory,
    StorageManager,
    StorageNotFoundError,
    StorageOperationError,
    StorageType,
    StorageValidationError,
    UserSettings,
)
from meownocode.storage.manager import CONFIG_KEY


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def service(tmp_path, notifier, events):
    store = MemoryLocalStore({CONFIG_KEY: {"version": 1, "type": "memory", "config": {}}})
    factory = StorageFactory(config_defaults={
        StorageType.BROWSER: {"data_dir": str(tmp_path / "browser")},
    })
    return DataService(StorageManager(factory, store, notifier), notifier, events)


def record(events: EventBus, name: str) -> list:
    received = []
    events.subscribe(name, received.append)
    return received


def test_create_notifies_and_dispatches(service, notifier, events):
    received = record(events, DATA_CHANGED)
    memo = asyncio.run(service.create_memo({"content": "hello"}))

    assert notifier.messages == [("success", "Memo saved")]
    assert received[0].detail == {"part": "storage.create", "memo_id": memo.id}


def test_failed_write_notifies_and_reraises(service, notifier, events):
    received = record(events, DATA_CHANGED)

    with pytest.raises(StorageValidationError):
        asyncio.run(service.create_memo({"content": ""}))
    with pytest.raises(StorageNotFoundError):
        asyncio.run(service.delete_memo("missing"))

    assert notifier.levels() == ["error", "error"]
    assert received == []


def test_reads_default_to_unpinned(service):
    async def run():
        await service.create_memo({"id": "a", "content": "plain"})
        await service.create_memo({"id": "b", "content": "pinned", "pinned": True})
        return (
            await service.get_memos(),
            await service.get_pinned_memos(),
            await service.get_all_memos(),
        )

    unpinned, pinned, everything = asyncio.run(run())
    assert [m.id for m in unpinned] == ["a"]
    assert [m.id for m in pinned] == ["b"]
    assert {m.id for m in everything} == {"a", "b"}


def test_read_failure_returns_empty_list(service, notifier):
    async def broken(**kwargs):
        raise RuntimeError("disk on fire")

    async def run():
        adapter = await service.manager.ensure_initialized()
        adapter.get_memos = broken
        return await service.get_memos()

    assert asyncio.run(run()) == []
    assert notifier.messages == [("error", "Failed to load memos: disk on fire")]


def test_batch_and_import_events(service, events):
    received = record(events, DATA_CHANGED)

    async def run():
        await service.batch_operation([
            {"type": "create", "data": {"id": "a", "content": "one"}},
            {"type": "delete", "id": "missing"},
        ])
        return await service.import_data([{"id": "a", "content": "dup"}, {"id": "b", "content": "new"}])

    result = asyncio.run(run())
    assert (result.successful, result.failed) == (1, 1)
    assert [e.detail["part"] for e in received] == ["storage.batch", "storage.import"]
    assert received[0].detail["failed"] == 1


def test_switch_storage_dispatches_storage_changed(service, events):
    received = record(events, STORAGE_CHANGED)

    async def run():
        await service.create_memo({"id": "a", "content": "moving house"})
        await service.switch_storage_type("browser")
        return await service.get_all_memos()

    memos = asyncio.run(run())
    assert [m.id for m in memos] == ["a"]
    assert received[0].detail == {"previous_type": "memory", "storage_type": "browser"}


def test_health_check_and_storage_info(service):
    async def run():
        return await service.health_check(), await service.get_storage_info()

    health, info = asyncio.run(run())
    assert health["healthy"] is True
    assert health["storage_type"] == "memory"
    assert info["current_type"] == "memory"


def test_settings_defaults_and_save_event(service, events):
    received = record(events, SETTINGS_CHANGED)

    async def run():
        defaults = await service.load_settings("alice")
        defaults.theme.dark_mode = True
        await service.save_settings(defaults)
        return await service.load_settings("alice")

    loaded = asyncio.run(run())
    assert loaded.user_id == "alice"
    assert loaded.theme.dark_mode is True
    assert received[0].detail == {"user_id": "alice"}


def test_database_import_needs_localdb(service, notifier, tmp_path):
    with pytest.raises(StorageOperationError, match="local database"):
        asyncio.run(service.import_database_file(tmp_path / "backup.db"))
    assert notifier.levels() == ["error"]


def test_save_settings_failure_notifies(service, notifier):
    async def broken(settings):
        raise RuntimeError("read-only")

    async def run():
        adapter = await service.manager.ensure_initialized()
        adapter.save_settings = broken
        await service.save_settings(UserSettings())

    with pytest.raises(RuntimeError):
        asyncio.run(run())
    assert notifier.levels() == ["error"]
