"""
Tests for AutoSaveManager: debouncing, ordering, eviction, clearing,
corruption handling and storage failure resilience.
"""
import asyncio
from unittest.mock import patch

import pytest

from draftkeeper.AutoSave import manager as manager_module
from draftkeeper.AutoSave.entry import EntryMetadata, deserialize_entry
from draftkeeper.AutoSave.manager import (
    AutoSaveConfig,
    AutoSaveManager,
    SaveResult,
    get_autosave_manager,
    init_autosave_manager,
    shutdown_autosave_manager,
)
from draftkeeper.exceptions import ConfigurationError
from draftkeeper.Storage.backends import FileStore, MemoryStore
from draftkeeper.Storage.storage_adapter import StorageAdapter, StorageOptions


SETTLE_SECONDS = 0.3


def stored_content(manager, autosave_id):
    entry = manager.get_entry(autosave_id)
    return entry.content if entry is not None else None


# ========== Configuration ==========

class TestConfig:

    @pytest.mark.parametrize("kwargs", [
        {"debounce_ms": -1},
        {"max_entries": 0},
        {"storage_key": ""},
        {"storage_options": StorageOptions(ttl_ms=0)},
    ])
    def test_invalid_config_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            AutoSaveConfig(**kwargs)

    def test_encrypt_without_key_rejected_at_construction(self, adapter):
        config = AutoSaveConfig(storage_options=StorageOptions(encrypt=True))
        with pytest.raises(ConfigurationError):
            AutoSaveManager(config, storage=adapter)

    def test_encrypt_with_key_accepted(self, encrypted_adapter, clock):
        config = AutoSaveConfig(storage_options=StorageOptions(encrypt=True))
        manager = AutoSaveManager(config, storage=encrypted_adapter, clock=clock)

        manager.track_change("a", "secret")  # no loop: saved synchronously

        assert stored_content(manager, "a") == "secret"


# ========== Debounce ==========

class TestDebounce:

    @pytest.mark.asyncio
    async def test_burst_of_changes_writes_once(self, manager):
        for text in ("H", "He", "Hel", "Hell", "Hello"):
            manager.track_change("title", text, "/posts/new")
            await asyncio.sleep(0.005)

        assert manager.get_entry("title") is None
        await asyncio.sleep(SETTLE_SECONDS)

        assert manager.stats.writes == 1
        assert stored_content(manager, "title") == "Hello"

    @pytest.mark.asyncio
    async def test_ids_debounce_independently(self, manager):
        manager.track_change("a", "one")
        manager.track_change("b", "two")
        await asyncio.sleep(SETTLE_SECONDS)

        assert stored_content(manager, "a") == "one"
        assert stored_content(manager, "b") == "two"

    @pytest.mark.asyncio
    async def test_unchanged_content_is_not_rewritten(self, manager):
        manager.track_change("a", "same")
        await asyncio.sleep(SETTLE_SECONDS)
        assert manager.stats.writes == 1

        manager.track_change("a", "same")
        await asyncio.sleep(SETTLE_SECONDS)

        assert manager.stats.writes == 1
        assert manager.stats.skipped_unchanged >= 1
        assert not manager.has_pending_write("a")

    @pytest.mark.asyncio
    async def test_typing_back_to_stored_content_cancels_write(self, manager):
        manager.track_change("a", "saved")
        assert await manager.force_save("a") is SaveResult.SAVED

        manager.track_change("a", "saved!")
        manager.track_change("a", "saved")
        await asyncio.sleep(SETTLE_SECONDS)

        assert manager.stats.writes == 1
        assert stored_content(manager, "a") == "saved"


# ========== Force save and ordering ==========

class TestForceSave:

    @pytest.mark.asyncio
    async def test_force_save_bypasses_debounce(self, make_manager):
        manager = make_manager(debounce_ms=60_000)
        manager.track_change("a", "now please")

        assert await manager.force_save("a") is SaveResult.SAVED
        assert stored_content(manager, "a") == "now please"
        assert not manager.scheduler.pending("a")

    @pytest.mark.asyncio
    async def test_force_save_nothing_pending(self, manager):
        assert await manager.force_save("never-tracked") is SaveResult.NOTHING_PENDING

    @pytest.mark.asyncio
    async def test_latest_call_wins(self, make_manager):
        manager = make_manager(debounce_ms=60_000)
        manager.track_change("a", "first")
        manager.track_change("a", "second")

        await manager.force_save("a")
        assert stored_content(manager, "a") == "second"

    @pytest.mark.asyncio
    async def test_newer_change_during_write_discards_older_write(self, manager):
        manager.track_change("a", "old")
        task = asyncio.create_task(manager.force_save("a"))
        await asyncio.sleep(0)  # let the save start encoding

        manager.track_change("a", "new")
        result = await task
        await asyncio.sleep(SETTLE_SECONDS)

        assert result is SaveResult.DISCARDED
        assert stored_content(manager, "a") == "new"
        assert manager.stats.discarded >= 1

    @pytest.mark.asyncio
    async def test_flush_all(self, make_manager):
        manager = make_manager(debounce_ms=60_000)
        manager.track_change("a", "1")
        manager.track_change("b", "2")

        results = await manager.flush_all()

        assert results == {"a": SaveResult.SAVED, "b": SaveResult.SAVED}
        assert manager.scheduler.pending_keys() == []


# ========== Entries ==========

class TestEntries:

    def test_no_event_loop_saves_synchronously(self, manager):
        manager.track_change("a", "sync", "/p", EntryMetadata(element_type="input", label="Title"))

        entry = manager.get_entry("a")
        assert entry.content == "sync"
        assert entry.path == "/p"
        assert entry.metadata.label == "Title"

    def test_created_at_kept_across_updates(self, manager, clock):
        manager.track_change("a", "v1")
        clock.advance(5)
        manager.track_change("a", "v2")

        entry = manager.get_entry("a")
        assert entry.created_at == clock.now - 5
        assert entry.updated_at == clock.now

    def test_entries_sorted_newest_first_and_filtered_by_path(self, manager, clock):
        manager.track_change("a", "1", "/x")
        clock.advance(1)
        manager.track_change("b", "2", "/y")
        clock.advance(1)
        manager.track_change("c", "3", "/x")

        assert [e.id for e in manager.get_unsaved_entries()] == ["c", "b", "a"]
        assert [e.id for e in manager.get_entries_for_path("/x")] == ["c", "a"]

    def test_expired_entries_excluded(self, make_manager, clock):
        manager = make_manager(storage_options=StorageOptions(ttl_ms=1000))
        manager.track_change("a", "short lived")

        clock.advance(1.0)
        assert [e.id for e in manager.get_unsaved_entries()] == ["a"]
        clock.advance(0.01)
        assert manager.get_unsaved_entries() == []

    def test_purge_expired(self, make_manager, clock):
        manager = make_manager(storage_options=StorageOptions(ttl_ms=1000))
        manager.track_change("a", "1")
        manager.track_change("b", "2")

        clock.advance(2)
        assert manager.purge_expired() == 2
        assert manager.storage.keys() == []

    def test_max_entries_evicts_oldest(self, make_manager, clock):
        manager = make_manager(max_entries=3)
        for autosave_id in ("a", "b", "c", "d"):
            manager.track_change(autosave_id, f"content {autosave_id}")
            clock.advance(1)

        assert sorted(manager.storage.keys()) == ["b", "c", "d"]
        assert manager.stats.evictions == 1

    def test_max_entries_uses_last_write_not_creation(self, make_manager, clock):
        manager = make_manager(max_entries=2)
        manager.track_change("a", "1")
        clock.advance(1)
        manager.track_change("b", "1")
        clock.advance(1)
        manager.track_change("a", "2")  # a is now the most recently written
        clock.advance(1)
        manager.track_change("c", "1")

        assert sorted(manager.storage.keys()) == ["a", "c"]

    def test_corrupt_entry_is_isolated(self, manager, persistent_store):
        manager.track_change("good", "fine")
        persistent_store.set_item("test:bad", "{{{ not an envelope")
        manager.storage.set("undecodable", "not an entry")

        entries = manager.get_unsaved_entries()

        assert [e.id for e in entries] == ["good"]
        assert manager.stats.decode_errors == 2
        assert sorted(manager.storage.keys()) == ["good"]

    def test_commit_does_not_reparse_store_per_entry(self, tmp_path, clock):
        store = FileStore(tmp_path / "autosave.json")
        adapter = StorageAdapter(MemoryStore(), store, prefix="test:", clock=clock)
        manager = AutoSaveManager(AutoSaveConfig(storage_key="test", max_entries=100), storage=adapter, clock=clock)
        for i in range(50):
            manager.track_change(f"draft-{i}", f"content {i}")

        with patch.object(store, "_load", wraps=store._load) as load, \
                patch.object(manager_module, "deserialize_entry", wraps=deserialize_entry) as decode:
            manager.track_change("draft-new", "one more")

        assert stored_content(manager, "draft-new") == "one more"
        assert load.call_count <= 1
        assert decode.call_count <= 1

    def test_stored_entry_is_valid_json(self, manager):
        manager.track_change("a", "x")
        raw = manager.storage.get("a")
        assert deserialize_entry(raw).id == "a"


# ========== Clearing ==========

class TestClearing:

    @pytest.mark.asyncio
    async def test_clear_cancels_pending_write(self, manager):
        manager.track_change("a", "typed then submitted")
        assert manager.clear_entry("a") is True

        await asyncio.sleep(SETTLE_SECONDS)
        assert manager.get_entry("a") is None
        assert not manager.has_unsaved_changes("a")

    @pytest.mark.asyncio
    async def test_clear_during_write_discards_it(self, manager):
        manager.track_change("a", "racing")
        task = asyncio.create_task(manager.force_save("a"))
        await asyncio.sleep(0)

        manager.clear_entry("a")

        assert await task is SaveResult.DISCARDED
        assert manager.get_entry("a") is None

    @pytest.mark.asyncio
    async def test_clear_all(self, make_manager):
        manager = make_manager(debounce_ms=60_000)
        manager.track_change("a", "1")
        await manager.force_save("a")
        manager.track_change("b", "2")

        assert manager.clear_all_entries() == 1
        assert manager.scheduler.pending_keys() == []
        assert not manager.has_unsaved_changes()
        assert manager.get_unsaved_entries() == []

    def test_unsaved_flag_survives_save_until_cleared(self, manager):
        assert not manager.has_unsaved_changes()
        manager.track_change("a", "x")

        assert manager.get_entry("a") is not None
        assert manager.has_unsaved_changes("a")
        assert manager.has_unsaved_changes()

        manager.clear_entry("a")
        assert not manager.has_unsaved_changes("a")

    @pytest.mark.asyncio
    async def test_cancel_pending_keeps_stored_entry(self, manager):
        manager.track_change("a", "kept")
        await manager.force_save("a")
        manager.track_change("a", "dropped")

        assert manager.cancel_pending("a") is True
        await asyncio.sleep(SETTLE_SECONDS)

        assert stored_content(manager, "a") == "kept"

    @pytest.mark.asyncio
    async def test_clear_forgets_per_id_bookkeeping(self, manager):
        for i in range(5):
            manager.track_change(f"field-{i}", "text")
            await manager.force_save(f"field-{i}")
            manager.clear_entry(f"field-{i}")

        assert manager._generation == {}
        assert manager._locks == {}

    @pytest.mark.asyncio
    async def test_clear_all_forgets_per_id_bookkeeping(self, manager):
        manager.track_change("a", "1")
        await manager.force_save("a")
        manager.track_change("b", "2")

        manager.clear_all_entries()

        assert manager._generation == {}
        assert manager._locks == {}

    @pytest.mark.asyncio
    async def test_change_after_clear_still_saves(self, manager):
        manager.track_change("a", "first")
        await manager.force_save("a")
        manager.clear_entry("a")

        manager.track_change("a", "second")

        assert await manager.force_save("a") is SaveResult.SAVED
        assert stored_content(manager, "a") == "second"


# ========== Failures ==========

class TestFailureResilience:

    def test_quota_failure_does_not_raise(self, clock):
        store = MemoryStore(capacity_bytes=50)
        adapter = StorageAdapter(MemoryStore(), store, prefix="test:", clock=clock)
        manager = AutoSaveManager(AutoSaveConfig(storage_key="test"), storage=adapter, clock=clock)
        failed = []
        manager.on_save_failed = failed.append

        manager.track_change("a", "x" * 500)
        manager.track_change("b", "y" * 500)

        assert manager.stats.failures == 2
        assert failed == ["a", "b"]
        assert manager._storage_warning_logged

        store.capacity_bytes = None
        manager.track_change("a", "small now")
        assert stored_content(manager, "a") == "small now"

    def test_unavailable_storage_detected_at_startup(self, clock):
        class Refusing(MemoryStore):
            def set_item(self, key, value):
                from draftkeeper.exceptions import StorageUnavailableError
                raise StorageUnavailableError("private mode")

        adapter = StorageAdapter(MemoryStore(), Refusing(), prefix="test:", clock=clock)
        manager = AutoSaveManager(AutoSaveConfig(storage_key="test"), storage=adapter, clock=clock)

        assert manager.storage_available is False
        manager.track_change("a", "lost")  # must not raise
        assert manager.stats.failures == 1
        assert manager.has_unsaved_changes("a")

    def test_damaged_store_file_does_not_break_startup(self, tmp_path, clock):
        path = tmp_path / "autosave.json"
        path.write_bytes(b'{"test:a": "\xff\xfe garbage')
        adapter = StorageAdapter(MemoryStore(), FileStore(path), prefix="test:", clock=clock)

        manager = AutoSaveManager(AutoSaveConfig(storage_key="test"), storage=adapter, clock=clock)

        assert manager.storage_available is True
        assert manager.get_unsaved_entries() == []
        manager.track_change("a", "fresh start")
        assert stored_content(manager, "a") == "fresh start"

    def test_on_saved_callback_errors_are_contained(self, manager):
        def _boom(entry):
            raise RuntimeError("ui gone")

        manager.on_saved = _boom
        manager.track_change("a", "x")
        assert stored_content(manager, "a") == "x"


# ========== Lifecycle ==========

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_shutdown_flushes_pending(self, make_manager):
        manager = make_manager(debounce_ms=60_000)
        manager.track_change("a", "last words")

        await manager.shutdown()

        assert stored_content(manager, "a") == "last words"
        manager.track_change("a", "after close")
        assert stored_content(manager, "a") == "last words"

    @pytest.mark.asyncio
    async def test_shutdown_without_flush_drops_pending(self, make_manager):
        manager = make_manager(debounce_ms=60_000)
        manager.track_change("a", "dropped")

        await manager.shutdown(flush=False)
        assert manager.get_entry("a") is None

    @pytest.mark.asyncio
    async def test_process_wide_manager(self, adapter):
        config = AutoSaveConfig(storage_key="test")
        created = init_autosave_manager(config, adapter)

        assert get_autosave_manager() is created
        await shutdown_autosave_manager()
        assert manager_module._MANAGER is None
