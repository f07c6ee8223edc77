"""
Tests for the settings store.

This test suite covers:
1. get/set/update/clear semantics
2. Change notifications
3. Persistence through MemoryStorage and SQLiteStorage
4. Best-effort loading of broken blobs
"""

import json
from unittest.mock import AsyncMock

import pytest

from plughost.core.event_bus import EventBus
from plughost.core.settings import SettingsStore
from plughost.core.storage import MemoryStorage, SQLiteStorage


class TestSettingsAccess:
    """Test synchronous settings operations."""

    def test_set_then_get(self):
        """Stored settings should be returned as-is."""
        store = SettingsStore(EventBus())

        assert store.set("notes", {"a": 1}) is True
        assert store.get("notes") == {"a": 1}

    def test_update_merges_shallowly(self):
        """update() should merge the patch over the current settings."""
        store = SettingsStore(EventBus())

        store.set("notes", {"a": 1, "nested": {"x": 1}})
        store.update("notes", {"b": 2, "nested": {"y": 2}})

        assert store.get("notes") == {"a": 1, "b": 2, "nested": {"y": 2}}

    def test_update_without_existing_settings(self):
        """update() on an unknown plugin should start from an empty object."""
        store = SettingsStore(EventBus())

        assert store.update("fresh", {"b": 2}) is True
        assert store.get("fresh") == {"b": 2}

    def test_clear_removes_entry(self):
        """After clear() the plugin should have no settings."""
        store = SettingsStore(EventBus())

        store.set("notes", {"a": 1})
        assert store.clear("notes") is True
        assert store.get("notes") is None

    def test_empty_id_is_rejected(self):
        """Empty or blank ids should fail without raising."""
        store = SettingsStore(EventBus())

        assert store.set("", {"a": 1}) is False
        assert store.set("   ", {"a": 1}) is False
        assert store.update(None, {"a": 1}) is False
        assert store.clear("") is False
        assert store.get("") is None
        assert store.get(None) is None

    def test_ids_are_trimmed(self):
        """Surrounding whitespace in ids should be ignored."""
        store = SettingsStore(EventBus())

        store.set("  notes ", {"a": 1})

        assert store.get("notes") == {"a": 1}

    def test_non_json_value_is_rejected(self):
        """Values that cannot be serialized should not be stored."""
        store = SettingsStore(EventBus())

        assert store.set("notes", {"when": object()}) is False
        assert store.get("notes") is None


class TestSettingsEvents:
    """Test change notifications."""

    def test_set_emits_changed_with_old_settings(self):
        """settings-changed should carry new and previous values."""
        bus = EventBus()
        store = SettingsStore(bus)
        received = []
        bus.on("settings-changed", received.append)

        store.set("notes", {"a": 1})
        store.set("notes", {"a": 2})

        assert received == [
            {"id": "notes", "settings": {"a": 1}, "old_settings": None},
            {"id": "notes", "settings": {"a": 2}, "old_settings": {"a": 1}},
        ]

    def test_clear_emits_cleared(self):
        """settings-cleared should carry the removed value."""
        bus = EventBus()
        store = SettingsStore(bus)
        received = []
        bus.on("settings-cleared", received.append)

        store.set("notes", {"a": 1})
        store.clear("notes")

        assert received == [{"id": "notes", "old_settings": {"a": 1}}]


class TestSettingsPersistence:
    """Test loading and flushing."""

    @pytest.mark.asyncio
    async def test_flush_writes_single_blob(self):
        """The whole store should be written under one key."""
        storage = MemoryStorage()
        store = SettingsStore(EventBus(), storage, key="settings", flush_delay=0)

        store.set("a", {"x": 1})
        store.set("b", [1, 2])
        assert await store.flush() is True

        blob = await storage.get("settings")
        assert json.loads(blob) == {"a": {"x": 1}, "b": [1, 2]}
        await store.close()

    @pytest.mark.asyncio
    async def test_debounced_flush_runs_in_background(self):
        """Mutations inside a running loop should be persisted without an explicit flush."""
        storage = MemoryStorage()
        store = SettingsStore(EventBus(), storage, flush_delay=0)

        store.set("a", {"x": 1})
        await store._flush_task

        assert json.loads(await storage.get("plugin-settings")) == {"a": {"x": 1}}

    @pytest.mark.asyncio
    async def test_load_restores_persisted_settings(self):
        """load() should read back what an earlier store persisted."""
        storage = MemoryStorage({"plugin-settings": json.dumps({"notes": {"a": 1}})})
        store = SettingsStore(EventBus(), storage)

        await store.load()

        assert store.loaded is True
        assert store.get("notes") == {"a": 1}

    @pytest.mark.asyncio
    async def test_load_keeps_in_memory_values(self):
        """Values set before load() should win over persisted ones."""
        storage = MemoryStorage({"plugin-settings": json.dumps({"notes": {"a": 1}, "other": 2})})
        store = SettingsStore(EventBus(), storage)

        store.set("notes", {"a": 9})
        await store.load()

        assert store.get("notes") == {"a": 9}
        assert store.get("other") == 2
        await store.close()

    @pytest.mark.asyncio
    async def test_load_ignores_corrupt_blob(self):
        """A malformed blob should leave the store empty instead of failing."""
        storage = MemoryStorage({"plugin-settings": "{not json"})
        store = SettingsStore(EventBus(), storage)

        await store.load()

        assert store.loaded is True
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_load_ignores_non_object_blob(self):
        """A blob that is valid JSON but not an object should be ignored."""
        storage = MemoryStorage({"plugin-settings": "[1, 2, 3]"})
        store = SettingsStore(EventBus(), storage)

        await store.load()

        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_load_survives_storage_error(self):
        """A failing storage read should not raise."""
        storage = MemoryStorage()
        storage.get = AsyncMock(side_effect=OSError("disk gone"))
        store = SettingsStore(EventBus(), storage)

        await store.load()

        assert store.loaded is True
        assert store.get("anything") is None

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_store_dirty(self):
        """A failed write should be retried by the next flush."""
        storage = MemoryStorage()
        original_set = storage.set
        storage.set = AsyncMock(side_effect=OSError("disk full"))
        store = SettingsStore(EventBus(), storage, flush_delay=0)

        store.set("a", 1)
        if store._flush_task is not None:
            await store._flush_task
        assert await store.flush() is False

        storage.set = original_set
        assert await store.flush() is True
        assert json.loads(await storage.get("plugin-settings")) == {"a": 1}

    @pytest.mark.asyncio
    async def test_sqlite_round_trip(self, tmp_path):
        """Settings flushed to SQLite should be loaded by a new store."""
        db_path = str(tmp_path / "data" / "settings.db")

        first_storage = SQLiteStorage(db_path)
        first = SettingsStore(EventBus(), first_storage, flush_delay=0)
        first.set("notes", {"theme": "dark"})
        await first.close()
        await first_storage.close()

        second_storage = SQLiteStorage(db_path)
        second = SettingsStore(EventBus(), second_storage)
        await second.load()

        assert second.get("notes") == {"theme": "dark"}
        await second_storage.close()
