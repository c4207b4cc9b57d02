"""Tests for the settings bundle and SnapshotStore persistence."""

import asyncio

import pytest

from flowchecker.checks.models import Category, ProblemItem
from flowchecker.hub.settings import (
    DEFAULT_INTERVAL_MINUTES,
    MAX_INTERVAL_MINUTES,
    SettingsBundle,
    SnapshotStore,
    validate_interval,
)

# ============================================================================
# Helpers
# ============================================================================


class MemoryBackend:
    """In-memory settings backend that can be told to fail."""

    def __init__(self, data=None):
        self.data = data
        self.saves = []
        self.fail_load = False
        self.fail_save = False

    async def load(self):
        if self.fail_load:
            raise OSError("disk gone")
        return self.data

    async def save(self, data):
        # Yield so concurrent writers interleave
        await asyncio.sleep(0)
        if self.fail_save:
            raise OSError("disk full")
        self.data = data
        self.saves.append(data)


class SlowBackend(MemoryBackend):
    async def save(self, data):
        await asyncio.sleep(0.01)
        await super().save(data)


def item(flow_id, name=None):
    return ProblemItem(name=name or flow_id, id=flow_id)


# ============================================================================
# Interval validation
# ============================================================================


class TestValidateInterval:
    @pytest.mark.parametrize("minutes", [3, 5, 60, 3.0, MAX_INTERVAL_MINUTES])
    def test_accepts_whole_minutes(self, minutes):
        assert validate_interval(minutes) == int(minutes)

    @pytest.mark.parametrize(
        "minutes",
        [2, 0, -5, 2.5, 3.5, "5", None, True, MAX_INTERVAL_MINUTES + 1, 10**13, float("inf"), float("nan")],
    )
    def test_rejects(self, minutes):
        with pytest.raises(ValueError):
            validate_interval(minutes)


# ============================================================================
# Bundle
# ============================================================================


class TestSettingsBundle:
    def test_defaults(self):
        bundle = SettingsBundle()

        assert all(bundle.snapshot(c) == [] for c in Category)
        assert bundle.notify(Category.BROKEN) is True
        assert bundle.notify(Category.BROKEN_VARIABLE) is True
        assert bundle.notify(Category.DISABLED) is False
        assert bundle.interval_minutes == DEFAULT_INTERVAL_MINUTES
        assert bundle.interval_enabled is True

    def test_wire_form(self):
        bundle = SettingsBundle().with_snapshot(Category.BROKEN, [item("f1", "Morning")])
        data = bundle.to_dict()

        assert data["BROKEN"] == [{"name": "Morning", "id": "f1"}]
        assert data["NOTIFICATION_BROKEN"] is True
        assert data["INTERVAL_FLOWS"] == 3
        assert data["INTERVAL_ENABLED"] is True

    def test_with_snapshot_does_not_mutate(self):
        original = SettingsBundle()
        updated = original.with_snapshot(Category.DISABLED, [item("f1")])

        assert original.snapshot(Category.DISABLED) == []
        assert updated.snapshot(Category.DISABLED) == [item("f1")]

    def test_with_snapshot_dedupes(self):
        bundle = SettingsBundle().with_snapshot(Category.BROKEN, [item("f1", "A"), item("f1", "B")])
        assert bundle.snapshot(Category.BROKEN) == [item("f1", "A")]

    def test_from_dict_complete(self):
        data = SettingsBundle().with_notification(Category.DISABLED, True).to_dict()

        bundle, migrated = SettingsBundle.from_dict(data)

        assert migrated is False
        assert bundle.notify(Category.DISABLED) is True

    def test_from_dict_fills_missing_keys(self):
        bundle, migrated = SettingsBundle.from_dict({"BROKEN": [{"name": "A", "id": "a"}]})

        assert migrated is True
        assert bundle.snapshot(Category.BROKEN) == [item("a", "A")]
        assert bundle.snapshot(Category.UNUSED_LOGIC) == []
        assert bundle.notify(Category.BROKEN) is True

    def test_from_dict_drops_items_without_id(self):
        data = SettingsBundle().to_dict()
        data["DISABLED"] = [{"name": "no id"}, {"name": "B", "id": "b"}]

        bundle, migrated = SettingsBundle.from_dict(data)

        assert migrated is True
        assert bundle.snapshot(Category.DISABLED) == [item("b", "B")]

    def test_from_dict_invalid_interval_reset(self):
        data = SettingsBundle().to_dict()
        data["INTERVAL_FLOWS"] = 1

        bundle, migrated = SettingsBundle.from_dict(data)

        assert migrated is True
        assert bundle.interval_minutes == DEFAULT_INTERVAL_MINUTES

    def test_from_dict_oversized_interval_reset(self):
        data = SettingsBundle().to_dict()
        data["INTERVAL_FLOWS"] = 10**13

        bundle, migrated = SettingsBundle.from_dict(data)

        assert migrated is True
        assert bundle.interval_minutes == DEFAULT_INTERVAL_MINUTES


# ============================================================================
# Store
# ============================================================================


class TestSnapshotStore:
    @pytest.mark.asyncio
    async def test_load_initializes_defaults(self):
        backend = MemoryBackend()
        store = SnapshotStore(backend)

        await store.load()

        assert backend.saves == [SettingsBundle().to_dict()]

    @pytest.mark.asyncio
    async def test_load_existing_without_rewrite(self):
        stored = SettingsBundle().with_snapshot(Category.BROKEN, [item("f1")]).to_dict()
        backend = MemoryBackend(stored)
        store = SnapshotStore(backend)

        await store.load()

        assert store.snapshot(Category.BROKEN) == [item("f1")]
        assert backend.saves == []

    @pytest.mark.asyncio
    async def test_load_migrates_and_saves(self):
        backend = MemoryBackend({"BROKEN": []})
        store = SnapshotStore(backend)

        await store.load()

        assert len(backend.saves) == 1
        assert set(backend.data) >= {c.value for c in Category}

    @pytest.mark.asyncio
    async def test_load_failure_keeps_defaults(self):
        backend = MemoryBackend()
        backend.fail_load = True
        store = SnapshotStore(backend)

        bundle = await store.load()

        assert bundle == SettingsBundle()
        assert backend.saves == []
        assert store.loaded is False

    @pytest.mark.asyncio
    async def test_writes_held_back_until_load_succeeds(self):
        stored = SettingsBundle().with_snapshot(Category.BROKEN, [item("f1")]).to_dict()
        backend = MemoryBackend(stored)
        backend.fail_load = True
        store = SnapshotStore(backend)
        await store.load()

        saved = await store.replace_snapshot(Category.DISABLED, [item("f2")])

        assert saved is False
        assert backend.saves == []
        assert backend.data["BROKEN"] == [{"name": "f1", "id": "f1"}]

        backend.fail_load = False
        await store.load()

        assert store.loaded is True
        assert store.snapshot(Category.BROKEN) == [item("f1")]
        assert await store.replace_snapshot(Category.DISABLED, [item("f2")]) is True
        assert backend.data["BROKEN"] == [{"name": "f1", "id": "f1"}]

    @pytest.mark.asyncio
    async def test_failed_save_keeps_memory(self):
        backend = MemoryBackend()
        store = SnapshotStore(backend)
        await store.load()
        backend.fail_save = True

        saved = await store.replace_snapshot(Category.BROKEN, [item("f1")])

        assert saved is False
        assert store.snapshot(Category.BROKEN) == [item("f1")]

    @pytest.mark.asyncio
    async def test_concurrent_writes_keep_both_categories(self):
        backend = SlowBackend()
        store = SnapshotStore(backend)
        await store.load()

        await asyncio.gather(
            store.replace_snapshot(Category.BROKEN, [item("f1")]),
            store.replace_snapshot(Category.DISABLED, [item("f2")]),
        )

        assert backend.data["BROKEN"] == [{"name": "f1", "id": "f1"}]
        assert backend.data["DISABLED"] == [{"name": "f2", "id": "f2"}]

    @pytest.mark.asyncio
    async def test_set_interval_rejects_below_minimum(self):
        backend = MemoryBackend()
        store = SnapshotStore(backend)
        await store.load()

        with pytest.raises(ValueError, match="below minimum"):
            await store.set_interval(2)

        assert store.bundle.interval_minutes == 3
        assert len(backend.saves) == 1

    @pytest.mark.asyncio
    async def test_set_interval_and_toggles(self):
        backend = MemoryBackend()
        store = SnapshotStore(backend)
        await store.load()

        await store.set_interval(10)
        await store.set_interval_enabled(False)
        await store.set_notification(Category.UNUSED_FLOWS, True)

        assert backend.data["INTERVAL_FLOWS"] == 10
        assert backend.data["INTERVAL_ENABLED"] is False
        assert backend.data["NOTIFICATION_UNUSED_FLOWS"] is True
