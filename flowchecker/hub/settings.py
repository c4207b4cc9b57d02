"""Snapshot store - the settings bundle and its persistence.

The bundle holds every category snapshot, the notification toggles and the
poll interval. It is read once at startup and written whole on every
mutation; writes are serialized so two categories updating at the same time
cannot overwrite each other's snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from flowchecker.checks.models import Category, ProblemItem, dedupe_items
from flowchecker.hub.constants import CACHE_SETTINGS

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 3
MAX_INTERVAL_MINUTES = 7 * 24 * 60
DEFAULT_INTERVAL_MINUTES = 3

DEFAULT_NOTIFICATIONS = {
    Category.BROKEN: True,
    Category.DISABLED: False,
    Category.BROKEN_VARIABLE: True,
    Category.UNUSED_FLOWS: False,
    Category.UNUSED_LOGIC: False,
}

KEY_INTERVAL = "INTERVAL_FLOWS"
KEY_INTERVAL_ENABLED = "INTERVAL_ENABLED"


def validate_interval(minutes: Any) -> int:
    """Check a poll interval in whole minutes.

    Raises:
        ValueError: If minutes is not a finite whole number between the
            minimum and maximum
    """
    if isinstance(minutes, bool) or not isinstance(minutes, (int, float)):
        raise ValueError(f"Interval must be a whole number of minutes, got: {minutes!r}")
    if isinstance(minutes, float) and (not math.isfinite(minutes) or not minutes.is_integer()):
        raise ValueError(f"Interval must be a whole number of minutes, got: {minutes!r}")
    if minutes < MIN_INTERVAL_MINUTES:
        raise ValueError(f"Interval {int(minutes)} below minimum {MIN_INTERVAL_MINUTES} minutes")
    if minutes > MAX_INTERVAL_MINUTES:
        raise ValueError(f"Interval {int(minutes)} above maximum {MAX_INTERVAL_MINUTES} minutes")
    return int(minutes)


@dataclass(frozen=True)
class SettingsBundle:
    """Immutable settings record. Mutations build a new bundle."""

    snapshots: dict[Category, tuple[ProblemItem, ...]] = field(
        default_factory=lambda: {c: () for c in Category}
    )
    notifications: dict[Category, bool] = field(default_factory=lambda: dict(DEFAULT_NOTIFICATIONS))
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    interval_enabled: bool = True

    def snapshot(self, category: Category) -> list[ProblemItem]:
        return list(self.snapshots.get(category, ()))

    def notify(self, category: Category) -> bool:
        return self.notifications.get(category, False)

    def with_snapshot(self, category: Category, items: list[ProblemItem]) -> SettingsBundle:
        snapshots = dict(self.snapshots)
        snapshots[category] = tuple(dedupe_items(items))
        return replace(self, snapshots=snapshots)

    def with_notification(self, category: Category, enabled: bool) -> SettingsBundle:
        notifications = dict(self.notifications)
        notifications[category] = enabled
        return replace(self, notifications=notifications)

    def counts(self) -> dict[str, int]:
        return {c.value: len(self.snapshots.get(c, ())) for c in Category}

    def to_dict(self) -> dict[str, Any]:
        """Flat wire form: ``{"BROKEN": [...], "NOTIFICATION_BROKEN": true, ...}``."""
        data: dict[str, Any] = {}
        for category in Category:
            data[category.value] = [item.to_dict() for item in self.snapshots.get(category, ())]
        for category in Category:
            data[category.notification_key] = self.notify(category)
        data[KEY_INTERVAL] = self.interval_minutes
        data[KEY_INTERVAL_ENABLED] = self.interval_enabled
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> tuple[SettingsBundle, bool]:
        """Parse a stored bundle, filling in keys added by newer versions.

        Returns:
            (bundle, migrated) where migrated is True if any key was missing
            or unreadable and the bundle should be written back.
        """
        migrated = False
        snapshots: dict[Category, tuple[ProblemItem, ...]] = {}
        notifications: dict[Category, bool] = {}

        for category in Category:
            raw_items = data.get(category.value)
            if not isinstance(raw_items, list):
                migrated = True
                raw_items = []
            items = []
            for raw in raw_items:
                if isinstance(raw, dict) and raw.get("id") is not None:
                    items.append(ProblemItem.from_dict(raw))
                else:
                    migrated = True
            snapshots[category] = tuple(dedupe_items(items))

            toggle = data.get(category.notification_key)
            if not isinstance(toggle, bool):
                migrated = True
                toggle = DEFAULT_NOTIFICATIONS[category]
            notifications[category] = toggle

        interval = data.get(KEY_INTERVAL, DEFAULT_INTERVAL_MINUTES)
        try:
            interval = validate_interval(interval)
        except ValueError:
            logger.warning("Stored interval %r invalid, using %d", interval, DEFAULT_INTERVAL_MINUTES)
            interval = DEFAULT_INTERVAL_MINUTES
            migrated = True
        if KEY_INTERVAL not in data:
            migrated = True

        enabled = data.get(KEY_INTERVAL_ENABLED)
        if not isinstance(enabled, bool):
            enabled = True
            migrated = True

        bundle = cls(
            snapshots=snapshots,
            notifications=notifications,
            interval_minutes=interval,
            interval_enabled=enabled,
        )
        return bundle, migrated


class SettingsBackend(Protocol):
    """Persistence port for the settings bundle."""

    async def load(self) -> dict[str, Any] | None: ...

    async def save(self, data: dict[str, Any]) -> None: ...


class CacheSettingsBackend:
    """Stores the bundle as one row of the hub cache table."""

    def __init__(self, hub, category: str = CACHE_SETTINGS):
        self.hub = hub
        self.category = category

    async def load(self) -> dict[str, Any] | None:
        entry = await self.hub.get_cache(self.category)
        if entry is None:
            return None
        return entry.get("data")

    async def save(self, data: dict[str, Any]) -> None:
        await self.hub.set_cache(self.category, data)


class SnapshotStore:
    """Single owner of the settings bundle."""

    def __init__(self, backend: SettingsBackend):
        self.backend = backend
        self._bundle = SettingsBundle()
        self._lock = asyncio.Lock()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        """True once the stored bundle has been read (or initialized)."""
        return self._loaded

    @property
    def bundle(self) -> SettingsBundle:
        return self._bundle

    def snapshot(self, category: Category) -> list[ProblemItem]:
        return self._bundle.snapshot(category)

    async def load(self) -> SettingsBundle:
        """Read the stored bundle, initializing or migrating it as needed.

        A load failure leaves the defaults in memory and the store unloaded:
        nothing is written back until a later load() succeeds, so a
        transient read error never overwrites the stored snapshots.
        """
        try:
            data = await self.backend.load()
        except Exception as e:
            logger.error("Failed to load settings, using defaults: %s", e)
            return self._bundle

        async with self._lock:
            self._loaded = True
            if data is None:
                logger.info("Initializing %s with defaults", CACHE_SETTINGS)
                self._bundle = SettingsBundle()
                await self._save()
            else:
                logger.info("Found settings key %s", CACHE_SETTINGS)
                self._bundle, migrated = SettingsBundle.from_dict(data)
                if migrated:
                    logger.info("Migrating settings to current layout")
                    await self._save()

        logger.debug("Loaded settings: %s", self._bundle.to_dict())
        return self._bundle

    async def replace_snapshot(self, category: Category, items: list[ProblemItem]) -> bool:
        """Swap a category's snapshot for a new one. Last write wins."""
        async with self._lock:
            self._bundle = self._bundle.with_snapshot(category, items)
            return await self._save()

    async def set_notification(self, category: Category, enabled: bool) -> bool:
        async with self._lock:
            self._bundle = self._bundle.with_notification(category, enabled)
            return await self._save()

    async def set_interval(self, minutes: Any) -> bool:
        """Persist a new poll interval.

        Raises:
            ValueError: If minutes fails validate_interval()
        """
        minutes = validate_interval(minutes)
        async with self._lock:
            self._bundle = replace(self._bundle, interval_minutes=minutes)
            return await self._save()

    async def set_interval_enabled(self, enabled: bool) -> bool:
        async with self._lock:
            self._bundle = replace(self._bundle, interval_enabled=enabled)
            return await self._save()

    async def _save(self) -> bool:
        # Callers hold self._lock
        if not self._loaded:
            logger.warning("Settings not loaded yet, keeping change in memory only")
            return False
        data = self._bundle.to_dict()
        logger.debug("Writing settings: %s", data)
        try:
            await self.backend.save(data)
            return True
        except Exception as e:
            logger.error("Failed to persist settings (in-memory state kept): %s", e)
            return False
