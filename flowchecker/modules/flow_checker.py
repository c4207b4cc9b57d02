"""FlowChecker Module - periodic flow/logic defect detection.

Each pass fetches every flow and logic variable from Homey, classifies them
into problem categories, diffs each category against its stored snapshot and
dispatches triggers for whatever changed. The pass runs once shortly after
startup and then on the interval stored in the settings bundle.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from flowchecker.checks.classifier import classify_all
from flowchecker.checks.diff import build_events, diff_items
from flowchecker.checks.models import Category, CategoryReport, CheckEvent, DispatchResult
from flowchecker.homey.client import HomeyClient, HostAPIError
from flowchecker.hub.config_defaults import (
    CONFIG_CHECK_DETECT_EQUAL_SIZE,
    CONFIG_CHECK_REQUEST_TIMEOUT,
    CONFIG_CHECK_STARTUP_DELAY,
)
from flowchecker.hub.constants import CACHE_LAST_CHECK, EVENT_CHECK_COMPLETED, TASK_FIND_FLOW_DEFECTS
from flowchecker.hub.core import FlowCheckerHub, Module
from flowchecker.hub.settings import CacheSettingsBackend, SnapshotStore
from flowchecker.modules.dispatcher import EventDispatcher

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_DELAY_S = 9


class FlowCheckerModule(Module):
    """Runs the classify → diff → dispatch pipeline on a timer."""

    def __init__(
        self,
        hub: FlowCheckerHub,
        homey: HomeyClient,
        trigger_webhook: str | None = None,
        store: SnapshotStore | None = None,
    ):
        """Initialize module.

        Args:
            hub: FlowCheckerHub instance
            homey: Client for the Homey Web API
            trigger_webhook: Optional URL every trigger is POSTed to
            store: Snapshot store; defaults to one backed by the hub cache
        """
        super().__init__("flow_checker", hub)
        self.homey = homey
        self.store = store or SnapshotStore(CacheSettingsBackend(hub))
        self.dispatcher = EventDispatcher(hub, self.store, homey, trigger_webhook)
        self._dispatch_tasks: set[asyncio.Task] = set()
        self._check_count = 0

    async def initialize(self):
        """Load settings and schedule the first pass."""
        self.logger.info("FlowChecker module initializing...")
        await self.homey.open()
        try:
            info = await self.homey.ping()
            self.logger.info(f"Connected to Homey {info.get('homeyVersion', 'unknown version')}")
        except HostAPIError as e:
            # Not fatal: the first pass retries the connection
            self.logger.warning(f"Homey not reachable yet: {e}")
        await self.store.load()

        delay = await self.hub.cache.get_config_value(CONFIG_CHECK_STARTUP_DELAY, DEFAULT_STARTUP_DELAY_S)
        await self._schedule(initial_delay=timedelta(seconds=delay))
        self.logger.info("FlowChecker module initialized")

    async def shutdown(self):
        """Stop the timer, let pending dispatches finish, close the client."""
        self.hub.cancel_task(TASK_FIND_FLOW_DEFECTS)
        await self.wait_for_dispatches()
        await self.homey.close()

    async def on_config_updated(self, config: dict[str, Any]):
        """Apply a new request timeout to the Homey client without a restart."""
        if config.get("key") != CONFIG_CHECK_REQUEST_TIMEOUT:
            return
        timeout = await self.hub.cache.get_config_value(CONFIG_CHECK_REQUEST_TIMEOUT, self.homey.timeout)
        self.homey.timeout = float(timeout)
        self.logger.info(f"Homey request timeout set to {self.homey.timeout}s")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _schedule(self, initial_delay: timedelta | None = None, run_immediately: bool = True):
        bundle = self.store.bundle
        interval = timedelta(minutes=bundle.interval_minutes) if bundle.interval_enabled else None

        if interval is None and not run_immediately:
            self.hub.cancel_task(TASK_FIND_FLOW_DEFECTS)
            return

        await self.hub.schedule_task(
            task_id=TASK_FIND_FLOW_DEFECTS,
            coro=self._tick,
            interval=interval,
            run_immediately=run_immediately,
            initial_delay=initial_delay,
        )

    async def set_interval(self, minutes: Any) -> dict[str, Any]:
        """Change the poll period and restart the timer on it.

        Raises:
            ValueError: If minutes is not a whole number between 3 and 10080
        """
        await self.store.set_interval(minutes)
        self.logger.info(f"[setInterval] polling every {self.store.bundle.interval_minutes} min")
        if self.store.bundle.interval_enabled:
            await self._schedule(run_immediately=False)
        return self.schedule_state()

    async def set_enabled(self, enabled: bool) -> dict[str, Any]:
        """Turn the recurring timer on or off."""
        await self.store.set_interval_enabled(enabled)
        if enabled:
            await self._schedule(run_immediately=False)
        else:
            self.hub.cancel_task(TASK_FIND_FLOW_DEFECTS)
        self.logger.info(f"[setEnabled] recurring check {'enabled' if enabled else 'disabled'}")
        return self.schedule_state()

    def schedule_state(self) -> dict[str, Any]:
        bundle = self.store.bundle
        return {
            "interval_minutes": bundle.interval_minutes,
            "enabled": bundle.interval_enabled,
            "scheduled": self.hub.is_task_scheduled(TASK_FIND_FLOW_DEFECTS),
        }

    async def set_notification(self, category: Category, enabled: bool) -> bool:
        await self.store.set_notification(category, enabled)
        return self.store.bundle.notify(category)

    def has_problems(self, category: Category) -> bool:
        """Condition card: is there anything in this category right now?"""
        return len(self.store.snapshot(category)) > 0

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _tick(self):
        # Rescheduling cancels the timer task, never a pass already under way
        task = self.hub.track_task(asyncio.create_task(self.run_check()))
        await asyncio.shield(task)

    async def run_check(self) -> dict[str, Any]:
        """One full pass. Host failures abort the pass before any snapshot changes."""
        self._check_count += 1
        started = datetime.now(tz=UTC)

        if not self.store.loaded:
            await self.store.load()
        if not self.store.loaded:
            # Diffing against defaults would re-announce every stored problem
            self.logger.error("[findFlowDefects] settings unreadable, skipping pass")
            report = {
                "status": "failed",
                "error": "settings not loaded",
                "categories": [],
                "timestamp": started.isoformat(),
            }
            await self._store_report(report)
            return report

        try:
            listing = await self.homey.get_listing()
        except HostAPIError as e:
            self.logger.error(f"[findFlowDefects] Homey request failed, skipping pass: {e}")
            report = {"status": "failed", "error": str(e), "categories": [], "timestamp": started.isoformat()}
            await self._store_report(report)
            return report

        classified = classify_all(listing)
        detect_equal_size = bool(await self.hub.cache.get_config_value(CONFIG_CHECK_DETECT_EQUAL_SIZE, False))

        reports = []
        events: list[CheckEvent] = []
        for category, current in classified.items():
            category_report, category_events = await self._check_category(category, current, detect_equal_size)
            reports.append(category_report)
            events.extend(category_events)

        if events:
            self._spawn_dispatch(events)

        report = {
            "status": "ok",
            "categories": [r.to_dict() for r in reports],
            "events": len(events),
            "timestamp": started.isoformat(),
        }
        await self._store_report(report)
        return report

    async def _check_category(self, category: Category, current, detect_equal_size: bool):
        previous = self.store.snapshot(category)
        self.logger.debug(f"[findFlows] {category.value} - previous: {len(previous)}, current: {len(current)}")

        diff = diff_items(previous, current, detect_equal_size=detect_equal_size)
        if not diff.changed:
            return CategoryReport(category=category, count=len(previous), changed=False), []

        await self.store.replace_snapshot(category, diff.snapshot)
        self.logger.info(
            f"[flowDiff] {category.value} - added: {[i.name for i in diff.added]}, "
            f"removed: {[i.name for i in diff.removed]}"
        )

        report = CategoryReport(
            category=category,
            count=len(diff.snapshot),
            changed=True,
            added=diff.added,
            removed=diff.removed,
        )
        return report, build_events(category, diff)

    def _spawn_dispatch(self, events: list[CheckEvent]):
        task = asyncio.create_task(self._dispatch(events))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _dispatch(self, events: list[CheckEvent]) -> list[DispatchResult]:
        try:
            results = await self.dispatcher.dispatch_all(events)
        except Exception as e:
            self.logger.error(f"Dispatch batch failed: {e}")
            return []
        failed = sum(1 for r in results if not r.success)
        if failed:
            self.logger.warning(f"{failed}/{len(results)} dispatches failed")
        return results

    async def wait_for_dispatches(self):
        """Wait for every dispatch spawned so far."""
        while self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)

    async def _store_report(self, report: dict[str, Any]):
        try:
            await self.hub.cache.set(CACHE_LAST_CHECK, report)
            await self.hub.publish(
                EVENT_CHECK_COMPLETED,
                {
                    "status": report["status"],
                    "events": report.get("events", 0),
                    "counts": self.store.bundle.counts(),
                    "timestamp": report["timestamp"],
                },
            )
        except Exception as e:
            self.logger.warning(f"Failed to store check report: {e}")

    async def get_last_report(self) -> dict[str, Any] | None:
        entry = await self.hub.cache.get(CACHE_LAST_CHECK)
        return entry["data"] if entry else None

    def status(self) -> dict[str, Any]:
        return {
            "checks_run": self._check_count,
            "pending_dispatches": len(self._dispatch_tasks),
            "counts": self.store.bundle.counts(),
            **self.schedule_state(),
        }
