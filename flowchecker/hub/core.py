"""FlowChecker Hub - Core orchestration and module management."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from flowchecker.hub.cache import CacheManager
from flowchecker.hub.config_defaults import CONFIG_EVENTS_RETENTION_DAYS
from flowchecker.hub.constants import EVENT_CACHE_UPDATED, EVENT_CONFIG_UPDATED, TASK_PRUNE_EVENTS

logger = logging.getLogger(__name__)


class Module:
    """Base class for hub modules."""

    def __init__(self, module_id: str, hub: "FlowCheckerHub"):
        self.module_id = module_id
        self.hub = hub
        self.logger = logging.getLogger(f"module.{module_id}")

    async def initialize(self):
        """Initialize module resources."""
        pass

    async def shutdown(self):
        """Cleanup module resources."""
        pass

    async def on_config_updated(self, config: dict[str, Any]):
        """Called when a config key is updated via the API.

        Args:
            config: Dict with at least ``key`` and ``value`` of the changed parameter.
        """
        pass


class FlowCheckerHub:
    """Central hub for modules, the cache database, scheduled tasks and events."""

    def __init__(self, cache_path: str):
        """Initialize hub.

        Args:
            cache_path: Path to SQLite cache database
        """
        self.cache = CacheManager(cache_path)
        self.modules: dict[str, Module] = {}
        self.module_status: dict[str, str] = {}  # module_id -> "running" | "failed"
        self.subscribers: dict[str, set[Callable]] = {}
        self.tasks: set[asyncio.Task] = set()
        self._named_tasks: dict[str, asyncio.Task] = {}
        self._running = False
        self._start_time: datetime | None = None
        self._event_count: int = 0
        self.logger = logging.getLogger("hub")

    async def initialize(self):
        """Initialize hub and cache."""
        self.logger.info("Initializing FlowChecker hub...")
        await self.cache.initialize()
        self._running = True

        await self.schedule_task(
            TASK_PRUNE_EVENTS,
            self._prune_stale_events,
            interval=timedelta(hours=24),
            run_immediately=True,
        )

        async def _dispatch_config_updated(data: dict[str, Any]):
            await self.on_config_updated(data)

        self.subscribe(EVENT_CONFIG_UPDATED, _dispatch_config_updated)

        self._start_time = datetime.now(tz=UTC)
        self.logger.info("Hub initialized successfully")

    async def shutdown(self):
        """Shutdown hub and all modules."""
        self.logger.info("Shutting down FlowChecker hub...")
        self._running = False

        for module_id, module in self.modules.items():
            self.logger.info(f"Shutting down module: {module_id}")
            try:
                await module.shutdown()
            except Exception as e:
                self.logger.error(f"Error shutting down module {module_id}: {e}")

        for task in self.tasks:
            if not task.done():
                task.cancel()

        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self._named_tasks.clear()

        await self.cache.close()
        self.logger.info("Hub shutdown complete")

    def register_module(self, module: Module):
        """Register a module with the hub.

        Raises:
            ValueError: If a module with the same id is already registered
        """
        if module.module_id in self.modules:
            raise ValueError(f"Module {module.module_id} already registered")

        self.modules[module.module_id] = module
        self.module_status[module.module_id] = "registered"
        self.logger.info(f"Registered module: {module.module_id}")

    def get_module(self, module_id: str) -> Module | None:
        """Get registered module by ID, or None if not found."""
        return self.modules.get(module_id)

    async def on_config_updated(self, config: dict[str, Any]):
        """Propagate a config_updated event to all registered modules."""
        key = config.get("key", "<unknown>")
        self.logger.debug("Propagating config_updated (key=%s) to %d module(s)", key, len(self.modules))
        for module_id, module in self.modules.items():
            try:
                await module.on_config_updated(config)
            except Exception as exc:
                self.logger.error("Error in module %s on_config_updated (key=%s): %s", module_id, key, exc)

    def subscribe(self, event_type: str, callback: Callable):
        """Subscribe an async callback to a hub event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = set()

        self.subscribers[event_type].add(callback)
        self.logger.debug(f"Subscribed to event: {event_type}")

    async def publish(self, event_type: str, data: dict[str, Any], category: str | None = None):
        """Log an event, then deliver it to its subscribers.

        A failing callback is logged and does
        not stop delivery to the others. Dispatch slower than 100 ms is
        logged as a warning.

        Args:
            event_type: Type of event
            data: Event data
            category: Problem category stored with the event log row
        """
        self.logger.debug(f"Publishing event: {event_type}")
        self._event_count += 1

        await self.cache.log_event(event_type=event_type, category=category, data=data)

        dispatch_start = time.monotonic()

        for callback in list(self.subscribers.get(event_type, ())):
            cb_start = time.monotonic()
            try:
                await callback(data)
            except Exception as e:
                self.logger.error(f"Error in event callback for {event_type}: {e}")
            cb_elapsed_ms = (time.monotonic() - cb_start) * 1000
            if cb_elapsed_ms > 100:
                self.logger.warning(
                    "Slow subscriber callback for event '%s': %.1f ms (threshold 100 ms)",
                    event_type,
                    cb_elapsed_ms,
                )

        total_elapsed_ms = (time.monotonic() - dispatch_start) * 1000
        if total_elapsed_ms > 100:
            self.logger.warning(
                "Event '%s' total dispatch took %.1f ms (threshold 100 ms)",
                event_type,
                total_elapsed_ms,
            )

    async def schedule_task(
        self,
        task_id: str,
        coro: Callable,
        interval: timedelta | None = None,
        run_immediately: bool = True,
        initial_delay: timedelta | None = None,
    ):
        """Schedule a task to run periodically.

        A task already scheduled under the same id is cancelled first, so
        one id never has two timers.

        Args:
            task_id: Unique task identifier
            coro: Async callable to run
            interval: Run interval (None = run once)
            run_immediately: If True, run once before the first interval sleep
            initial_delay: Wait this long before anything runs
        """
        self.cancel_task(task_id)

        async def run_task():
            self.logger.info(f"Task {task_id}: starting")

            if initial_delay:
                await asyncio.sleep(initial_delay.total_seconds())

            if run_immediately:
                try:
                    await coro()
                except Exception as e:
                    self.logger.error(f"Task {task_id} error: {e}")

            if interval:
                while self._running:
                    await asyncio.sleep(interval.total_seconds())
                    try:
                        await coro()
                    except Exception as e:
                        self.logger.error(f"Task {task_id} error: {e}")

        task = asyncio.create_task(run_task(), name=task_id)
        self.tasks.add(task)
        self._named_tasks[task_id] = task

        def _forget(done: asyncio.Task):
            self.tasks.discard(done)
            if self._named_tasks.get(task_id) is done:
                del self._named_tasks[task_id]

        task.add_done_callback(_forget)

        self.logger.info(f"Scheduled task: {task_id}" + (f" (interval: {interval})" if interval else " (one-time)"))

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a scheduled task. Returns True if one was running."""
        task = self._named_tasks.pop(task_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        self.logger.info(f"Cancelled task: {task_id}")
        return True

    def is_task_scheduled(self, task_id: str) -> bool:
        task = self._named_tasks.get(task_id)
        return task is not None and not task.done()

    def track_task(self, task: asyncio.Task) -> asyncio.Task:
        """Keep a fire-and-forget task referenced until it finishes."""
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def _prune_stale_events(self):
        """Prune old rows from the event log based on retention config."""
        retention_days = int(await self.cache.get_config_value(CONFIG_EVENTS_RETENTION_DAYS, 7))
        deleted = await self.cache.prune_events(retention_days=retention_days)
        if deleted:
            self.logger.info("Pruned %d old events (retention=%d days)", deleted, retention_days)

    async def get_cache(self, category: str) -> dict[str, Any] | None:
        """Get a stored entry by category."""
        return await self.cache.get(category)

    async def set_cache(self, category: str, data: Any) -> int:
        """Store data and publish a cache_updated event.

        Returns:
            New version number
        """
        version = await self.cache.set(category, data)

        await self.publish(
            EVENT_CACHE_UPDATED,
            {"category": category, "version": version, "timestamp": datetime.now(tz=UTC).isoformat()},
        )

        return version

    def is_running(self) -> bool:
        return self._running

    def mark_module_running(self, module_id: str):
        """Mark a module as successfully initialized."""
        self.module_status[module_id] = "running"

    def mark_module_failed(self, module_id: str):
        """Mark a module as failed to initialize."""
        self.module_status[module_id] = "failed"

    def get_uptime_seconds(self) -> float:
        """Get hub uptime in seconds."""
        if self._start_time is None:
            return 0.0
        return (datetime.now(tz=UTC) - self._start_time).total_seconds()

    async def health_check(self) -> dict[str, Any]:
        """Perform health check on hub and modules."""
        return {
            "status": "ok" if self._running else "stopped",
            "uptime_seconds": round(self.get_uptime_seconds()),
            "modules": {module_id: self.module_status.get(module_id, "unknown") for module_id in self.modules},
            "tasks": sorted(self._named_tasks),
            "events_published": self._event_count,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
