"""Event dispatcher - notifications and trigger firing for check events.

Each event is dispatched on its own: a timeline notification (for new
problems whose category toggle is on) followed by the trigger. A failure is
recorded in that event's DispatchResult and never reaches sibling events.
"""

import asyncio
import logging
from typing import Any

import aiohttp

from flowchecker.checks.models import CheckEvent, DispatchResult
from flowchecker.hub.config_defaults import CONFIG_NOTIFICATIONS_APP_NAME
from flowchecker.hub.constants import EVENT_TRIGGER
from flowchecker.hub.settings import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_APP_NAME = "FlowChecker"


def format_excerpt(app_name: str, event: CheckEvent) -> str:
    """Timeline text, e.g. ``FlowChecker - Event: BROKEN - Flow: **Morning**``."""
    return f"{app_name} - Event: {event.category.value} - {event.category.label}: **{event.item.name}**"


class EventDispatcher:
    """Turns CheckEvents into Homey notifications and hub trigger events."""

    def __init__(self, hub, store: SnapshotStore, homey, trigger_webhook: str | None = None):
        """Initialize dispatcher.

        Args:
            hub: Hub whose event bus carries the triggers
            store: Snapshot store holding the notification toggles
            homey: HomeyClient used for timeline notifications
            trigger_webhook: Optional URL every trigger is POSTed to
        """
        self.hub = hub
        self.store = store
        self.homey = homey
        self.trigger_webhook = trigger_webhook

    async def dispatch(self, event: CheckEvent) -> DispatchResult:
        """Notify (if enabled) and fire the trigger for one event."""
        result = DispatchResult(event=event, success=True)
        errors = []

        if event.became_problem and self.store.bundle.notify(event.category):
            try:
                app_name = await self.hub.cache.get_config_value(CONFIG_NOTIFICATIONS_APP_NAME, DEFAULT_APP_NAME)
                await self.homey.create_notification(format_excerpt(app_name, event))
                result.notified = True
            except Exception as e:
                errors.append(f"notification: {e}")

        try:
            await self.fire_trigger(event)
            logger.info(f'[dispatch] {event.category.value} - Triggered {event.trigger}: "{event.item.name} | {event.item.id}"')
        except Exception as e:
            errors.append(f"trigger: {e}")

        if errors:
            result.success = False
            result.error = "; ".join(errors)
        return result

    async def fire_trigger(self, event: CheckEvent):
        """Publish the trigger on the hub bus and to the webhook, if configured."""
        payload: dict[str, Any] = {"trigger": event.trigger, "tokens": event.tokens}
        await self.hub.publish(EVENT_TRIGGER, payload, category=event.category.value)

        if self.trigger_webhook:
            async with (
                aiohttp.ClientSession() as session,
                session.post(self.trigger_webhook, json=payload, timeout=aiohttp.ClientTimeout(total=10)) as resp,
            ):
                if resp.status >= 400:
                    raise RuntimeError(f"Webhook returned HTTP {resp.status}")

    async def dispatch_all(self, events: list[CheckEvent]) -> list[DispatchResult]:
        """Dispatch events concurrently and log every failure."""
        if not events:
            return []

        outcomes = await asyncio.gather(*(self.dispatch(e) for e in events), return_exceptions=True)

        results = []
        for event, outcome in zip(events, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                outcome = DispatchResult(event=event, success=False, error=str(outcome))
            if not outcome.success:
                logger.error(
                    "Dispatch failed for %s (%s | %s): %s", event.trigger, event.item.name, event.item.id, outcome.error
                )
            results.append(outcome)
        return results
