"""Config defaults registry: single source of truth for tunable parameters.

Each parameter is defined with its key, default value, type, constraints and
UI metadata. On startup, seed_config_defaults() inserts any missing keys using
INSERT OR IGNORE, preserving user overrides.

The poll interval and notification toggles are not here: they live in the
settings bundle next to the snapshots they govern.
"""

from typing import Any

CONFIG_CHECK_STARTUP_DELAY = "check.startup_delay_s"
CONFIG_CHECK_DETECT_EQUAL_SIZE = "check.detect_equal_size_changes"
CONFIG_CHECK_REQUEST_TIMEOUT = "check.request_timeout_s"
CONFIG_NOTIFICATIONS_APP_NAME = "notifications.app_name"
CONFIG_EVENTS_RETENTION_DAYS = "events.retention_days"

CONFIG_DEFAULTS: list[dict[str, Any]] = [
    # ── Check pipeline ────────────────────────────────────────────────
    {
        "key": CONFIG_CHECK_STARTUP_DELAY,
        "default_value": "9",
        "value_type": "number",
        "label": "Startup Settle Delay (s)",
        "description": "Seconds to wait after startup before the first check pass.",
        "category": "Check",
        "min_value": 0,
        "max_value": 300,
        "step": 1,
    },
    {
        "key": CONFIG_CHECK_DETECT_EQUAL_SIZE,
        "default_value": "false",
        "value_type": "boolean",
        "label": "Detect Equal-Size Changes",
        "description": (
            "Compare snapshots even when the problem count did not change."
            " Off by default: a flow breaking while another gets fixed in the"
            " same interval goes unnoticed."
        ),
        "category": "Check",
    },
    {
        "key": CONFIG_CHECK_REQUEST_TIMEOUT,
        "default_value": "15",
        "value_type": "number",
        "label": "Homey Request Timeout (s)",
        "description": "Total timeout for a single Homey Web API request.",
        "category": "Check",
        "min_value": 1,
        "max_value": 120,
        "step": 1,
    },
    # ── Notifications ─────────────────────────────────────────────────
    {
        "key": CONFIG_NOTIFICATIONS_APP_NAME,
        "default_value": "FlowChecker",
        "value_type": "string",
        "label": "Notification Prefix",
        "description": "App name shown at the start of every timeline notification.",
        "category": "Notifications",
    },
    # ── Events ────────────────────────────────────────────────────────
    {
        "key": CONFIG_EVENTS_RETENTION_DAYS,
        "default_value": "7",
        "value_type": "number",
        "label": "Event Retention (days)",
        "description": "Days of trigger history kept in the event log.",
        "category": "Events",
        "min_value": 1,
        "max_value": 365,
        "step": 1,
    },
]


async def seed_config_defaults(cache) -> int:
    """Seed all config defaults into the database.

    Args:
        cache: CacheManager instance (must be initialized).

    Returns:
        Number of new parameters inserted.
    """
    inserted = 0
    for param in CONFIG_DEFAULTS:
        was_inserted = await cache.upsert_config_default(
            key=param["key"],
            default_value=param["default_value"],
            value_type=param["value_type"],
            label=param.get("label", ""),
            description=param.get("description", ""),
            category=param.get("category", ""),
            min_value=param.get("min_value"),
            max_value=param.get("max_value"),
            options=param.get("options"),
            step=param.get("step"),
        )
        if was_inserted:
            inserted += 1
    return inserted
