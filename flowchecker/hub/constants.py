"""Shared constants for hub modules.

Cache keys and event names are defined here to prevent implicit coupling
between the modules that read and write them.
"""

# Cache category keys, used by set_cache / get_cache
CACHE_SETTINGS = "flowchecker.settings"
CACHE_LAST_CHECK = "last_check"

# Hub event types
EVENT_CACHE_UPDATED = "cache_updated"
EVENT_CONFIG_UPDATED = "config_updated"
EVENT_TRIGGER = "trigger"
EVENT_CHECK_COMPLETED = "check_completed"

# Scheduled task ids
TASK_FIND_FLOW_DEFECTS = "find_flow_defects"
TASK_PRUNE_EVENTS = "prune_events"
