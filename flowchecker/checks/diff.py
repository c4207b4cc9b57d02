"""Snapshot diffing: what changed in a category since the last pass."""

from collections.abc import Sequence
from dataclasses import dataclass, field

from flowchecker.checks.models import Category, CheckEvent, ProblemItem, dedupe_items


@dataclass
class DiffResult:
    """Comparison of one category's previous snapshot with the current scan.

    ``changed`` tells the caller to replace the stored snapshot with
    ``snapshot``. When it is False nothing may be written or raised.
    """

    changed: bool
    added: list[ProblemItem] = field(default_factory=list)
    removed: list[ProblemItem] = field(default_factory=list)
    snapshot: list[ProblemItem] = field(default_factory=list)


def diff_items(
    previous: Sequence[ProblemItem],
    current: Sequence[ProblemItem],
    detect_equal_size: bool = False,
) -> DiffResult:
    """Compare two problem lists.

    Membership is by whole value, so a flow renamed under the same id shows
    up as both removed and added.

    Equal lengths short-circuit to "unchanged" without comparing anything:
    one flow breaking while another is fixed in the same interval is not
    seen. ``detect_equal_size`` runs the comparison anyway.

    Args:
        previous: Stored snapshot for the category
        current: Items classified in this pass
        detect_equal_size: Compare even when the lengths match

    Returns:
        DiffResult with added/removed items and the replacement snapshot
    """
    if len(previous) == len(current) and not detect_equal_size:
        return DiffResult(changed=False, snapshot=list(previous))

    previous_set = set(previous)
    current_set = set(current)
    added = dedupe_items([item for item in current if item not in previous_set])
    removed = dedupe_items([item for item in previous if item not in current_set])

    if detect_equal_size and len(previous) == len(current) and not added and not removed:
        return DiffResult(changed=False, snapshot=list(previous))

    return DiffResult(changed=True, added=added, removed=removed, snapshot=dedupe_items(list(current)))


def build_events(category: Category, diff: DiffResult) -> list[CheckEvent]:
    """Turn a diff into trigger events.

    Added items raise the category's own trigger; removed items raise the
    "fixed" trigger (logic-specific for UNUSED_LOGIC).
    """
    if not diff.changed:
        return []

    events = [CheckEvent(category, category.trigger, item, became_problem=True) for item in diff.added]
    events.extend(CheckEvent(category, category.fixed_trigger, item, became_problem=False) for item in diff.removed)
    return events
