"""Unit tests for snapshot diffing and event building."""

import pytest

from flowchecker.checks.diff import DiffResult, build_events, diff_items
from flowchecker.checks.models import TRIGGER_FIXED, TRIGGER_FIXED_LOGIC, Category, ProblemItem


def item(flow_id: str, name: str | None = None, **kwargs) -> ProblemItem:
    return ProblemItem(name=name or flow_id.title(), id=flow_id, **kwargs)


# ============================================================================
# Equal-size short-circuit
# ============================================================================


class TestEqualSizeShortCircuit:
    """Equal lengths mean "unchanged", whatever the content."""

    @pytest.mark.parametrize(
        "previous,current",
        [
            ([], []),
            ([item("f1")], [item("f1")]),
            ([item("f1"), item("f2")], [item("f3"), item("f4")]),
            ([item("f1")], [item("f1", name="Renamed")]),
        ],
    )
    def test_no_change_reported(self, previous, current):
        diff = diff_items(previous, current)

        assert diff.changed is False
        assert diff.added == []
        assert diff.removed == []
        assert build_events(Category.BROKEN, diff) == []

    def test_unchanged_keeps_previous_snapshot(self):
        previous = [item("f1"), item("f2")]
        diff = diff_items(previous, [item("f3"), item("f4")])
        assert diff.snapshot == previous

    def test_swap_detected_when_flag_on(self):
        diff = diff_items([item("f1"), item("f2")], [item("f2"), item("f3")], detect_equal_size=True)

        assert diff.changed is True
        assert diff.added == [item("f3")]
        assert diff.removed == [item("f1")]

    def test_flag_on_identical_sets_unchanged(self):
        diff = diff_items([item("f1"), item("f2")], [item("f2"), item("f1")], detect_equal_size=True)
        assert diff.changed is False


# ============================================================================
# Size changes
# ============================================================================


class TestSizeChange:
    def test_new_broken_flow(self):
        diff = diff_items([], [item("f1", "Morning")])

        assert diff.changed is True
        assert diff.added == [item("f1", "Morning")]
        assert diff.removed == []
        assert diff.snapshot == [item("f1", "Morning")]

    def test_flow_fixed(self):
        diff = diff_items([item("f1", "Morning")], [])

        assert diff.changed is True
        assert diff.added == []
        assert diff.removed == [item("f1", "Morning")]
        assert diff.snapshot == []

    def test_added_and_removed_partition_symmetric_difference(self):
        previous = [item("a"), item("b"), item("c")]
        current = [item("b"), item("d"), item("e"), item("f")]

        diff = diff_items(previous, current)

        assert {i.id for i in diff.added} == {"d", "e", "f"}
        assert {i.id for i in diff.removed} == {"a", "c"}
        assert len(diff.added) == 3
        assert len(diff.removed) == 2

    def test_each_id_reported_once(self):
        diff = diff_items([], [item("f1"), item("f1"), item("f2")])

        assert [i.id for i in diff.added] == ["f1", "f2"]
        assert [i.id for i in diff.snapshot] == ["f1", "f2"]

    def test_rename_with_stable_id_is_removed_and_added(self):
        diff = diff_items([item("f1", "Old")], [item("f1", "New"), item("f2")])

        assert item("f1", "New") in diff.added
        assert diff.removed == [item("f1", "Old")]

    def test_inputs_not_mutated(self):
        previous = [item("f1")]
        current = [item("f1"), item("f2")]
        diff_items(previous, current)
        assert previous == [item("f1")]
        assert current == [item("f1"), item("f2")]


# ============================================================================
# Event building
# ============================================================================


class TestBuildEvents:
    def test_added_raise_category_trigger(self):
        diff = DiffResult(changed=True, added=[item("f1", "Morning")], snapshot=[item("f1", "Morning")])

        events = build_events(Category.BROKEN, diff)

        assert len(events) == 1
        assert events[0].trigger == "trigger_BROKEN"
        assert events[0].became_problem is True
        assert events[0].tokens == {"flow": "Morning", "id": "f1"}

    def test_removed_flow_raises_fixed(self):
        diff = DiffResult(changed=True, removed=[item("f1", "Morning")])

        events = build_events(Category.DISABLED, diff)

        assert [e.trigger for e in events] == [TRIGGER_FIXED]
        assert events[0].became_problem is False
        assert events[0].tokens == {"flow": "Morning", "id": "f1"}

    def test_removed_logic_raises_fixed_logic(self):
        var = ProblemItem(name="counter", id="v1", type="number")
        events = build_events(Category.UNUSED_LOGIC, DiffResult(changed=True, removed=[var]))

        assert events[0].trigger == TRIGGER_FIXED_LOGIC
        assert events[0].tokens == {"logic": "counter", "id": "v1", "type": "number"}

    def test_unused_flow_tokens_carry_folder(self):
        flow = ProblemItem(name="Helper", id="f9", folder="folder-1")
        events = build_events(Category.UNUSED_FLOWS, DiffResult(changed=True, added=[flow]))

        assert events[0].trigger == "trigger_UNUSED_FLOWS"
        assert events[0].tokens == {"flow": "Helper", "id": "f9", "folder": "folder-1"}

    def test_unchanged_diff_has_no_events(self):
        assert build_events(Category.BROKEN, DiffResult(changed=False, added=[item("x")])) == []
