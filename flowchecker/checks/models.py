"""Problem categories, problem items and the events raised for them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Monitored problem categories.

    Each category owns one snapshot list in the settings bundle, one
    NOTIFICATION_<CATEGORY> toggle and one trigger kind.
    """

    BROKEN = "BROKEN"
    DISABLED = "DISABLED"
    BROKEN_VARIABLE = "BROKEN_VARIABLE"
    UNUSED_FLOWS = "UNUSED_FLOWS"
    UNUSED_LOGIC = "UNUSED_LOGIC"

    @property
    def subject(self) -> str:
        """Payload key naming the problem item: "logic" for variables, "flow" otherwise."""
        return "logic" if self is Category.UNUSED_LOGIC else "flow"

    @property
    def label(self) -> str:
        return "Logic" if self is Category.UNUSED_LOGIC else "Flow"

    @property
    def notification_key(self) -> str:
        return f"NOTIFICATION_{self.value}"

    @property
    def trigger(self) -> str:
        return f"trigger_{self.value}"

    @property
    def fixed_trigger(self) -> str:
        return TRIGGER_FIXED_LOGIC if self is Category.UNUSED_LOGIC else TRIGGER_FIXED

    @classmethod
    def parse(cls, value: str) -> Category:
        """Look up a category by name, case-insensitively.

        Raises:
            ValueError: If the name is not a known category
        """
        try:
            return cls(value.upper())
        except ValueError:
            raise ValueError(f"Unknown category: {value}") from None


TRIGGER_FIXED = "trigger_FIXED"
TRIGGER_FIXED_LOGIC = "trigger_FIXED_LOGIC"

TRIGGER_KINDS = frozenset({c.trigger for c in Category} | {TRIGGER_FIXED, TRIGGER_FIXED_LOGIC})


@dataclass(frozen=True)
class ProblemItem:
    """One flow or logic variable currently in a problem category.

    Frozen so instances compare and hash by value: two items are "the same"
    in a diff only when every field matches.
    """

    name: str
    id: str
    type: str | None = None
    folder: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "id": self.id}
        if self.type is not None:
            data["type"] = self.type
        if self.folder is not None:
            data["folder"] = self.folder
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProblemItem:
        """Build an item from a stored snapshot entry. Unknown keys are ignored."""
        return cls(
            name=str(data.get("name", "")),
            id=str(data["id"]),
            type=data.get("type"),
            folder=data.get("folder"),
        )


def dedupe_items(items: list[ProblemItem]) -> list[ProblemItem]:
    """Drop repeated ids, keeping the first occurrence and the original order."""
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


@dataclass(frozen=True)
class CheckEvent:
    """A trigger to fire for one problem item."""

    category: Category
    trigger: str
    item: ProblemItem
    became_problem: bool

    @property
    def tokens(self) -> dict[str, Any]:
        """Trigger tokens: ``{flow|logic: name, id, type?, folder?}``."""
        tokens: dict[str, Any] = {self.category.subject: self.item.name, "id": self.item.id}
        if self.item.type is not None:
            tokens["type"] = self.item.type
        if self.item.folder is not None:
            tokens["folder"] = self.item.folder
        return tokens


@dataclass
class DispatchResult:
    """Outcome of dispatching one CheckEvent."""

    event: CheckEvent
    success: bool
    error: str | None = None
    notified: bool = False


@dataclass
class CategoryReport:
    """What one category did during a check pass."""

    category: Category
    count: int
    changed: bool
    added: list[ProblemItem] = field(default_factory=list)
    removed: list[ProblemItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "count": self.count,
            "changed": self.changed,
            "added": [i.to_dict() for i in self.added],
            "removed": [i.to_dict() for i in self.removed],
        }
