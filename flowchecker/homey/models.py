"""Typed views of the Homey Web API records FlowChecker reads.

Homey returns flows and logic variables as loose JSON objects keyed by id.
They are parsed into these dataclasses once, right after the request, so the
classifier never touches raw dicts. Unknown fields are ignored; records
without an id are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

LOGIC_URI = "homey:manager:logic"
FLOW_URI = "homey:manager:flow"
PROGRAMMATIC_TRIGGER_ID = "programmatic_trigger"


@dataclass(frozen=True)
class FlowCard:
    """A trigger, condition or action card inside a flow."""

    uri: str = ""
    id: str = ""
    args: dict[str, Any] = field(default_factory=dict)
    droptoken: str | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any] | None) -> FlowCard:
        if not isinstance(raw, dict):
            return cls()
        args = raw.get("args")
        droptoken = raw.get("droptoken")
        return cls(
            uri=str(raw.get("uri") or ""),
            id=str(raw.get("id") or ""),
            args=args if isinstance(args, dict) else {},
            droptoken=droptoken if isinstance(droptoken, str) else None,
        )

    def string_args(self) -> list[str]:
        return [value for value in self.args.values() if isinstance(value, str)]

    def referenced_id(self, arg_name: str) -> str | None:
        """Id of an object-valued argument such as ``{"variable": {"id": ...}}``."""
        value = self.args.get(arg_name)
        if isinstance(value, dict) and value.get("id") is not None:
            return str(value["id"])
        return None


@dataclass(frozen=True)
class Flow:
    id: str
    name: str
    enabled: bool = True
    broken: bool = False
    folder: str | None = None
    trigger: FlowCard = field(default_factory=FlowCard)
    conditions: tuple[FlowCard, ...] = ()
    actions: tuple[FlowCard, ...] = ()

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> Flow | None:
        """Parse one flow record. Returns None when the record has no id."""
        flow_id = raw.get("id")
        if not flow_id:
            logger.warning("Skipping flow without id: %s", raw.get("name", "<unnamed>"))
            return None
        return cls(
            id=str(flow_id),
            name=str(raw.get("name") or ""),
            enabled=bool(raw.get("enabled", True)),
            broken=bool(raw.get("broken", False)),
            folder=raw.get("folder") or None,
            trigger=FlowCard.from_api(raw.get("trigger")),
            conditions=tuple(FlowCard.from_api(c) for c in raw.get("conditions") or ()),
            actions=tuple(FlowCard.from_api(a) for a in raw.get("actions") or ()),
        )


@dataclass(frozen=True)
class LogicVariable:
    id: str
    name: str = ""
    type: str | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> LogicVariable | None:
        var_id = raw.get("id")
        if not var_id:
            logger.warning("Skipping logic variable without id: %s", raw.get("name", "<unnamed>"))
            return None
        return cls(id=str(var_id), name=str(raw.get("name") or ""), type=raw.get("type"))


@dataclass(frozen=True)
class HostListing:
    """Everything one check pass reads from Homey, fetched up front."""

    flows: tuple[Flow, ...] = ()
    variables: tuple[LogicVariable, ...] = ()

    @property
    def variable_ids(self) -> frozenset[str]:
        return frozenset(v.id for v in self.variables)


def parse_collection(payload: Any, parser) -> list:
    """Parse a Homey collection, which arrives as ``{id: record}`` or a list."""
    if isinstance(payload, dict):
        records = payload.values()
    elif isinstance(payload, list):
        records = payload
    else:
        raise TypeError(f"Expected object or array, got {type(payload).__name__}")

    parsed = []
    for raw in records:
        if not isinstance(raw, dict):
            continue
        item = parser(raw)
        if item is not None:
            parsed.append(item)
    return parsed
