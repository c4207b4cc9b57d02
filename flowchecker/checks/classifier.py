"""Problem classifier - turns a Homey listing into problem items per category.

Every pass is a full re-scan of one HostListing; nothing is carried over
between passes.
"""

import logging

from flowchecker.checks.models import Category, ProblemItem
from flowchecker.homey.models import FLOW_URI, LOGIC_URI, PROGRAMMATIC_TRIGGER_ID, Flow, FlowCard, HostListing

logger = logging.getLogger(__name__)

LOGIC_PREFIX = f"{LOGIC_URI}|"


def _flow_item(flow: Flow, with_folder: bool = False) -> ProblemItem:
    return ProblemItem(name=flow.name, id=flow.id, folder=flow.folder if with_folder else None)


def _bare_logic_id(reference: str) -> str:
    """Strip the ``homey:manager:logic|`` prefix from a variable reference."""
    if reference.startswith(LOGIC_PREFIX):
        return reference[len(LOGIC_PREFIX):]
    return reference


def extract_embedded_reference(value: str) -> str | None:
    """Return the logic variable id embedded in an argument string.

    Takes the text between the first ``[[`` and the last ``]]``. A token
    qualified with another capability (``homey:device:abc|onoff``) is not a
    logic reference and yields None; an unqualified token is read as a bare
    variable id.
    """
    start = value.find("[[")
    end = value.rfind("]]")
    if start == -1 or end == -1 or end < start + 2:
        return None

    token = value[start + 2:end]
    if LOGIC_URI in token:
        return _bare_logic_id(token)
    if "|" in token or not token:
        return None
    return token


def _trigger_missing_variable(trigger: FlowCard, variable_ids: frozenset[str]) -> bool:
    if trigger.uri != LOGIC_URI:
        return False
    ref = trigger.referenced_id("variable")
    return ref is not None and _bare_logic_id(ref) not in variable_ids


def _condition_missing_variable(condition: FlowCard, variable_ids: frozenset[str]) -> bool:
    droptoken = condition.droptoken
    if not droptoken or LOGIC_URI not in droptoken:
        return False
    return _bare_logic_id(droptoken) not in variable_ids


def _action_missing_variable(action: FlowCard, variable_ids: frozenset[str]) -> bool:
    for value in action.string_args():
        ref = extract_embedded_reference(value)
        if ref is not None and ref not in variable_ids:
            return True
    return False


def has_dangling_logic(flow: Flow, variable_ids: frozenset[str]) -> bool:
    """True if the flow references a logic variable that no longer exists."""
    if _trigger_missing_variable(flow.trigger, variable_ids):
        return True
    if any(_condition_missing_variable(c, variable_ids) for c in flow.conditions):
        return True
    return any(_action_missing_variable(a, variable_ids) for a in flow.actions)


def classify_broken(listing: HostListing) -> list[ProblemItem]:
    """Flows Homey itself flags as broken."""
    return [_flow_item(f) for f in listing.flows if f.broken]


def classify_disabled(listing: HostListing) -> list[ProblemItem]:
    """Flows that are switched off."""
    return [_flow_item(f) for f in listing.flows if not f.enabled]


def classify_dangling_logic(listing: HostListing) -> list[ProblemItem]:
    """Working, enabled flows that point at a deleted logic variable."""
    variable_ids = listing.variable_ids
    return [
        _flow_item(f)
        for f in listing.flows
        if f.enabled and not f.broken and has_dangling_logic(f, variable_ids)
    ]


def classify_unused_flows(listing: HostListing) -> list[ProblemItem]:
    """Enabled flows started only by "this flow is started" that no other flow starts."""
    started: set[str] = set()
    for flow in listing.flows:
        for action in flow.actions:
            if action.uri == FLOW_URI:
                target = action.referenced_id("flow")
                if target is not None and target != flow.id:
                    started.add(target)

    return [
        _flow_item(f, with_folder=True)
        for f in listing.flows
        if f.enabled
        and f.trigger.uri == FLOW_URI
        and f.trigger.id == PROGRAMMATIC_TRIGGER_ID
        and f.id not in started
    ]


def _referenced_variables(flow: Flow) -> set[str]:
    refs: set[str] = set()
    for card in (flow.trigger, *flow.conditions, *flow.actions):
        if card.uri == LOGIC_URI:
            ref = card.referenced_id("variable")
            if ref is not None:
                refs.add(_bare_logic_id(ref))
        if card.droptoken and LOGIC_URI in card.droptoken:
            refs.add(_bare_logic_id(card.droptoken))
        for value in card.string_args():
            ref = extract_embedded_reference(value)
            if ref is not None:
                refs.add(ref)
    return refs


def classify_unused_logic(listing: HostListing) -> list[ProblemItem]:
    """Logic variables that no flow reads or writes."""
    used: set[str] = set()
    for flow in listing.flows:
        used |= _referenced_variables(flow)

    return [ProblemItem(name=v.name, id=v.id, type=v.type) for v in listing.variables if v.id not in used]


CLASSIFIERS = {
    Category.BROKEN: classify_broken,
    Category.DISABLED: classify_disabled,
    Category.BROKEN_VARIABLE: classify_dangling_logic,
    Category.UNUSED_FLOWS: classify_unused_flows,
    Category.UNUSED_LOGIC: classify_unused_logic,
}


def classify_all(listing: HostListing) -> dict[Category, list[ProblemItem]]:
    """Run every classifier over one listing."""
    result = {category: classifier(listing) for category, classifier in CLASSIFIERS.items()}
    logger.debug("Classified: %s", {c.value: len(items) for c, items in result.items()})
    return result
