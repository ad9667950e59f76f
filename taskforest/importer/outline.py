"""MyLifeOrganized outline nodes and their mapping onto task fields."""

from __future__ import annotations

import datetime as _dt
import xml.etree.ElementTree as ET

from pydantic import BaseModel, Field

from taskforest.models.task import EnergyLevel

MINUTES_PER_DAY = 24 * 60
DEFAULT_RAW_SCORE = 100
# Effort is frequently left blank in MLO exports; treat that as a middling task
DEFAULT_ENERGY: EnergyLevel = "medium"

PLACE_CONTEXTS = {
    "!Errands": "@errands",
    "@HomeOffice": "@home",
    "@HomeComputer": "@computer",
    "@Anywhere": "@anywhere",
    "@Office": "@office",
    "@Phone": "@calls",
    "@Computer": "@computer",
    "@Home": "@home",
}


class OutlineNode(BaseModel):
    """One node of an external outline, before any mapping."""

    caption: str
    note: str | None = None
    importance: int | None = None  # 0-200
    urgency: int | None = None  # 0-200
    effort: int | None = None
    places: list[str] = Field(default_factory=list)
    estimate_min: float | None = None  # fraction of a day
    estimate_max: float | None = None
    start: _dt.datetime | None = None
    due: _dt.datetime | None = None
    completed: _dt.datetime | None = None
    is_project: bool = False
    children: list[OutlineNode] = Field(default_factory=list)


def bucket(raw: int | None) -> int:
    """Collapse a 0-200 MLO score onto the 1-5 scale."""
    value = DEFAULT_RAW_SCORE if raw is None else raw
    if value >= 150:
        return 5
    if value >= 100:
        return 4
    if value >= 75:
        return 3
    if value >= 50:
        return 2
    return 1


def effort_to_energy(effort: int | None) -> EnergyLevel:
    if effort is None:
        return DEFAULT_ENERGY
    if effort <= 10:
        return "low"
    if effort <= 50:
        return "medium"
    return "high"


def estimate_to_minutes(estimate_min: float | None, estimate_max: float | None) -> int | None:
    fraction = estimate_max if estimate_max is not None else estimate_min
    if fraction is None:
        return None
    return round(fraction * MINUTES_PER_DAY)


def place_to_context(places: list[str]) -> str | None:
    if not places:
        return None
    place = places[0]
    return PLACE_CONTEXTS.get(place, place.lower())


def is_today_focus(importance: int, urgency: int, completed: bool) -> bool:
    return importance == 5 and urgency == 5 and not completed


# ----------------------------
# MLO XML parsing
# ----------------------------


def _text(elem: ET.Element, tag: str) -> str | None:
    child = elem.find(tag)
    if child is None or child.text is None:
        return None
    value = child.text.strip()
    return value or None


def _int(elem: ET.Element, tag: str) -> int | None:
    raw = _text(elem, tag)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        return None


def _float(elem: ET.Element, tag: str) -> float | None:
    raw = _text(elem, tag)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _instant(elem: ET.Element, tag: str) -> _dt.datetime | None:
    raw = _text(elem, tag)
    if raw is None:
        return None
    try:
        value = _dt.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=_dt.UTC)
    return value


def _outline_node(elem: ET.Element, caption: str) -> OutlineNode:
    places: list[str] = []
    places_elem = elem.find("Places")
    if places_elem is not None:
        places = [p.text.strip() for p in places_elem.findall("Place") if (p.text or "").strip()]
    return OutlineNode(
        caption=caption,
        note=_text(elem, "Note"),
        importance=_int(elem, "Importance"),
        urgency=_int(elem, "Urgency"),
        effort=_int(elem, "Effort"),
        places=places,
        estimate_min=_float(elem, "EstimateMin"),
        estimate_max=_float(elem, "EstimateMax"),
        start=_instant(elem, "StartDateTime"),
        due=_instant(elem, "DueDateTime"),
        completed=_instant(elem, "CompletionDateTime"),
        is_project=_text(elem, "IsProject") == "-1",
    )


def _parse_nodes(tree: ET.Element) -> list[OutlineNode]:
    roots: list[OutlineNode] = []
    # (element, list its parsed node is appended to); document order via LIFO
    stack = [(elem, roots) for elem in reversed(tree.findall("TaskNode"))]
    while stack:
        elem, siblings = stack.pop()
        caption = _text(elem, "Caption")
        if caption is None:
            # Caption-less wrapper nodes are transparent
            target = siblings
        else:
            node = _outline_node(elem, caption)
            siblings.append(node)
            target = node.children
        stack.extend((child, target) for child in reversed(elem.findall("TaskNode")))
    return roots


def parse_mlo_xml(text: str) -> list[OutlineNode]:
    """Top-level outline nodes of a ``<MyLifeOrganized-xml>`` export."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise ValueError(f"malformed MLO export: {exc}") from exc
    tree = root if root.tag == "TaskTree" else root.find("TaskTree")
    if tree is None:
        raise ValueError("no <TaskTree> element in MLO export")
    return _parse_nodes(tree)


def count_nodes(nodes: list[OutlineNode]) -> int:
    total = 0
    stack = list(nodes)
    while stack:
        node = stack.pop()
        total += 1
        stack.extend(node.children)
    return total


__all__ = [
    "PLACE_CONTEXTS",
    "OutlineNode",
    "bucket",
    "count_nodes",
    "effort_to_energy",
    "estimate_to_minutes",
    "is_today_focus",
    "parse_mlo_xml",
    "place_to_context",
]
