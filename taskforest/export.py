"""Export formats: flat CSV, a JSON backup document and MLO outline XML.

The MLO form inverts the import mappings. It is lossy: a 1-5 bucket maps
back to ``(bucket - 1) * 50`` so re-importing lands in an equivalent or
neighbouring bucket, not on the original raw score.
"""

from __future__ import annotations

import csv
import datetime as _dt
import io
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from typing import Any

from taskforest.forest.builder import TaskNode, build_forest
from taskforest.importer.outline import MINUTES_PER_DAY, PLACE_CONTEXTS
from taskforest.models.task import Task, utcnow

EXPORT_VERSION = "1.0.0"

CONTEXT_PLACES = {
    "@errands": "!Errands",
    "@home": "@Home",
    "@office": "@Office",
    "@calls": "@Phone",
    "@computer": "@Computer",
    "@anywhere": "@Anywhere",
}
ENERGY_EFFORT = {"low": 10, "medium": 50, "high": 90}

CSV_COLUMNS = (
    ("ID", "id"),
    ("Title", "title"),
    ("Description", "description"),
    ("Status", "status"),
    ("Context", "context"),
    ("Importance", "importance"),
    ("Urgency", "urgency"),
    ("Time Estimate", "time_estimate_minutes"),
    ("Energy Level", "energy_level"),
    ("Due Date", "due_date"),
    ("Start Date", "start_date"),
    ("Completed Date", "completed_date"),
    ("Parent ID", "parent_id"),
    ("Is Project", "is_project"),
    ("Today Focus", "today_focus"),
    ("Level", "level"),
    ("Child Count", "child_count"),
    ("Computed Priority", "computed_priority"),
    ("Source", "source"),
    ("Created Date", "created_at"),
    ("Modified Date", "modified_at"),
)


def bucket_to_raw(value: int) -> int:
    return (value - 1) * 50


def minutes_to_fraction(minutes: int) -> float:
    return minutes / MINUTES_PER_DAY


def context_to_place(context: str) -> str:
    if context in CONTEXT_PLACES:
        return CONTEXT_PLACES[context]
    # Contexts that arrived through the import table keep their original tag
    for place, mapped in PLACE_CONTEXTS.items():
        if mapped == context:
            return place
    return context


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, _dt.datetime):
        return value.isoformat()
    return str(value)


def export_csv(tasks: Iterable[Task]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for task in tasks:
        writer.writerow([_cell(getattr(task, attr)) for _, attr in CSV_COLUMNS])
    return buf.getvalue()


def export_json(
    tasks: Iterable[Task], owner_id: str, now: _dt.datetime | None = None
) -> dict[str, Any]:
    task_list = [t.model_dump(mode="json") for t in tasks]
    return {
        "version": EXPORT_VERSION,
        "export_date": (now or utcnow()).isoformat(),
        "owner_id": owner_id,
        "task_count": len(task_list),
        "tasks": task_list,
    }


def _sub(parent: ET.Element, tag: str, text: str) -> None:
    ET.SubElement(parent, tag).text = text


def _task_element(task: Task) -> ET.Element:
    elem = ET.Element("TaskNode")
    _sub(elem, "Caption", task.title)
    if task.description:
        _sub(elem, "Note", task.description)
    _sub(elem, "Importance", str(bucket_to_raw(task.importance)))
    _sub(elem, "Urgency", str(bucket_to_raw(task.urgency)))
    _sub(elem, "Effort", str(ENERGY_EFFORT.get(task.energy_level, 50)))
    if task.context:
        places = ET.SubElement(elem, "Places")
        _sub(places, "Place", context_to_place(task.context))
    if task.time_estimate_minutes:
        _sub(elem, "EstimateMax", f"{minutes_to_fraction(task.time_estimate_minutes):.6f}")
    if task.due_date is not None:
        _sub(elem, "DueDateTime", task.due_date.isoformat())
    if task.start_date is not None:
        _sub(elem, "StartDateTime", task.start_date.isoformat())
    if task.is_done and task.completed_date is not None:
        _sub(elem, "CompletionDateTime", task.completed_date.isoformat())
    if task.is_project:
        _sub(elem, "IsProject", "-1")
    return elem


def export_mlo_xml(tasks: Iterable[Task]) -> str:
    root = ET.Element("MyLifeOrganized-xml")
    tree = ET.SubElement(root, "TaskTree")
    stack: list[tuple[TaskNode, ET.Element]] = [(n, tree) for n in reversed(build_forest(tasks))]
    while stack:
        node, parent_elem = stack.pop()
        elem = _task_element(node.task)
        parent_elem.append(elem)
        stack.extend((child, elem) for child in reversed(node.children))
    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


__all__ = [
    "bucket_to_raw",
    "context_to_place",
    "export_csv",
    "export_json",
    "export_mlo_xml",
    "minutes_to_fraction",
]
