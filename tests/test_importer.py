from __future__ import annotations

import datetime as _dt
from pathlib import Path

import pytest

from taskforest.errors import PartialImportError
from taskforest.importer import BatchImporter, OutlineNode, flatten_outline, parse_mlo_xml
from taskforest.importer.batch import node_to_task
from taskforest.importer.outline import (
    bucket,
    count_nodes,
    effort_to_energy,
    estimate_to_minutes,
    place_to_context,
)
from taskforest.inbox import InboxResolver
from taskforest.models.task import INBOX_TITLE, Task
from taskforest.observability import get_metrics
from tests.helpers.clock import NOW, FakeClock
from tests.helpers.store import FlakyTaskStore, InMemoryTaskStore, sequential_ids

SAMPLE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<MyLifeOrganized-xml ver="1.2">
  <TaskTree>
    <TaskNode>
      <Caption>Home</Caption>
      <IsProject>-1</IsProject>
      <TaskNode>
        <Caption>Fix shelf</Caption>
        <Note>Needs longer screws</Note>
        <Importance>180</Importance>
        <Urgency>60</Urgency>
        <Effort>70</Effort>
        <EstimateMax>0.25</EstimateMax>
        <Places><Place>@Home</Place><Place>!Errands</Place></Places>
        <DueDateTime>2025-01-05T17:00:00</DueDateTime>
      </TaskNode>
      <TaskNode>
        <Caption>Paint door</Caption>
        <CompletionDateTime>2024-12-20T10:00:00Z</CompletionDateTime>
      </TaskNode>
    </TaskNode>
    <TaskNode>
      <TaskNode>
        <Caption>Hoisted</Caption>
        <Importance>200</Importance>
        <Urgency>150</Urgency>
      </TaskNode>
    </TaskNode>
  </TaskTree>
</MyLifeOrganized-xml>
"""


def _importer(store: InMemoryTaskStore, **kw: object) -> BatchImporter:
    clock = FakeClock()
    return BatchImporter(
        store, InboxResolver(store, clock), clock=clock, id_factory=sequential_ids("n"), **kw
    )


def _wide_outline(roots: int, children: int) -> list[OutlineNode]:
    return [
        OutlineNode(
            caption=f"Area {r}",
            children=[OutlineNode(caption=f"Item {r}.{c}") for c in range(children)],
        )
        for r in range(roots)
    ]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, 4), (0, 1), (49, 1), (50, 2), (75, 3), (100, 4), (149, 4), (150, 5), (200, 5)],
)
def test_bucket_thresholds(raw: int | None, expected: int) -> None:
    assert bucket(raw) == expected


def test_field_mappings() -> None:
    assert effort_to_energy(None) == "medium"
    assert effort_to_energy(10) == "low"
    assert effort_to_energy(50) == "medium"
    assert effort_to_energy(51) == "high"
    assert estimate_to_minutes(0.01, 0.25) == 360
    assert estimate_to_minutes(0.5, None) == 720
    assert estimate_to_minutes(None, None) is None
    assert place_to_context(["@Phone", "@Home"]) == "@calls"
    assert place_to_context(["@Garden"]) == "@garden"
    assert place_to_context([]) is None


def test_node_to_task_maps_mlo_scores() -> None:
    node = OutlineNode(
        caption="Fix shelf", importance=180, urgency=60, effort=70, estimate_max=0.25
    )
    task = node_to_task(node, owner_id="u1", task_id="x", parent=None, now=NOW)
    assert task.importance == 5
    assert task.urgency == 2
    assert task.energy_level == "high"
    assert task.time_estimate_minutes == 360
    assert task.source == "import"
    assert task.level == 0
    assert task.path == ["Fix shelf"]
    assert task.today_focus is False


def test_parse_mlo_xml_reads_nested_nodes() -> None:
    nodes = parse_mlo_xml(SAMPLE_XML)
    assert [n.caption for n in nodes] == ["Home", "Hoisted"]
    home = nodes[0]
    assert home.is_project is True
    assert [c.caption for c in home.children] == ["Fix shelf", "Paint door"]
    shelf = home.children[0]
    assert shelf.note == "Needs longer screws"
    assert shelf.places == ["@Home", "!Errands"]
    assert shelf.due == _dt.datetime(2025, 1, 5, 17, 0, tzinfo=_dt.UTC)
    assert home.children[1].completed == _dt.datetime(2024, 12, 20, 10, 0, tzinfo=_dt.UTC)
    assert count_nodes(nodes) == 4


def test_parse_mlo_xml_keeps_document_order_around_wrappers() -> None:
    xml = (
        "<MyLifeOrganized-xml><TaskTree>"
        "<TaskNode><Caption>A</Caption></TaskNode>"
        "<TaskNode><TaskNode><Caption>B</Caption></TaskNode>"
        "<TaskNode><Caption>C</Caption><TaskNode><Caption>C1</Caption></TaskNode></TaskNode>"
        "</TaskNode>"
        "<TaskNode><Caption>D</Caption></TaskNode>"
        "</TaskTree></MyLifeOrganized-xml>"
    )
    nodes = parse_mlo_xml(xml)
    assert [n.caption for n in nodes] == ["A", "B", "C", "D"]
    assert [c.caption for c in nodes[2].children] == ["C1"]


def test_parse_mlo_xml_handles_outlines_deeper_than_the_recursion_limit() -> None:
    depth = 2000
    xml = (
        "<MyLifeOrganized-xml><TaskTree>"
        + "".join(f"<TaskNode><Caption>L{i}</Caption>" for i in range(depth))
        + "</TaskNode>" * depth
        + "</TaskTree></MyLifeOrganized-xml>"
    )
    nodes = parse_mlo_xml(xml)
    assert count_nodes(nodes) == depth

    records, _ = flatten_outline(nodes, "u1", now=NOW, id_factory=sequential_ids("n"))
    assert len(records) == depth
    assert records[-1].title == f"L{depth - 1}"
    assert records[-1].level == depth - 1


def test_parse_mlo_xml_rejects_bad_documents() -> None:
    with pytest.raises(ValueError):
        parse_mlo_xml("<MyLifeOrganized-xml><TaskTree>")
    with pytest.raises(ValueError):
        parse_mlo_xml("<MyLifeOrganized-xml></MyLifeOrganized-xml>")


def test_flatten_outline_links_parents_depth_first() -> None:
    records, inbox_update = flatten_outline(
        parse_mlo_xml(SAMPLE_XML), "u1", now=NOW, id_factory=sequential_ids("n")
    )
    assert inbox_update is None
    by_title = {t.title: t for t in records}
    assert [t.title for t in records] == ["Home", "Fix shelf", "Paint door", "Hoisted"]
    home = by_title["Home"]
    assert home.child_count == 2
    assert home.is_project
    shelf = by_title["Fix shelf"]
    assert shelf.parent_id == home.id
    assert shelf.level == 1
    assert shelf.path == ["Home", "Fix shelf"]
    assert shelf.context == "@home"
    assert by_title["Paint door"].status == "done"
    hoisted = by_title["Hoisted"]
    assert hoisted.parent_id is None
    assert hoisted.today_focus is True


def test_import_xml_writes_records_and_creates_inbox() -> None:
    store = InMemoryTaskStore()
    report = _importer(store).import_xml(SAMPLE_XML, "u1")

    assert report.records == 4
    assert report.groups == 1
    assert report.inbox_id is not None
    assert store.get_task(report.inbox_id).title == INBOX_TITLE
    assert report.prioritized == len(store.list_tasks("u1", status="next_action"))
    shelf = store.find_by_title("u1", "Fix shelf")[0]
    assert shelf.computed_priority > 0
    assert shelf.priority_breakdown is not None
    assert get_metrics().value("imported_records", {"owner_id": "u1"}) == 4


def test_large_import_is_split_into_capped_groups() -> None:
    store = InMemoryTaskStore()
    nodes = _wide_outline(10, 99)
    assert count_nodes(nodes) == 1000

    report = _importer(store).import_outline(nodes, "u1")

    assert report.records == 1000
    assert report.groups == 3
    assert all(len(g) <= 499 for g in store.commits)
    # import groups land first; the Inbox and the rescoring groups follow
    assert sorted(len(g) for g in store.commits[:3]) == [2, 499, 499]
    # the Inbox is the only record not created by the import
    assert len(store.list_tasks("u1")) == 1001


def test_small_group_size_is_honoured() -> None:
    store = InMemoryTaskStore()
    report = _importer(store, group_size=3).import_outline(_wide_outline(2, 4), "u1")
    assert report.records == 10
    assert report.groups == 4


def test_failed_group_raises_partial_import_error() -> None:
    # Group two starts at the 500th minted id
    store = FlakyTaskStore(fail_ids={"n00500"})
    with pytest.raises(PartialImportError) as exc:
        _importer(store).import_outline(_wide_outline(10, 99), "u1")

    err = exc.value
    assert err.failed_groups == 1
    assert err.committed_groups == 2
    assert err.committed_records == 501
    assert err.total_records == 1000
    # earlier groups stay committed; no Inbox and no rescoring after a failure
    assert len(store.list_tasks("u1")) == 501
    assert store.find_by_title("u1", INBOX_TITLE) == []
    assert get_metrics().value("import_failures", {"owner_id": "u1"}) == 1


def test_top_level_inbox_merges_into_existing_inbox() -> None:
    store = InMemoryTaskStore()
    existing = Task(id="inbox", owner_id="u1", title=INBOX_TITLE, path=[INBOX_TITLE], child_count=1)
    store.seed(existing, Task(id="old", owner_id="u1", title="Old", parent_id="inbox", level=1))
    outline = [
        OutlineNode(
            caption=INBOX_TITLE,
            children=[OutlineNode(caption="Call dentist"), OutlineNode(caption="Pay rent")],
        ),
        OutlineNode(caption="Garden"),
    ]

    report = _importer(store).import_outline(outline, "u1")

    assert report.records == 3
    assert report.inbox_id == "inbox"
    assert len(store.find_by_title("u1", INBOX_TITLE)) == 1
    assert store.get_task("inbox").child_count == 3
    dentist = store.find_by_title("u1", "Call dentist")[0]
    assert dentist.parent_id == "inbox"
    assert dentist.path == [INBOX_TITLE, "Call dentist"]


def test_repeated_inbox_nodes_in_one_outline_fold_together() -> None:
    outline = [
        OutlineNode(caption=INBOX_TITLE, children=[OutlineNode(caption="a")]),
        OutlineNode(caption=INBOX_TITLE, children=[OutlineNode(caption="b")]),
    ]
    records, inbox_update = flatten_outline(outline, "u1", now=NOW, id_factory=sequential_ids())
    assert inbox_update is None
    inboxes = [t for t in records if t.title == INBOX_TITLE]
    assert len(inboxes) == 1
    assert inboxes[0].child_count == 2
    assert {t.parent_id for t in records if t.title in {"a", "b"}} == {inboxes[0].id}


def test_reimport_duplicates_records(tmp_path: Path) -> None:
    path = tmp_path / "export.xml"
    path.write_text(SAMPLE_XML, encoding="utf-8")
    store = InMemoryTaskStore()
    importer = _importer(store)
    importer.import_file(path, "u1")
    importer.import_file(path, "u1")
    assert len(store.find_by_title("u1", "Fix shelf")) == 2
    assert len(store.find_by_title("u1", INBOX_TITLE)) == 1
