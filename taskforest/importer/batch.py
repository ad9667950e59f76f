"""Bulk import of an outline into flat task records.

Nodes are flattened depth-first with ids minted up front, so every record
already knows its parent's id and no write depends on reading another back.
The resulting puts are split into capped write groups that commit
concurrently; groups are independent and there is no cross-group rollback.
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

from taskforest.engine import recompute_priorities
from taskforest.errors import PartialImportError
from taskforest.inbox import InboxResolver
from taskforest.models.task import INBOX_TITLE, Task, new_id, utcnow
from taskforest.observability import Tracer, get_json_logger, get_metrics, use_run_context
from taskforest.store.interface import MAX_GROUP_OPS, TaskStore, WriteOp, write_groups

from .outline import (
    OutlineNode,
    bucket,
    effort_to_energy,
    estimate_to_minutes,
    is_today_focus,
    parse_mlo_xml,
    place_to_context,
)


@dataclass(slots=True)
class ImportReport:
    owner_id: str
    records: int
    groups: int
    prioritized: int
    inbox_id: str | None = None


def node_to_task(
    node: OutlineNode,
    *,
    owner_id: str,
    task_id: str,
    parent: Task | None,
    now: _dt.datetime,
) -> Task:
    importance = bucket(node.importance)
    urgency = bucket(node.urgency)
    completed = node.completed is not None
    if parent is None:
        level, path = 0, [node.caption]
    else:
        level, path = parent.level + 1, [*(parent.path or [parent.title]), node.caption]
    return Task(
        id=task_id,
        owner_id=owner_id,
        parent_id=parent.id if parent is not None else None,
        title=node.caption,
        description=node.note,
        status="done" if completed else "next_action",
        completed_date=node.completed,
        importance=importance,
        urgency=urgency,
        time_estimate_minutes=estimate_to_minutes(node.estimate_min, node.estimate_max),
        energy_level=effort_to_energy(node.effort),
        context=place_to_context(node.places),
        is_project=node.is_project,
        start_date=node.start,
        due_date=node.due,
        today_focus=is_today_focus(importance, urgency, completed),
        source="import",
        level=level,
        path=path,
        child_count=len(node.children),
        created_at=now,
        modified_at=now,
    )


def flatten_outline(
    nodes: Sequence[OutlineNode],
    owner_id: str,
    *,
    now: _dt.datetime,
    id_factory: Callable[[], str] = new_id,
    existing_inbox: Task | None = None,
) -> tuple[list[Task], Task | None]:
    """Pre-order flattening of an outline.

    Returns the new records and, when top-level ``<Inbox>`` nodes were merged
    into an Inbox that already exists, that Inbox with its updated child count.
    """
    records: list[Task] = []
    inbox = existing_inbox
    merged_children = 0
    stack: list[tuple[OutlineNode, Task | None]] = [(node, None) for node in reversed(nodes)]
    while stack:
        node, parent = stack.pop()
        is_inbox_node = parent is None and node.caption == INBOX_TITLE
        if is_inbox_node and inbox is not None:
            merged_children += len(node.children)
            stack.extend((child, inbox) for child in reversed(node.children))
            continue
        task = node_to_task(node, owner_id=owner_id, task_id=id_factory(), parent=parent, now=now)
        records.append(task)
        if is_inbox_node:
            inbox = task
        stack.extend((child, task) for child in reversed(node.children))

    if not merged_children or inbox is None:
        return records, None
    if existing_inbox is not None:
        child_count = existing_inbox.child_count + merged_children
        return records, existing_inbox.model_copy(
            update={"child_count": child_count, "modified_at": now}
        )
    # The Inbox came from this same outline; fold the extra children into its record
    records = [
        t.model_copy(update={"child_count": t.child_count + merged_children})
        if t.id == inbox.id
        else t
        for t in records
    ]
    return records, None


class BatchImporter:
    def __init__(
        self,
        store: TaskStore,
        inbox: InboxResolver,
        *,
        clock: Callable[[], _dt.datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
        group_size: int = MAX_GROUP_OPS,
        max_workers: int = 4,
    ) -> None:
        self._store = store
        self._inbox = inbox
        self._clock = clock
        self._id_factory = id_factory
        self._group_size = max(1, min(group_size, MAX_GROUP_OPS))
        self._max_workers = max(1, max_workers)
        self._logger = get_json_logger("taskforest.importer")
        self._metrics = get_metrics()
        self._tracer = Tracer(get_json_logger("taskforest.importer.trace"))

    def _commit_all(self, groups: list[list[WriteOp]]) -> tuple[int, int, list[Exception]]:
        committed_records = 0
        committed_groups = 0
        failures: list[Exception] = []
        if not groups:
            return 0, 0, failures
        workers = min(self._max_workers, len(groups))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="import") as pool:
            futures = {pool.submit(self._store.commit, group): group for group in groups}
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception as exc:  # noqa: BLE001
                    failures.append(exc)
                    self._logger.error(
                        "write group failed",
                        extra={
                            "event": "import_group_failed",
                            "records": len(futures[future]),
                            "metadata": {"error": str(exc)[:200]},
                        },
                    )
                    continue
                committed_groups += 1
                committed_records += len(futures[future])
        return committed_records, committed_groups, failures

    def import_outline(self, nodes: Sequence[OutlineNode], owner_id: str) -> ImportReport:
        """Write an outline as new records, then rescore the owner's open tasks.

        Each run mints fresh ids: importing the same outline twice duplicates it.
        Raises ``PartialImportError`` when any write group fails.
        """
        with use_run_context(owner_id), self._tracer.span("import", {"owner_id": owner_id}):
            now = self._clock()
            records, inbox_update = flatten_outline(
                nodes,
                owner_id,
                now=now,
                id_factory=self._id_factory,
                existing_inbox=self._inbox.find(owner_id),
            )
            ops = [WriteOp.put(t) for t in records]
            if inbox_update is not None:
                ops.append(WriteOp.put(inbox_update))
            groups = list(write_groups(ops, self._group_size))
            self._logger.info(
                "import started",
                extra={"event": "import_started", "records": len(records), "groups": len(groups)},
            )

            committed_ops, committed_groups, failures = self._commit_all(groups)
            if failures:
                self._metrics.increment("import_failures", {"owner_id": owner_id})
                raise PartialImportError(
                    committed_records=committed_ops,
                    committed_groups=committed_groups,
                    failed_groups=len(failures),
                    total_records=len(ops),
                ) from failures[0]

            inbox = self._inbox.resolve(owner_id)
            prioritized = recompute_priorities(
                self._store, owner_id, now=self._clock(), group_size=self._group_size
            )
            self._metrics.increment("imported_records", {"owner_id": owner_id}, len(records))
            self._logger.info(
                "import committed",
                extra={
                    "event": "import_committed",
                    "records": len(records),
                    "groups": committed_groups,
                },
            )
            return ImportReport(
                owner_id=owner_id,
                records=len(records),
                groups=committed_groups,
                prioritized=prioritized,
                inbox_id=inbox.id,
            )

    def import_xml(self, text: str, owner_id: str) -> ImportReport:
        return self.import_outline(parse_mlo_xml(text), owner_id)

    def import_file(self, path: str | Path, owner_id: str) -> ImportReport:
        return self.import_xml(Path(path).read_text(encoding="utf-8"), owner_id)


__all__ = ["BatchImporter", "ImportReport", "flatten_outline", "node_to_task"]
