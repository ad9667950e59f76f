from __future__ import annotations

import datetime as _dt
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from taskforest.errors import InvalidParentError, NotFoundError
from taskforest.forest.builder import (
    TaskNode,
    build_forest,
    children_index,
    descendant_ids,
    inbox_items,
    reparent_candidates,
)
from taskforest.inbox import InboxResolver
from taskforest.models.task import Task, TaskFields, TaskUpdate, new_id, utcnow
from taskforest.observability import get_json_logger, get_metrics
from taskforest.priority import apply_priority, rank_todo
from taskforest.recurrence import spawn_successor
from taskforest.review import due_for_review, reviewed
from taskforest.store.interface import MAX_GROUP_OPS, TaskStore, WriteOp, write_groups


@dataclass(slots=True)
class ToggleResult:
    task: Task
    successor: Task | None = None


def commit_in_groups(
    store: TaskStore, ops: Sequence[WriteOp], group_size: int = MAX_GROUP_OPS
) -> int:
    """Commit ops sequentially in capped groups. Returns the number of groups."""
    groups = 0
    for group in write_groups(ops, group_size):
        store.commit(group)
        groups += 1
    return groups


def recompute_priorities(
    store: TaskStore,
    owner_id: str,
    *,
    now: _dt.datetime,
    group_size: int = MAX_GROUP_OPS,
) -> int:
    """Score every open task of an owner and persist the result."""
    active = store.list_tasks(owner_id, status="next_action")
    commit_in_groups(store, [WriteOp.put(apply_priority(t, now)) for t in active], group_size)
    return len(active)


def _child_position(parent: Task | None, title: str) -> tuple[int, list[str]]:
    if parent is None:
        return 0, [title]
    parent_path = parent.path or [parent.title]
    return parent.level + 1, [*parent_path, title]


def _cascade(tasks: Sequence[Task], root: Task, stamp: _dt.datetime) -> list[Task]:
    """Rewrite level/path below ``root`` from its (already updated) position."""
    arena = {t.id: t for t in tasks}
    index = children_index(tasks)
    positions: dict[str, tuple[int, list[str]]] = {root.id: (root.level, root.path)}
    changed: list[Task] = []
    queue = deque(index.get(root.id, []))
    parent_of = {cid: root.id for cid in queue}
    while queue:
        tid = queue.popleft()
        child = arena[tid]
        parent_level, parent_path = positions[parent_of[tid]]
        level, path = parent_level + 1, [*parent_path, child.title]
        positions[tid] = (level, path)
        if child.level != level or child.path != path:
            changed.append(
                child.model_copy(update={"level": level, "path": path, "modified_at": stamp})
            )
        for grandchild in index.get(tid, []):
            if grandchild not in positions:
                parent_of[grandchild] = tid
                queue.append(grandchild)
    return changed


class MutationEngine:
    """Add/update/move/delete/complete operations over an owner's task forest.

    Every operation validates before writing and commits its records as one
    uncapped write group, so ``child_count``, ``level`` and ``path`` stay consistent
    with the parent links. Descendants are cascaded eagerly when an ancestor
    moves or is renamed.
    """

    def __init__(
        self,
        store: TaskStore,
        inbox: InboxResolver,
        *,
        clock: Callable[[], _dt.datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
        group_size: int = MAX_GROUP_OPS,
    ) -> None:
        self._store = store
        self._inbox = inbox
        self._clock = clock
        self._id_factory = id_factory
        self._group_size = min(group_size, MAX_GROUP_OPS)
        self._logger = get_json_logger("taskforest.engine")
        self._metrics = get_metrics()

    @property
    def store(self) -> TaskStore:
        return self._store

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _commit(self, operation: str, task: Task, ops: Sequence[WriteOp]) -> None:
        # One atomic unit however far the cascade reaches
        self._store.commit(ops, limit=None)
        self._logger.info(
            "task mutation",
            extra={
                "event": f"task_{operation}",
                "operation": operation,
                "owner_id": task.owner_id,
                "task_id": task.id,
                "records": len(ops),
            },
        )
        self._metrics.increment("mutations", {"operation": operation})

    def _owner_tasks(self, owner_id: str) -> list[Task]:
        return self._store.list_tasks(owner_id)

    # ----------------------------
    # Reads
    # ----------------------------
    def get_task(self, task_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    def forest(self, owner_id: str) -> list[TaskNode]:
        return build_forest(self._owner_tasks(owner_id))

    def todo_view(self, owner_id: str, *, context: str | None = None) -> list[Task]:
        tasks = self._store.list_tasks(owner_id, status="next_action")
        if context is not None:
            tasks = [t for t in tasks if t.context == context]
        return rank_todo(tasks)

    def review_queue(self, owner_id: str) -> list[Task]:
        return due_for_review(self._store.list_tasks(owner_id, status="next_action"), self._clock())

    def inbox_view(self, owner_id: str) -> list[Task]:
        return inbox_items(self.forest(owner_id))

    def move_candidates(self, task_id: str) -> list[Task]:
        task = self.get_task(task_id)
        return reparent_candidates(self._owner_tasks(task.owner_id), task_id)

    # ----------------------------
    # Mutations
    # ----------------------------
    def add_task(
        self,
        owner_id: str,
        fields: TaskFields | Mapping[str, Any],
        parent_id: str | None = None,
    ) -> str:
        """Create a task under ``parent_id`` (default: the Inbox). Returns its id."""
        if not isinstance(fields, TaskFields):
            fields = TaskFields.model_validate(fields)
        if self._inbox.is_alias(parent_id):
            parent = self._inbox.resolve(owner_id)
        else:
            parent = self.get_task(parent_id)
            if parent.owner_id != owner_id:
                raise NotFoundError(parent.id)

        now = self._clock()
        level, path = _child_position(parent, fields.title)
        data = fields.model_dump()
        if fields.status == "done" and fields.completed_date is None:
            data["completed_date"] = now
        task = Task(
            **data,
            id=self._id_factory(),
            owner_id=owner_id,
            parent_id=parent.id,
            level=level,
            path=path,
            child_count=0,
            created_at=now,
            modified_at=now,
        )
        task = apply_priority(task, now)
        bumped = parent.model_copy(
            update={"child_count": parent.child_count + 1, "modified_at": now}
        )
        self._commit("added", task, [WriteOp.put(task), WriteOp.put(bumped)])
        return task.id

    def update_task(self, task_id: str, changes: TaskUpdate | Mapping[str, Any]) -> Task:
        if not isinstance(changes, TaskUpdate):
            changes = TaskUpdate.model_validate(changes)
        values = changes.changes()
        if not values:
            raise ValueError("no fields to update")
        task = self.get_task(task_id)
        now = self._clock()

        # Revalidate the merged record; model_copy alone skips field checks
        merged = task.model_dump()
        merged.update(values, modified_at=now)
        updated = apply_priority(Task.model_validate(merged), now)
        ops = [WriteOp.put(updated)]
        if "title" in values and values["title"] != task.title:
            path = [*(task.path[:-1] if task.path else []), updated.title]
            updated = updated.model_copy(update={"path": path})
            ops = [WriteOp.put(updated)]
            tasks = self._owner_tasks(task.owner_id)
            ops.extend(WriteOp.put(t) for t in _cascade(tasks, updated, now))
        self._commit("updated", updated, ops)
        return updated

    def move_task(self, task_id: str, new_parent_id: str | None) -> Task:
        """Reparent a task (``None`` makes it a root; ``"<Inbox>"`` files it in the Inbox)."""
        task = self.get_task(task_id)
        tasks = self._owner_tasks(task.owner_id)
        arena = {t.id: t for t in tasks}
        arena.setdefault(task.id, task)

        if new_parent_id == InboxResolver.alias:
            inbox = self._inbox.resolve(task.owner_id)
            arena.setdefault(inbox.id, inbox)
            new_parent_id = inbox.id

        new_parent: Task | None = None
        if new_parent_id is not None:
            if new_parent_id == task_id:
                raise InvalidParentError(task_id, new_parent_id)
            if new_parent_id not in arena:
                raise NotFoundError(new_parent_id)
            if new_parent_id in descendant_ids(arena.values(), task_id):
                raise InvalidParentError(task_id, new_parent_id)
            new_parent = arena[new_parent_id]

        if new_parent_id == task.parent_id:
            return task

        now = self._clock()
        level, path = _child_position(new_parent, task.title)
        moved = task.model_copy(
            update={"parent_id": new_parent_id, "level": level, "path": path, "modified_at": now}
        )
        ops = [WriteOp.put(moved)]
        old_parent = arena.get(task.parent_id) if task.parent_id is not None else None
        if old_parent is not None:
            ops.append(
                WriteOp.put(
                    old_parent.model_copy(
                        update={
                            "child_count": max(0, old_parent.child_count - 1),
                            "modified_at": now,
                        }
                    )
                )
            )
        if new_parent is not None:
            ops.append(
                WriteOp.put(
                    new_parent.model_copy(
                        update={"child_count": new_parent.child_count + 1, "modified_at": now}
                    )
                )
            )
        ops.extend(WriteOp.put(t) for t in _cascade(list(arena.values()), moved, now))
        self._commit("moved", moved, ops)
        return moved

    def delete_task(self, task_id: str) -> int:
        """Delete a task and its whole subtree. Returns the number of records removed."""
        task = self.get_task(task_id)
        tasks = self._owner_tasks(task.owner_id)
        arena = {t.id: t for t in tasks}
        arena[task.id] = task
        index = children_index(arena.values())

        # Post-order with an explicit stack: children are removed before parents
        order: list[str] = []
        seen: set[str] = set()
        stack: list[tuple[str, bool]] = [(task_id, False)]
        while stack:
            tid, expanded = stack.pop()
            if expanded:
                order.append(tid)
                continue
            if tid in seen:
                continue
            seen.add(tid)
            stack.append((tid, True))
            stack.extend((cid, False) for cid in index.get(tid, []))

        ops = [WriteOp.delete(arena[tid]) for tid in order]
        parent = arena.get(task.parent_id) if task.parent_id is not None else None
        if parent is not None and parent.id not in seen:
            now = self._clock()
            ops.append(
                WriteOp.put(
                    parent.model_copy(
                        update={"child_count": max(0, parent.child_count - 1), "modified_at": now}
                    )
                )
            )
        self._commit("deleted", task, ops)
        return len(order)

    def toggle_complete(self, task_id: str) -> ToggleResult:
        """Flip done/next_action; completing a recurring task spawns its successor."""
        task = self.get_task(task_id)
        now = self._clock()
        if task.is_done:
            reopened = task.model_copy(
                update={"status": "next_action", "completed_date": None, "modified_at": now}
            )
            self._commit("reopened", reopened, [WriteOp.put(reopened)])
            return ToggleResult(task=reopened)

        done = task.model_copy(update={"status": "done", "completed_date": now, "modified_at": now})
        ops = [WriteOp.put(done)]
        successor: Task | None = None
        if task.recurrence is not None:
            successor = apply_priority(spawn_successor(task, now, self._id_factory), now)
            ops.append(WriteOp.put(successor))
            parent = self._store.get_task(task.parent_id) if task.parent_id is not None else None
            if parent is not None:
                ops.append(
                    WriteOp.put(
                        parent.model_copy(
                            update={"child_count": parent.child_count + 1, "modified_at": now}
                        )
                    )
                )
        self._commit("completed", done, ops)
        return ToggleResult(task=done, successor=successor)

    def mark_reviewed(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task.review is None:
            raise ValueError(f"task {task_id} has no review settings")
        now = self._clock()
        updated = task.model_copy(update={"review": reviewed(task.review, now), "modified_at": now})
        self._commit("reviewed", updated, [WriteOp.put(updated)])
        return updated

    def recompute_priorities(self, owner_id: str) -> int:
        count = recompute_priorities(
            self._store, owner_id, now=self._clock(), group_size=self._group_size
        )
        self._logger.info(
            "priorities recomputed",
            extra={"event": "priorities_recomputed", "owner_id": owner_id, "records": count},
        )
        return count


__all__ = [
    "MutationEngine",
    "ToggleResult",
    "commit_in_groups",
    "recompute_priorities",
]
