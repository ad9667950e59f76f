"""Forest views over an owner's flat task records.

Records link upward through ``parent_id`` only. Everything here works on a
flat ``id -> Task`` arena and walks parent chains explicitly, so dangling or
cyclic references in raw data degrade to root placement instead of raising
or looping.
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from taskforest.models.task import Task


@dataclass(slots=True)
class TaskNode:
    task: Task
    children: list[TaskNode] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.task.id


def _arena(tasks: Iterable[Task]) -> dict[str, Task]:
    return {t.id: t for t in tasks}


def _cycle_breakers(arena: dict[str, Task]) -> set[str]:
    """Ids whose parent link must be ignored to make the arena acyclic.

    Each cycle found in the parent chains contributes its smallest id.
    """
    breakers: set[str] = set()
    settled: set[str] = set()
    for start in arena:
        if start in settled:
            continue
        chain: list[str] = []
        position: dict[str, int] = {}
        current: str | None = start
        while current is not None and current in arena and current not in settled:
            if current in position:
                breakers.add(min(chain[position[current] :]))
                break
            position[current] = len(chain)
            chain.append(current)
            current = arena[current].parent_id
        settled.update(chain)
    return breakers


def effective_parents(tasks: Iterable[Task]) -> dict[str, str | None]:
    """Map each id to the parent it is displayed under (None for roots)."""
    arena = _arena(tasks)
    breakers = _cycle_breakers(arena)
    parents: dict[str, str | None] = {}
    for tid, task in arena.items():
        pid = task.parent_id
        if pid is None or pid not in arena or tid in breakers:
            parents[tid] = None
        else:
            parents[tid] = pid
    return parents


def _sort_key(node: TaskNode) -> tuple[str, str]:
    return (node.task.title.casefold(), node.task.id)


def build_forest(tasks: Iterable[Task]) -> list[TaskNode]:
    """Link flat records into trees; children and roots ordered by title."""
    task_list = list(tasks)
    nodes = {t.id: TaskNode(t) for t in task_list}
    roots: list[TaskNode] = []
    for tid, pid in effective_parents(task_list).items():
        if pid is None:
            roots.append(nodes[tid])
        else:
            nodes[pid].children.append(nodes[tid])
    for node in nodes.values():
        node.children.sort(key=_sort_key)
    roots.sort(key=_sort_key)
    return roots


def iter_nodes(forest: list[TaskNode]) -> Iterator[tuple[TaskNode, int]]:
    """Pre-order traversal yielding ``(node, depth)``."""
    stack = [(node, 0) for node in reversed(forest)]
    while stack:
        node, depth = stack.pop()
        yield node, depth
        stack.extend((child, depth + 1) for child in reversed(node.children))


def flatten(forest: list[TaskNode]) -> list[Task]:
    return [node.task for node, _ in iter_nodes(forest)]


def derive_depths(tasks: Iterable[Task]) -> dict[str, tuple[int, list[str]]]:
    """Recompute ``(level, path)`` for every task from the live parent chain."""
    result: dict[str, tuple[int, list[str]]] = {}
    for node, depth in iter_nodes(build_forest(tasks)):
        pid = node.task.parent_id
        parent_path = result[pid][1] if depth > 0 and pid in result else []
        result[node.id] = (depth, [*parent_path, node.task.title])
    return result


def children_index(tasks: Iterable[Task]) -> dict[str, list[str]]:
    """Direct child ids per parent id, for the records present."""
    index: dict[str, list[str]] = {}
    for tid, pid in effective_parents(tasks).items():
        if pid is not None:
            index.setdefault(pid, []).append(tid)
    return index


def descendant_ids(tasks: Iterable[Task], task_id: str) -> set[str]:
    """Every id reachable downward from ``task_id``, excluding itself."""
    index = children_index(tasks)
    found: set[str] = set()
    stack = list(index.get(task_id, []))
    while stack:
        current = stack.pop()
        if current in found or current == task_id:
            continue
        found.add(current)
        stack.extend(index.get(current, []))
    return found


def reparent_candidates(tasks: Iterable[Task], task_id: str) -> list[Task]:
    """Legal "move to" targets: everything but the task and its subtree."""
    task_list = list(tasks)
    excluded = descendant_ids(task_list, task_id) | {task_id}
    return [t for t in task_list if t.id not in excluded]


def _completed_before(task: Task, cutoff: _dt.datetime) -> bool:
    return task.is_done and task.completed_date is not None and task.completed_date < cutoff


def prune_completed(forest: list[TaskNode], cutoff: _dt.datetime) -> list[TaskNode]:
    """Copy of the forest without tasks completed before ``cutoff``.

    A pruned task takes its entire subtree with it, open descendants included.
    """
    pruned_roots: list[TaskNode] = []
    stack: list[tuple[TaskNode, list[TaskNode]]] = [
        (node, pruned_roots) for node in reversed(forest)
    ]
    while stack:
        node, siblings = stack.pop()
        if _completed_before(node.task, cutoff):
            continue
        copy = TaskNode(node.task)
        siblings.append(copy)
        stack.extend((child, copy.children) for child in reversed(node.children))
    return pruned_roots


def find_inbox(forest: list[TaskNode]) -> TaskNode | None:
    for node in forest:
        if node.task.is_inbox:
            return node
    return None


def inbox_items(forest: list[TaskNode]) -> list[Task]:
    """Open tasks filed directly under the Inbox."""
    inbox = find_inbox(forest)
    if inbox is None:
        return []
    return [child.task for child in inbox.children if not child.task.is_done]


__all__ = [
    "TaskNode",
    "build_forest",
    "children_index",
    "derive_depths",
    "descendant_ids",
    "effective_parents",
    "find_inbox",
    "flatten",
    "inbox_items",
    "iter_nodes",
    "prune_completed",
    "reparent_candidates",
]
