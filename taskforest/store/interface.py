from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Literal, Protocol

from taskforest.models.task import Task, Status

# One below the 500-operation ceiling of a single atomic commit
MAX_GROUP_OPS = 499


@dataclass(slots=True)
class WriteOp:
    """One record-level operation inside a write group.

    Deletes carry the full record so stores can drop secondary index entries
    without reading it back.
    """

    kind: Literal["put", "delete"]
    task: Task

    @classmethod
    def put(cls, task: Task) -> WriteOp:
        return cls(kind="put", task=task)

    @classmethod
    def delete(cls, task: Task) -> WriteOp:
        return cls(kind="delete", task=task)


class TaskStore(Protocol):
    """Minimal persistence interface for flat task records.

    ``commit`` applies a whole write group atomically or not at all. Import
    groups stay at or below ``MAX_GROUP_OPS``; engine mutations pass
    ``limit=None`` so a cascade of any size lands in one unit.
    """

    def get_task(self, task_id: str) -> Task | None:
        """Return one task by id or None."""

    def list_tasks(self, owner_id: str, status: Status | None = None) -> list[Task]:
        """All of an owner's tasks, optionally filtered by status, oldest first."""

    def find_by_title(self, owner_id: str, title: str) -> list[Task]:
        """An owner's tasks with exactly this title."""

    def commit(self, ops: Sequence[WriteOp], *, limit: int | None = MAX_GROUP_OPS) -> None:
        """Apply a write group as one atomic unit. Raises ValueError above ``limit``."""


def check_group_size(ops: Sequence[WriteOp], limit: int | None) -> None:
    if limit is not None and len(ops) > limit:
        raise ValueError(f"write group of {len(ops)} ops exceeds {limit}")


def write_groups(ops: Iterable[WriteOp], size: int = MAX_GROUP_OPS) -> Iterator[list[WriteOp]]:
    """Split ops into consecutive groups of at most ``size``, preserving order."""
    if size < 1:
        raise ValueError("group size must be positive")
    group: list[WriteOp] = []
    for op in ops:
        group.append(op)
        if len(group) >= size:
            yield group
            group = []
    if group:
        yield group


__all__ = ["MAX_GROUP_OPS", "TaskStore", "WriteOp", "check_group_size", "write_groups"]
