from __future__ import annotations

import datetime as _dt
from collections.abc import Callable

from taskforest.models.task import INBOX_TITLE, Task, utcnow
from taskforest.observability import get_json_logger
from taskforest.store.interface import TaskStore, WriteOp


class InboxResolver:
    """Finds an owner's ``<Inbox>`` root task, creating it on first need.

    Passed explicitly to the engine and the importer; there is no process-wide
    Inbox cache, so every resolve reflects what the store holds.
    """

    alias = INBOX_TITLE

    def __init__(self, store: TaskStore, clock: Callable[[], _dt.datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._logger = get_json_logger("taskforest.inbox")

    def is_alias(self, parent_id: str | None) -> bool:
        return parent_id is None or parent_id == self.alias

    def find(self, owner_id: str) -> Task | None:
        candidates = self._store.find_by_title(owner_id, INBOX_TITLE)
        matches = [t for t in candidates if t.parent_id is None]
        if not matches:
            return None
        # Oldest wins if a concurrent writer ever raced us to a second one
        return min(matches, key=lambda t: (t.created_at, t.id))

    def resolve(self, owner_id: str) -> Task:
        existing = self.find(owner_id)
        if existing is not None:
            return existing
        now = self._clock()
        inbox = Task(
            owner_id=owner_id,
            title=INBOX_TITLE,
            path=[INBOX_TITLE],
            source="system",
            created_at=now,
            modified_at=now,
        )
        self._store.commit([WriteOp.put(inbox)])
        self._logger.info(
            "inbox created",
            extra={"event": "inbox_created", "owner_id": owner_id, "task_id": inbox.id},
        )
        return inbox


__all__ = ["InboxResolver"]
