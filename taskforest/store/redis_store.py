from __future__ import annotations

import json
from collections.abc import Sequence
from typing import cast

import redis
from pydantic import ValidationError

from taskforest.models.task import Status, Task
from taskforest.observability import get_json_logger

from .interface import MAX_GROUP_OPS, TaskStore, WriteOp, check_group_size


class RedisTaskStore(TaskStore):
    """Redis-backed task store.

    Data structures:
    - Hash per task: key ``{prefix}:task:{id}`` with field ``json``
    - Sorted set per owner ordered by ``created_at``: ``{prefix}:owner:{owner}``
    - Set per (owner, status): ``{prefix}:owner:{owner}:status:{status}``
    - Set per (owner, title): ``{prefix}:owner:{owner}:title:{title}``

    Each write group runs as one MULTI/EXEC pipeline, whatever its size.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        key_prefix: str = "tasks",
        client: redis.Redis | None = None,
    ) -> None:
        if client is not None:
            self._redis = client
        else:
            self._redis = redis.Redis.from_url(url or "redis://localhost:6379/0")
        self._prefix = key_prefix.rstrip(":")
        self._logger = get_json_logger("taskforest.store")

    # key helpers
    def _task_key(self, task_id: str) -> str:
        return f"{self._prefix}:task:{task_id}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}"

    def _status_key(self, owner_id: str, status: str) -> str:
        return f"{self._prefix}:owner:{owner_id}:status:{status}"

    def _title_key(self, owner_id: str, title: str) -> str:
        return f"{self._prefix}:owner:{owner_id}:title:{title}"

    def _decode(self, raw: bytes | None) -> Task | None:
        if raw is None:
            return None
        try:
            return Task.model_validate(json.loads(raw.decode("utf-8")))
        except (ValueError, ValidationError):
            self._logger.warning(
                "skipping unreadable task record",
                extra={"event": "store_decode_error"},
            )
            return None

    def _load_many(self, task_ids: Sequence[str]) -> list[Task]:
        if not task_ids:
            return []
        p = self._redis.pipeline(transaction=False)
        for tid in task_ids:
            p.hget(self._task_key(tid), "json")
        raws = cast(list[bytes | None], p.execute())
        return [t for t in (self._decode(raw) for raw in raws) if t is not None]

    @staticmethod
    def _ids(members: object) -> list[str]:
        return [m.decode("utf-8") for m in cast(list[bytes], members)]

    def get_task(self, task_id: str) -> Task | None:
        return self._decode(cast(bytes | None, self._redis.hget(self._task_key(task_id), "json")))

    def list_tasks(self, owner_id: str, status: Status | None = None) -> list[Task]:
        ordered = self._ids(self._redis.zrange(self._owner_key(owner_id), 0, -1))
        if status is not None:
            wanted = set(self._ids(self._redis.smembers(self._status_key(owner_id, status))))
            ordered = [tid for tid in ordered if tid in wanted]
        return self._load_many(ordered)

    def find_by_title(self, owner_id: str, title: str) -> list[Task]:
        ids = sorted(self._ids(self._redis.smembers(self._title_key(owner_id, title))))
        tasks = self._load_many(ids)
        return sorted(tasks, key=lambda t: t.created_at)

    def commit(self, ops: Sequence[WriteOp], *, limit: int | None = MAX_GROUP_OPS) -> None:
        if not ops:
            return
        check_group_size(ops, limit)
        # Previous versions of updated records, to move their index entries
        put_ids = [op.task.id for op in ops if op.kind == "put"]
        previous = {t.id: t for t in self._load_many(put_ids)}

        p = self._redis.pipeline(transaction=True)
        for op in ops:
            task = op.task
            old = previous.get(task.id) if op.kind == "put" else task
            if old is not None:
                p.srem(self._status_key(old.owner_id, old.status), old.id)
                p.srem(self._title_key(old.owner_id, old.title), old.id)
            if op.kind == "delete":
                p.delete(self._task_key(task.id))
                p.zrem(self._owner_key(task.owner_id), task.id)
                continue
            payload = json.dumps(task.model_dump(mode="json"), separators=(",", ":"))
            p.hset(self._task_key(task.id), mapping={"json": payload})
            p.zadd(self._owner_key(task.owner_id), {task.id: task.created_at.timestamp()})
            p.sadd(self._status_key(task.owner_id, task.status), task.id)
            p.sadd(self._title_key(task.owner_id, task.title), task.id)
        p.execute()


__all__ = ["RedisTaskStore"]
