from __future__ import annotations

import datetime as _dt
from collections.abc import Generator

import pytest
import redis

from taskforest.engine import MutationEngine
from taskforest.inbox import InboxResolver
from taskforest.models.task import INBOX_TITLE, Task
from taskforest.store.interface import WriteOp
from taskforest.store.redis_store import RedisTaskStore

T0 = _dt.datetime(2025, 1, 1, tzinfo=_dt.UTC)


@pytest.fixture()
def store(redis_url: str, unique_prefix: str) -> Generator[RedisTaskStore, None, None]:
    s = RedisTaskStore(url=redis_url, key_prefix=unique_prefix)
    yield s
    client = redis.Redis.from_url(redis_url)
    for key in client.scan_iter(match=f"{unique_prefix}:*"):
        client.delete(key)


def _t(tid: str, title: str, minutes: int, **kw: object) -> Task:
    return Task(
        id=tid,
        owner_id="u1",
        title=title,
        created_at=T0 + _dt.timedelta(minutes=minutes),
        **kw,
    )


def test_put_get_persists_across_instances(
    store: RedisTaskStore, redis_url: str, unique_prefix: str
) -> None:
    store.commit([WriteOp.put(_t("a", "Write tests", 0, context="@computer"))])

    fetched = store.get_task("a")
    assert fetched is not None
    assert fetched.title == "Write tests"
    assert fetched.context == "@computer"

    store2 = RedisTaskStore(url=redis_url, key_prefix=unique_prefix)
    assert store2.get_task("a") == fetched
    assert store.get_task("missing") is None


def test_list_orders_by_created_at_and_filters_status(store: RedisTaskStore) -> None:
    store.commit(
        [
            WriteOp.put(_t("c", "Third", 2)),
            WriteOp.put(_t("a", "First", 0)),
            WriteOp.put(_t("b", "Second", 1, status="done")),
        ]
    )
    assert [t.id for t in store.list_tasks("u1")] == ["a", "b", "c"]
    assert [t.id for t in store.list_tasks("u1", status="next_action")] == ["a", "c"]
    assert [t.id for t in store.list_tasks("u1", status="done")] == ["b"]
    assert store.list_tasks("someone-else") == []


def test_indexes_follow_status_and_title_changes(store: RedisTaskStore) -> None:
    original = _t("a", "Draft", 0)
    store.commit([WriteOp.put(original)])
    store.commit([WriteOp.put(original.model_copy(update={"title": "Final", "status": "done"}))])

    assert store.find_by_title("u1", "Draft") == []
    assert [t.id for t in store.find_by_title("u1", "Final")] == ["a"]
    assert store.list_tasks("u1", status="next_action") == []
    assert [t.id for t in store.list_tasks("u1", status="done")] == ["a"]


def test_delete_removes_record_and_index_entries(store: RedisTaskStore) -> None:
    task = _t("a", "Gone soon", 0)
    store.commit([WriteOp.put(task), WriteOp.put(_t("b", "Stays", 1))])
    store.commit([WriteOp.delete(task)])

    assert store.get_task("a") is None
    assert [t.id for t in store.list_tasks("u1")] == ["b"]
    assert store.find_by_title("u1", "Gone soon") == []


def test_oversized_group_is_rejected(store: RedisTaskStore) -> None:
    ops = [WriteOp.put(_t(f"t{i}", f"T{i}", i)) for i in range(500)]
    with pytest.raises(ValueError):
        store.commit(ops)
    assert store.list_tasks("u1") == []


def test_uncapped_group_commits_in_one_transaction(store: RedisTaskStore) -> None:
    ops = [WriteOp.put(_t(f"t{i:03d}", f"T{i}", i)) for i in range(600)]
    store.commit(ops, limit=None)
    assert len(store.list_tasks("u1")) == 600


def test_unreadable_record_is_skipped(
    store: RedisTaskStore, redis_url: str, unique_prefix: str
) -> None:
    store.commit([WriteOp.put(_t("a", "Fine", 0))])
    client = redis.Redis.from_url(redis_url)
    client.hset(f"{unique_prefix}:task:bad", "json", "{not json")
    client.zadd(f"{unique_prefix}:owner:u1", {"bad": 0})
    assert [t.id for t in store.list_tasks("u1")] == ["a"]


def test_engine_round_trip_on_redis(store: RedisTaskStore) -> None:
    engine = MutationEngine(store, InboxResolver(store))
    first = engine.add_task("u1", {"title": "Call bank"})
    engine.add_task("u1", {"title": "Buy stamps"})

    inbox = store.find_by_title("u1", INBOX_TITLE)
    assert len(inbox) == 1
    assert inbox[0].child_count == 2

    result = engine.toggle_complete(first)
    assert result.task.status == "done"
    assert [t.title for t in engine.inbox_view("u1")] == ["Buy stamps"]
    assert engine.delete_task(inbox[0].id) == 3
    assert store.list_tasks("u1") == []
