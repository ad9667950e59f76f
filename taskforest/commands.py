"""Apply structured action descriptors produced by an external interpreter.

The interpreter (speech or chat) owns all language understanding; here we
only accept its already-structured output and map it onto engine calls.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

import redis
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from taskforest.engine import MutationEngine
from taskforest.errors import NotFoundError, TaskForestError
from taskforest.forest.builder import iter_nodes
from taskforest.models.task import Task, TaskFields
from taskforest.observability import get_json_logger, get_metrics

ActionType = Literal["add", "update", "complete", "delete", "query", "none"]
QUERY_VIEWS = ("todo", "review", "inbox", "tree")


class ActionDescriptor(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action_type: ActionType
    parameters: dict[str, Any] = Field(default_factory=dict)
    needs_confirmation: bool = False


def _serialize_task(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json")


def _require_str_non_empty(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    v = value.strip()
    if not v:
        raise ValueError(f"{name} must be non-empty")
    return v


def _pop_any(params: dict[str, Any], *names: str) -> Any:
    value = None
    for name in names:
        if name in params:
            value = params.pop(name)
    return value


def _task_id(params: dict[str, Any]) -> str:
    return _require_str_non_empty("taskId", _pop_any(params, "taskId", "task_id"))


def _owned_task(engine: MutationEngine, owner_id: str, params: dict[str, Any]) -> Task:
    task = engine.get_task(_task_id(params))
    # Other owners' tasks are reported as missing
    if task.owner_id != owner_id:
        raise NotFoundError(task.id)
    return task


def _add(engine: MutationEngine, owner_id: str, params: dict[str, Any]) -> dict[str, Any]:
    parent_id = _pop_any(params, "parentId", "parent_id")
    params.setdefault("source", "voice")
    task_id = engine.add_task(owner_id, TaskFields.model_validate(params), parent_id)
    return {"task": _serialize_task(engine.get_task(task_id))}


def _update(engine: MutationEngine, owner_id: str, params: dict[str, Any]) -> dict[str, Any]:
    task_id = _owned_task(engine, owner_id, params).id
    moving = "parentId" in params or "parent_id" in params
    new_parent = _pop_any(params, "parentId", "parent_id")
    if not params and not moving:
        raise ValueError("no fields to update")
    task = engine.move_task(task_id, new_parent) if moving else engine.get_task(task_id)
    if params:
        task = engine.update_task(task_id, params)
    return {"task": _serialize_task(task)}


def _complete(engine: MutationEngine, owner_id: str, params: dict[str, Any]) -> dict[str, Any]:
    task = _owned_task(engine, owner_id, params)
    if task.is_done:
        return {"task": _serialize_task(task), "successor": None}
    result = engine.toggle_complete(task.id)
    successor = _serialize_task(result.successor) if result.successor is not None else None
    return {"task": _serialize_task(result.task), "successor": successor}


def _query(engine: MutationEngine, owner_id: str, params: dict[str, Any]) -> dict[str, Any]:
    view = params.get("view", "todo")
    if view not in QUERY_VIEWS:
        raise ValueError(f"view must be one of {', '.join(QUERY_VIEWS)}")
    limit = params.get("limit")
    if view == "tree":
        rows = [
            {"depth": depth, "task": _serialize_task(node.task)}
            for node, depth in iter_nodes(engine.forest(owner_id))
        ]
        return {"view": view, "tasks": rows[:limit] if isinstance(limit, int) else rows}
    if view == "todo":
        tasks = engine.todo_view(owner_id, context=params.get("context"))
    elif view == "review":
        tasks = engine.review_queue(owner_id)
    else:
        tasks = engine.inbox_view(owner_id)
    if isinstance(limit, int):
        tasks = tasks[:limit]
    return {"view": view, "tasks": [_serialize_task(t) for t in tasks]}


def dispatch(
    engine: MutationEngine,
    owner_id: str,
    descriptor: ActionDescriptor | Mapping[str, Any],
    *,
    confirmed: bool = False,
) -> dict[str, Any]:
    """Run one descriptor. Returns a JSON-safe result dict.

    Descriptors flagged ``needsConfirmation`` are not applied until re-sent
    with ``confirmed=True``. Malformed parameters raise ``ValueError``.
    """
    logger = get_json_logger("taskforest.commands")
    metrics = get_metrics()
    if not isinstance(descriptor, ActionDescriptor):
        descriptor = ActionDescriptor.model_validate(descriptor)
    oid = _require_str_non_empty("owner_id", owner_id)
    action = descriptor.action_type
    params = dict(descriptor.parameters)

    if action == "none":
        return {"action": action, "ok": True}
    if descriptor.needs_confirmation and not confirmed:
        return {"action": action, "ok": False, "needs_confirmation": True}

    logger.info(
        "command call",
        extra={"event": "command_call", "owner_id": oid, "operation": action},
    )
    metrics.increment("command_calls", {"action": action})
    try:
        if action == "add":
            result = _add(engine, oid, params)
        elif action == "update":
            result = _update(engine, oid, params)
        elif action == "complete":
            result = _complete(engine, oid, params)
        elif action == "delete":
            result = {"deleted": engine.delete_task(_owned_task(engine, oid, params).id)}
        else:
            result = _query(engine, oid, params)
    except TaskForestError as e:
        logger.warning(
            "command rejected",
            extra={"event": "command_rejected", "operation": action, "metadata": {"error": str(e)}},
        )
        metrics.increment("command_errors", {"action": action})
        return {"action": action, "ok": False, "error": str(e), "transient": False}
    except redis.exceptions.RedisError as e:
        logger.error(
            "command error",
            extra={
                "event": "command_error",
                "operation": action,
                "metadata": {"error": str(e)[:200]},
            },
        )
        metrics.increment("command_errors", {"action": action})
        return {"action": action, "ok": False, "error": str(e), "transient": True}
    return {"action": action, "ok": True, **result}


__all__ = ["ActionDescriptor", "QUERY_VIEWS", "dispatch"]
