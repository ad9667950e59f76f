from __future__ import annotations

import datetime as _dt
from collections.abc import Callable
from typing import Any, Literal

import redis
from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from taskforest.commands import ActionDescriptor, dispatch
from taskforest.engine import MutationEngine
from taskforest.errors import InvalidParentError, NotFoundError, PartialImportError
from taskforest.export import export_csv, export_json, export_mlo_xml
from taskforest.forest.builder import TaskNode, prune_completed
from taskforest.forest.stats import collect_stats
from taskforest.importer.batch import BatchImporter
from taskforest.inbox import InboxResolver
from taskforest.models.task import Task, TaskFields, TaskUpdate, utcnow
from taskforest.observability import configure_uvicorn_logging, get_json_logger, get_metrics
from taskforest.store.interface import MAX_GROUP_OPS, TaskStore


class AddTaskRequest(TaskFields):
    parent_id: str | None = None


class MoveRequest(BaseModel):
    parent_id: str | None = None


class CommandRequest(ActionDescriptor):
    confirmed: bool = False


def _dump(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json")


def _tree(forest: list[TaskNode]) -> list[dict[str, Any]]:
    roots: list[dict[str, Any]] = []
    stack: list[tuple[TaskNode, list[dict[str, Any]]]] = [(n, roots) for n in reversed(forest)]
    while stack:
        node, siblings = stack.pop()
        entry: dict[str, Any] = {"task": _dump(node.task), "children": []}
        siblings.append(entry)
        stack.extend((child, entry["children"]) for child in reversed(node.children))
    return roots


def create_app(
    store: TaskStore,
    *,
    clock: Callable[[], _dt.datetime] = utcnow,
    group_size: int = MAX_GROUP_OPS,
    import_workers: int = 4,
) -> FastAPI:
    app = FastAPI(title="taskforest")
    configure_uvicorn_logging()
    logger = get_json_logger("taskforest.gateway")
    metrics = get_metrics()

    inbox = InboxResolver(store, clock)
    engine = MutationEngine(store, inbox, clock=clock, group_size=group_size)
    importer = BatchImporter(
        store, inbox, clock=clock, group_size=group_size, max_workers=import_workers
    )

    def _error(status: int, path: str, exc: Exception, **fields: Any) -> JSONResponse:
        logger.warning(
            "gateway request rejected",
            extra={"event": "gateway_error", "metadata": {"path": path, "error": str(exc)}},
        )
        metrics.increment("gateway_errors", {"status": str(status)})
        return JSONResponse(status_code=status, content={"detail": str(exc), **fields})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, request.url.path, exc, task_id=exc.task_id)

    @app.exception_handler(InvalidParentError)
    async def _invalid_parent(request: Request, exc: InvalidParentError) -> JSONResponse:
        return _error(409, request.url.path, exc)

    @app.exception_handler(PartialImportError)
    async def _partial_import(request: Request, exc: PartialImportError) -> JSONResponse:
        return _error(
            502,
            request.url.path,
            exc,
            committed_records=exc.committed_records,
            committed_groups=exc.committed_groups,
            failed_groups=exc.failed_groups,
        )

    @app.exception_handler(ValueError)
    async def _bad_value(request: Request, exc: ValueError) -> JSONResponse:
        return _error(400, request.url.path, exc)

    @app.exception_handler(redis.exceptions.RedisError)
    async def _store_down(request: Request, exc: redis.exceptions.RedisError) -> JSONResponse:
        return _error(503, request.url.path, exc)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # ----------------------------
    # Single-task operations
    # ----------------------------
    @app.post("/owners/{owner_id}/tasks", status_code=201)
    def add_task(owner_id: str, body: AddTaskRequest) -> dict[str, Any]:
        fields = TaskFields.model_validate(body.model_dump(exclude={"parent_id"}))
        task_id = engine.add_task(owner_id, fields, body.parent_id)
        return {"task": _dump(engine.get_task(task_id))}

    @app.get("/tasks/{task_id}")
    def get_task(task_id: str) -> dict[str, Any]:
        return {"task": _dump(engine.get_task(task_id))}

    @app.patch("/tasks/{task_id}")
    def update_task(task_id: str, body: TaskUpdate) -> dict[str, Any]:
        return {"task": _dump(engine.update_task(task_id, body))}

    @app.post("/tasks/{task_id}/move")
    def move_task(task_id: str, body: MoveRequest) -> dict[str, Any]:
        return {"task": _dump(engine.move_task(task_id, body.parent_id))}

    @app.get("/tasks/{task_id}/move-candidates")
    def move_candidates(task_id: str) -> dict[str, Any]:
        return {"tasks": [_dump(t) for t in engine.move_candidates(task_id)]}

    @app.post("/tasks/{task_id}/toggle")
    def toggle_complete(task_id: str) -> dict[str, Any]:
        result = engine.toggle_complete(task_id)
        successor = _dump(result.successor) if result.successor is not None else None
        return {"task": _dump(result.task), "successor": successor}

    @app.post("/tasks/{task_id}/review")
    def mark_reviewed(task_id: str) -> dict[str, Any]:
        return {"task": _dump(engine.mark_reviewed(task_id))}

    @app.delete("/tasks/{task_id}")
    def delete_task(task_id: str) -> dict[str, Any]:
        return {"deleted": engine.delete_task(task_id)}

    # ----------------------------
    # Owner views
    # ----------------------------
    @app.get("/owners/{owner_id}/todo")
    def todo(
        owner_id: str, context: str | None = None, limit: int | None = None
    ) -> dict[str, Any]:
        tasks = engine.todo_view(owner_id, context=context)
        if limit is not None:
            tasks = tasks[:limit]
        return {"tasks": [_dump(t) for t in tasks]}

    @app.get("/owners/{owner_id}/review")
    def review(owner_id: str) -> dict[str, Any]:
        return {"tasks": [_dump(t) for t in engine.review_queue(owner_id)]}

    @app.get("/owners/{owner_id}/inbox")
    def inbox_view(owner_id: str) -> dict[str, Any]:
        return {"tasks": [_dump(t) for t in engine.inbox_view(owner_id)]}

    @app.get("/owners/{owner_id}/tree")
    def tree(owner_id: str, prune_before: _dt.datetime | None = None) -> dict[str, Any]:
        forest = engine.forest(owner_id)
        if prune_before is not None:
            if prune_before.tzinfo is None:
                prune_before = prune_before.replace(tzinfo=_dt.UTC)
            forest = prune_completed(forest, prune_before)
        return {"roots": _tree(forest)}

    @app.get("/owners/{owner_id}/stats")
    def stats(owner_id: str) -> dict[str, Any]:
        return collect_stats(store.list_tasks(owner_id)).model_dump(mode="json")

    @app.post("/owners/{owner_id}/priorities")
    def recompute(owner_id: str) -> dict[str, int]:
        return {"prioritized": engine.recompute_priorities(owner_id)}

    @app.post("/owners/{owner_id}/commands")
    def command(owner_id: str, body: CommandRequest) -> dict[str, Any]:
        descriptor = ActionDescriptor.model_validate(body.model_dump(exclude={"confirmed"}))
        return dispatch(engine, owner_id, descriptor, confirmed=body.confirmed)

    # ----------------------------
    # Bulk import / export
    # ----------------------------
    @app.post("/owners/{owner_id}/import")
    async def import_outline(owner_id: str, request: Request) -> dict[str, Any]:
        text = (await request.body()).decode("utf-8")
        report = await run_in_threadpool(importer.import_xml, text, owner_id)
        return {
            "records": report.records,
            "groups": report.groups,
            "prioritized": report.prioritized,
            "inbox_id": report.inbox_id,
        }

    @app.get("/owners/{owner_id}/export", response_model=None)
    def export(
        owner_id: str, format: Literal["json", "csv", "mlo"] = "json"
    ) -> Response | dict[str, Any]:
        tasks = store.list_tasks(owner_id)
        if format == "csv":
            return Response(export_csv(tasks), media_type="text/csv")
        if format == "mlo":
            return Response(export_mlo_xml(tasks), media_type="application/xml")
        return export_json(tasks, owner_id, clock())

    return app


__all__ = ["create_app"]
