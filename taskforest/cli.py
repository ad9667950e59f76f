from __future__ import annotations

import argparse
import datetime as _dt
import json
import sys
from pathlib import Path
from typing import Any

from taskforest.config import ForestConfig, load_config
from taskforest.engine import MutationEngine
from taskforest.errors import PartialImportError, TaskForestError
from taskforest.export import export_csv, export_json, export_mlo_xml
from taskforest.forest.builder import iter_nodes, prune_completed
from taskforest.forest.stats import collect_stats
from taskforest.importer.batch import BatchImporter
from taskforest.inbox import InboxResolver
from taskforest.models.task import Task
from taskforest.store.interface import TaskStore


def _open_store(config: ForestConfig) -> TaskStore:
    # Deferred so commands that are handed a store never touch Redis
    from taskforest.store.redis_store import RedisTaskStore

    return RedisTaskStore(url=config.redis_url, key_prefix=config.key_prefix)


def _line(task: Task) -> str:
    parts = [f"{task.computed_priority:5.1f}", task.title]
    if task.context:
        parts.append(task.context)
    if task.due_date is not None:
        parts.append(f"due {task.due_date.date().isoformat()}")
    return "  ".join(parts)


def _print_stats(tasks: list[Task]) -> None:
    stats = collect_stats(tasks)
    print(f"Total tasks: {stats.total}")
    print(f"Active tasks: {stats.active}")
    print(f"Completed tasks: {stats.completed}")
    print(f"Projects: {stats.projects}")
    print(f"Today's focus: {stats.focused}")
    print(f"Tasks with due dates: {stats.with_due_date}")
    print(f"Average time estimate: {stats.avg_time_estimate} minutes")
    for ctx, count in sorted(stats.by_context.items()):
        print(f"  {ctx}: {count} tasks")
    for level, count in sorted(stats.by_level.items()):
        print(f"  Level {level}: {count} tasks")


def _parse_instant(value: str) -> _dt.datetime:
    parsed = _dt.datetime.fromisoformat(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=_dt.UTC)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("taskforest")
    parser.add_argument("--owner", help="Owner id (default: TASK_OWNER_ID)")
    sub = parser.add_subparsers(dest="cmd")

    p_import = sub.add_parser("import", help="Import a MyLifeOrganized XML export")
    p_import.add_argument("file")

    p_todo = sub.add_parser("todo", help="Open tasks ranked by priority")
    p_todo.add_argument("--context")
    p_todo.add_argument("--limit", type=int, default=20)

    sub.add_parser("review", help="Tasks due for periodic review")

    p_tree = sub.add_parser("tree", help="Print the task hierarchy")
    p_tree.add_argument("--prune-before", type=_parse_instant)

    sub.add_parser("stats", help="Summary counts")

    p_export = sub.add_parser("export", help="Export tasks")
    p_export.add_argument("--format", choices=["json", "csv", "mlo"], default="json")
    p_export.add_argument("--output")

    p_serve = sub.add_parser("serve", help="Run the HTTP gateway")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    return parser


def _run(args: argparse.Namespace, config: ForestConfig, store: TaskStore, owner: str) -> int:
    inbox = InboxResolver(store)
    engine = MutationEngine(store, inbox, group_size=config.group_size)

    if args.cmd == "import":
        importer = BatchImporter(
            store, inbox, group_size=config.group_size, max_workers=config.import_workers
        )
        try:
            report = importer.import_file(args.file, owner)
        except PartialImportError as exc:
            sys.stderr.write(f"error: {exc}\n")
            return 1
        print(f"Imported {report.records} tasks in {report.groups} write group(s)")
        print(f"Calculated priorities for {report.prioritized} tasks")
        _print_stats(store.list_tasks(owner))
        return 0

    if args.cmd == "todo":
        for task in engine.todo_view(owner, context=args.context)[: args.limit]:
            print(_line(task))
        return 0

    if args.cmd == "review":
        for task in engine.review_queue(owner):
            nxt = task.review.next_review if task.review else None
            print(f"{task.title}  next review: {nxt.date().isoformat() if nxt else 'now'}")
        return 0

    if args.cmd == "tree":
        forest = engine.forest(owner)
        if args.prune_before is not None:
            forest = prune_completed(forest, args.prune_before)
        for node, depth in iter_nodes(forest):
            mark = "x" if node.task.is_done else " "
            print(f"{'  ' * depth}[{mark}] {node.task.title}")
        return 0

    if args.cmd == "stats":
        _print_stats(store.list_tasks(owner))
        return 0

    if args.cmd == "export":
        tasks = store.list_tasks(owner)
        if args.format == "csv":
            out = export_csv(tasks)
        elif args.format == "mlo":
            out = export_mlo_xml(tasks)
        else:
            out = json.dumps(export_json(tasks, owner), indent=2)
        if args.output:
            Path(args.output).write_text(out, encoding="utf-8")
        else:
            sys.stdout.write(out if out.endswith("\n") else out + "\n")
        return 0

    return 2


def main(argv: list[str] | None = None, *, store: Any | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config()

    if args.cmd is None:
        parser.print_help()
        return

    if args.cmd == "serve":
        import uvicorn

        uvicorn.run("taskforest.gateway.asgi:app", host=args.host, port=args.port)
        return

    owner = args.owner or config.owner_id
    if not owner:
        sys.stderr.write("error: --owner or TASK_OWNER_ID is required\n")
        raise SystemExit(2)

    try:
        code = _run(args, config, store if store is not None else _open_store(config), owner)
    except (TaskForestError, ValueError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        code = 1
    raise SystemExit(code)


if __name__ == "__main__":
    main()
