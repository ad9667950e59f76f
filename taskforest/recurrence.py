from __future__ import annotations

import calendar
import datetime as _dt
from collections.abc import Callable

from taskforest.models.task import Task, new_id

PATTERN_DAYS = {"daily": 1, "weekly": 7, "biweekly": 14}
FALLBACK_DAYS = 7


def add_months(value: _dt.datetime, months: int) -> _dt.datetime:
    """Same day next month(s), clamped to the last day of a shorter month."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_due_date(
    pattern: str, due: _dt.datetime | None, now: _dt.datetime
) -> _dt.datetime:
    base = due if due is not None else now
    if pattern == "monthly":
        return add_months(base, 1)
    return base + _dt.timedelta(days=PATTERN_DAYS.get(pattern, FALLBACK_DAYS))


def spawn_successor(
    task: Task,
    now: _dt.datetime,
    id_factory: Callable[[], str] = new_id,
) -> Task:
    """Fresh open occurrence of a just-completed recurring task.

    The completed task is left untouched; the successor shares only its
    static settings and sits under the same parent.
    """
    if task.recurrence is None:
        raise ValueError(f"task {task.id} has no recurrence")
    review = task.review
    if review is not None:
        review = review.model_copy(update={"last_reviewed": None, "next_review": None})
    return Task(
        id=id_factory(),
        owner_id=task.owner_id,
        parent_id=task.parent_id,
        level=task.level,
        path=list(task.path),
        title=task.title,
        description=task.description,
        importance=task.importance,
        urgency=task.urgency,
        context=task.context,
        time_estimate_minutes=task.time_estimate_minutes,
        energy_level=task.energy_level,
        is_project=task.is_project,
        recurrence=task.recurrence.model_copy(),
        review=review,
        status="next_action",
        due_date=next_due_date(task.recurrence.pattern, task.due_date, now),
        source="recurrence",
        created_at=now,
        modified_at=now,
    )


__all__ = ["add_months", "next_due_date", "spawn_successor"]
