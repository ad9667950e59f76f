from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable

from taskforest.models.task import Review, Task


def is_due_for_review(task: Task, now: _dt.datetime) -> bool:
    review = task.review
    if review is None or not review.enabled or task.is_done:
        return False
    return review.next_review is None or review.next_review <= now


def due_for_review(tasks: Iterable[Task], now: _dt.datetime) -> list[Task]:
    """Tasks whose periodic review is due, never-reviewed ones first."""
    due = [t for t in tasks if is_due_for_review(t, now)]

    def _key(task: Task) -> tuple[int, _dt.datetime]:
        nxt = task.review.next_review if task.review is not None else None
        return (0, now) if nxt is None else (1, nxt)

    return sorted(due, key=_key)


def reviewed(review: Review, now: _dt.datetime) -> Review:
    return review.model_copy(
        update={
            "last_reviewed": now,
            "next_review": now + _dt.timedelta(days=review.interval_days),
        }
    )


__all__ = ["due_for_review", "is_due_for_review", "reviewed"]
