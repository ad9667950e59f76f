from __future__ import annotations

import datetime as _dt

import pytest

from taskforest.models.task import Recurrence, Review, Task
from taskforest.recurrence import add_months, next_due_date, spawn_successor

NOW = _dt.datetime(2025, 1, 1, 9, 0, tzinfo=_dt.UTC)


@pytest.mark.parametrize(
    ("pattern", "expected"),
    [
        ("daily", _dt.datetime(2025, 1, 2, tzinfo=_dt.UTC)),
        ("weekly", _dt.datetime(2025, 1, 8, tzinfo=_dt.UTC)),
        ("biweekly", _dt.datetime(2025, 1, 15, tzinfo=_dt.UTC)),
        ("monthly", _dt.datetime(2025, 2, 1, tzinfo=_dt.UTC)),
        ("every full moon", _dt.datetime(2025, 1, 8, tzinfo=_dt.UTC)),
    ],
)
def test_next_due_date_from_due(pattern: str, expected: _dt.datetime) -> None:
    due = _dt.datetime(2025, 1, 1, tzinfo=_dt.UTC)
    assert next_due_date(pattern, due, NOW) == expected


def test_next_due_date_without_due_uses_now() -> None:
    assert next_due_date("daily", None, NOW) == NOW + _dt.timedelta(days=1)


def test_add_months_clamps_to_month_end() -> None:
    jan31 = _dt.datetime(2025, 1, 31, tzinfo=_dt.UTC)
    assert add_months(jan31, 1) == _dt.datetime(2025, 2, 28, tzinfo=_dt.UTC)
    assert add_months(_dt.datetime(2024, 1, 31, tzinfo=_dt.UTC), 1).day == 29
    assert add_months(_dt.datetime(2025, 12, 15, tzinfo=_dt.UTC), 1) == _dt.datetime(
        2026, 1, 15, tzinfo=_dt.UTC
    )


def test_spawn_successor_copies_settings_and_resets_state() -> None:
    task = Task(
        id="orig",
        owner_id="u1",
        parent_id="p",
        level=1,
        path=["Home", "Water plants"],
        title="Water plants",
        importance=4,
        context="@home",
        status="done",
        completed_date=NOW,
        due_date=_dt.datetime(2025, 1, 1, tzinfo=_dt.UTC),
        recurrence=Recurrence(pattern="weekly"),
        review=Review(interval_days=3, last_reviewed=NOW, next_review=NOW),
        today_focus=True,
    )
    successor = spawn_successor(task, NOW, lambda: "next")
    assert successor.id == "next"
    assert successor.parent_id == "p"
    assert successor.path == ["Home", "Water plants"]
    assert successor.status == "next_action"
    assert successor.completed_date is None
    assert successor.today_focus is False
    assert successor.due_date == _dt.datetime(2025, 1, 8, tzinfo=_dt.UTC)
    assert successor.source == "recurrence"
    assert successor.review is not None
    assert successor.review.interval_days == 3
    assert successor.review.next_review is None
    assert successor.child_count == 0
    # the original is untouched
    assert task.status == "done"


def test_spawn_successor_requires_recurrence() -> None:
    with pytest.raises(ValueError):
        spawn_successor(Task(owner_id="u1", title="once"), NOW)
